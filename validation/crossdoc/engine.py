"""
Cross-document validation engine.

Wraps a RuleEngine preloaded with every cross-document rule. Each ``run``
recomputes the alignment set for the bundle it is given; nothing is cached
between calls.

Usage:
    from validation.crossdoc import CrossDocEngine

    engine = CrossDocEngine.create_default()
    result = engine.run(bundle, study_flow=flow)
    result.filter(code="PRIMARY_ENDPOINT_DRIFT")
"""

import logging
from typing import List, Optional

from alignment.alignment_set import AlignmentSet, build_alignments
from core.config import EngineConfig, get_config
from core.documents import DocumentBundle
from core.errors import InsufficientDocumentsError
from ..engine import CrossDocContext, FunctionRule, RuleEngine, RuleRegistry, ValidationResult
from .global_rules import GLOBAL_RULES
from .ib_protocol import IB_PROTOCOL_RULES
from .protocol_csr import PROTOCOL_CSR_RULES
from .protocol_icf import PROTOCOL_ICF_RULES
from .protocol_sap import PROTOCOL_SAP_RULES
from .studyflow_consistency import STUDYFLOW_RULES

logger = logging.getLogger(__name__)

MIN_DOCUMENTS = 2

CROSSDOC_RULES: List[FunctionRule] = (
    IB_PROTOCOL_RULES
    + PROTOCOL_SAP_RULES
    + PROTOCOL_ICF_RULES
    + PROTOCOL_CSR_RULES
    + GLOBAL_RULES
    + STUDYFLOW_RULES
)


def create_crossdoc_registry() -> RuleRegistry:
    registry = RuleRegistry()
    registry.register_all([r.clone() for r in CROSSDOC_RULES])
    return registry


class CrossDocEngine:
    """Validates a bundle of at least two documents (plus an optional Study Flow)."""

    def __init__(self, registry: RuleRegistry, config: Optional[EngineConfig] = None):
        self.config = config or get_config()
        self.registry = registry
        self.engine = RuleEngine(
            registry,
            parallel=self.config.parallel_rules,
            max_workers=self.config.max_rule_workers,
        )

    @classmethod
    def create_default(cls, config: Optional[EngineConfig] = None) -> 'CrossDocEngine':
        return cls(create_crossdoc_registry(), config=config)

    def alignments(self, bundle: DocumentBundle) -> AlignmentSet:
        return build_alignments(bundle, self.config)

    def run(self, bundle: DocumentBundle, study_flow=None) -> ValidationResult:
        """
        Align the bundle and run every enabled rule over it.

        Raises:
            InsufficientDocumentsError: fewer than two document kinds present.
        """
        if bundle is None or len(bundle) < MIN_DOCUMENTS:
            present = [k.value for k in bundle.kinds()] if bundle is not None else []
            raise InsufficientDocumentsError(present=present)

        alignments = self.alignments(bundle)
        context = CrossDocContext(bundle=bundle, alignments=alignments,
                                  study_flow=study_flow, config=self.config)
        logger.debug(f"Cross-document validation of {context.label} with {len(self.registry)} rules")
        return self.engine.run(context)


def validate_bundle(bundle: DocumentBundle, study_flow=None,
                    config: Optional[EngineConfig] = None) -> ValidationResult:
    """One-shot cross-document validation with the default rule set."""
    return CrossDocEngine.create_default(config).run(bundle, study_flow=study_flow)
