"""
Alignment Set: every facet alignment computed for one bundle.

Built fresh on every validation call; only facets whose two documents are both
present in the bundle are computed.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.config import EngineConfig, get_config
from core.documents import DocumentBundle
from .base import Alignment
from .facets import (
    align_csr_endpoints,
    align_csr_populations,
    align_doses,
    align_objectives,
    align_sap_endpoints,
    align_sap_populations,
    align_visits,
)

logger = logging.getLogger(__name__)

FACETS = ('objectives', 'endpoints', 'doses', 'populations', 'visits')


@dataclass
class AlignmentSet:
    objectives: List[Alignment] = field(default_factory=list)
    endpoints: List[Alignment] = field(default_factory=list)
    doses: List[Alignment] = field(default_factory=list)
    populations: List[Alignment] = field(default_factory=list)
    visits: List[Alignment] = field(default_factory=list)

    def all(self) -> List[Alignment]:
        return [a for facet in FACETS for a in getattr(self, facet)]

    def facet(self, name: str, *, left_kind: Optional[str] = None,
              right_kind: Optional[str] = None, type: Optional[str] = None) -> List[Alignment]:
        """Alignments of one facet, optionally narrowed to a document pair and entity type."""
        return [
            a for a in getattr(self, name)
            if (left_kind is None or a.left_kind == left_kind)
            and (right_kind is None or a.right_kind == right_kind)
            and (type is None or a.type == type)
        ]

    def for_pair(self, left_kind: str, right_kind: str) -> List[Alignment]:
        return [a for a in self.all() if a.left_kind == left_kind and a.right_kind == right_kind]

    def summary(self) -> dict:
        return {
            name: {
                'total': len(getattr(self, name)),
                'aligned': sum(1 for a in getattr(self, name) if a.aligned),
            }
            for name in FACETS
        }

    def to_dict(self) -> dict:
        return {name: [a.to_dict() for a in getattr(self, name)] for name in FACETS}


def build_alignments(bundle: DocumentBundle, config: Optional[EngineConfig] = None) -> AlignmentSet:
    """Compute all facet alignments the bundle's documents allow."""
    config = config or get_config()
    threshold = config.alignment_threshold
    result = AlignmentSet()

    ib, protocol, icf, sap, csr = bundle.ib, bundle.protocol, bundle.icf, bundle.sap, bundle.csr

    if ib and protocol:
        result.objectives.extend(align_objectives(ib, protocol, threshold))
        result.doses.extend(align_doses(ib, protocol, threshold))
    if protocol and sap:
        result.endpoints.extend(align_sap_endpoints(protocol, sap, threshold))
        result.populations.extend(align_sap_populations(protocol, sap, threshold))
    if protocol and csr:
        result.endpoints.extend(align_csr_endpoints(protocol, csr, threshold))
        result.populations.extend(align_csr_populations(protocol, csr, threshold))
    if protocol and icf:
        result.visits.extend(align_visits(protocol, icf, threshold))

    logger.debug(f"Alignment summary: {result.summary()}")
    return result
