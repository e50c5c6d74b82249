"""
Re-validation loop: validate, auto-fix, validate again, in one call.

The patched documents produced by the auto-fix engine are fed straight back
into the same rule set, so callers can see which issue codes the fix pass
resolved and whether it introduced anything new.

Usage:
    from pipeline.revalidation import fix_and_revalidate

    outcome = fix_and_revalidate(bundle, ['PRIMARY_ENDPOINT_DRIFT'], 'align_to_protocol')
    outcome.resolved_codes      # ['PRIMARY_ENDPOINT_DRIFT']
    outcome.is_monotonic        # True
    outcome.fix.bundle          # patched bundle to persist
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Union

from autofix.engine import AutoFixRequest, AutoFixResult, apply_auto_fixes
from autofix.patching import PatchTarget
from autofix.strategies import Strategy
from core.config import EngineConfig, get_config
from core.documents import DocumentBundle
from studyflow.models import StudyFlow
from validation.crossdoc.engine import CrossDocEngine
from validation.engine import ValidationResult
from validation.flow_rules import validate_study_flow

logger = logging.getLogger(__name__)


@dataclass
class RemediationResult:
    """Validation before and after one auto-fix pass."""
    before: ValidationResult
    fix: AutoFixResult
    after: ValidationResult

    @property
    def resolved_codes(self) -> List[str]:
        after = set(self.after.issue_codes())
        return sorted({c for c in self.before.issue_codes() if c not in after})

    @property
    def introduced_codes(self) -> List[str]:
        before = set(self.before.issue_codes())
        return sorted({c for c in self.after.issue_codes() if c not in before})

    @property
    def is_monotonic(self) -> bool:
        return len(self.after.issues) <= len(self.before.issues)

    def to_dict(self) -> dict:
        return {
            'before': self.before.summary,
            'after': self.after.summary,
            'resolvedCodes': self.resolved_codes,
            'introducedCodes': self.introduced_codes,
            'monotonic': self.is_monotonic,
            'fix': {
                'appliedPatches': [p.to_dict() for p in self.fix.applied_patches],
                'updatedDocuments': list(self.fix.updated_documents),
                'changelog': [e.to_dict() for e in self.fix.changelog],
                'summary': dict(self.fix.summary),
            },
            'remainingIssues': [i.to_dict() for i in self.after.issues],
        }


def _report(result: RemediationResult) -> RemediationResult:
    logger.info(
        f"Remediation: {len(result.before.issues)} -> {len(result.after.issues)} issues, "
        f"resolved {result.resolved_codes or 'nothing'}"
    )
    if not result.is_monotonic or result.introduced_codes:
        logger.warning(
            f"Auto-fix pass was not monotonic: {len(result.before.issues)} issues before, "
            f"{len(result.after.issues)} after; new codes {result.introduced_codes}"
        )
    return result


def fix_and_revalidate(bundle: DocumentBundle, issue_ids: List[str],
                       strategy: Union[Strategy, str, None] = None, *,
                       study_flow: Optional[StudyFlow] = None,
                       engine: Optional[CrossDocEngine] = None,
                       config: Optional[EngineConfig] = None) -> RemediationResult:
    """
    Cross-document validate ``bundle``, fix the selected issue codes, re-validate.

    Raises:
        InsufficientDocumentsError: fewer than two documents in the bundle.
        EmptyIssueSelectionError: ``issue_ids`` is empty.
        MissingTargetError: unknown strategy.
    """
    config = config or get_config()
    engine = engine or CrossDocEngine.create_default(config)
    request = AutoFixRequest(issue_ids=list(issue_ids or []), strategy=strategy)
    request.validate()

    before = engine.run(bundle, study_flow=study_flow)
    fix = apply_auto_fixes(before.issues, PatchTarget(bundle=bundle, flow=study_flow), request)
    after = engine.run(fix.bundle, study_flow=fix.flow)
    return _report(RemediationResult(before=before, fix=fix, after=after))


def fix_flow_and_revalidate(flow: StudyFlow, issue_ids: List[str],
                            strategy: Union[Strategy, str, None] = None, *,
                            bundle: Optional[DocumentBundle] = None,
                            config: Optional[EngineConfig] = None) -> RemediationResult:
    """Flow-rule counterpart of ``fix_and_revalidate``."""
    config = config or get_config()
    request = AutoFixRequest(issue_ids=list(issue_ids or []), strategy=strategy)
    request.validate()

    before = validate_study_flow(flow, bundle, config=config)
    fix = apply_auto_fixes(before.issues, PatchTarget(bundle=bundle, flow=flow), request)
    after = validate_study_flow(fix.flow, fix.bundle, config=config)
    return _report(RemediationResult(before=before, fix=fix, after=after))


def save_remediation_report(result: RemediationResult, output_dir: str) -> str:
    """Save remediation_report.json to ``output_dir``; returns its path."""
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, 'remediation_report.json')
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(result.to_dict(), f, indent=2, default=str)
    logger.info(f"Saved remediation report to {path}")
    return path
