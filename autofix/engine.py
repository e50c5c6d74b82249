"""
Auto-Fix Engine.

Turns a selection of issues into applied patches:

    1. keep the issues whose code is in ``request.issue_ids``
    2. take each issue's first auto-fixable suggestion, synthesizing one when
       the issue carries none
    3. resolve patches that share a conflict key under the request strategy
    4. apply the winning patches in registration order to copies of the
       target documents
    5. an issue is resolved only when every one of its patches was applied
    6. record one changelog entry per patch (or per issue without a patch)

One invalid patch never aborts the batch; it is recorded as
``skipped-invalid``.

Usage:
    request = AutoFixRequest(issue_ids=['PRIMARY_ENDPOINT_DRIFT'], strategy='align_to_protocol')
    result = apply_auto_fixes(result.issues, bundle, request)
    result.bundle.sap.primary_endpoints[0].name
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from core.config import get_config
from core.documents import DocumentBundle
from core.errors import EmptyIssueSelectionError, PatchError
from core.issues import Issue, Patch
from core.logging_config import FixLoggerAdapter
from studyflow.models import StudyFlow
from .patching import PatchTarget, apply_to_target
from .strategies import Candidate, Strategy, resolve_conflicts, winner_for
from .synthesis import synthesize_suggestions

logger = logging.getLogger(__name__)


class FixOutcome(str, Enum):
    APPLIED = 'applied'
    SKIPPED_CONFLICT = 'skipped-conflict'
    SKIPPED_NO_PATCH = 'skipped-no-patch'
    SKIPPED_INVALID = 'skipped-invalid'


@dataclass
class AutoFixRequest:
    issue_ids: List[str]
    strategy: Union[Strategy, str, None] = None

    def resolved_strategy(self) -> Strategy:
        return Strategy.parse(self.strategy or get_config().default_strategy)

    def validate(self) -> Strategy:
        """Raise for an empty selection or an unknown strategy; return the strategy."""
        if not self.issue_ids:
            raise EmptyIssueSelectionError()
        return self.resolved_strategy()

    def to_dict(self) -> dict:
        strategy = self.strategy.value if isinstance(self.strategy, Strategy) else self.strategy
        return {'issueIds': list(self.issue_ids), 'strategy': strategy}


@dataclass
class ChangelogEntry:
    issue_code: str
    outcome: FixOutcome
    patch: Optional[Patch] = None
    reason: str = ''
    old_value: Any = None

    def to_dict(self) -> dict:
        d = {
            'issueCode': self.issue_code,
            'patch': self.patch.to_dict() if self.patch else None,
            'outcome': self.outcome.value,
        }
        if self.reason:
            d['reason'] = self.reason
        if self.old_value is not None:
            d['oldValue'] = self.old_value
        return d


@dataclass
class AutoFixResult:
    applied_patches: List[Patch] = field(default_factory=list)
    updated_documents: List[str] = field(default_factory=list)
    remaining_issues: List[Issue] = field(default_factory=list)
    changelog: List[ChangelogEntry] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    bundle: Optional[DocumentBundle] = None
    flow: Optional[StudyFlow] = None

    def outcomes(self) -> Dict[str, int]:
        counts = {o.value: 0 for o in FixOutcome}
        for entry in self.changelog:
            counts[entry.outcome.value] += 1
        return counts

    def to_dict(self) -> dict:
        d = {
            'appliedPatches': [p.to_dict() for p in self.applied_patches],
            'updatedDocuments': list(self.updated_documents),
            'remainingIssues': [i.to_dict() for i in self.remaining_issues],
            'changelog': [e.to_dict() for e in self.changelog],
            'summary': dict(self.summary),
        }
        if self.bundle is not None:
            d['bundle'] = self.bundle.to_dict()
        if self.flow is not None:
            d['flow'] = self.flow.to_dict()
        return d


def _suggestion_for(issue: Issue, target: PatchTarget):
    suggestions = issue.auto_fixable_suggestions or synthesize_suggestions(issue, target)
    return next((s for s in suggestions if s.auto_fixable and s.patches), None)


def apply_auto_fixes(issues: List[Issue], target: Union[PatchTarget, DocumentBundle, StudyFlow],
                     request: AutoFixRequest) -> AutoFixResult:
    """
    Apply the auto-fixes for the issues selected by ``request``.

    Raises:
        EmptyIssueSelectionError: ``request.issue_ids`` is empty.
        MissingTargetError: no bundle/flow, or an unknown strategy.
    """
    strategy = request.validate()
    work = PatchTarget.of(target)
    wanted = set(request.issue_ids)
    issues = list(issues or [])
    selected = [i for i in issues if i.code in wanted]

    if not selected:
        logger.info(f"No issues match {sorted(wanted)}; nothing to fix")
        return AutoFixResult(
            remaining_issues=issues,
            summary=_summary(strategy, 0, [], [], issues),
            bundle=work.bundle,
            flow=work.flow,
        )

    # Slots keep the changelog in issue order: a Candidate, or an Issue without a patch
    slots: List[Union[Candidate, Issue]] = []
    candidates: List[Candidate] = []
    issue_candidates: Dict[int, List[Candidate]] = {}
    for issue in selected:
        suggestion = _suggestion_for(issue, work)
        if suggestion is None:
            slots.append(issue)
            continue
        for patch in suggestion.patches:
            cand = Candidate(order=len(candidates), issue=issue, patch=patch)
            candidates.append(cand)
            slots.append(cand)
            issue_candidates.setdefault(id(issue), []).append(cand)

    resolution = resolve_conflicts(candidates, strategy)

    outcomes: Dict[int, FixOutcome] = {}
    reasons: Dict[int, str] = {}
    old_values: Dict[int, Any] = {}
    applied: List[Patch] = []
    updated: List[str] = []
    for winner in resolution.winners:
        fix_log = FixLoggerAdapter(logger, {
            'issue_code': winner.issue.code,
            'strategy': strategy.value,
            'target': f"{winner.patch.target_document}.{winner.patch.field}",
        })
        try:
            work, old_value = apply_to_target(work, winner.patch)
        except PatchError as e:
            fix_log.warning(f"Skipping invalid patch: {e}")
            outcomes[winner.order] = FixOutcome.SKIPPED_INVALID
            reasons[winner.order] = str(e)
            continue
        fix_log.debug("Patch applied")
        outcomes[winner.order] = FixOutcome.APPLIED
        old_values[winner.order] = old_value
        applied.append(winner.patch)
        if winner.patch.target_document not in updated:
            updated.append(winner.patch.target_document)

    for cand in candidates:
        winner_order = winner_for(resolution, cand.order)
        if winner_order is None:
            continue
        if cand.order in resolution.merged:
            outcomes[cand.order] = outcomes[winner_order]
            reasons[cand.order] = reasons.get(winner_order) or f"Merged with identical patch #{winner_order}"
        else:
            outcomes[cand.order] = FixOutcome.SKIPPED_CONFLICT
            reasons[cand.order] = (f"Lost to {candidates[winner_order].issue.code} "
                                   f"under {strategy.value} strategy")

    changelog = []
    for slot in slots:
        if isinstance(slot, Candidate):
            changelog.append(ChangelogEntry(
                issue_code=slot.issue.code,
                outcome=outcomes[slot.order],
                patch=slot.patch,
                reason=reasons.get(slot.order, slot.patch.reason),
                old_value=old_values.get(slot.order),
            ))
        else:
            changelog.append(ChangelogEntry(
                issue_code=slot.code,
                outcome=FixOutcome.SKIPPED_NO_PATCH,
                reason='No auto-fixable suggestion',
            ))

    resolved = {
        key for key, cands in issue_candidates.items()
        if all(outcomes[c.order] == FixOutcome.APPLIED for c in cands)
    }
    remaining = [i for i in issues if id(i) not in resolved]

    result = AutoFixResult(
        applied_patches=applied,
        updated_documents=updated,
        remaining_issues=remaining,
        changelog=changelog,
        bundle=work.bundle,
        flow=work.flow,
    )
    result.summary = _summary(strategy, len(selected), applied, changelog, remaining)
    logger.info(
        f"Auto-fix ({strategy.value}): {len(applied)} patches applied to "
        f"{', '.join(updated) or 'no documents'}; {len(remaining)} issues remain"
    )
    return result


def _summary(strategy: Strategy, selected: int, applied: List[Patch],
             changelog: List[ChangelogEntry], remaining: List[Issue]) -> Dict[str, Any]:
    counts = {o.value: 0 for o in FixOutcome}
    for entry in changelog:
        counts[entry.outcome.value] += 1
    return {
        'strategy': strategy.value,
        'selectedIssues': selected,
        'appliedPatches': len(applied),
        'skippedConflict': counts[FixOutcome.SKIPPED_CONFLICT.value],
        'skippedNoPatch': counts[FixOutcome.SKIPPED_NO_PATCH.value],
        'skippedInvalid': counts[FixOutcome.SKIPPED_INVALID.value],
        'remainingIssues': len(remaining),
    }
