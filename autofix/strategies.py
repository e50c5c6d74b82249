"""
Conflict resolution strategies for auto-fix patches.

Two candidate patches conflict when they share a conflict key: the same
``(targetDocument, field)`` for ``set``, or the same list entry for
``append``/``remove``. Resolution is a single sequential pass over the
candidates in registration order, so the outcome is fully determined by the
strategy and the input order:

    conservative       first registered patch wins
    aggressive         last registered patch wins
    balanced           patch from the most severe issue wins; ties go to the first
    align_to_protocol  first patch sourced from the Protocol wins; otherwise the first

Losing patches that would have exactly the same effect as the winner are
merged into it instead of being reported as conflicts.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from core.documents import DocumentKind
from core.errors import MissingTargetError
from core.issues import Issue, Patch


class Strategy(str, Enum):
    CONSERVATIVE = 'conservative'
    AGGRESSIVE = 'aggressive'
    BALANCED = 'balanced'
    ALIGN_TO_PROTOCOL = 'align_to_protocol'

    @classmethod
    def parse(cls, value: Union['Strategy', str]) -> 'Strategy':
        if isinstance(value, Strategy):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise MissingTargetError(
                f"Unknown strategy '{value}'. Expected one of: {', '.join(s.value for s in cls)}"
            )


@dataclass
class Candidate:
    """One patch proposed by one selected issue."""
    order: int
    issue: Issue
    patch: Patch


@dataclass
class Resolution:
    winners: List[Candidate] = field(default_factory=list)
    # candidate order -> winner order it was merged into
    merged: Dict[int, int] = field(default_factory=dict)
    # candidate order -> winner order it lost to
    conflicts: Dict[int, int] = field(default_factory=dict)


def _pick(group: List[Candidate], strategy: Strategy) -> Candidate:
    if strategy == Strategy.AGGRESSIVE:
        return group[-1]
    if strategy == Strategy.BALANCED:
        best = group[0]
        for cand in group[1:]:
            if cand.issue.severity.rank > best.issue.severity.rank:
                best = cand
        return best
    if strategy == Strategy.ALIGN_TO_PROTOCOL:
        protocol = DocumentKind.PROTOCOL.value
        for cand in group:
            if cand.patch.source_document == protocol:
                return cand
    return group[0]


def group_by_key(candidates: List[Candidate]) -> List[List[Candidate]]:
    """Candidates grouped by conflict key, groups in order of first appearance."""
    groups: Dict[Tuple[str, ...], List[Candidate]] = {}
    for cand in candidates:
        groups.setdefault(cand.patch.conflict_key, []).append(cand)
    return list(groups.values())


def resolve_conflicts(candidates: List[Candidate], strategy: Strategy) -> Resolution:
    resolution = Resolution()
    for group in group_by_key(candidates):
        winner = _pick(group, strategy)
        resolution.winners.append(winner)
        for cand in group:
            if cand is winner:
                continue
            if cand.patch.same_effect_as(winner.patch):
                resolution.merged[cand.order] = winner.order
            else:
                resolution.conflicts[cand.order] = winner.order
    resolution.winners.sort(key=lambda c: c.order)
    return resolution


def winner_for(resolution: Resolution, order: int) -> Optional[int]:
    """Winner a candidate was merged into or lost to (None for winners themselves)."""
    return resolution.merged.get(order, resolution.conflicts.get(order))
