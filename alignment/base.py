"""
Generic one-to-one alignment of two entity lists.

``align`` pairs each left entity with the highest-scoring unused right
entity. Selection is greedy in left input order:

- the strictly highest score wins; on exact ties the first right (input
  order) is kept;
- a right entity is matched at most once;
- pairings at or above ``threshold`` are settled first, over all lefts;
- a left with no right at or above ``threshold`` is emitted with
  ``right=None, score=0`` or, with ``keep_below_threshold``, paired with its
  best candidate among the rights still unmatched after the first pass and
  ``aligned=False`` (used where the failed pairing is itself the finding,
  e.g. drifted endpoints);
- rights never matched are emitted with ``left=None, score=0``.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

Scorer = Callable[[Any, Any], float]

DEFAULT_THRESHOLD = 0.5


def _entity_id(entity: Any) -> Optional[str]:
    if entity is None:
        return None
    return getattr(entity, 'id', None)


def _entity_dict(entity: Any) -> Optional[dict]:
    if entity is None:
        return None
    if hasattr(entity, 'to_dict'):
        return entity.to_dict()
    return {'value': entity}


@dataclass
class Alignment:
    """A scored correspondence between at most one left and one right entity."""
    facet: str
    left: Any
    right: Any
    score: float
    aligned: bool
    type: Optional[str] = None
    left_kind: Optional[str] = None
    right_kind: Optional[str] = None

    @property
    def left_id(self) -> Optional[str]:
        return _entity_id(self.left)

    @property
    def right_id(self) -> Optional[str]:
        return _entity_id(self.right)

    @property
    def unmatched_left(self) -> bool:
        return self.left is not None and self.right is None

    @property
    def unmatched_right(self) -> bool:
        return self.left is None and self.right is not None

    def to_dict(self) -> dict:
        d = {
            'facet': self.facet,
            'leftKind': self.left_kind,
            'rightKind': self.right_kind,
            'leftId': self.left_id,
            'rightId': self.right_id,
            'left': _entity_dict(self.left),
            'right': _entity_dict(self.right),
            'score': self.score,
            'aligned': self.aligned,
        }
        if self.type:
            d['type'] = self.type
        return d


def align(
    lefts: Sequence[Any],
    rights: Sequence[Any],
    scorer: Scorer,
    *,
    threshold: float = DEFAULT_THRESHOLD,
    keep_below_threshold: bool = False,
    include_unmatched_rights: bool = True,
    facet: str = '',
    type: Optional[str] = None,
    left_kind: Optional[str] = None,
    right_kind: Optional[str] = None,
) -> List[Alignment]:
    """Align ``lefts`` to ``rights``; see module docstring for the rules."""

    def make(left, right, score, aligned):
        return Alignment(
            facet=facet, left=left, right=right, score=round(score, 4), aligned=aligned,
            type=type, left_kind=left_kind, right_kind=right_kind,
        )

    used = set()
    matches = {}

    def best_for(left):
        best_idx, best_score = None, -1.0
        for idx, right in enumerate(rights):
            if idx in used:
                continue
            score = min(max(float(scorer(left, right)), 0.0), 1.0)
            if score > best_score:
                best_idx, best_score = idx, score
        return best_idx, best_score

    # Accepted pairings first, so a weak earlier left cannot take a right
    # that a later left matches.
    for pos, left in enumerate(lefts):
        best_idx, best_score = best_for(left)
        if best_idx is not None and best_score >= threshold:
            used.add(best_idx)
            matches[pos] = make(left, rights[best_idx], best_score, True)

    if keep_below_threshold:
        for pos, left in enumerate(lefts):
            if pos in matches:
                continue
            best_idx, best_score = best_for(left)
            if best_idx is not None:
                used.add(best_idx)
                matches[pos] = make(left, rights[best_idx], best_score, False)

    results: List[Alignment] = [
        matches[pos] if pos in matches else make(left, None, 0.0, False)
        for pos, left in enumerate(lefts)
    ]

    if include_unmatched_rights:
        for idx, right in enumerate(rights):
            if idx not in used:
                results.append(make(None, right, 0.0, False))

    return results
