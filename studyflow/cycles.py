"""
Treatment cycle detection.

Oncology-style schedules repeat every N days. A cycle length is only inferred
when the treatment visits are regular enough: at least three of them, and the
most common interval accounting for at least 60% of all intervals.
"""

import logging
from collections import Counter
from typing import List, Optional

from .models import Cycle, Visit, VisitType

logger = logging.getLogger(__name__)

MIN_TREATMENT_VISITS = 3
MIN_INTERVAL_SHARE = 0.6


def _treatment_visits(visits: List[Visit]) -> List[Visit]:
    return sorted((v for v in visits if v.type == VisitType.TREATMENT), key=lambda v: v.day)


def infer_cycle_length(visits: List[Visit]) -> Optional[int]:
    treatment = _treatment_visits(visits)
    if len(treatment) < MIN_TREATMENT_VISITS:
        return None

    intervals = [b.day - a.day for a, b in zip(treatment, treatment[1:]) if b.day > a.day]
    if not intervals:
        return None

    length, count = Counter(intervals).most_common(1)[0]
    if count / len(intervals) < MIN_INTERVAL_SHARE:
        return None
    return length


def build_cycles(visits: List[Visit], cycle_length: Optional[int]) -> List[Cycle]:
    """
    Group treatment visits into consecutive cycles of ``cycle_length`` days.

    Cycle 1 starts at the first treatment visit. Visits get their ``cycle``
    number set (in place).
    """
    if not cycle_length or cycle_length <= 0:
        return []
    treatment = _treatment_visits(visits)
    if not treatment:
        return []

    start = treatment[0].day
    cycles = {}
    for visit in treatment:
        number = (visit.day - start) // cycle_length + 1
        cycle = cycles.get(number)
        if cycle is None:
            cycle = Cycle(
                number=number,
                length_days=cycle_length,
                start_day=start + (number - 1) * cycle_length,
            )
            cycles[number] = cycle
        cycle.visit_ids.append(visit.id)
        visit.cycle = number

    logger.debug(f"Built {len(cycles)} cycles of {cycle_length} days")
    return [cycles[n] for n in sorted(cycles)]


def validate_cycles(cycles: List[Cycle]) -> List[str]:
    messages = []
    if not cycles:
        return messages
    lengths = {c.length_days for c in cycles}
    if len(lengths) > 1:
        messages.append(f"Cycles have inconsistent lengths: {sorted(lengths)}")
    for prev, curr in zip(cycles, cycles[1:]):
        expected = prev.start_day + prev.length_days
        if curr.start_day != expected and curr.number == prev.number + 1:
            messages.append(
                f"Cycle {curr.number} starts on day {curr.start_day}, expected day {expected}"
            )
    return messages
