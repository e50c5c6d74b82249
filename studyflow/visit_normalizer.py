"""
Visit label normalization.

Maps free-text visit labels ("Week 12", "D1", "EOT", "Visit 3") to a canonical
name, a day offset relative to first dose (day 0) and a lifecycle type.

Matching order per label: Day, Week, Month, special label, "Visit N".
Labels that match nothing are kept verbatim with type ``unknown`` and a day
inferred from their position; they are never dropped. Terminal and
unscheduled labels carry no day of their own and are also placed by position.

Usage:
    from studyflow.visit_normalizer import normalize_visits, to_visits

    normalized = normalize_visits(["Screening", "Baseline", "Week 12", "EOT"])
    visits = to_visits(normalized)
"""

import logging
import math
import re
from typing import List, Optional, Sequence

from core.config import EngineConfig, get_config
from .models import NormalizedVisit, Visit, VisitType, VisitWindow

logger = logging.getLogger(__name__)

# Regexes run against the lower-cased, whitespace-collapsed label
_DAY_RE = re.compile(r'^(?:day|d)\s*(-?\d+)\b')
_WEEK_RE = re.compile(r'^(?:week|wk|w)\s*(\d+)\b')
_MONTH_RE = re.compile(r'^(?:month|mo|m)\s*(\d+)\b')
_VISIT_RE = re.compile(r'^(?:visit|v)\s*(\d+)\b')

# Special labels: (pattern, canonical name, type, confidence)
_SPECIAL_LABELS = [
    (re.compile(r'^(?:screening|scr|screen)\b'), 'Screening', VisitType.SCREENING, 0.98),
    (re.compile(r'^(?:baseline|randomi[sz]ation|bl)\b'), 'Baseline', VisitType.BASELINE, 0.98),
    (re.compile(r'^(?:end of treatment|end-of-treatment|eot|end of study|eos|early termination|et)\b'),
     'End of Treatment', VisitType.END_OF_TREATMENT, 0.9),
    (re.compile(r'^(?:follow[\s-]?up|fu|safety follow[\s-]?up)\b'), 'Follow-up', VisitType.FOLLOW_UP, 0.9),
    (re.compile(r'^(?:unscheduled|uns)\b'), 'Unscheduled', VisitType.UNSCHEDULED, 0.9),
]

# Types whose day is taken from the label's position, not from the label
_POSITIONAL_TYPES = (
    VisitType.END_OF_TREATMENT,
    VisitType.FOLLOW_UP,
    VisitType.UNSCHEDULED,
    VisitType.UNKNOWN,
)


def _clean(label: Optional[str]) -> str:
    return ' '.join((label or '').lower().split())


def _type_for_day(day: int) -> VisitType:
    if day < 0:
        return VisitType.SCREENING
    if day == 0:
        return VisitType.BASELINE
    return VisitType.TREATMENT


def classify_label(label: Optional[str], config: Optional[EngineConfig] = None) -> NormalizedVisit:
    """
    Classify a single label without positional context.

    Positional types (end of treatment, follow-up, unscheduled, unknown) come
    back with ``day=0``; ``normalize_visits`` assigns their real day.
    """
    config = config or get_config()
    original = label if label is not None else ''
    text = _clean(label)

    match = _DAY_RE.match(text)
    if match:
        day = int(match.group(1))
        return NormalizedVisit(original, f"Day {day}", day, _type_for_day(day), 0.95)

    match = _WEEK_RE.match(text)
    if match:
        week = int(match.group(1))
        return NormalizedVisit(original, f"Week {week}", week * 7, _type_for_day(week * 7), 0.95)

    match = _MONTH_RE.match(text)
    if match:
        month = int(match.group(1))
        return NormalizedVisit(original, f"Month {month}", month * 30, _type_for_day(month * 30), 0.9)

    for pattern, name, visit_type, confidence in _SPECIAL_LABELS:
        if pattern.match(text):
            if visit_type == VisitType.SCREENING:
                day = config.screening_day
            else:
                day = 0
            return NormalizedVisit(original, name, day, visit_type, confidence)

    match = _VISIT_RE.match(text)
    if match:
        n = int(match.group(1))
        day = 0 if n <= 1 else (n - 1) * 7
        return NormalizedVisit(original, f"Visit {n}", day, _type_for_day(day), 0.7)

    return NormalizedVisit(original, original, 0, VisitType.UNKNOWN, 0.0)


def normalize_visits(names: Optional[Sequence[str]],
                     config: Optional[EngineConfig] = None) -> List[NormalizedVisit]:
    """
    Normalize a list of visit labels, one result per input, same order.

    Days for positional labels:
      - end of treatment: previous resolved day + 7 (``treatment_default_days``
        when nothing precedes it)
      - follow-up: previous resolved day + ``follow_up_offset_days``
      - unknown / unscheduled: midpoint between the neighbouring resolved
        days, previous + 7 with only a previous, next - 1 with only a next,
        otherwise 0
    """
    config = config or get_config()
    results = [classify_label(name, config) for name in (names or [])]

    for idx, item in enumerate(results):
        if item.type not in _POSITIONAL_TYPES:
            continue
        prev_day = _previous_day(results, idx)
        if item.type == VisitType.END_OF_TREATMENT:
            item.day = prev_day + 7 if prev_day is not None and prev_day > 0 else config.treatment_default_days
        elif item.type == VisitType.FOLLOW_UP:
            base = prev_day if prev_day is not None and prev_day > 0 else config.treatment_default_days
            item.day = base + config.follow_up_offset_days
        else:
            next_day = _next_fixed_day(results, idx)
            if prev_day is not None and next_day is not None:
                item.day = prev_day + max((next_day - prev_day) // 2, 0)
            elif prev_day is not None:
                item.day = prev_day + 7
            elif next_day is not None:
                item.day = next_day - 1
            else:
                item.day = 0
            if item.type == VisitType.UNKNOWN:
                logger.warning(f"Unrecognized visit label '{item.original_name}', placed at day {item.day}")

    return results


def _previous_day(results: List[NormalizedVisit], idx: int) -> Optional[int]:
    """Day of the closest earlier label (already resolved, positional or not)."""
    if idx == 0:
        return None
    return results[idx - 1].day


def _next_fixed_day(results: List[NormalizedVisit], idx: int) -> Optional[int]:
    """Day of the closest later label whose day comes from the label itself."""
    for item in results[idx + 1:]:
        if item.type not in _POSITIONAL_TYPES:
            return item.day
    return None


def default_window(visit_type: VisitType, day: int) -> VisitWindow:
    """Visit window by lifecycle type."""
    if visit_type == VisitType.SCREENING:
        return VisitWindow(minus=7, plus=7)
    if visit_type == VisitType.BASELINE:
        return VisitWindow(minus=0, plus=0)
    if visit_type == VisitType.TREATMENT:
        width = max(math.ceil(abs(day) * 0.1), 3)
        return VisitWindow(minus=width, plus=width)
    if visit_type == VisitType.END_OF_TREATMENT:
        return VisitWindow(minus=3, plus=3)
    if visit_type == VisitType.FOLLOW_UP:
        return VisitWindow(minus=7, plus=7)
    return VisitWindow()


def to_visits(normalized: Sequence[NormalizedVisit]) -> List[Visit]:
    """Create Visits with deterministic positional ids and default windows."""
    visits = []
    for idx, item in enumerate(normalized, start=1):
        visits.append(Visit(
            id=f"visit_{idx}",
            name=item.normalized_name or item.original_name or f"Visit {idx}",
            day=item.day,
            type=item.type,
            required=item.type != VisitType.UNSCHEDULED,
            window=default_window(item.type, item.day),
            metadata={
                'originalName': item.original_name,
                'confidence': item.confidence,
            },
        ))
    return visits
