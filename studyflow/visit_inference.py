"""
Structural visit inference.

Every study flow needs a baseline visit and a terminal visit (end of treatment
or follow-up). ``infer_missing_visits`` inserts synthetic visits for whatever
is missing and never removes an existing one. Inserted visits are tagged with
``metadata['inferred'] = True`` so reviewers can tell them apart.
"""

import logging
from typing import List, Optional

from core.config import EngineConfig, get_config
from .models import TERMINAL_VISIT_TYPES, Visit, VisitType
from .visit_normalizer import default_window

logger = logging.getLogger(__name__)


def _inferred_visit(visit_type: VisitType, name: str, day: int) -> Visit:
    return Visit(
        id=f"visit_inferred_{visit_type.value}",
        name=name,
        day=day,
        type=visit_type,
        required=True,
        window=default_window(visit_type, day),
        metadata={'inferred': True},
    )


def _has_type(visits: List[Visit], *types: VisitType) -> bool:
    return any(v.type in types for v in visits)


def infer_missing_visits(
    visits: Optional[List[Visit]],
    *,
    add_screening: bool = True,
    add_follow_up: bool = False,
    config: Optional[EngineConfig] = None,
) -> List[Visit]:
    """
    Insert structurally required visits that are missing.

    Args:
        visits: Existing visits (not modified).
        add_screening: Insert a screening visit when none exists.
        add_follow_up: Insert a follow-up visit after end of treatment when none exists.
        config: Engine config (defaults to ``get_config()``).

    Returns:
        New list containing every input visit plus the inserted ones, sorted by
        day (stable, so input order is kept among same-day visits).
    """
    config = config or get_config()
    result = list(visits or [])
    inserted = []

    if add_screening and not _has_type(result, VisitType.SCREENING):
        inserted.append(_inferred_visit(VisitType.SCREENING, 'Screening', config.screening_day))

    if not _has_type(result, VisitType.BASELINE):
        inserted.append(_inferred_visit(VisitType.BASELINE, 'Baseline', 0))

    if not _has_type(result, *TERMINAL_VISIT_TYPES):
        treatment_days = [v.day for v in result if v.type == VisitType.TREATMENT]
        eot_day = max(treatment_days) + 7 if treatment_days else config.treatment_default_days
        # Any later scheduled visit (e.g. unknown labels) still precedes EOT
        later = [v.day for v in result if v.day >= eot_day]
        if later:
            eot_day = max(later) + 7
        inserted.append(_inferred_visit(VisitType.END_OF_TREATMENT, 'End of Treatment', eot_day))

    if add_follow_up and not _has_type(result, VisitType.FOLLOW_UP):
        terminal_days = [v.day for v in result + inserted if v.type == VisitType.END_OF_TREATMENT]
        base = max(terminal_days) if terminal_days else config.treatment_default_days
        inserted.append(_inferred_visit(
            VisitType.FOLLOW_UP, 'Follow-up', base + config.follow_up_offset_days,
        ))

    for visit in inserted:
        logger.info(f"Inferred missing {visit.type.value} visit at day {visit.day}")

    return sorted(result + inserted, key=lambda v: v.day)


def validate_visit_sequence(visits: List[Visit]) -> List[str]:
    """Human-readable problems with a visit sequence (empty list when sound)."""
    messages = []
    if not _has_type(visits, VisitType.BASELINE):
        messages.append("No baseline visit")
    if not _has_type(visits, *TERMINAL_VISIT_TYPES):
        messages.append("No end of treatment or follow-up visit")

    for visit in visits:
        if visit.day < 0 and visit.type != VisitType.SCREENING:
            messages.append(f"Visit '{visit.name}' has negative day {visit.day} but is not a screening visit")

    seen = {}
    for visit in visits:
        if visit.type == VisitType.UNSCHEDULED:
            continue
        if visit.day in seen:
            messages.append(f"Visits '{seen[visit.day]}' and '{visit.name}' share day {visit.day}")
        else:
            seen[visit.day] = visit.name
    return messages
