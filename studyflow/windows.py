"""
Visit windows by procedure category.

Some procedures tolerate less scheduling slack than the visit's default
window: PK sampling has to happen on the nominal day, efficacy labs within a
day. A visit's window is narrowed to the strictest category it contains.
"""

from typing import Dict, List, Optional

from .models import Procedure, ProcedureCategory, Visit, VisitType, VisitWindow

# Half-width in days per category; categories not listed keep the visit default
CATEGORY_WINDOWS: Dict[ProcedureCategory, int] = {
    ProcedureCategory.PK: 0,
    ProcedureCategory.EFFICACY: 1,
    ProcedureCategory.LABS: 1,
    ProcedureCategory.ECG: 1,
    ProcedureCategory.VITAL_SIGNS: 2,
    ProcedureCategory.SAFETY: 2,
    ProcedureCategory.PD: 2,
}


def window_for_category(category: ProcedureCategory, day: int) -> Optional[VisitWindow]:
    """Window a category demands, or None when the visit default applies."""
    width = CATEGORY_WINDOWS.get(category)
    if width is None:
        return None
    return VisitWindow(minus=width, plus=width)


def apply_procedure_windows(visits: List[Visit], procedures: List[Procedure]) -> List[Visit]:
    """Narrow each on-treatment visit window to its strictest procedure category (in place)."""
    by_id = {p.id: p for p in procedures}
    for visit in visits:
        if visit.type in (VisitType.SCREENING, VisitType.BASELINE):
            continue
        for proc_id in visit.procedures:
            proc = by_id.get(proc_id)
            if proc is None:
                continue
            window = window_for_category(proc.category, visit.day)
            if window is None:
                continue
            visit.window = VisitWindow(
                minus=min(visit.window.minus, window.minus),
                plus=min(visit.window.plus, window.plus),
                unit=visit.window.unit,
            )
    return visits


def validate_windows(visits: List[Visit]) -> List[str]:
    messages = []
    for visit in visits:
        if visit.day > 0 and max(visit.window.minus, visit.window.plus) > visit.day * 0.5:
            messages.append(
                f"Visit '{visit.name}' window -{visit.window.minus}/+{visit.window.plus} "
                f"is wider than 50% of day {visit.day}"
            )

    scheduled = [v for v in visits if v.type != VisitType.UNSCHEDULED]
    for prev, curr in zip(scheduled, scheduled[1:]):
        if prev.day + prev.window.plus >= curr.day - curr.window.minus and prev.day != curr.day:
            messages.append(f"Windows of '{prev.name}' and '{curr.name}' overlap")
    return messages
