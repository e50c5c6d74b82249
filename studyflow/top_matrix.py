"""
Visit x procedure matrix (table of procedures).

``build_top_matrix`` is total: empty visits or procedures give an empty,
well-formed matrix. Exports go to JSON, CSV, Markdown and Excel (openpyxl).

Usage:
    from studyflow.top_matrix import build_top_matrix, to_excel

    top = build_top_matrix(flow.visits, flow.procedures)
    to_excel(top, "output/top.xlsx")
"""

import csv
import io
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from .models import Procedure, ProcedureCategory, TopMatrix, Visit, VisitType

logger = logging.getLogger(__name__)


def build_top_matrix(visits: Optional[List[Visit]], procedures: Optional[List[Procedure]]) -> TopMatrix:
    """A cell is True iff the procedure id is in the visit's procedure list."""
    visits = list(visits or [])
    procedures = list(procedures or [])
    matrix: Dict[str, Dict[str, bool]] = {}
    for visit in visits:
        scheduled = set(visit.procedures)
        matrix[visit.id] = {p.id: p.id in scheduled for p in procedures}
    return TopMatrix(visits=visits, procedures=procedures, matrix=matrix)


# =============================================================================
# Export
# =============================================================================

def _window_label(visit: Visit) -> str:
    if not visit.window.minus and not visit.window.plus:
        return ''
    if visit.window.minus == visit.window.plus:
        return f"±{visit.window.plus}d"
    return f"-{visit.window.minus}/+{visit.window.plus}d"


def _rows(top: TopMatrix) -> List[List[Any]]:
    header = ['Visit', 'Day', 'Type', 'Window'] + [p.name for p in top.procedures]
    rows = [header]
    for visit in top.visits:
        cells = ['X' if top.cell(visit.id, p.id) else '' for p in top.procedures]
        rows.append([visit.name, visit.day, visit.type.value, _window_label(visit)] + cells)
    return rows


def to_json(top: TopMatrix, indent: Optional[int] = 2) -> str:
    return json.dumps(top.to_dict(), indent=indent)


def to_csv(top: TopMatrix) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerows(_rows(top))
    return buffer.getvalue()


def to_markdown(top: TopMatrix) -> str:
    rows = _rows(top)
    lines = [
        '| ' + ' | '.join(str(c) for c in rows[0]) + ' |',
        '|' + '|'.join('---' for _ in rows[0]) + '|',
    ]
    for row in rows[1:]:
        lines.append('| ' + ' | '.join(str(c) for c in row) + ' |')
    return '\n'.join(lines) + '\n'


def to_excel(top: TopMatrix, path: str, sheet_title: str = 'Table of Procedures') -> Path:
    """Write the matrix to an .xlsx workbook and return the path."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title[:31]

    header_fill = PatternFill(start_color='34495E', end_color='34495E', fill_type='solid')
    hit_fill = PatternFill(start_color='2ECC71', end_color='2ECC71', fill_type='solid')

    for row_idx, row in enumerate(_rows(top), start=1):
        for col_idx, value in enumerate(row, start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            if row_idx == 1:
                cell.font = Font(bold=True, color='FFFFFF')
                cell.fill = header_fill
                cell.alignment = Alignment(horizontal='center', wrap_text=True)
            elif col_idx > 4 and value == 'X':
                cell.fill = hit_fill
                cell.alignment = Alignment(horizontal='center')
    ws.freeze_panes = 'E2'

    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    wb.save(str(output))
    logger.info(f"Wrote table of procedures ({len(top.visits)}x{len(top.procedures)}) to {output}")
    return output


# =============================================================================
# Views
# =============================================================================

def filter_by_visit_type(top: TopMatrix, *types: VisitType) -> TopMatrix:
    visits = [v for v in top.visits if v.type in types]
    return TopMatrix(
        visits=visits,
        procedures=list(top.procedures),
        matrix={v.id: dict(top.matrix.get(v.id, {})) for v in visits},
    )


def filter_by_category(top: TopMatrix, *categories: ProcedureCategory) -> TopMatrix:
    procedures = [p for p in top.procedures if p.category in categories]
    keep = {p.id for p in procedures}
    return TopMatrix(
        visits=list(top.visits),
        procedures=procedures,
        matrix={
            vid: {pid: hit for pid, hit in row.items() if pid in keep}
            for vid, row in top.matrix.items()
        },
    )


def summarize_by_category(top: TopMatrix) -> Dict[str, Dict[str, int]]:
    """Per category: number of procedures and number of scheduled cells."""
    summary: Dict[str, Dict[str, int]] = {}
    for proc in top.procedures:
        entry = summary.setdefault(proc.category.value, {'procedures': 0, 'scheduled': 0})
        entry['procedures'] += 1
        entry['scheduled'] += sum(1 for v in top.visits if top.cell(v.id, proc.id))
    return summary


def compare_top_matrices(before: TopMatrix, after: TopMatrix) -> Dict[str, List]:
    """Visits, procedures and cells added or removed between two matrices."""
    before_visits = {v.id for v in before.visits}
    after_visits = {v.id for v in after.visits}
    before_procs = {p.id for p in before.procedures}
    after_procs = {p.id for p in after.procedures}

    def cells(top: TopMatrix) -> set:
        return {(vid, pid) for vid, row in top.matrix.items() for pid, hit in row.items() if hit}

    before_cells = cells(before)
    after_cells = cells(after)
    return {
        'addedVisits': sorted(after_visits - before_visits),
        'removedVisits': sorted(before_visits - after_visits),
        'addedProcedures': sorted(after_procs - before_procs),
        'removedProcedures': sorted(before_procs - after_procs),
        'addedCells': sorted(after_cells - before_cells),
        'removedCells': sorted(before_cells - after_cells),
    }
