"""
Tests for studyflow.builder and studyflow.top_matrix.

Validates:
- build_study_flow composes visits, procedures, endpoint maps and windows
- Degenerate input (no endpoints, no labels) still yields a flow
- Table-of-procedures matrix, views and exports (CSV, Markdown, JSON, Excel)
- StudyFlow dict round-trip
"""

import json

import pytest

from conftest import make_protocol
from core.config import EngineConfig
from studyflow.builder import build_study_flow
from studyflow.models import Procedure, ProcedureCategory, StudyFlow, Visit, VisitType, VisitWindow
from studyflow.top_matrix import (
    build_top_matrix,
    compare_top_matrices,
    filter_by_category,
    filter_by_visit_type,
    summarize_by_category,
    to_csv,
    to_excel,
    to_json,
    to_markdown,
)


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def flow(config):
    return build_study_flow(make_protocol().endpoints, ["Screening", "Baseline", "Week 24"],
                            flow_id="flow_1", study_id="STUDY-001", config=config)


# ── Builder ──────────────────────────────────────────────────────────

class TestBuildStudyFlow:

    def test_visits_include_inferred_terminal(self, flow):
        assert [v.id for v in flow.visits] == [
            "visit_1", "visit_2", "visit_3", "visit_inferred_end_of_treatment",
        ]
        assert flow.visit("visit_inferred_end_of_treatment").day == 175
        assert flow.metadata["inferredVisits"] == ["visit_inferred_end_of_treatment"]
        assert flow.total_duration == 175

    def test_endpoint_procedures_follow_timing(self, flow):
        top = flow.top_matrix
        assert top.cell("visit_2", "proc_hba1c")
        assert top.cell("visit_3", "proc_hba1c")
        assert top.cell("visit_inferred_end_of_treatment", "proc_hba1c")
        assert not top.cell("visit_1", "proc_hba1c")

    def test_fixed_sets_attached(self, flow):
        assert "proc_informed_consent" in flow.visit("visit_1").procedures
        assert "proc_randomization" in flow.visit("visit_2").procedures
        assert "proc_drug_accountability" in flow.visit("visit_inferred_end_of_treatment").procedures

    def test_procedures_unique_and_linked(self, flow):
        ids = [p.id for p in flow.procedures]
        assert len(ids) == len(set(ids))
        hba1c = flow.procedure("proc_hba1c")
        assert hba1c.required
        assert hba1c.linked_endpoints == ["ep_1"]

    def test_no_dangling_references(self, flow):
        known = {p.id for p in flow.procedures}
        for visit in flow.visits:
            assert set(visit.procedures) <= known

    def test_windows_narrowed(self, flow):
        week24 = flow.visit("visit_3")
        assert (week24.window.minus, week24.window.plus) == (1, 1)
        assert flow.visit("visit_1").window.minus == 7

    def test_endpoint_maps(self, flow):
        assert [m.endpoint_id for m in flow.endpoint_maps] == ["ep_1"]
        assert "proc_hba1c" in flow.endpoint_maps[0].required_procedures

    def test_endpoint_coverage_recorded(self, flow):
        assert flow.metadata["endpointCoverage"] == {"ep_1": 1.0}

    def test_default_schedule(self, config):
        flow = build_study_flow([], None, config=config)
        assert len(flow.visits) == len(config.default_visit_schedule)
        assert flow.metadata["inferredVisits"] == []

    def test_degenerate_input(self, config):
        flow = build_study_flow(None, [], config=config)
        assert [v.type for v in flow.visits] == [
            VisitType.SCREENING, VisitType.BASELINE, VisitType.END_OF_TREATMENT,
        ]
        assert flow.endpoint_maps == []

    def test_round_trip(self, flow):
        data = flow.to_dict()
        assert data["totalDuration"] == 175
        restored = StudyFlow.from_dict(data)
        assert restored.to_dict() == data


# ── Top matrix ───────────────────────────────────────────────────────

def _small_matrix():
    visits = [
        Visit(id="v1", name="Baseline", day=0, type=VisitType.BASELINE, procedures=["p_lab"]),
        Visit(id="v2", name="Week 4", day=28, type=VisitType.TREATMENT, procedures=["p_lab", "p_ecg"],
              window=VisitWindow(minus=3, plus=3)),
    ]
    procedures = [
        Procedure(id="p_lab", name="CBC", category=ProcedureCategory.LABS),
        Procedure(id="p_ecg", name="ECG", category=ProcedureCategory.ECG),
    ]
    return build_top_matrix(visits, procedures)


class TestTopMatrix:

    def test_cells(self):
        top = _small_matrix()
        assert top.cell("v1", "p_lab")
        assert not top.cell("v1", "p_ecg")
        assert not top.cell("unknown", "p_lab")

    def test_empty_inputs(self):
        top = build_top_matrix(None, None)
        assert top.matrix == {}
        assert to_csv(top) == "Visit,Day,Type,Window\n"

    def test_csv(self):
        lines = to_csv(_small_matrix()).splitlines()
        assert lines[0] == "Visit,Day,Type,Window,CBC,ECG"
        assert lines[1] == "Baseline,0,baseline,,X,"
        assert lines[2] == "Week 4,28,treatment,±3d,X,X"

    def test_markdown(self):
        md = to_markdown(_small_matrix())
        assert md.splitlines()[0] == "| Visit | Day | Type | Window | CBC | ECG |"
        assert "| Week 4 | 28 | treatment | ±3d | X | X |" in md

    def test_json(self):
        data = json.loads(to_json(_small_matrix()))
        assert data["matrix"]["v2"]["p_ecg"] is True

    def test_filters(self):
        top = _small_matrix()
        treatment_only = filter_by_visit_type(top, VisitType.TREATMENT)
        assert [v.id for v in treatment_only.visits] == ["v2"]
        labs_only = filter_by_category(top, ProcedureCategory.LABS)
        assert [p.id for p in labs_only.procedures] == ["p_lab"]
        assert labs_only.matrix["v2"] == {"p_lab": True}

    def test_summary(self):
        assert summarize_by_category(_small_matrix()) == {
            "labs": {"procedures": 1, "scheduled": 2},
            "ecg": {"procedures": 1, "scheduled": 1},
        }

    def test_compare(self):
        before = _small_matrix()
        after = build_top_matrix(
            before.visits[:1],
            before.procedures + [Procedure(id="p_pe", name="PE", category=ProcedureCategory.PHYSICAL_EXAM)],
        )
        diff = compare_top_matrices(before, after)
        assert diff["removedVisits"] == ["v2"]
        assert diff["addedProcedures"] == ["p_pe"]
        assert ("v2", "p_ecg") in diff["removedCells"]
        assert diff["addedCells"] == []

    @pytest.mark.slow
    def test_excel_export(self, tmp_path):
        from openpyxl import load_workbook

        path = to_excel(_small_matrix(), str(tmp_path / "out" / "top.xlsx"))
        assert path.exists()
        ws = load_workbook(path).active
        assert ws.title == "Table of Procedures"
        assert ws.cell(row=1, column=5).value == "CBC"
        assert ws.cell(row=3, column=6).value == "X"
        assert ws.freeze_panes == "E2"
