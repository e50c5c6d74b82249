"""
Tests for studyflow.visit_inference: missing structural visits.

Validates:
- Baseline and end-of-treatment insertion
- Screening / follow-up options
- Existing visits are never removed; a second pass adds nothing
- Inferred flows pass the mandatory visit check
"""

import pytest

from core.config import EngineConfig
from studyflow.models import StudyFlow, Visit, VisitType
from studyflow.visit_inference import infer_missing_visits, validate_visit_sequence
from studyflow.visit_normalizer import normalize_visits, to_visits
from validation.flow_rules import check_missing_mandatory_visits


@pytest.fixture
def config():
    return EngineConfig()


def _visit(vid, day, vtype):
    return Visit(id=vid, name=vid, day=day, type=vtype)


class TestInferMissingVisits:

    def test_adds_end_of_treatment_after_last_treatment(self, config):
        visits = to_visits(normalize_visits(["Screening", "Baseline", "Week 24"], config))
        result = infer_missing_visits(visits, config=config)
        eot = [v for v in result if v.type == VisitType.END_OF_TREATMENT]
        assert len(eot) == 1
        assert eot[0].day == 168 + 7
        assert eot[0].inferred
        assert eot[0].id == "visit_inferred_end_of_treatment"

    def test_inferred_schedule_passes_mandatory_check(self, config):
        visits = to_visits(normalize_visits(["Screening", "Baseline", "Week 24"], config))
        flow = StudyFlow(id="flow_1", visits=infer_missing_visits(visits, config=config))
        assert check_missing_mandatory_visits(flow, config) == []

    def test_empty_input(self, config):
        result = infer_missing_visits([], config=config)
        assert [(v.type, v.day) for v in result] == [
            (VisitType.SCREENING, -14),
            (VisitType.BASELINE, 0),
            (VisitType.END_OF_TREATMENT, 84),
        ]

    def test_no_screening_when_disabled(self, config):
        result = infer_missing_visits([], add_screening=False, config=config)
        assert not any(v.type == VisitType.SCREENING for v in result)

    def test_follow_up_after_eot(self, config):
        visits = [_visit("b", 0, VisitType.BASELINE), _visit("t", 28, VisitType.TREATMENT)]
        result = infer_missing_visits(visits, add_follow_up=True, config=config)
        fu = [v for v in result if v.type == VisitType.FOLLOW_UP][0]
        assert fu.day == 35 + 30

    def test_eot_placed_after_later_visits(self, config):
        visits = [
            _visit("b", 0, VisitType.BASELINE),
            _visit("t", 14, VisitType.TREATMENT),
            _visit("x", 60, VisitType.UNKNOWN),
        ]
        result = infer_missing_visits(visits, config=config)
        assert result[-1].type == VisitType.END_OF_TREATMENT
        assert result[-1].day == 67

    def test_existing_visits_kept_and_sorted(self, config):
        visits = [_visit("t", 28, VisitType.TREATMENT), _visit("s", -7, VisitType.SCREENING)]
        result = infer_missing_visits(visits, config=config)
        ids = [v.id for v in result]
        assert "t" in ids and "s" in ids
        assert [v.day for v in result] == sorted(v.day for v in result)

    def test_input_not_mutated(self, config):
        visits = [_visit("b", 0, VisitType.BASELINE)]
        infer_missing_visits(visits, config=config)
        assert len(visits) == 1

    def test_second_pass_adds_nothing(self, config):
        once = infer_missing_visits([], add_follow_up=True, config=config)
        twice = infer_missing_visits(once, add_follow_up=True, config=config)
        assert [v.id for v in twice] == [v.id for v in once]

    def test_follow_up_counts_as_terminal(self, config):
        visits = [_visit("b", 0, VisitType.BASELINE), _visit("fu", 100, VisitType.FOLLOW_UP)]
        result = infer_missing_visits(visits, add_screening=False, config=config)
        assert not any(v.type == VisitType.END_OF_TREATMENT for v in result)


class TestValidateVisitSequence:

    def test_sound_sequence(self, config):
        visits = infer_missing_visits([], config=config)
        assert validate_visit_sequence(visits) == []

    def test_missing_baseline_and_terminal(self):
        messages = validate_visit_sequence([_visit("t", 14, VisitType.TREATMENT)])
        assert "No baseline visit" in messages
        assert "No end of treatment or follow-up visit" in messages

    def test_negative_non_screening(self):
        messages = validate_visit_sequence([_visit("t", -3, VisitType.TREATMENT)])
        assert any("negative day" in m for m in messages)

    def test_shared_day(self):
        visits = [
            _visit("b", 0, VisitType.BASELINE),
            _visit("t", 0, VisitType.TREATMENT),
            _visit("u", 0, VisitType.UNSCHEDULED),
        ]
        messages = validate_visit_sequence(visits)
        assert sum("share day" in m for m in messages) == 1
