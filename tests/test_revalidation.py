"""
Tests for pipeline.revalidation: validate, fix, validate again.

Validates:
- Fixed issue codes disappear on re-validation; nothing new is introduced
- A second pass over the fixed documents is a no-op
- Input contract is checked before any validation runs
- Study flow counterpart
- remediation_report.json contents
"""

import json
import logging

import pytest

from conftest import make_protocol, make_sap
from core.config import EngineConfig
from core.documents import DocumentBundle
from core.errors import EmptyIssueSelectionError, InsufficientDocumentsError, MissingTargetError
from core.issues import Issue, IssueCategory, Severity
from autofix.engine import AutoFixResult
from pipeline.revalidation import (
    RemediationResult,
    fix_and_revalidate,
    fix_flow_and_revalidate,
    save_remediation_report,
)
from studyflow.models import StudyFlow, Visit, VisitType
from validation.engine import ValidationResult


def _issue(code, severity=Severity.WARNING):
    return Issue(code=code, severity=severity, category=IssueCategory.GLOBAL, message=code)


def _incomplete_flow():
    return StudyFlow(id="flow_1", visits=[
        Visit(id="v1", name="Baseline", day=0, type=VisitType.BASELINE),
        Visit(id="v2", name="Week 4", day=28, type=VisitType.TREATMENT),
    ])


# ── Bundles ──────────────────────────────────────────────────────────

class TestFixAndRevalidate:

    def test_drift_resolved(self, drifted_bundle):
        result = fix_and_revalidate(drifted_bundle, ["PRIMARY_ENDPOINT_DRIFT"], "align_to_protocol",
                                    config=EngineConfig())
        assert "PRIMARY_ENDPOINT_DRIFT" in result.before.issue_codes()
        assert result.resolved_codes == ["PRIMARY_ENDPOINT_DRIFT"]
        assert result.introduced_codes == []
        assert result.is_monotonic
        assert result.fix.bundle.sap.primary_endpoints[0].name == "HbA1c change"

    def test_multiple_codes(self):
        sap = make_sap(
            primaryEndpoints=[{"id": "sap_ep_1", "name": "Blood pressure", "description": "Systolic BP"}],
            statisticalTests=[{"endpointId": "ep_1", "test": "Chi-square"}],
        )
        bundle = DocumentBundle.of(make_protocol(), sap)
        result = fix_and_revalidate(bundle, ["PRIMARY_ENDPOINT_DRIFT", "TEST_MISMATCH"],
                                    config=EngineConfig())
        assert result.resolved_codes == ["PRIMARY_ENDPOINT_DRIFT", "TEST_MISMATCH"]
        assert result.after.issues == []
        assert result.fix.bundle.sap.statistical_tests[0].test == "ANCOVA"

    def test_second_pass_is_noop(self, drifted_bundle):
        first = fix_and_revalidate(drifted_bundle, ["PRIMARY_ENDPOINT_DRIFT"], config=EngineConfig())
        second = fix_and_revalidate(first.fix.bundle, ["PRIMARY_ENDPOINT_DRIFT"], config=EngineConfig())
        assert second.fix.applied_patches == []
        assert second.before.issue_codes() == second.after.issue_codes()
        assert second.fix.bundle == first.fix.bundle

    def test_input_not_mutated(self, drifted_bundle):
        before = drifted_bundle.to_dict()
        fix_and_revalidate(drifted_bundle, ["PRIMARY_ENDPOINT_DRIFT"], config=EngineConfig())
        assert drifted_bundle.to_dict() == before

    def test_empty_selection_checked_first(self):
        with pytest.raises(EmptyIssueSelectionError):
            fix_and_revalidate(DocumentBundle.of(make_protocol()), [], config=EngineConfig())

    def test_unknown_strategy(self, drifted_bundle):
        with pytest.raises(MissingTargetError):
            fix_and_revalidate(drifted_bundle, ["PRIMARY_ENDPOINT_DRIFT"], "optimistic", config=EngineConfig())

    def test_insufficient_documents(self):
        with pytest.raises(InsufficientDocumentsError):
            fix_and_revalidate(DocumentBundle.of(make_protocol()), ["PRIMARY_ENDPOINT_DRIFT"],
                               config=EngineConfig())

    def test_logs_summary(self, drifted_bundle, caplog):
        with caplog.at_level(logging.INFO, logger="pipeline.revalidation"):
            fix_and_revalidate(drifted_bundle, ["PRIMARY_ENDPOINT_DRIFT"], config=EngineConfig())
        assert any("Remediation:" in r.message for r in caplog.records)


# ── Study flow ───────────────────────────────────────────────────────

class TestFixFlowAndRevalidate:

    def test_mandatory_visit_added(self):
        result = fix_flow_and_revalidate(_incomplete_flow(), ["MISSING_MANDATORY_VISITS"],
                                         config=EngineConfig())
        assert result.resolved_codes == ["MISSING_MANDATORY_VISITS"]
        eot = result.fix.flow.visits_of_type(VisitType.END_OF_TREATMENT)
        assert [v.day for v in eot] == [35]
        assert result.fix.bundle is None

    def test_added_visit_keeps_day_order(self):
        flow = StudyFlow(id="flow_1", visits=[
            Visit(id="v1", name="Week 4", day=28, type=VisitType.TREATMENT),
            Visit(id="v2", name="End of Treatment", day=84, type=VisitType.END_OF_TREATMENT),
        ])
        result = fix_flow_and_revalidate(flow, ["MISSING_MANDATORY_VISITS"], config=EngineConfig())
        days = [v.day for v in result.fix.flow.visits]
        assert days == sorted(days)
        assert result.fix.flow.visits[0].type == VisitType.BASELINE
        assert "MISSING_MANDATORY_VISITS" not in result.after.issue_codes()

    def test_empty_selection(self):
        with pytest.raises(EmptyIssueSelectionError):
            fix_flow_and_revalidate(_incomplete_flow(), [])


# ── Result and report ────────────────────────────────────────────────

class TestRemediationResult:

    def _result(self, before, after):
        return RemediationResult(
            before=ValidationResult(issues=before),
            fix=AutoFixResult(),
            after=ValidationResult(issues=after),
        )

    def test_codes(self):
        result = self._result([_issue("A"), _issue("B"), _issue("B")], [_issue("B"), _issue("C")])
        assert result.resolved_codes == ["A"]
        assert result.introduced_codes == ["C"]
        assert result.is_monotonic

    def test_not_monotonic(self):
        result = self._result([_issue("A")], [_issue("A"), _issue("B")])
        assert not result.is_monotonic

    def test_to_dict(self):
        result = self._result([_issue("A", Severity.CRITICAL)], [])
        d = result.to_dict()
        assert d["before"]["critical"] == 1
        assert d["after"]["total"] == 0
        assert d["resolvedCodes"] == ["A"]
        assert d["monotonic"] is True
        assert set(d["fix"]) == {"appliedPatches", "updatedDocuments", "changelog", "summary"}

    def test_save_report(self, drifted_bundle, tmp_path):
        result = fix_and_revalidate(drifted_bundle, ["PRIMARY_ENDPOINT_DRIFT"], config=EngineConfig())
        path = save_remediation_report(result, str(tmp_path / "out"))
        assert path.endswith("remediation_report.json")
        with open(path, encoding="utf-8") as f:
            report = json.load(f)
        assert report["resolvedCodes"] == ["PRIMARY_ENDPOINT_DRIFT"]
        assert report["fix"]["summary"]["appliedPatches"] == 1
