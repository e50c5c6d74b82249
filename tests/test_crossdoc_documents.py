"""
Tests for the IB/Protocol, Protocol/ICF, CSR and bundle-wide cross-document rules.

Validates:
- A full consistent bundle (IB, Protocol, ICF, SAP, CSR) produces no issues
- IB objective mismatch / low similarity, population drift, dose consistency
- ICF schedule, visit, risk and treatment disclosure
- CSR methods, primary endpoint reporting, analysis sets, deviations
- Global purpose, population, analysis population and version checks
"""

import pytest

from conftest import make_csr, make_ib, make_icf, make_protocol, make_sap
from core.config import EngineConfig
from core.documents import DocumentBundle, DosingInfo, TreatmentArm
from core.issues import IssueCategory, PatchOperation, Severity
from validation.crossdoc import CrossDocEngine
from validation.crossdoc.ib_protocol import arm_from_dose
from validation.crossdoc.protocol_csr import method_reported
from validation.crossdoc.protocol_icf import arm_described, treatment_text


@pytest.fixture
def engine():
    return CrossDocEngine.create_default(EngineConfig())


def test_complete_bundle_is_consistent(engine, full_bundle):
    bundle = full_bundle.with_document(make_csr())
    result = engine.run(bundle)
    assert result.issues == []
    assert result.rule_errors == []


# ── IB <-> Protocol ──────────────────────────────────────────────────

class TestIBProtocol:

    def test_primary_objective_mismatch(self, engine):
        ib = make_ib(objectives=[{"id": "ib_obj_1", "type": "primary",
                                  "text": "Characterise the pharmacokinetics of drug Y in healthy volunteers"}])
        result = engine.run(DocumentBundle.of(ib, make_protocol()))
        issue = result.filter(code="IB_PROTOCOL_OBJECTIVE_MISMATCH")[0]
        assert issue.severity == Severity.CRITICAL
        assert issue.category == IssueCategory.IB_PROTOCOL
        assert issue.data["ibObjectiveId"] == "ib_obj_1"
        assert issue.data["protocolObjectiveId"] == "obj_1"
        assert issue.suggestions[0].id == "review_primary_objective"
        assert not issue.suggestions[0].auto_fixable

    def test_objective_only_in_protocol(self, engine):
        result = engine.run(DocumentBundle.of(make_ib(objectives=[]), make_protocol()))
        issue = result.filter(code="IB_PROTOCOL_OBJECTIVE_MISMATCH")[0]
        assert "not stated in the IB" in issue.message
        assert "ibObjectiveId" not in issue.data

    def test_low_similarity_warning(self, engine):
        ib = make_ib(objectives=[{"id": "ib_obj_1", "type": "primary",
                                  "text": "Evaluate drug X glycemic control"}])
        result = engine.run(DocumentBundle.of(ib, make_protocol()))
        assert result.filter(code="IB_PROTOCOL_OBJECTIVE_MISMATCH") == []
        issue = result.filter(code="IB_PROTOCOL_OBJECTIVE_LOW_SIMILARITY")[0]
        assert issue.severity == Severity.WARNING
        assert 0.5 <= issue.data["score"] < 0.7

    def test_population_drift(self, engine):
        ib = make_ib(targetPopulation="Healthy elderly volunteers with renal impairment")
        result = engine.run(DocumentBundle.of(ib, make_protocol()))
        issue = result.filter(code="IB_PROTOCOL_POPULATION_DRIFT")[0]
        assert issue.severity == Severity.WARNING
        assert issue.data == {"overlap": 0.0}

    def test_population_overlap_ok(self, engine):
        result = engine.run(DocumentBundle.of(make_ib(), make_protocol()))
        assert result.filter(code="IB_PROTOCOL_POPULATION_DRIFT") == []

    def test_ib_dose_without_arm(self, engine):
        ib = make_ib(dosingInformation=[
            {"id": "dose_1", "dose": "10 mg", "route": "oral", "frequency": "QD"},
            {"id": "dose_2", "dose": "25 mg", "route": "oral", "frequency": "QD"},
        ])
        result = engine.run(DocumentBundle.of(ib, make_protocol()))
        issue = result.filter(code="IB_PROTOCOL_DOSE_INCONSISTENT")[0]
        assert issue.severity == Severity.ERROR
        assert issue.data == {"ibDoseId": "dose_2"}
        suggestion = issue.suggestions[0]
        assert suggestion.id == "add_arm_dose_2"
        patch = suggestion.patches[0]
        assert (patch.target_document, patch.field, patch.operation) == ("PROTOCOL", "arms", PatchOperation.APPEND)
        assert patch.value["id"] == "arm_dose_2"
        assert patch.value["dose"] == "25 mg"
        assert patch.source_document == "IB"

    def test_arm_dose_not_in_ib(self, engine):
        protocol = make_protocol(arms=[
            {"id": "arm_1", "name": "Drug X 10 mg", "dose": "10 mg", "route": "oral", "frequency": "once daily"},
            {"id": "arm_2", "name": "Drug X 25 mg", "dose": "25 mg", "route": "oral", "frequency": "once daily"},
            {"id": "arm_3", "name": "Placebo"},
        ])
        result = engine.run(DocumentBundle.of(make_ib(), protocol))
        issues = result.filter(code="IB_PROTOCOL_DOSE_NOT_IN_IB")
        assert [i.data["protocolArmId"] for i in issues] == ["arm_2"]
        assert issues[0].severity == Severity.WARNING

    def test_ib_content(self, engine):
        ib = make_ib(mechanismOfAction="SGLT2 inhibitor", keyRiskProfile=[" "])
        result = engine.run(DocumentBundle.of(ib, make_protocol()))
        assert result.filter(code="IB_MECHANISM_INCOMPLETE")[0].severity == Severity.INFO
        assert result.filter(code="IB_SAFETY_PROFILE_MISSING")[0].severity == Severity.WARNING

    def test_arm_from_dose(self):
        arm = arm_from_dose(DosingInfo(id="d2", dose="25 mg", route="oral"))
        assert arm["id"] == "arm_d2"
        assert arm["name"] == "25 mg oral"
        assert arm["frequency"] is None


# ── Protocol <-> ICF ─────────────────────────────────────────────────

class TestProtocolICF:

    def test_no_procedure_descriptions(self, engine):
        result = engine.run(DocumentBundle.of(make_protocol(), make_icf(procedureDescriptions=[])))
        issue = result.filter(code="ICF_SCHEDULE_MISMATCH")[0]
        assert issue.severity == Severity.ERROR
        assert issue.data == {"protocolVisitCount": 3}

    def test_visit_missing_from_icf(self, engine):
        icf = make_icf(visitSchedule=[
            {"id": "icf_v1", "name": "Screening", "day": -14},
            {"id": "icf_v2", "name": "Baseline", "day": 0},
        ])
        result = engine.run(DocumentBundle.of(make_protocol(), icf))
        issues = result.filter(code="ICF_VISIT_MISSING")
        assert [i.data["protocolVisitId"] for i in issues] == ["v3"]
        patch = issues[0].suggestions[0].patches[0]
        assert issues[0].suggestions[0].id == "add_icf_visit_v3"
        assert (patch.field, patch.value["day"]) == ("visitSchedule", 168)

    def test_icf_without_visit_list_not_compared(self, engine):
        result = engine.run(DocumentBundle.of(make_protocol(), make_icf(visitSchedule=[])))
        assert result.filter(code="ICF_VISIT_MISSING") == []

    def test_risks_missing_with_invasive_description(self, engine):
        result = engine.run(DocumentBundle.of(make_protocol(), make_icf(risks=[])))
        issue = result.filter(code="ICF_RISK_MISSING")[0]
        assert issue.severity == Severity.CRITICAL
        assert issue.data == {"invasiveProcedures": ["Blood draw"]}

    def test_risks_missing_with_invasive_protocol_procedure(self, engine):
        protocol = make_protocol(visitSchedule=[
            {"id": "v1", "name": "Screening", "day": -14, "procedures": ["CBC", "Body weight"]},
            {"id": "v2", "name": "Baseline", "day": 0},
        ])
        icf = make_icf(risks=[], procedureDescriptions=[
            {"id": "pd_1", "name": "Questionnaire", "description": "Quality of life questionnaire"},
        ])
        result = engine.run(DocumentBundle.of(protocol, icf))
        assert result.filter(code="ICF_RISK_MISSING")[0].data == {
            "invasiveProcedures": ["Complete Blood Count"],
        }

    def test_no_risk_issue_without_invasive_procedures(self, engine):
        icf = make_icf(risks=[], procedureDescriptions=[
            {"id": "pd_1", "name": "Questionnaire", "description": "Quality of life questionnaire"},
        ])
        result = engine.run(DocumentBundle.of(make_protocol(), icf))
        assert result.filter(code="ICF_RISK_MISSING") == []

    def test_treatment_not_described(self, engine):
        icf = make_icf(treatmentDescriptions=["Placebo tablets"])
        result = engine.run(DocumentBundle.of(make_protocol(), icf))
        issue = result.filter(code="ICF_TREATMENT_INCOMPLETE")[0]
        assert issue.data == {"armIds": ["arm_1"]}
        patch = issue.suggestions[0].patches[0]
        assert (patch.field, patch.operation) == ("treatmentDescriptions", PatchOperation.APPEND)
        assert patch.value == "Drug X 10 mg: 10 mg oral once daily"

    def test_treatment_helpers(self):
        arm = TreatmentArm(id="arm_1", name="Drug X", dose="10 mg", route="oral")
        assert treatment_text(arm) == "Drug X: 10 mg oral"
        assert treatment_text(TreatmentArm(id="arm_2", name="Placebo")) == "Placebo"
        assert arm_described(arm, ["You will take drug X every morning"])
        assert not arm_described(arm, ["Placebo tablets"])


# ── CSR ──────────────────────────────────────────────────────────────

class TestCSR:

    def _run(self, engine, **csr_overrides):
        return engine.run(DocumentBundle.of(make_protocol(), make_sap(), make_csr(**csr_overrides)))

    def test_method_not_reported(self, engine):
        result = self._run(engine, actualMethods=["Mixed model for repeated measures"])
        issue = result.filter(code="CSR_METHOD_MISMATCH")[0]
        assert issue.severity == Severity.ERROR
        assert issue.category == IssueCategory.SAP_CSR
        assert issue.data == {"testEndpointId": "ep_1", "test": "ANCOVA"}

    def test_no_methods_at_all(self, engine):
        result = self._run(engine, actualMethods=["  "])
        issues = result.filter(code="CSR_METHOD_MISMATCH")
        assert len(issues) == 1
        assert "reports no methods" in issues[0].message

    @pytest.mark.parametrize("test,methods,reported", [
        ("ANCOVA", ["ANCOVA adjusted for region"], True),
        ("Logistic regression", ["A logistic regression model was fitted"], True),
        ("Cox proportional hazards", ["Log-rank test"], False),
        ("", ["anything"], True),
    ])
    def test_method_reported(self, test, methods, reported):
        assert method_reported(test, methods) is reported

    def test_primary_endpoint_not_reported(self, engine):
        result = self._run(engine, reportedPrimaryEndpoints=[{"id": "csr_ep_1", "name": "Time in range"}])
        issue = result.filter(code="CSR_ENDPOINT_MISMATCH")[0]
        assert issue.severity == Severity.CRITICAL
        assert issue.data["csrEndpointId"] == "csr_ep_1"

    def test_primary_endpoint_absent(self, engine):
        result = self._run(engine, reportedPrimaryEndpoints=[])
        issue = result.filter(code="CSR_ENDPOINT_MISMATCH")[0]
        assert "csrEndpointId" not in issue.data

    def test_analysis_set_missing(self, engine):
        result = self._run(engine, analysisSets=[])
        assert result.filter(code="CSR_ANALYSIS_SET_MISSING")[0].data == {"protocolPopulationId": "pop_1"}

    def test_deviations_missing(self, engine):
        result = self._run(engine, deviationsOverview=[])
        assert result.issue_codes() == ["CSR_DEVIATIONS_MISSING"]


# ── Global ───────────────────────────────────────────────────────────

class TestGlobalRules:

    def test_systemic_purpose_drift(self, engine):
        ib = make_ib(objectives=[{"id": "ib_obj_1", "type": "primary",
                                  "text": "Characterise the pharmacokinetics of drug Y in healthy volunteers"}])
        result = engine.run(DocumentBundle.of(ib, make_protocol()))
        issue = result.filter(code="GLOBAL_PURPOSE_DRIFT")[0]
        assert issue.severity == Severity.CRITICAL
        assert issue.data == {"drifted": 1, "total": 1, "systemic": True}

    def test_partial_purpose_drift(self, engine):
        ib = make_ib(objectives=[
            {"id": "ib_obj_1", "type": "primary",
             "text": "Evaluate the effect of drug X on glycemic control in adults with type 2 diabetes"},
            {"id": "ib_obj_2", "type": "primary", "text": "Characterise long-term cardiovascular safety"},
        ])
        result = engine.run(DocumentBundle.of(ib, make_protocol()))
        issue = result.filter(code="GLOBAL_PURPOSE_DRIFT")[0]
        assert issue.severity == Severity.WARNING
        assert issue.data == {"drifted": 1, "total": 2, "systemic": False}

    def test_population_not_defined_anywhere(self, engine):
        ib = make_ib(targetPopulation=None)
        result = engine.run(DocumentBundle.of(ib, make_protocol(inclusionCriteria=[])))
        issue = result.filter(code="GLOBAL_POPULATION_INCOHERENT")[0]
        assert issue.message == "The study population is not defined in any document"
        assert issue.data == {"ibPopulation": False, "inclusionCriteria": False}

    def test_ib_population_without_inclusion_criteria(self, engine):
        ib = make_ib(targetPopulation="Adults aged 18 to 75 years with type 2 diabetes on metformin")
        result = engine.run(DocumentBundle.of(ib, make_protocol(inclusionCriteria=[])))
        issue = result.filter(code="GLOBAL_POPULATION_INCOHERENT")[0]
        assert "no inclusion criteria" in issue.message
        assert issue.severity == Severity.ERROR

    def test_analysis_populations_missing(self, engine):
        result = engine.run(DocumentBundle.of(make_protocol(), make_sap(analysisPopulations=[])))
        issue = result.filter(code="GLOBAL_ANALYSIS_POPULATIONS_MISSING")[0]
        assert issue.severity == Severity.WARNING

    def test_versions_missing(self, engine):
        result = engine.run(DocumentBundle.of(make_ib(version=None), make_protocol(), make_sap(version=" ")))
        issue = result.filter(code="GLOBAL_VERSION_MISSING")[0]
        assert issue.data == {"documents": ["IB", "SAP"]}
        assert [loc.document_type for loc in issue.locations] == ["IB", "SAP"]
