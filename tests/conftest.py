"""Shared pytest configuration and fixtures for the test suite."""

import pytest

from core.documents import (
    CSRDocument,
    DocumentBundle,
    ICFDocument,
    IBDocument,
    ProtocolDocument,
    SAPDocument,
)


def pytest_addoption(parser):
    """Add custom CLI options."""
    parser.addoption(
        "--run-slow", action="store_true", default=False,
        help="Run slow tests (full bundle validation with study flow, Excel export)",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: slow test (skipped unless --run-slow)")


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is passed."""
    if config.getoption("--run-slow"):
        return
    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


# ── Canonical documents ──────────────────────────────────────────────

def make_protocol(**overrides) -> ProtocolDocument:
    data = {
        "id": "prot_001",
        "version": "2.0",
        "objectives": [
            {"id": "obj_1", "type": "primary",
             "text": "Evaluate the effect of drug X on glycemic control in adults with type 2 diabetes"},
        ],
        "endpoints": [
            {"id": "ep_1", "type": "primary", "name": "HbA1c change",
             "description": "Change from baseline in HbA1c at week 24", "dataType": "continuous"},
        ],
        "arms": [
            {"id": "arm_1", "name": "Drug X 10 mg", "dose": "10 mg", "route": "oral", "frequency": "once daily"},
        ],
        "visitSchedule": [
            {"id": "v1", "name": "Screening", "day": -14},
            {"id": "v2", "name": "Baseline", "day": 0},
            {"id": "v3", "name": "Week 24", "day": 168},
        ],
        "inclusionCriteria": ["Adults aged 18 to 75 years with type 2 diabetes", "HbA1c between 7% and 10%"],
        "exclusionCriteria": ["Type 1 diabetes"],
        "analysisPopulations": [
            {"id": "pop_1", "name": "Full Analysis Set", "abbreviation": "FAS"},
        ],
    }
    data.update(overrides)
    return ProtocolDocument.from_dict(data)


def make_sap(**overrides) -> SAPDocument:
    data = {
        "id": "sap_001",
        "version": "1.0",
        "primaryEndpoints": [
            {"id": "sap_ep_1", "name": "HbA1c change",
             "description": "Change from baseline in HbA1c at week 24"},
        ],
        "statisticalTests": [
            {"endpointId": "ep_1", "test": "ANCOVA"},
        ],
        "sampleSizeDriverEndpoint": "ep_1",
        "analysisPopulations": [
            {"id": "sap_pop_1", "name": "Full Analysis Set", "abbreviation": "FAS"},
        ],
        "missingDataStrategy": "Multiple imputation under MAR",
    }
    data.update(overrides)
    return SAPDocument.from_dict(data)


def make_ib(**overrides) -> IBDocument:
    data = {
        "id": "ib_001",
        "version": "5.0",
        "objectives": [
            {"id": "ib_obj_1", "type": "primary",
             "text": "Evaluate the effect of drug X on glycemic control in adults with type 2 diabetes"},
        ],
        "mechanismOfAction": "Drug X is a selective SGLT2 inhibitor that lowers renal glucose reabsorption.",
        "targetPopulation": "Adults with type 2 diabetes",
        "keyRiskProfile": ["Genital mycotic infections"],
        "dosingInformation": [
            {"id": "dose_1", "dose": "10 mg", "route": "oral", "frequency": "QD"},
        ],
    }
    data.update(overrides)
    return IBDocument.from_dict(data)


def make_icf(**overrides) -> ICFDocument:
    data = {
        "id": "icf_001",
        "version": "1.1",
        "procedureDescriptions": [
            {"id": "pd_1", "name": "Blood draw", "description": "Blood samples for HbA1c", "invasive": True},
        ],
        "visitSchedule": [
            {"id": "icf_v1", "name": "Screening", "day": -14},
            {"id": "icf_v2", "name": "Baseline", "day": 0},
            {"id": "icf_v3", "name": "Week 24", "day": 168},
        ],
        "risks": ["Bruising from blood draws"],
        "benefits": ["Possible improvement of blood sugar control"],
        "treatmentDescriptions": ["Drug X 10 mg taken by mouth once daily"],
    }
    data.update(overrides)
    return ICFDocument.from_dict(data)


def make_csr(**overrides) -> CSRDocument:
    data = {
        "id": "csr_001",
        "version": "1.0",
        "actualMethods": ["ANCOVA with baseline HbA1c as covariate"],
        "analysisSets": [{"id": "csr_pop_1", "name": "Full Analysis Set", "abbreviation": "FAS"}],
        "reportedPrimaryEndpoints": [{"id": "csr_ep_1", "name": "HbA1c change", "result": "-0.8%"}],
        "deviationsOverview": ["Two participants missed the Week 24 visit window"],
    }
    data.update(overrides)
    return CSRDocument.from_dict(data)


@pytest.fixture
def protocol():
    return make_protocol()


@pytest.fixture
def sap():
    return make_sap()


@pytest.fixture
def consistent_bundle():
    """Protocol and SAP that agree on endpoints, tests and populations."""
    return DocumentBundle.of(make_protocol(), make_sap())


@pytest.fixture
def drifted_bundle():
    """Protocol primary endpoint 'HbA1c change' vs SAP primary endpoint 'Blood pressure'."""
    sap = make_sap(primaryEndpoints=[
        {"id": "sap_ep_1", "name": "Blood pressure", "description": "Systolic blood pressure at week 12"},
    ])
    return DocumentBundle.of(make_protocol(), sap)


@pytest.fixture
def full_bundle():
    """IB, Protocol, ICF and SAP describing the same study."""
    return DocumentBundle.of(make_ib(), make_protocol(), make_icf(), make_sap())
