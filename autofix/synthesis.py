"""
Suggestion synthesis for issues that arrive without one.

Issues may be deserialized or hand-built without their suggestions. Each
synthesizer re-derives the suggestion from ``issue.data`` and the current
target using the same builders the rules use, so a synthesized patch is
identical to the one validation would have attached.
"""

import logging
from typing import Callable, Dict, List, Optional

from core.issues import Issue, Suggestion
from studyflow.models import VisitType
from validation.crossdoc.ib_protocol import dose_arm_suggestion, find_dose
from validation.crossdoc.protocol_icf import treatment_suggestion, visit_append_suggestion as icf_visit_suggestion
from validation.crossdoc.protocol_sap import (
    driver_suggestion,
    endpoint_sync_suggestion,
    population_append_suggestion,
    statistical_test_suggestion,
)
from validation.flow_rules import (
    MAX_WINDOW_SHARE,
    assessment_schedule_suggestion,
    dangling_suggestion,
    mandatory_visits,
    procedures_suggestion,
    visit_append_suggestion as flow_visit_suggestion,
    window_suggestion,
)
from .patching import PatchTarget

logger = logging.getLogger(__name__)

Synthesizer = Callable[[Issue, PatchTarget], Optional[Suggestion]]


def _by_id(items, entity_id):
    return next((item for item in items if item.id == entity_id), None)


# ---------------------------------------------------------------------------
# Document issues
# ---------------------------------------------------------------------------

def _endpoint_drift(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    bundle = target.bundle
    if bundle is None or not bundle.protocol or not bundle.sap:
        return None
    endpoint_type = issue.data.get('endpointType', 'primary')
    protocol_ep = _by_id(bundle.protocol.endpoints, issue.data.get('protocolEndpointId'))
    if protocol_ep is None:
        return None
    sap_list = bundle.sap.primary_endpoints if endpoint_type == 'primary' else bundle.sap.secondary_endpoints
    sap_ep = _by_id(sap_list, issue.data.get('sapEndpointId'))
    return endpoint_sync_suggestion(protocol_ep, sap_ep, endpoint_type)


def _test_mismatch(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    sap = target.bundle.sap if target.bundle is not None else None
    if not sap:
        return None
    endpoint_id = issue.data.get('testEndpointId')
    test = next((t for t in sap.statistical_tests if t.endpoint_id == endpoint_id), None)
    if test is None or not issue.data.get('dataType'):
        return None
    return statistical_test_suggestion(test, issue.data['dataType'])


def _sample_size_driver(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    bundle = target.bundle
    if bundle is None or not bundle.protocol or not bundle.sap:
        return None
    protocol_ep = _by_id(bundle.protocol.endpoints, issue.data.get('protocolEndpointId'))
    if protocol_ep is None:
        return None
    return driver_suggestion(protocol_ep, bundle.sap.sample_size_driver_endpoint)


def _population_missing(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    protocol = target.bundle.protocol if target.bundle is not None else None
    if not protocol:
        return None
    population = _by_id(protocol.analysis_populations, issue.data.get('protocolPopulationId'))
    return population_append_suggestion(population) if population else None


def _dose_inconsistent(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    if target.bundle is None:
        return None
    dose = find_dose(target.bundle, issue.data.get('ibDoseId'))
    return dose_arm_suggestion(dose) if dose else None


def _icf_visit_missing(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    protocol = target.bundle.protocol if target.bundle is not None else None
    if not protocol:
        return None
    visit = _by_id(protocol.visit_schedule, issue.data.get('protocolVisitId'))
    return icf_visit_suggestion(visit) if visit else None


def _icf_treatment(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    protocol = target.bundle.protocol if target.bundle is not None else None
    if not protocol:
        return None
    arm_ids = set(issue.data.get('armIds') or [])
    arms = [a for a in protocol.arms if a.id in arm_ids]
    return treatment_suggestion(arms) if arms else None


# ---------------------------------------------------------------------------
# Flow issues
# ---------------------------------------------------------------------------

def _mandatory_visit(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    if target.flow is None:
        return None
    try:
        visit_type = VisitType(issue.data.get('visitType'))
    except ValueError:
        return None
    visit = mandatory_visits(target.flow).get(visit_type)
    return flow_visit_suggestion(visit) if visit else None


def _visit_timing(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    if target.flow is None:
        return None
    visit = target.flow.visit(issue.data.get('visitId'))
    if visit is None or visit.day <= 0:
        return None
    if max(visit.window.minus, visit.window.plus) <= visit.day * MAX_WINDOW_SHARE:
        return None
    return window_suggestion(visit)


def _dangling_reference(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    if target.flow is None:
        return None
    visit = target.flow.visit(issue.data.get('visitId'))
    if visit is None:
        return None
    return dangling_suggestion(visit, {p.id for p in target.flow.procedures})


def _endpoint_map(target: PatchTarget, endpoint_id):
    if target.flow is None:
        return None
    return next((m for m in target.flow.endpoint_maps if m.endpoint_id == endpoint_id), None)


def _endpoint_timing(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    endpoint_map = _endpoint_map(target, issue.data.get('endpointId'))
    return assessment_schedule_suggestion(endpoint_map, target.flow) if endpoint_map else None


def _missing_assessment(issue: Issue, target: PatchTarget) -> Optional[Suggestion]:
    endpoint_map = _endpoint_map(target, issue.data.get('endpointId'))
    if endpoint_map is None:
        return None
    known = {p.id for p in target.flow.procedures}
    missing = [p for p in endpoint_map.required_procedures if p not in known]
    return procedures_suggestion(endpoint_map, missing) if missing else None


SYNTHESIZERS: Dict[str, Synthesizer] = {
    'PRIMARY_ENDPOINT_DRIFT': _endpoint_drift,
    'SECONDARY_ENDPOINT_DRIFT': _endpoint_drift,
    'TEST_MISMATCH': _test_mismatch,
    'SAMPLE_SIZE_DRIVER_MISMATCH': _sample_size_driver,
    'ANALYSIS_POPULATION_MISSING_IN_SAP': _population_missing,
    'IB_PROTOCOL_DOSE_INCONSISTENT': _dose_inconsistent,
    'ICF_VISIT_MISSING': _icf_visit_missing,
    'ICF_TREATMENT_INCOMPLETE': _icf_treatment,
    'MISSING_MANDATORY_VISITS': _mandatory_visit,
    'INCORRECT_SCHEDULE_FOR_PRIMARY': _mandatory_visit,
    'UNSUPPORTED_VISIT_TIMING': _visit_timing,
    'DANGLING_PROCEDURE_REFERENCE': _dangling_reference,
    'ENDPOINT_TIMING_DRIFT': _endpoint_timing,
    'MISSING_ASSESSMENT_FOR_ENDPOINT': _missing_assessment,
}


def synthesize_suggestions(issue: Issue, target: PatchTarget) -> List[Suggestion]:
    """Auto-fixable suggestions for ``issue`` re-derived from the target, or []."""
    synthesizer = SYNTHESIZERS.get(issue.code)
    if synthesizer is None:
        return []
    suggestion = synthesizer(issue, target)
    if suggestion is None:
        logger.debug(f"No suggestion could be synthesized for {issue.code}")
        return []
    return [suggestion]
