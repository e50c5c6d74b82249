"""
Endpoint -> procedure maps with phase timing.

For every endpoint, records the procedures that measure it and the visit
phases (baseline, treatment, follow-up) at which they must be done.

Timing policy:
    primary endpoint                      baseline + treatment + follow-up
    safety / adverse / tolerability       baseline + treatment + follow-up
    pharmacokinetic                       treatment only
    quality of life                       baseline + follow-up
    anything else                         baseline + treatment
"""

import re
from typing import Dict, List, Optional, Tuple

from alignment.similarity import normalize_text
from core.documents import Endpoint
from .models import EndpointProcedureMap, EndpointTiming, Procedure, Visit, VisitType
from .procedure_catalog import ProcedureCatalog
from .procedure_inference import infer_procedures_from_endpoint

_SAFETY_RE = re.compile(r'\b(?:safety|adverse|tolerability)\b')
_PK_RE = re.compile(r'\b(?:pk|pharmacokinetic\w*)\b')
_QOL_RE = re.compile(r'\b(?:quality of life|qol|hrqol)\b')


def determine_endpoint_timing(endpoint: Endpoint) -> EndpointTiming:
    if endpoint.type == 'primary':
        return EndpointTiming(baseline=True, treatment=True, follow_up=True)

    text = normalize_text(f"{endpoint.name} {endpoint.description}")
    if _SAFETY_RE.search(text):
        return EndpointTiming(baseline=True, treatment=True, follow_up=True)
    if _PK_RE.search(text):
        return EndpointTiming(baseline=False, treatment=True, follow_up=False)
    if _QOL_RE.search(text):
        return EndpointTiming(baseline=True, treatment=False, follow_up=True)
    return EndpointTiming(baseline=True, treatment=True, follow_up=False)


def create_endpoint_procedure_map(endpoint: Endpoint,
                                  procedures: Optional[List[Procedure]] = None,
                                  catalog: Optional[ProcedureCatalog] = None) -> EndpointProcedureMap:
    """
    Build the map for one endpoint.

    When ``procedures`` is given, only procedures present in it are referenced.
    """
    inferred = infer_procedures_from_endpoint(endpoint, catalog)
    if procedures is not None:
        available = {p.id for p in procedures}
        inferred = [p for p in inferred if p.id in available]

    return EndpointProcedureMap(
        endpoint_id=endpoint.id,
        endpoint_name=endpoint.name,
        endpoint_type=endpoint.type,
        required_procedures=[p.id for p in inferred if p.required],
        recommended_procedures=[p.id for p in inferred if not p.required],
        timing=determine_endpoint_timing(endpoint),
    )


def create_endpoint_procedure_maps(endpoints: Optional[List[Endpoint]],
                                   procedures: Optional[List[Procedure]] = None,
                                   catalog: Optional[ProcedureCatalog] = None) -> List[EndpointProcedureMap]:
    return [create_endpoint_procedure_map(ep, procedures, catalog) for ep in endpoints or []]


def phase_for_visit(visit_type: VisitType) -> Optional[str]:
    """Timing phase a visit type belongs to (None for screening/unscheduled/unknown)."""
    if visit_type == VisitType.BASELINE:
        return 'baseline'
    if visit_type == VisitType.TREATMENT:
        return 'treatment'
    if visit_type in (VisitType.END_OF_TREATMENT, VisitType.FOLLOW_UP):
        return 'follow_up'
    return None


def procedures_for_endpoint_at_visit(endpoint_map: EndpointProcedureMap, visit: Visit) -> List[str]:
    """Procedure ids the endpoint needs at this visit."""
    phase = phase_for_visit(visit.type)
    if phase is None or phase not in endpoint_map.timing.phases():
        return []
    return endpoint_map.all_procedures


def find_missing_procedures_for_endpoint(endpoint_map: EndpointProcedureMap,
                                         visits: List[Visit]) -> List[Tuple[str, str]]:
    """(visit_id, procedure_id) pairs where a needed procedure is not scheduled."""
    gaps = []
    for visit in visits:
        for proc_id in procedures_for_endpoint_at_visit(endpoint_map, visit):
            if proc_id not in visit.procedures:
                gaps.append((visit.id, proc_id))
    return gaps


def endpoint_coverage(endpoint_maps: List[EndpointProcedureMap], visits: List[Visit]) -> Dict[str, float]:
    """Share of needed (visit, procedure) slots that are scheduled, per endpoint id."""
    coverage = {}
    for endpoint_map in endpoint_maps:
        needed = sum(len(procedures_for_endpoint_at_visit(endpoint_map, v)) for v in visits)
        if needed == 0:
            coverage[endpoint_map.endpoint_id] = 1.0
            continue
        missing = len(find_missing_procedures_for_endpoint(endpoint_map, visits))
        coverage[endpoint_map.endpoint_id] = round((needed - missing) / needed, 4)
    return coverage
