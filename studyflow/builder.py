"""
Study Flow builder.

Composes the inference steps into one call:

    visit names -> normalize -> infer missing visits
    endpoints   -> infer procedures -> endpoint maps
    attach fixed procedure sets per visit type, place endpoint procedures per
    timing, narrow windows, detect cycles

The builder never raises for any endpoint list or visit-name list; degenerate
input yields a smaller flow.

Usage:
    from studyflow.builder import build_study_flow

    flow = build_study_flow(protocol.endpoints, ["Screening", "Baseline", "Week 24"])
    flow.top_matrix.cell("visit_3", "proc_hba1c")
"""

import logging
from typing import Dict, List, Optional

from core.config import EngineConfig, get_config
from core.documents import Endpoint
from .cycles import build_cycles, infer_cycle_length
from .endpoint_procedure_map import (
    create_endpoint_procedure_maps,
    endpoint_coverage,
    procedures_for_endpoint_at_visit,
)
from .models import Procedure, StudyFlow, Visit, VisitType
from .procedure_catalog import ProcedureCatalog, get_catalog
from .procedure_inference import (
    baseline_procedures,
    end_of_treatment_procedures,
    infer_procedures_from_endpoints,
    safety_monitoring_procedures,
    screening_procedures,
)
from .visit_inference import infer_missing_visits
from .visit_normalizer import normalize_visits, to_visits
from .windows import apply_procedure_windows

logger = logging.getLogger(__name__)


def _merge_procedures(target: Dict[str, Procedure], procedures: List[Procedure]) -> None:
    for proc in procedures:
        existing = target.get(proc.id)
        if existing is None:
            target[proc.id] = proc
            continue
        existing.required = existing.required or proc.required
        for endpoint_id in proc.linked_endpoints:
            if endpoint_id not in existing.linked_endpoints:
                existing.linked_endpoints.append(endpoint_id)


def _schedule(visit: Visit, proc_ids: List[str]) -> None:
    for proc_id in proc_ids:
        if proc_id not in visit.procedures:
            visit.procedures.append(proc_id)


def build_study_flow(
    endpoints: Optional[List[Endpoint]],
    visit_names: Optional[List[str]] = None,
    *,
    flow_id: str = 'study_flow',
    study_id: str = '',
    config: Optional[EngineConfig] = None,
    catalog: Optional[ProcedureCatalog] = None,
) -> StudyFlow:
    """
    Build a complete Study Flow.

    Args:
        endpoints: Protocol endpoints (may be empty).
        visit_names: Free-text visit labels. ``None`` uses the configured
            default schedule; an empty list means no labelled visits.
        flow_id: Id of the resulting flow.
        study_id: Study identifier carried on the flow.
        config: Engine config (defaults to ``get_config()``).
        catalog: Procedure catalog (defaults to ``get_catalog()``).
    """
    config = config or get_config()
    catalog = catalog or get_catalog()
    endpoints = list(endpoints or [])

    names = list(config.default_visit_schedule) if visit_names is None else list(visit_names)
    visits = infer_missing_visits(to_visits(normalize_visits(names, config)), config=config)

    procedures: Dict[str, Procedure] = {}
    _merge_procedures(procedures, infer_procedures_from_endpoints(endpoints, catalog))

    sets = {
        VisitType.SCREENING: screening_procedures(catalog),
        VisitType.BASELINE: baseline_procedures(catalog),
        VisitType.END_OF_TREATMENT: end_of_treatment_procedures(catalog),
        VisitType.TREATMENT: safety_monitoring_procedures(catalog),
        VisitType.FOLLOW_UP: safety_monitoring_procedures(catalog),
    }
    used_types = {v.type for v in visits}
    for visit_type, procs in sets.items():
        if visit_type in used_types:
            _merge_procedures(procedures, procs)

    for visit in visits:
        _schedule(visit, [p.id for p in sets.get(visit.type, [])])

    endpoint_maps = create_endpoint_procedure_maps(endpoints, list(procedures.values()), catalog)
    for endpoint_map in endpoint_maps:
        for visit in visits:
            _schedule(visit, procedures_for_endpoint_at_visit(endpoint_map, visit))

    procedure_list = list(procedures.values())
    apply_procedure_windows(visits, procedure_list)
    cycles = build_cycles(visits, infer_cycle_length(visits))

    flow = StudyFlow(
        id=flow_id,
        study_id=study_id,
        visits=visits,
        procedures=procedure_list,
        cycles=cycles,
        endpoint_maps=endpoint_maps,
        metadata={
            'visitNames': names,
            'endpointIds': [e.id for e in endpoints],
            'inferredVisits': [v.id for v in visits if v.inferred],
            'endpointCoverage': endpoint_coverage(endpoint_maps, visits),
        },
    )
    logger.info(
        f"Built study flow '{flow_id}': {len(flow.visits)} visits, "
        f"{len(flow.procedures)} procedures, {len(cycles)} cycles, {flow.total_duration} days"
    )
    return flow
