"""
Study Flow validation rules.

These operate directly on a derived Study Flow. The structural checks
(mandatory visits, timing, unclassified visits, dangling references, cycles)
need nothing else; the Protocol/SAP and Protocol/ICF flow checks run only
when the context also carries a bundle with the matching documents.

Usage:
    from validation.flow_rules import validate_study_flow, check_missing_mandatory_visits

    result = validate_study_flow(flow, bundle=bundle)
    check_missing_mandatory_visits(flow)   # [] once baseline and a terminal visit exist
"""

import logging
import math
from typing import Dict, List, Optional

from alignment.similarity import combined_similarity, normalize_text
from core.config import EngineConfig, get_config
from core.documents import DocumentKind
from core.issues import Issue, IssueCategory, Severity, Suggestion
from studyflow.cycles import validate_cycles
from studyflow.endpoint_procedure_map import (
    endpoint_coverage,
    find_missing_procedures_for_endpoint,
    phase_for_visit,
)
from studyflow.models import (
    TERMINAL_VISIT_TYPES,
    EndpointProcedureMap,
    ProcedureCategory,
    StudyFlow,
    Visit,
    VisitType,
)
from studyflow.procedure_catalog import get_catalog
from studyflow.visit_inference import infer_missing_visits
from .crossdoc.common import advice, append_patch, fix, loc, make_issue, set_patch
from .engine import FlowContext, FunctionRule, RuleEngine, RuleRegistry, ValidationResult, rule

logger = logging.getLogger(__name__)

STUDY_FLOW = DocumentKind.STUDY_FLOW.value
SAP = DocumentKind.SAP.value
ICF = DocumentKind.ICF.value

# Categories that need explicit disclosure in the consent form
DISCLOSED_CATEGORIES = (ProcedureCategory.IMAGING, ProcedureCategory.DEVICE)

MAX_WINDOW_SHARE = 0.5
SAP_VISIT_COUNT_TOLERANCE = 1
ICF_VISIT_COUNT_TOLERANCE = 2


# ---------------------------------------------------------------------------
# Suggestion builders
# ---------------------------------------------------------------------------

def mandatory_visits(flow: StudyFlow, config: Optional[EngineConfig] = None) -> Dict[VisitType, Visit]:
    """Visits ``infer_missing_visits`` would add to the flow, keyed by type."""
    existing = {v.id for v in flow.visits}
    inferred = infer_missing_visits(flow.visits, add_screening=False, config=config)
    return {v.type: v for v in inferred if v.id not in existing}


def visit_append_suggestion(visit: Visit) -> Suggestion:
    label = visit.type.value.replace('_', ' ')
    return fix(
        f"add_{visit.type.value}",
        f"Add {label} visit at day {visit.day}",
        [append_patch(STUDY_FLOW, 'visits', visit.to_dict(),
                      reason=f"A {label} visit is mandatory")],
    )


def reasonable_window(day: int) -> dict:
    half = min(math.ceil(day * 0.1), day // 2)
    return {'minus': half, 'plus': half, 'unit': 'days'}


def window_suggestion(visit: Visit) -> Suggestion:
    return fix(
        f"fix_window_{visit.id}",
        'Reduce visit window to about 10% of the visit day',
        [set_patch(STUDY_FLOW, f"visits.{visit.id}.window", reasonable_window(visit.day),
                   old_value=visit.window.to_dict(),
                   reason='Visit windows should be about 10% of the visit day')],
    )


def dangling_suggestion(visit: Visit, known: set) -> Suggestion:
    kept = [p for p in visit.procedures if p in known]
    return fix(
        f"drop_unknown_procedures_{visit.id}",
        f"Remove unknown procedure references from '{visit.name}'",
        [set_patch(STUDY_FLOW, f"visits.{visit.id}.procedures", kept,
                   old_value=list(visit.procedures), reason='Procedure not defined in the study flow')],
    )


def assessment_visits(endpoint_map: EndpointProcedureMap, flow: StudyFlow) -> List[str]:
    phases = set(endpoint_map.timing.phases())
    return [v.id for v in flow.visits if phase_for_visit(v.type) in phases]


def assessment_schedule_suggestion(endpoint_map: EndpointProcedureMap, flow: StudyFlow) -> Suggestion:
    return fix(
        f"fix_timing_{endpoint_map.endpoint_id}",
        'Add the assessment schedule to the SAP',
        [append_patch(SAP, 'assessmentSchedule',
                      {'endpointId': endpoint_map.endpoint_id,
                       'visitIds': assessment_visits(endpoint_map, flow)},
                      source=STUDY_FLOW,
                      reason='SAP must state when each endpoint is assessed')],
    )


def procedures_suggestion(endpoint_map: EndpointProcedureMap, missing: List[str]) -> Optional[Suggestion]:
    catalog = get_catalog()
    patches = []
    for proc_id in missing:
        entry = catalog.get(proc_id)
        if entry is None:
            continue
        proc = entry.to_procedure(required=True, linked_endpoints=[endpoint_map.endpoint_id])
        patches.append(append_patch(STUDY_FLOW, 'procedures', proc.to_dict(),
                                    reason=f"Required for primary endpoint '{endpoint_map.endpoint_name}'"))
    if not patches:
        return None
    return fix(f"add_procedures_{endpoint_map.endpoint_id}",
               f"Add {len(patches)} required procedures to the study flow", patches)


# ---------------------------------------------------------------------------
# Structural flow rules
# ---------------------------------------------------------------------------

def check_missing_mandatory_visits(flow: StudyFlow, config: Optional[EngineConfig] = None) -> List[Issue]:
    """Issues for a missing baseline or terminal (end of treatment / follow-up) visit."""
    additions = mandatory_visits(flow, config)
    issues = []
    if not flow.visits_of_type(VisitType.BASELINE):
        issues.append(make_issue(
            'MISSING_MANDATORY_VISITS', Severity.ERROR, IssueCategory.STUDY_FLOW,
            'No baseline visit defined',
            details='A baseline visit (day 0) is needed to establish baseline measurements.',
            locations=[loc(STUDY_FLOW, 'VISITS', field='visits')],
            suggestions=[visit_append_suggestion(additions[VisitType.BASELINE])],
            data={'visitType': VisitType.BASELINE.value},
        ))
    if not flow.visits_of_type(*TERMINAL_VISIT_TYPES):
        issues.append(make_issue(
            'MISSING_MANDATORY_VISITS', Severity.ERROR, IssueCategory.STUDY_FLOW,
            'No end of treatment or follow-up visit defined',
            details='A terminal visit is needed to assess final outcomes and safety.',
            locations=[loc(STUDY_FLOW, 'VISITS', field='visits')],
            suggestions=[visit_append_suggestion(additions[VisitType.END_OF_TREATMENT])],
            data={'visitType': VisitType.END_OF_TREATMENT.value},
        ))
    return issues


@rule('MISSING_MANDATORY_VISITS', 'Mandatory visits', severity=Severity.ERROR,
      category=IssueCategory.STUDY_FLOW)
def mandatory_visits_rule(ctx: FlowContext) -> List[Issue]:
    """Flow has a baseline and a terminal visit."""
    return check_missing_mandatory_visits(ctx.flow, ctx.config)


@rule('UNSUPPORTED_VISIT_TIMING', 'Visit timing', severity=Severity.WARNING,
      category=IssueCategory.STUDY_FLOW)
def check_visit_timing(ctx: FlowContext) -> List[Issue]:
    """Visit days and windows are realistic."""
    flow = ctx.flow
    issues = []
    has_baseline = bool(flow.visits_of_type(VisitType.BASELINE))

    for visit in flow.visits:
        if has_baseline and visit.day < 0 and visit.type not in (VisitType.SCREENING, VisitType.UNSCHEDULED):
            issues.append(make_issue(
                'UNSUPPORTED_VISIT_TIMING', Severity.WARNING, IssueCategory.STUDY_FLOW,
                f"Visit '{visit.name}' is scheduled before treatment start (day {visit.day})",
                locations=[loc(STUDY_FLOW, 'VISITS', visit.id, 'visits')],
                data={'visitId': visit.id, 'day': visit.day},
            ))
        half_width = max(visit.window.minus, visit.window.plus)
        if visit.day > 0 and half_width > visit.day * MAX_WINDOW_SHARE:
            issues.append(make_issue(
                'UNSUPPORTED_VISIT_TIMING', Severity.WARNING, IssueCategory.STUDY_FLOW,
                f"Visit '{visit.name}' has an unrealistic window",
                details=(f"Window -{visit.window.minus}/+{visit.window.plus} days is more than "
                         f"{MAX_WINDOW_SHARE:.0%} of day {visit.day}."),
                locations=[loc(STUDY_FLOW, 'VISITS', visit.id, f"visits.{visit.id}.window")],
                suggestions=[window_suggestion(visit)],
                data={'visitId': visit.id, 'day': visit.day},
            ))

    scheduled = [v for v in flow.visits if v.type != VisitType.UNSCHEDULED]
    spacing = ctx.config.min_visit_spacing_days
    for prev, curr in zip(scheduled, scheduled[1:]):
        gap = curr.day - prev.day
        if 0 < gap < spacing:
            issues.append(make_issue(
                'UNSUPPORTED_VISIT_TIMING', Severity.INFO, IssueCategory.STUDY_FLOW,
                f"Visits '{prev.name}' and '{curr.name}' are only {gap} day(s) apart",
                locations=[loc(STUDY_FLOW, 'VISITS', prev.id), loc(STUDY_FLOW, 'VISITS', curr.id)],
                suggestions=[advice(f"combine_{prev.id}_{curr.id}", 'Consider combining these visits')],
                data={'visitIds': [prev.id, curr.id]},
            ))
    return issues


@rule('UNCLASSIFIED_VISIT', 'Unclassified visits', severity=Severity.INFO,
      category=IssueCategory.STUDY_FLOW)
def check_unclassified_visits(ctx: FlowContext) -> List[Issue]:
    return [
        make_issue(
            'UNCLASSIFIED_VISIT', Severity.INFO, IssueCategory.STUDY_FLOW,
            f"Visit '{v.name}' could not be classified; placed at day {v.day} by position",
            locations=[loc(STUDY_FLOW, 'VISITS', v.id, 'visits')],
            data={'visitId': v.id},
        )
        for v in ctx.flow.visits_of_type(VisitType.UNKNOWN)
    ]


@rule('DANGLING_PROCEDURE_REFERENCE', 'Procedure references', severity=Severity.ERROR,
      category=IssueCategory.STUDY_FLOW)
def check_procedure_references(ctx: FlowContext) -> List[Issue]:
    """Every visit procedure references a defined procedure."""
    known = {p.id for p in ctx.flow.procedures}
    issues = []
    for visit in ctx.flow.visits:
        dangling = [p for p in visit.procedures if p not in known]
        if not dangling:
            continue
        issues.append(make_issue(
            'DANGLING_PROCEDURE_REFERENCE', Severity.ERROR, IssueCategory.STUDY_FLOW,
            f"Visit '{visit.name}' references undefined procedures: {', '.join(dangling)}",
            locations=[loc(STUDY_FLOW, 'VISITS', visit.id, f"visits.{visit.id}.procedures")],
            suggestions=[dangling_suggestion(visit, known)],
            data={'visitId': visit.id, 'procedureIds': dangling},
        ))
    return issues


@rule('CYCLES_INCONSISTENT', 'Treatment cycles', severity=Severity.WARNING,
      category=IssueCategory.STUDY_FLOW)
def check_cycles(ctx: FlowContext) -> List[Issue]:
    return [
        make_issue('CYCLES_INCONSISTENT', Severity.WARNING, IssueCategory.STUDY_FLOW, message,
                   locations=[loc(STUDY_FLOW, 'CYCLES', field='cycles')])
        for message in validate_cycles(ctx.flow.cycles)
    ]


# ---------------------------------------------------------------------------
# Flow vs documents
# ---------------------------------------------------------------------------

def _document(ctx: FlowContext, kind: DocumentKind):
    return ctx.bundle.get(kind) if ctx.bundle is not None else None


def _scheduled_visit_count(flow: StudyFlow) -> int:
    return sum(1 for v in flow.visits if v.type != VisitType.UNSCHEDULED)


@rule('FLOW_INTEGRITY_DRIFT', 'Visit counts across documents', severity=Severity.ERROR,
      category=IssueCategory.STUDY_FLOW)
def check_flow_integrity(ctx: FlowContext) -> List[Issue]:
    """Visit counts agree between the flow, the SAP assessment schedule and the ICF."""
    sap, icf = _document(ctx, DocumentKind.SAP), _document(ctx, DocumentKind.ICF)
    flow_count = _scheduled_visit_count(ctx.flow)
    issues = []
    if sap and sap.assessment_schedule:
        sap_count = len({vid for s in sap.assessment_schedule for vid in s.visit_ids})
        if abs(flow_count - sap_count) > SAP_VISIT_COUNT_TOLERANCE:
            issues.append(make_issue(
                'FLOW_INTEGRITY_DRIFT', Severity.ERROR, IssueCategory.STUDY_FLOW,
                'Visit count mismatch between Protocol and SAP',
                details=f"The study flow has {flow_count} visits; the SAP assesses at {sap_count}.",
                locations=[loc(STUDY_FLOW, 'VISITS', field='visits'),
                           loc(SAP, 'ASSESSMENT_SCHEDULE', field='assessmentSchedule')],
                suggestions=[advice('align_visits', 'Align visit schedules between Protocol and SAP')],
                data={'flowVisitCount': flow_count, 'sapVisitCount': sap_count},
            ))
    if icf and icf.visit_schedule:
        icf_count = len(icf.visit_schedule)
        if abs(flow_count - icf_count) > ICF_VISIT_COUNT_TOLERANCE:
            issues.append(make_issue(
                'FLOW_INTEGRITY_DRIFT', Severity.WARNING, IssueCategory.STUDY_FLOW,
                'Visit count mismatch between Protocol and ICF',
                details=f"The study flow has {flow_count} visits; the ICF lists {icf_count}.",
                locations=[loc(STUDY_FLOW, 'VISITS', field='visits'),
                           loc(ICF, 'VISIT_SCHEDULE', field='visitSchedule')],
                data={'flowVisitCount': flow_count, 'icfVisitCount': icf_count},
            ))
    return issues


def _sap_schedule_for(endpoint_map: EndpointProcedureMap, sap, threshold: float):
    for schedule in sap.assessment_schedule:
        if schedule.endpoint_id == endpoint_map.endpoint_id:
            return schedule
    sap_names = {e.id: e.name for e in sap.primary_endpoints + sap.secondary_endpoints}
    for schedule in sap.assessment_schedule:
        name = sap_names.get(schedule.endpoint_id)
        if name and combined_similarity(name, endpoint_map.endpoint_name) >= threshold:
            return schedule
    return None


@rule('ENDPOINT_TIMING_DRIFT', 'Endpoint assessment timing in SAP', severity=Severity.CRITICAL,
      category=IssueCategory.STUDY_FLOW)
def check_endpoint_timing(ctx: FlowContext) -> List[Issue]:
    sap = _document(ctx, DocumentKind.SAP)
    if not sap:
        return []
    issues = []
    for endpoint_map in ctx.flow.endpoint_maps:
        if _sap_schedule_for(endpoint_map, sap, ctx.config.alignment_threshold) is not None:
            continue
        primary = endpoint_map.endpoint_type == 'primary'
        issues.append(make_issue(
            'ENDPOINT_TIMING_DRIFT', Severity.CRITICAL if primary else Severity.ERROR,
            IssueCategory.STUDY_FLOW,
            f"Assessment timing for endpoint '{endpoint_map.endpoint_name}' is not defined in the SAP",
            locations=[loc(STUDY_FLOW, 'ENDPOINT_MAPS', endpoint_map.endpoint_id, 'endpointMaps'),
                       loc(SAP, 'ASSESSMENT_SCHEDULE', field='assessmentSchedule')],
            suggestions=[assessment_schedule_suggestion(endpoint_map, ctx.flow)],
            data={'endpointId': endpoint_map.endpoint_id, 'endpointType': endpoint_map.endpoint_type},
        ))
    return issues


@rule('MISSING_ASSESSMENT_FOR_ENDPOINT', 'Primary endpoint procedures', severity=Severity.CRITICAL,
      category=IssueCategory.STUDY_FLOW)
def check_endpoint_assessments(ctx: FlowContext) -> List[Issue]:
    """Each primary endpoint's required procedures are part of the flow."""
    known = {p.id for p in ctx.flow.procedures}
    issues = []
    for endpoint_map in ctx.flow.endpoint_maps:
        if endpoint_map.endpoint_type != 'primary':
            continue
        missing = [p for p in endpoint_map.required_procedures if p not in known]
        if not missing:
            continue
        suggestion = procedures_suggestion(endpoint_map, missing)
        issues.append(make_issue(
            'MISSING_ASSESSMENT_FOR_ENDPOINT', Severity.CRITICAL, IssueCategory.STUDY_FLOW,
            f"Primary endpoint '{endpoint_map.endpoint_name}' lacks {len(missing)} required procedures",
            locations=[loc(STUDY_FLOW, 'PROCEDURES', field='procedures')],
            suggestions=[suggestion] if suggestion else [],
            data={
                'endpointId': endpoint_map.endpoint_id,
                'procedureIds': missing,
                'coverage': endpoint_coverage([endpoint_map], ctx.flow.visits)[endpoint_map.endpoint_id],
                'unscheduled': [
                    {'visitId': visit_id, 'procedureId': proc_id}
                    for visit_id, proc_id in find_missing_procedures_for_endpoint(endpoint_map, ctx.flow.visits)
                ],
            },
        ))
    return issues


@rule('INCORRECT_SCHEDULE_FOR_PRIMARY', 'Primary endpoint visits', severity=Severity.CRITICAL,
      category=IssueCategory.STUDY_FLOW)
def check_primary_schedule(ctx: FlowContext) -> List[Issue]:
    flow = ctx.flow
    has_baseline = bool(flow.visits_of_type(VisitType.BASELINE))
    has_terminal = bool(flow.visits_of_type(*TERMINAL_VISIT_TYPES))
    if has_baseline and has_terminal:
        return []
    additions = mandatory_visits(flow, ctx.config)
    issues = []
    for endpoint_map in flow.endpoint_maps:
        if endpoint_map.endpoint_type != 'primary':
            continue
        if endpoint_map.timing.baseline and not has_baseline:
            issues.append(make_issue(
                'INCORRECT_SCHEDULE_FOR_PRIMARY', Severity.CRITICAL, IssueCategory.STUDY_FLOW,
                f"No baseline visit for primary endpoint '{endpoint_map.endpoint_name}'",
                locations=[loc(STUDY_FLOW, 'VISITS', field='visits')],
                suggestions=[visit_append_suggestion(additions[VisitType.BASELINE])],
                data={'endpointId': endpoint_map.endpoint_id, 'visitType': VisitType.BASELINE.value},
            ))
        if endpoint_map.timing.follow_up and not has_terminal:
            issues.append(make_issue(
                'INCORRECT_SCHEDULE_FOR_PRIMARY', Severity.ERROR, IssueCategory.STUDY_FLOW,
                f"No end of treatment visit for primary endpoint '{endpoint_map.endpoint_name}'",
                locations=[loc(STUDY_FLOW, 'VISITS', field='visits')],
                suggestions=[visit_append_suggestion(additions[VisitType.END_OF_TREATMENT])],
                data={'endpointId': endpoint_map.endpoint_id,
                      'visitType': VisitType.END_OF_TREATMENT.value},
            ))
    return issues


def _icf_text(icf) -> str:
    parts = [f"{d.name} {d.description}" for d in icf.procedure_descriptions]
    parts += list(icf.risks) + list(icf.treatment_descriptions) + [icf.visit_burden or '']
    return normalize_text(' '.join(parts))


def _needs_disclosure(proc) -> bool:
    return proc.invasive or proc.category in DISCLOSED_CATEGORIES


@rule('PROCEDURE_NOT_IN_ICF', 'Procedures disclosed in ICF', severity=Severity.ERROR,
      category=IssueCategory.STUDY_FLOW)
def check_procedures_in_icf(ctx: FlowContext) -> List[Issue]:
    icf = _document(ctx, DocumentKind.ICF)
    if not icf:
        return []
    text = _icf_text(icf)
    issues = []
    for proc in ctx.flow.procedures:
        if not _needs_disclosure(proc) or normalize_text(proc.name) in text:
            continue
        issues.append(make_issue(
            'PROCEDURE_NOT_IN_ICF', Severity.ERROR, IssueCategory.STUDY_FLOW,
            f"Procedure '{proc.name}' is not described in the ICF",
            locations=[loc(STUDY_FLOW, 'PROCEDURES', proc.id, 'procedures'),
                       loc(ICF, 'PROCEDURES', field='procedureDescriptions')],
            suggestions=[advice(f"describe_{proc.id}", f"Add a description of '{proc.name}' to the ICF")],
            data={'procedureId': proc.id},
        ))
    return issues


@rule('RISKS_NOT_DESCRIBED', 'Procedure risks in ICF', severity=Severity.CRITICAL,
      category=IssueCategory.STUDY_FLOW)
def check_risks_described(ctx: FlowContext) -> List[Issue]:
    icf = _document(ctx, DocumentKind.ICF)
    if not icf or any(r.strip() for r in icf.risks):
        return []
    high_risk = [p for p in ctx.flow.procedures
                 if _needs_disclosure(p) or 'biopsy' in p.name.lower()]
    if not high_risk:
        return []
    return [make_issue(
        'RISKS_NOT_DESCRIBED', Severity.CRITICAL, IssueCategory.STUDY_FLOW,
        'ICF has no risk descriptions for invasive procedures',
        details=f"The study flow includes {len(high_risk)} invasive or high-risk procedures.",
        locations=[loc(ICF, 'RISKS', field='risks')],
        suggestions=[advice('add_risks', 'Add risk descriptions for every invasive procedure')],
        data={'procedureIds': [p.id for p in high_risk]},
    )]


@rule('VISIT_MISSING_IN_ICF', 'Visit schedule in ICF', severity=Severity.WARNING,
      category=IssueCategory.STUDY_FLOW)
def check_visits_in_icf(ctx: FlowContext) -> List[Issue]:
    icf = _document(ctx, DocumentKind.ICF)
    if not icf:
        return []
    flow_count = _scheduled_visit_count(ctx.flow)
    if not icf.visit_schedule:
        return [make_issue(
            'VISIT_MISSING_IN_ICF', Severity.WARNING, IssueCategory.STUDY_FLOW,
            'Visit schedule is not described in the ICF',
            details=f"The study has {flow_count} visits over {ctx.flow.total_duration} days.",
            locations=[loc(ICF, 'VISIT_SCHEDULE', field='visitSchedule')],
            data={'flowVisitCount': flow_count},
        )]
    icf_count = len(icf.visit_schedule)
    if abs(flow_count - icf_count) > ICF_VISIT_COUNT_TOLERANCE:
        return [make_issue(
            'VISIT_MISSING_IN_ICF', Severity.WARNING, IssueCategory.STUDY_FLOW,
            'ICF visit schedule does not match the number of study visits',
            details=f"The study flow has {flow_count} visits; the ICF lists {icf_count}.",
            locations=[loc(ICF, 'VISIT_SCHEDULE', field='visitSchedule')],
            data={'flowVisitCount': flow_count, 'icfVisitCount': icf_count},
        )]
    return []


FLOW_STRUCTURE_RULES: List[FunctionRule] = [
    mandatory_visits_rule,
    check_visit_timing,
    check_unclassified_visits,
    check_procedure_references,
    check_cycles,
]

FLOW_DOCUMENT_RULES: List[FunctionRule] = [
    check_flow_integrity,
    check_endpoint_timing,
    check_endpoint_assessments,
    check_primary_schedule,
    check_procedures_in_icf,
    check_risks_described,
    check_visits_in_icf,
]

FLOW_RULES = FLOW_STRUCTURE_RULES + FLOW_DOCUMENT_RULES


def create_flow_registry() -> RuleRegistry:
    registry = RuleRegistry()
    registry.register_all([r.clone() for r in FLOW_RULES])
    return registry


def validate_study_flow(flow: StudyFlow, bundle=None, *, engine: Optional[RuleEngine] = None,
                        config: Optional[EngineConfig] = None) -> ValidationResult:
    """Run every flow rule over ``flow`` (document checks only where ``bundle`` has the documents)."""
    config = config or get_config()
    engine = engine or RuleEngine(create_flow_registry(), parallel=config.parallel_rules,
                                  max_workers=config.max_rule_workers)
    return engine.run(FlowContext(flow=flow, bundle=bundle, config=config))
