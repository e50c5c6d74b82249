"""
Study Flow <-> document consistency rules.

Run only when a derived Study Flow is part of the cross-document context.
The flow is compared with the Protocol schedule it was derived from, the ICF
procedure descriptions and the visits the CSR reports on.
"""

import json
from typing import List, Optional

from alignment.similarity import combined_similarity, normalize_text
from core.documents import DocumentKind
from core.issues import Issue, IssueCategory, Severity
from studyflow.models import ProcedureCategory, Visit, VisitType
from ..engine import CrossDocContext, rule
from .common import advice, loc, make_issue

PROTOCOL = DocumentKind.PROTOCOL.value
ICF = DocumentKind.ICF.value
CSR = DocumentKind.CSR.value
STUDY_FLOW = DocumentKind.STUDY_FLOW.value

# Allowed gap between Protocol and derived study duration
DURATION_TOLERANCE_DAYS = 28

# Categories a participant must be told about even when not invasive
CONSENT_CATEGORIES = {
    ProcedureCategory.PK,
    ProcedureCategory.IMAGING,
    ProcedureCategory.ECG,
    ProcedureCategory.QUESTIONNAIRE,
    ProcedureCategory.DEVICE,
}


def _matches_protocol_visit(visit: Visit, protocol, threshold: float) -> bool:
    for scheduled in protocol.visit_schedule:
        if scheduled.day is not None and scheduled.day == visit.day:
            return True
        if combined_similarity(visit.name, scheduled.name) >= threshold:
            return True
    return False


def _described_in_icf(name: str, icf, threshold: float) -> bool:
    norm = normalize_text(name)
    for desc in icf.procedure_descriptions:
        if norm and norm in normalize_text(f"{desc.name} {desc.description}"):
            return True
        if combined_similarity(name, desc.name) >= threshold:
            return True
    return False


def _protocol_duration(protocol) -> Optional[int]:
    days = [v.day for v in protocol.visit_schedule if v.day is not None]
    days += [v.week * 7 for v in protocol.visit_schedule if v.day is None and v.week is not None]
    return max(days) if days else None


@rule('SF_001', 'Study flow visits in Protocol', severity=Severity.WARNING,
      category=IssueCategory.STUDY_FLOW)
def check_flow_visits(ctx: CrossDocContext) -> List[Issue]:
    """Each flow visit corresponds to a Protocol visit by day or by name."""
    flow, protocol = ctx.study_flow, ctx.bundle.protocol
    if flow is None or not protocol or not protocol.visit_schedule:
        return []
    threshold = ctx.config.alignment_threshold
    issues = []
    for visit in flow.visits:
        if visit.type in (VisitType.UNSCHEDULED, VisitType.UNKNOWN):
            continue
        if _matches_protocol_visit(visit, protocol, threshold):
            continue
        issues.append(make_issue(
            'SF_001_VISIT_MISSING', Severity.WARNING, IssueCategory.STUDY_FLOW,
            f"Study flow visit '{visit.name}' (day {visit.day}) is not in the Protocol schedule",
            locations=[loc(STUDY_FLOW, 'VISITS', visit.id, 'visits'),
                       loc(PROTOCOL, 'SCHEDULE_OF_ACTIVITIES', field='visitSchedule')],
            data={'visitId': visit.id, 'day': visit.day, 'inferred': visit.inferred},
        ))
    return issues


@rule('SF_002', 'Study flow procedures in ICF', severity=Severity.WARNING,
      category=IssueCategory.STUDY_FLOW)
def check_flow_procedures_in_icf(ctx: CrossDocContext) -> List[Issue]:
    flow, icf = ctx.study_flow, ctx.bundle.icf
    if flow is None or not icf:
        return []
    threshold = ctx.config.alignment_threshold
    issues = []
    for proc in flow.procedures:
        if not proc.invasive and proc.category not in CONSENT_CATEGORIES:
            continue
        if _described_in_icf(proc.name, icf, threshold):
            continue
        issues.append(make_issue(
            'SF_002_PROCEDURE_MISSING_ICF', Severity.WARNING, IssueCategory.STUDY_FLOW,
            f"Procedure '{proc.name}' is scheduled but not described in the ICF",
            locations=[loc(STUDY_FLOW, 'PROCEDURES', proc.id, 'procedures'),
                       loc(ICF, 'PROCEDURES', field='procedureDescriptions')],
            suggestions=[advice(f"describe_{proc.id}", f"Describe '{proc.name}' to participants")],
            data={'procedureId': proc.id, 'invasive': proc.invasive},
        ))
    return issues


@rule('SF_003', 'Study duration', severity=Severity.WARNING, category=IssueCategory.STUDY_FLOW)
def check_flow_duration(ctx: CrossDocContext) -> List[Issue]:
    flow, protocol = ctx.study_flow, ctx.bundle.protocol
    if flow is None or not protocol:
        return []
    protocol_days = _protocol_duration(protocol)
    if protocol_days is None:
        return []
    difference = abs(flow.total_duration - protocol_days)
    if difference <= DURATION_TOLERANCE_DAYS:
        return []
    return [make_issue(
        'SF_003_DURATION_MISMATCH', Severity.WARNING, IssueCategory.STUDY_FLOW,
        f"Study flow lasts {flow.total_duration} days but the Protocol schedule runs to day {protocol_days}",
        locations=[loc(STUDY_FLOW, 'VISITS', field='visits'),
                   loc(PROTOCOL, 'SCHEDULE_OF_ACTIVITIES', field='visitSchedule')],
        data={'flowDuration': flow.total_duration, 'protocolDuration': protocol_days},
    )]


@rule('SF_004', 'Key visits reported in CSR', severity=Severity.INFO, category=IssueCategory.STUDY_FLOW)
def check_flow_visits_in_csr(ctx: CrossDocContext) -> List[Issue]:
    flow, csr = ctx.study_flow, ctx.bundle.csr
    if flow is None or not csr:
        return []
    text = json.dumps(csr.to_dict()).lower()
    issues = []
    for visit in flow.visits_of_type(VisitType.BASELINE, VisitType.END_OF_TREATMENT):
        if visit.name.lower() in text or f"day {visit.day}" in text:
            continue
        issues.append(make_issue(
            'SF_004_CSR_VISIT_MISSING', Severity.INFO, IssueCategory.STUDY_FLOW,
            f"CSR does not mention the {visit.type.value.replace('_', ' ')} visit '{visit.name}'",
            locations=[loc(STUDY_FLOW, 'VISITS', visit.id, 'visits'), loc(CSR)],
            data={'visitId': visit.id},
        ))
    return issues


STUDYFLOW_RULES = [
    check_flow_visits,
    check_flow_procedures_in_icf,
    check_flow_duration,
    check_flow_visits_in_csr,
]
