"""
Protocol <-> ICF consistency rules.

The consent form must let a participant see every visit and every burdensome
procedure the Protocol imposes, the risks those procedures carry, and the
treatments they may receive.
"""

from typing import List

from alignment.similarity import normalize_text, word_overlap
from core.documents import DocumentKind, ScheduledVisit, TreatmentArm
from core.issues import Issue, IssueCategory, Severity, Suggestion
from studyflow.procedure_catalog import get_catalog
from ..engine import CrossDocContext, rule
from .common import advice, append_patch, fix, loc, make_issue


PROTOCOL = DocumentKind.PROTOCOL.value
ICF = DocumentKind.ICF.value


def visit_append_suggestion(visit: ScheduledVisit) -> Suggestion:
    return fix(
        f"add_icf_visit_{visit.id}",
        f"List '{visit.name or visit.id}' in the ICF visit schedule",
        [append_patch(ICF, 'visitSchedule', visit.to_dict(), source=PROTOCOL,
                      reason=f"Protocol visit {visit.id} not described to participants")],
    )


def treatment_text(arm: TreatmentArm) -> str:
    regimen = ' '.join(part for part in (arm.dose, arm.route, arm.frequency) if part)
    name = arm.name or arm.id
    return f"{name}: {regimen}" if regimen else name


def arm_described(arm: TreatmentArm, descriptions: List[str]) -> bool:
    name = normalize_text(arm.name or '')
    for text in descriptions:
        norm = normalize_text(text)
        if name and name in norm:
            return True
        if word_overlap(treatment_text(arm), text) >= 0.5:
            return True
    return False


def undescribed_arms(protocol, icf) -> List[TreatmentArm]:
    return [a for a in protocol.arms if not arm_described(a, icf.treatment_descriptions)]


def treatment_suggestion(arms: List[TreatmentArm]) -> Suggestion:
    return fix(
        'describe_treatments',
        'Describe every treatment arm in the ICF',
        [append_patch(ICF, 'treatmentDescriptions', treatment_text(arm), source=PROTOCOL,
                      reason=f"Arm {arm.id} not described to participants")
         for arm in arms],
    )


def invasive_procedures(protocol, icf) -> List[str]:
    """Names of invasive procedures in the ICF descriptions or the Protocol schedule."""
    names = [p.name or p.id for p in icf.procedure_descriptions if p.invasive]
    catalog = get_catalog()
    seen = {normalize_text(n) for n in names}
    for visit in protocol.visit_schedule:
        for proc_name in visit.procedures:
            entry = catalog.find_procedure(proc_name)
            if entry is not None and entry.invasive and normalize_text(entry.name) not in seen:
                seen.add(normalize_text(entry.name))
                names.append(entry.name)
    return names


@rule('ICF_SCHEDULE', 'ICF procedure schedule', severity=Severity.ERROR,
      category=IssueCategory.PROTOCOL_ICF)
def check_icf_schedule(ctx: CrossDocContext) -> List[Issue]:
    """Protocol visits are explained in the ICF, visit by visit where the ICF lists visits."""
    protocol, icf = ctx.bundle.protocol, ctx.bundle.icf
    if not protocol or not icf or not protocol.visit_schedule:
        return []
    issues = []
    if not icf.procedure_descriptions:
        issues.append(make_issue(
            'ICF_SCHEDULE_MISMATCH', Severity.ERROR, IssueCategory.PROTOCOL_ICF,
            f"Protocol schedules {len(protocol.visit_schedule)} visits but the ICF describes no procedures",
            locations=[loc(PROTOCOL, 'SCHEDULE_OF_ACTIVITIES', field='visitSchedule'),
                       loc(ICF, 'PROCEDURES', field='procedureDescriptions')],
            suggestions=[advice('describe_procedures', 'Describe what happens at each study visit')],
            data={'protocolVisitCount': len(protocol.visit_schedule)},
        ))
    if icf.visit_schedule:
        for a in ctx.alignments.facet('visits', left_kind=PROTOCOL, right_kind=ICF):
            if not a.unmatched_left:
                continue
            visit = a.left
            issues.append(make_issue(
                'ICF_VISIT_MISSING', Severity.WARNING, IssueCategory.PROTOCOL_ICF,
                f"Protocol visit '{visit.name or visit.id}' is not in the ICF visit schedule",
                locations=[loc(PROTOCOL, 'SCHEDULE_OF_ACTIVITIES', visit.id, 'visitSchedule'),
                           loc(ICF, 'VISIT_SCHEDULE', field='visitSchedule')],
                suggestions=[visit_append_suggestion(visit)],
                data={'protocolVisitId': visit.id},
            ))
    return issues


@rule('ICF_RISKS', 'ICF risk disclosure', severity=Severity.CRITICAL,
      category=IssueCategory.PROTOCOL_ICF)
def check_icf_risks(ctx: CrossDocContext) -> List[Issue]:
    """Invasive procedures require a risk section in the consent form."""
    protocol, icf = ctx.bundle.protocol, ctx.bundle.icf
    if not protocol or not icf or any(r.strip() for r in icf.risks):
        return []
    invasive = invasive_procedures(protocol, icf)
    if not invasive:
        return []
    return [make_issue(
        'ICF_RISK_MISSING', Severity.CRITICAL, IssueCategory.PROTOCOL_ICF,
        f"ICF describes no risks although the study involves invasive procedures ({', '.join(invasive[:3])})",
        locations=[loc(ICF, 'RISKS', field='risks')],
        suggestions=[advice('describe_risks', 'Add the risks of each invasive procedure to the ICF')],
        data={'invasiveProcedures': invasive},
    )]


@rule('ICF_TREATMENTS', 'ICF treatment descriptions', severity=Severity.WARNING,
      category=IssueCategory.PROTOCOL_ICF)
def check_icf_treatments(ctx: CrossDocContext) -> List[Issue]:
    protocol, icf = ctx.bundle.protocol, ctx.bundle.icf
    if not protocol or not icf or not protocol.arms:
        return []
    missing = undescribed_arms(protocol, icf)
    if not missing:
        return []
    return [make_issue(
        'ICF_TREATMENT_INCOMPLETE', Severity.WARNING, IssueCategory.PROTOCOL_ICF,
        f"{len(missing)} of {len(protocol.arms)} treatment arms are not described in the ICF",
        locations=[loc(PROTOCOL, 'TREATMENT_ARMS', field='arms'),
                   loc(ICF, 'TREATMENTS', field='treatmentDescriptions')],
        suggestions=[treatment_suggestion(missing)],
        data={'armIds': [a.id for a in missing]},
    )]


PROTOCOL_ICF_RULES = [
    check_icf_schedule,
    check_icf_risks,
    check_icf_treatments,
]
