"""
IB <-> Protocol consistency rules.

Objectives and doses are judged from the alignment set; population drift
compares the IB target population with the Protocol inclusion criteria.
"""

from typing import List, Optional

from alignment.similarity import word_overlap
from core.documents import DosingInfo, DocumentKind
from core.issues import Issue, IssueCategory, Severity, Suggestion
from ..engine import CrossDocContext, rule
from .common import advice, append_patch, fix, loc, make_issue

IB = DocumentKind.IB.value
PROTOCOL = DocumentKind.PROTOCOL.value


def arm_from_dose(dose: DosingInfo) -> dict:
    """Protocol arm dict carrying an IB dose."""
    label = ' '.join(part for part in (dose.dose, dose.route, dose.frequency) if part)
    return {
        'id': f"arm_{dose.id}",
        'name': label or dose.id,
        'dose': dose.dose,
        'route': dose.route or None,
        'frequency': dose.frequency or None,
        'description': f"Dose regimen from Investigator Brochure ({dose.id})",
    }


def dose_arm_suggestion(dose: DosingInfo) -> Suggestion:
    return fix(
        f"add_arm_{dose.id}",
        f"Add a Protocol arm for IB dose {dose.dose}",
        [append_patch(PROTOCOL, 'arms', arm_from_dose(dose), source=IB,
                      reason=f"IB dose {dose.id} has no matching Protocol arm")],
    )


@rule('IB_PROTOCOL_OBJECTIVES', 'IB/Protocol objective alignment', severity=Severity.CRITICAL,
      category=IssueCategory.IB_PROTOCOL)
def check_objective_alignment(ctx: CrossDocContext) -> List[Issue]:
    """Primary objectives must align; aligned objectives should agree closely."""
    issues = []
    low = ctx.config.objective_low_similarity
    for a in ctx.alignments.facet('objectives', left_kind=IB, right_kind=PROTOCOL):
        if not a.aligned and a.type == 'primary':
            if a.left is not None:
                message = f"IB primary objective '{a.left.text}' has no counterpart in the Protocol"
            else:
                message = f"Protocol primary objective '{a.right.text}' is not stated in the IB"
            issues.append(make_issue(
                'IB_PROTOCOL_OBJECTIVE_MISMATCH', Severity.CRITICAL, IssueCategory.IB_PROTOCOL, message,
                details=f"Best similarity {a.score:.2f} is below the alignment threshold.",
                locations=[loc(IB, 'OBJECTIVES', a.left_id), loc(PROTOCOL, 'OBJECTIVES', a.right_id)],
                suggestions=[advice('review_primary_objective',
                                    'Restate the primary objective identically in IB and Protocol')],
                data={'ibObjectiveId': a.left_id, 'protocolObjectiveId': a.right_id, 'score': a.score},
            ))
        elif a.aligned and a.score < low:
            issues.append(make_issue(
                'IB_PROTOCOL_OBJECTIVE_LOW_SIMILARITY', Severity.WARNING, IssueCategory.IB_PROTOCOL,
                f"{(a.type or '').capitalize()} objective wording differs between IB and Protocol "
                f"(similarity {a.score:.2f})",
                locations=[loc(IB, 'OBJECTIVES', a.left_id), loc(PROTOCOL, 'OBJECTIVES', a.right_id)],
                data={'ibObjectiveId': a.left_id, 'protocolObjectiveId': a.right_id, 'score': a.score},
            ))
    return issues


@rule('IB_PROTOCOL_POPULATION', 'IB/Protocol population drift', severity=Severity.WARNING,
      category=IssueCategory.IB_PROTOCOL)
def check_population_drift(ctx: CrossDocContext) -> List[Issue]:
    ib, protocol = ctx.bundle.ib, ctx.bundle.protocol
    if not ib or not protocol or not (ib.target_population or '').strip() or not protocol.inclusion_criteria:
        return []
    overlap = word_overlap(ib.target_population, ' '.join(protocol.inclusion_criteria))
    if overlap >= ctx.config.population_overlap_threshold:
        return []
    return [make_issue(
        'IB_PROTOCOL_POPULATION_DRIFT', Severity.WARNING, IssueCategory.IB_PROTOCOL,
        'IB target population is not reflected in the Protocol inclusion criteria',
        details=f"Only {overlap:.0%} of the IB population terms appear in the inclusion criteria.",
        locations=[loc(IB, 'TARGET_POPULATION'), loc(PROTOCOL, 'ELIGIBILITY_CRITERIA')],
        data={'overlap': round(overlap, 4)},
    )]


@rule('IB_PROTOCOL_DOSES', 'IB/Protocol dose consistency', severity=Severity.ERROR,
      category=IssueCategory.IB_PROTOCOL)
def check_dose_consistency(ctx: CrossDocContext) -> List[Issue]:
    """Every IB dose maps to a Protocol arm; every dosed arm is backed by the IB."""
    issues = []
    for a in ctx.alignments.facet('doses', left_kind=IB, right_kind=PROTOCOL):
        if a.unmatched_left:
            dose = a.left
            issues.append(make_issue(
                'IB_PROTOCOL_DOSE_INCONSISTENT', Severity.ERROR, IssueCategory.IB_PROTOCOL,
                f"IB dose '{arm_from_dose(dose)['name']}' is not used by any Protocol arm",
                locations=[loc(IB, 'DOSING', dose.id, 'dosingInformation'), loc(PROTOCOL, 'TREATMENT_ARMS')],
                suggestions=[dose_arm_suggestion(dose)],
                data={'ibDoseId': dose.id},
            ))
        elif a.unmatched_right and a.right.dose:
            arm = a.right
            issues.append(make_issue(
                'IB_PROTOCOL_DOSE_NOT_IN_IB', Severity.WARNING, IssueCategory.IB_PROTOCOL,
                f"Protocol arm '{arm.name or arm.id}' uses dose {arm.dose}, which the IB does not describe",
                locations=[loc(PROTOCOL, 'TREATMENT_ARMS', arm.id, 'arms'), loc(IB, 'DOSING')],
                data={'protocolArmId': arm.id},
            ))
    return issues


@rule('IB_CONTENT', 'IB content completeness', severity=Severity.WARNING,
      category=IssueCategory.IB_PROTOCOL)
def check_ib_content(ctx: CrossDocContext) -> List[Issue]:
    ib = ctx.bundle.ib
    if not ib:
        return []
    issues = []
    mechanism = (ib.mechanism_of_action or '').strip()
    if len(mechanism) < ctx.config.mechanism_min_length:
        issues.append(make_issue(
            'IB_MECHANISM_INCOMPLETE', Severity.INFO, IssueCategory.IB_PROTOCOL,
            'IB mechanism of action is missing or too brief',
            details=f"{len(mechanism)} characters; at least {ctx.config.mechanism_min_length} expected.",
            locations=[loc(IB, 'MECHANISM', field='mechanismOfAction')],
        ))
    if not any(r.strip() for r in ib.key_risk_profile):
        issues.append(make_issue(
            'IB_SAFETY_PROFILE_MISSING', Severity.WARNING, IssueCategory.IB_PROTOCOL,
            'IB does not describe a key risk profile',
            locations=[loc(IB, 'SAFETY', field='keyRiskProfile')],
        ))
    return issues


IB_PROTOCOL_RULES = [
    check_objective_alignment,
    check_population_drift,
    check_dose_consistency,
    check_ib_content,
]


def find_dose(bundle, dose_id: Optional[str]) -> Optional[DosingInfo]:
    ib = bundle.ib
    if not ib or not dose_id:
        return None
    return next((d for d in ib.dosing_information if d.id == dose_id), None)
