"""
Bundle-wide coherence rules.

These aggregate over the whole bundle instead of one document pair, so each
produces at most one issue per run.
"""

from typing import List

from core.documents import DocumentKind
from core.issues import Issue, IssueCategory, Severity
from ..engine import CrossDocContext, rule
from .common import advice, loc, make_issue

IB = DocumentKind.IB.value
PROTOCOL = DocumentKind.PROTOCOL.value
SAP = DocumentKind.SAP.value


@rule('GLOBAL_PURPOSE', 'Study purpose coherence', severity=Severity.CRITICAL,
      category=IssueCategory.GLOBAL)
def check_global_purpose(ctx: CrossDocContext) -> List[Issue]:
    """Primary objectives tell the same story across IB and Protocol."""
    records = [a for a in ctx.alignments.facet('objectives', type='primary')]
    if not records:
        return []
    drifted = [a for a in records if not a.aligned]
    if not drifted:
        return []
    systemic = len(drifted) == len(records)
    severity = Severity.CRITICAL if systemic else Severity.WARNING
    if systemic:
        message = 'No primary objective is shared between the IB and the Protocol'
    else:
        message = f"{len(drifted)} of {len(records)} primary objective records do not align across documents"
    return [make_issue(
        'GLOBAL_PURPOSE_DRIFT', severity, IssueCategory.GLOBAL, message,
        locations=[loc(IB, 'OBJECTIVES'), loc(PROTOCOL, 'OBJECTIVES')],
        suggestions=[advice('restate_purpose', 'Agree one primary objective and restate it in every document')],
        data={'drifted': len(drifted), 'total': len(records), 'systemic': systemic},
    )]


@rule('GLOBAL_POPULATION', 'Study population coherence', severity=Severity.ERROR,
      category=IssueCategory.GLOBAL)
def check_global_population(ctx: CrossDocContext) -> List[Issue]:
    ib, protocol = ctx.bundle.ib, ctx.bundle.protocol
    if not ib and not protocol:
        return []
    ib_population = (ib.target_population or '').strip() if ib else ''
    has_ib_population = len(ib_population) >= ctx.config.target_population_min_length
    has_criteria = bool(protocol and any(c.strip() for c in protocol.inclusion_criteria))

    if not has_ib_population and not has_criteria:
        message = 'The study population is not defined in any document'
    elif has_ib_population and protocol and not has_criteria:
        message = 'The IB defines a target population but the Protocol has no inclusion criteria'
    else:
        return []
    return [make_issue(
        'GLOBAL_POPULATION_INCOHERENT', Severity.ERROR, IssueCategory.GLOBAL, message,
        locations=[loc(IB, 'TARGET_POPULATION', field='targetPopulation'),
                   loc(PROTOCOL, 'ELIGIBILITY_CRITERIA', field='inclusionCriteria')],
        data={'ibPopulation': has_ib_population, 'inclusionCriteria': has_criteria},
    )]


@rule('GLOBAL_ANALYSIS_POPULATIONS', 'Analysis populations defined', severity=Severity.WARNING,
      category=IssueCategory.GLOBAL)
def check_global_analysis_populations(ctx: CrossDocContext) -> List[Issue]:
    protocol, sap = ctx.bundle.protocol, ctx.bundle.sap
    if not protocol or not sap or not protocol.inclusion_criteria or sap.analysis_populations:
        return []
    return [make_issue(
        'GLOBAL_ANALYSIS_POPULATIONS_MISSING', Severity.WARNING, IssueCategory.GLOBAL,
        'Participants are defined but the SAP defines no analysis populations',
        locations=[loc(SAP, 'ANALYSIS_SETS', field='analysisPopulations')],
    )]


@rule('GLOBAL_VERSIONS', 'Document versions', severity=Severity.INFO, category=IssueCategory.GLOBAL)
def check_global_versions(ctx: CrossDocContext) -> List[Issue]:
    unversioned = [doc.KIND.value for doc in ctx.bundle.documents() if not (doc.version or '').strip()]
    if not unversioned:
        return []
    return [make_issue(
        'GLOBAL_VERSION_MISSING', Severity.INFO, IssueCategory.GLOBAL,
        f"No version recorded for: {', '.join(unversioned)}",
        locations=[loc(kind, field='version') for kind in unversioned],
        data={'documents': unversioned},
    )]


GLOBAL_RULES = [
    check_global_purpose,
    check_global_population,
    check_global_analysis_populations,
    check_global_versions,
]
