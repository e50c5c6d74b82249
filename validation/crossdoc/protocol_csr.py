"""Protocol/SAP <-> CSR consistency rules."""

from typing import List

from alignment.similarity import normalize_text, word_overlap
from core.documents import DocumentKind
from core.issues import Issue, IssueCategory, Severity
from ..engine import CrossDocContext, rule
from .common import advice, loc, make_issue

PROTOCOL = DocumentKind.PROTOCOL.value
SAP = DocumentKind.SAP.value
CSR = DocumentKind.CSR.value


def method_reported(test_name: str, methods: List[str]) -> bool:
    norm = normalize_text(test_name)
    if not norm:
        return True
    return any(norm in normalize_text(m) or word_overlap(test_name, m) >= 0.5 for m in methods)


@rule('CSR_METHODS', 'CSR methods vs SAP', severity=Severity.ERROR, category=IssueCategory.SAP_CSR)
def check_csr_methods(ctx: CrossDocContext) -> List[Issue]:
    """Every planned SAP test appears in the CSR methods."""
    sap, csr = ctx.bundle.sap, ctx.bundle.csr
    if not sap or not csr or not sap.statistical_tests:
        return []
    if not any(m.strip() for m in csr.actual_methods):
        return [make_issue(
            'CSR_METHOD_MISMATCH', Severity.ERROR, IssueCategory.SAP_CSR,
            f"SAP plans {len(sap.statistical_tests)} statistical tests but the CSR reports no methods",
            locations=[loc(SAP, 'STATISTICAL_METHODS', field='statisticalTests'),
                       loc(CSR, 'METHODS', field='actualMethods')],
        )]
    issues = []
    for test in sap.statistical_tests:
        if method_reported(test.test, csr.actual_methods):
            continue
        issues.append(make_issue(
            'CSR_METHOD_MISMATCH', Severity.ERROR, IssueCategory.SAP_CSR,
            f"Planned test '{test.test}' is not among the methods reported in the CSR",
            locations=[loc(SAP, 'STATISTICAL_METHODS', test.endpoint_id, 'statisticalTests'),
                       loc(CSR, 'METHODS', field='actualMethods')],
            suggestions=[advice('explain_method_change',
                                'Report the planned test or document the deviation from the SAP')],
            data={'testEndpointId': test.endpoint_id, 'test': test.test},
        ))
    return issues


@rule('CSR_ENDPOINTS', 'CSR primary endpoint reporting', severity=Severity.CRITICAL,
      category=IssueCategory.PROTOCOL_CSR)
def check_csr_endpoints(ctx: CrossDocContext) -> List[Issue]:
    issues = []
    for a in ctx.alignments.facet('endpoints', left_kind=PROTOCOL, right_kind=CSR, type='primary'):
        if a.aligned or a.left is None:
            continue
        issues.append(make_issue(
            'CSR_ENDPOINT_MISMATCH', Severity.CRITICAL, IssueCategory.PROTOCOL_CSR,
            f"Protocol primary endpoint '{a.left.name}' is not reported as a primary endpoint in the CSR",
            locations=[loc(PROTOCOL, 'ENDPOINTS', a.left_id, 'endpoints'),
                       loc(CSR, 'RESULTS', a.right_id, 'reportedPrimaryEndpoints')],
            suggestions=[advice('report_primary_endpoint',
                                'Report the pre-specified primary endpoint or justify the change')],
            data={'protocolEndpointId': a.left_id, 'csrEndpointId': a.right_id, 'score': a.score},
        ))
    return issues


@rule('CSR_ANALYSIS_SETS', 'CSR analysis sets', severity=Severity.WARNING,
      category=IssueCategory.PROTOCOL_CSR)
def check_csr_analysis_sets(ctx: CrossDocContext) -> List[Issue]:
    issues = []
    for a in ctx.alignments.facet('populations', left_kind=PROTOCOL, right_kind=CSR):
        if not a.unmatched_left:
            continue
        pop = a.left
        issues.append(make_issue(
            'CSR_ANALYSIS_SET_MISSING', Severity.WARNING, IssueCategory.PROTOCOL_CSR,
            f"Protocol analysis population '{pop.abbreviation or pop.name}' is not reported in the CSR",
            locations=[loc(PROTOCOL, 'ANALYSIS_SETS', pop.id), loc(CSR, 'ANALYSIS_SETS', field='analysisSets')],
            data={'protocolPopulationId': pop.id},
        ))
    return issues


@rule('CSR_DEVIATIONS', 'CSR deviations overview', severity=Severity.INFO,
      category=IssueCategory.PROTOCOL_CSR)
def check_csr_deviations(ctx: CrossDocContext) -> List[Issue]:
    csr = ctx.bundle.csr
    if not csr or any(d.strip() for d in csr.deviations_overview):
        return []
    return [make_issue(
        'CSR_DEVIATIONS_MISSING', Severity.INFO, IssueCategory.PROTOCOL_CSR,
        'CSR has no overview of protocol deviations',
        locations=[loc(CSR, 'DEVIATIONS', field='deviationsOverview')],
    )]


PROTOCOL_CSR_RULES = [
    check_csr_methods,
    check_csr_endpoints,
    check_csr_analysis_sets,
    check_csr_deviations,
]
