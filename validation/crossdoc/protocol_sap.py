"""
Protocol <-> SAP consistency rules.

Endpoint drift is judged from the endpoint alignments; the statistical test
check compares each SAP test with the data type declared on the Protocol
endpoint it analyses.
"""

from typing import Dict, List, Optional, Tuple

from alignment.similarity import combined_similarity, normalize_text
from core.documents import AnalysisPopulation, DocumentKind, Endpoint, SapEndpoint, StatisticalTest
from core.issues import Issue, IssueCategory, Severity, Suggestion
from ..engine import CrossDocContext, rule
from .common import advice, append_patch, fix, loc, make_issue, set_patch

PROTOCOL = DocumentKind.PROTOCOL.value
SAP = DocumentKind.SAP.value

SAP_ENDPOINT_FIELDS = {'primary': 'primaryEndpoints', 'secondary': 'secondaryEndpoints'}

# Tests acceptable per endpoint data type (normalized substrings) and the one to recommend
TEST_COMPATIBILITY: Dict[str, Tuple[Tuple[str, ...], str]] = {
    'continuous': (('t test', 'ancova', 'anova', 'mmrm', 'mixed model', 'linear regression',
                    'wilcoxon', 'mann whitney'), 'ANCOVA'),
    'binary': (('chi square', 'fisher', 'logistic regression', 'cmh', 'cochran mantel haenszel'),
               'Logistic regression'),
    'time_to_event': (('log rank', 'logrank', 'cox', 'kaplan meier'), 'Cox proportional hazards model'),
    'ordinal': (('wilcoxon', 'mann whitney', 'proportional odds', 'cmh', 'cochran mantel haenszel'),
                'Proportional odds model'),
    'count': (('poisson', 'negative binomial'), 'Negative binomial regression'),
}


# ---------------------------------------------------------------------------
# Suggestion builders (also used by the auto-fix synthesizer)
# ---------------------------------------------------------------------------

def endpoint_sync_suggestion(protocol_ep: Endpoint, sap_ep: Optional[SapEndpoint],
                             endpoint_type: str = 'primary') -> Suggestion:
    """Copy the Protocol endpoint's name and description into the SAP."""
    list_field = SAP_ENDPOINT_FIELDS[endpoint_type]
    if sap_ep is not None:
        value = {
            'id': sap_ep.id,
            'name': protocol_ep.name,
            'description': protocol_ep.description,
            'variable': sap_ep.variable or protocol_ep.variable,
        }
        patch = set_patch(SAP, f"{list_field}.{sap_ep.id}", value, old_value=sap_ep.to_dict(),
                          source=PROTOCOL, reason=f"Align SAP endpoint with Protocol endpoint {protocol_ep.id}")
    else:
        value = {
            'id': protocol_ep.id,
            'name': protocol_ep.name,
            'description': protocol_ep.description,
            'variable': protocol_ep.variable,
        }
        patch = append_patch(SAP, list_field, value, source=PROTOCOL,
                             reason=f"Protocol endpoint {protocol_ep.id} missing from SAP")
    return fix(f"sync_{endpoint_type}_endpoint_{protocol_ep.id}",
               f"Use the Protocol {endpoint_type} endpoint in the SAP", [patch])


def recommended_test(data_type: Optional[str]) -> Optional[str]:
    entry = TEST_COMPATIBILITY.get(data_type or '')
    return entry[1] if entry else None


def statistical_test_suggestion(test: StatisticalTest, data_type: str) -> Optional[Suggestion]:
    recommended = recommended_test(data_type)
    if not recommended:
        return None
    return fix(
        f"recommended_test_{test.endpoint_id}",
        f"Use {recommended} for this {data_type.replace('_', '-')} endpoint",
        [set_patch(SAP, f"statisticalTests.{test.endpoint_id}.test", recommended, old_value=test.test,
                   source=PROTOCOL, reason=f"Endpoint data type is {data_type}")],
    )


def population_append_suggestion(population: AnalysisPopulation) -> Suggestion:
    return fix(
        f"add_population_{population.id}",
        f"Define {population.abbreviation or population.name} in the SAP",
        [append_patch(SAP, 'analysisPopulations', population.to_dict(), source=PROTOCOL,
                      reason='Analysis population defined in Protocol only')],
    )


def driver_suggestion(protocol_ep: Endpoint, current: Optional[str]) -> Suggestion:
    return fix(
        'sample_size_driver',
        f"Drive the sample size from primary endpoint '{protocol_ep.name}'",
        [set_patch(SAP, 'sampleSizeDriverEndpoint', protocol_ep.id, old_value=current, source=PROTOCOL,
                   reason='Sample size must be driven by a primary endpoint')],
    )


def is_test_compatible(test_name: str, data_type: Optional[str]) -> bool:
    entry = TEST_COMPATIBILITY.get(data_type or '')
    if entry is None:
        return True
    text = normalize_text(test_name)
    return any(keyword in text for keyword in entry[0])


def resolve_tested_endpoint(ctx: CrossDocContext, test: StatisticalTest) -> Optional[Endpoint]:
    """Protocol endpoint a SAP test refers to, directly or through an endpoint alignment."""
    protocol = ctx.bundle.protocol
    direct = next((e for e in protocol.endpoints if e.id == test.endpoint_id), None)
    if direct is not None:
        return direct
    for a in ctx.alignments.facet('endpoints', left_kind=PROTOCOL, right_kind=SAP):
        if a.aligned and a.right_id == test.endpoint_id:
            return a.left
    return None


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _drift_issues(ctx: CrossDocContext, endpoint_type: str, code: str, severity: Severity) -> List[Issue]:
    issues = []
    for a in ctx.alignments.facet('endpoints', left_kind=PROTOCOL, right_kind=SAP, type=endpoint_type):
        if a.aligned or a.left is None:
            continue
        if a.right is not None:
            message = (f"{endpoint_type.capitalize()} endpoint drift: Protocol '{a.left.name}' "
                       f"vs SAP '{a.right.name}'")
        else:
            message = f"{endpoint_type.capitalize()} endpoint '{a.left.name}' is missing from the SAP"
        issues.append(make_issue(
            code, severity, IssueCategory.PROTOCOL_SAP, message,
            details=f"Similarity {a.score:.2f} is below the alignment threshold.",
            locations=[
                loc(PROTOCOL, 'ENDPOINTS', a.left_id, 'endpoints'),
                loc(SAP, 'ENDPOINTS', a.right_id, SAP_ENDPOINT_FIELDS[endpoint_type]),
            ],
            suggestions=[endpoint_sync_suggestion(a.left, a.right, endpoint_type)],
            data={
                'endpointType': endpoint_type,
                'protocolEndpointId': a.left_id,
                'sapEndpointId': a.right_id,
                'score': a.score,
            },
        ))
    return issues


@rule('PRIMARY_ENDPOINT_DRIFT', 'Primary endpoint drift', severity=Severity.CRITICAL,
      category=IssueCategory.PROTOCOL_SAP)
def check_primary_endpoint_drift(ctx: CrossDocContext) -> List[Issue]:
    """Every Protocol primary endpoint is restated in the SAP."""
    return _drift_issues(ctx, 'primary', 'PRIMARY_ENDPOINT_DRIFT', Severity.CRITICAL)


@rule('SECONDARY_ENDPOINT_DRIFT', 'Secondary endpoint drift', severity=Severity.WARNING,
      category=IssueCategory.PROTOCOL_SAP)
def check_secondary_endpoint_drift(ctx: CrossDocContext) -> List[Issue]:
    return _drift_issues(ctx, 'secondary', 'SECONDARY_ENDPOINT_DRIFT', Severity.WARNING)


@rule('TEST_MISMATCH', 'Statistical test vs endpoint type', severity=Severity.ERROR,
      category=IssueCategory.PROTOCOL_SAP)
def check_statistical_tests(ctx: CrossDocContext) -> List[Issue]:
    """Each SAP test suits the data type of the endpoint it analyses."""
    protocol, sap = ctx.bundle.protocol, ctx.bundle.sap
    if not protocol or not sap:
        return []
    issues = []
    for test in sap.statistical_tests:
        endpoint = resolve_tested_endpoint(ctx, test)
        if endpoint is None or not endpoint.data_type:
            continue
        if is_test_compatible(test.test, endpoint.data_type):
            continue
        suggestion = statistical_test_suggestion(test, endpoint.data_type)
        issues.append(make_issue(
            'TEST_MISMATCH', Severity.ERROR, IssueCategory.PROTOCOL_SAP,
            f"'{test.test}' is not suitable for {endpoint.data_type.replace('_', '-')} endpoint '{endpoint.name}'",
            locations=[
                loc(SAP, 'STATISTICAL_METHODS', test.endpoint_id, 'statisticalTests'),
                loc(PROTOCOL, 'ENDPOINTS', endpoint.id, 'endpoints'),
            ],
            suggestions=[suggestion] if suggestion else [],
            data={
                'testEndpointId': test.endpoint_id,
                'protocolEndpointId': endpoint.id,
                'dataType': endpoint.data_type,
                'test': test.test,
            },
        ))
    return issues


@rule('SAMPLE_SIZE_DRIVER', 'Sample size driver', severity=Severity.ERROR,
      category=IssueCategory.PROTOCOL_SAP)
def check_sample_size_driver(ctx: CrossDocContext) -> List[Issue]:
    protocol, sap = ctx.bundle.protocol, ctx.bundle.sap
    if not protocol or not sap or not (sap.sample_size_driver_endpoint or '').strip():
        return []
    driver = sap.sample_size_driver_endpoint.strip()
    primaries = protocol.endpoints_of_type('primary')
    if not primaries:
        return []

    primary_ids = {e.id for e in primaries}
    for a in ctx.alignments.facet('endpoints', left_kind=PROTOCOL, right_kind=SAP, type='primary'):
        if a.aligned and a.right_id:
            primary_ids.add(a.right_id)
    if driver in primary_ids:
        return []
    threshold = ctx.config.alignment_threshold
    if any(combined_similarity(driver, e.name) >= threshold for e in primaries):
        return []

    return [make_issue(
        'SAMPLE_SIZE_DRIVER_MISMATCH', Severity.ERROR, IssueCategory.PROTOCOL_SAP,
        f"SAP sample size is driven by '{driver}', which is not a Protocol primary endpoint",
        locations=[loc(SAP, 'SAMPLE_SIZE', field='sampleSizeDriverEndpoint'), loc(PROTOCOL, 'ENDPOINTS')],
        suggestions=[driver_suggestion(primaries[0], driver)],
        data={'driver': driver, 'protocolEndpointId': primaries[0].id},
    )]


@rule('ANALYSIS_POPULATIONS', 'Analysis population consistency', severity=Severity.WARNING,
      category=IssueCategory.PROTOCOL_SAP)
def check_analysis_populations(ctx: CrossDocContext) -> List[Issue]:
    issues = []
    for a in ctx.alignments.facet('populations', left_kind=PROTOCOL, right_kind=SAP):
        if a.unmatched_left:
            pop = a.left
            issues.append(make_issue(
                'ANALYSIS_POPULATION_MISSING_IN_SAP', Severity.WARNING, IssueCategory.PROTOCOL_SAP,
                f"Analysis population '{pop.abbreviation or pop.name}' is defined in the Protocol but not the SAP",
                locations=[loc(PROTOCOL, 'ANALYSIS_SETS', pop.id), loc(SAP, 'ANALYSIS_SETS')],
                suggestions=[population_append_suggestion(pop)],
                data={'protocolPopulationId': pop.id},
            ))
        elif a.unmatched_right:
            pop = a.right
            issues.append(make_issue(
                'ANALYSIS_POPULATION_MISSING_IN_PROTOCOL', Severity.INFO, IssueCategory.PROTOCOL_SAP,
                f"Analysis population '{pop.abbreviation or pop.name}' is defined in the SAP but not the Protocol",
                locations=[loc(SAP, 'ANALYSIS_SETS', pop.id), loc(PROTOCOL, 'ANALYSIS_SETS')],
                data={'sapPopulationId': pop.id},
            ))
    return issues


@rule('SAP_STRATEGIES', 'SAP multiplicity and missing data strategies', severity=Severity.WARNING,
      category=IssueCategory.PROTOCOL_SAP)
def check_sap_strategies(ctx: CrossDocContext) -> List[Issue]:
    protocol, sap = ctx.bundle.protocol, ctx.bundle.sap
    if not protocol or not sap:
        return []
    issues = []
    n_primary = max(len(protocol.endpoints_of_type('primary')), len(sap.primary_endpoints))
    if n_primary > 1 and not (sap.multiplicity_strategy or '').strip():
        issues.append(make_issue(
            'MULTIPLICITY_STRATEGY_MISSING', Severity.WARNING, IssueCategory.PROTOCOL_SAP,
            f"{n_primary} primary endpoints but no multiplicity adjustment in the SAP",
            locations=[loc(SAP, 'MULTIPLICITY', field='multiplicityStrategy')],
            suggestions=[advice('add_multiplicity', 'Describe the multiplicity control (e.g. hierarchical testing)')],
        ))
    if not (sap.missing_data_strategy or '').strip():
        issues.append(make_issue(
            'MISSING_DATA_STRATEGY_MISSING', Severity.INFO, IssueCategory.PROTOCOL_SAP,
            'SAP does not describe how missing data are handled',
            locations=[loc(SAP, 'MISSING_DATA', field='missingDataStrategy')],
        ))
    return issues


PROTOCOL_SAP_RULES = [
    check_primary_endpoint_drift,
    check_secondary_endpoint_drift,
    check_statistical_tests,
    check_sample_size_driver,
    check_analysis_populations,
    check_sap_strategies,
]
