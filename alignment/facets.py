"""
Facet scorers and aligners.

One function per facet pairs the entities of two documents:

    objectives   IB objectives         <-> Protocol objectives (per type)
    endpoints    Protocol endpoints    <-> SAP primary/secondary endpoints
                 Protocol endpoints    <-> CSR reported endpoints
    doses        IB dosing information <-> Protocol arms
    populations  Protocol populations  <-> SAP populations / CSR analysis sets
    visits       Protocol schedule     <-> ICF schedule
"""

import re
from typing import List, Optional, Tuple

from core.documents import (
    CSRDocument,
    DocumentKind,
    IBDocument,
    ICFDocument,
    ProtocolDocument,
    SAPDocument,
)
from .base import DEFAULT_THRESHOLD, Alignment, align
from .similarity import combined_similarity, normalize_text

OBJECTIVE_TYPES = ('primary', 'secondary', 'exploratory')

ENDPOINT_NAME_WEIGHT = 0.6
ENDPOINT_DESCRIPTION_WEIGHT = 0.4

DOSE_WEIGHT = 0.5
ROUTE_WEIGHT = 0.3
FREQUENCY_WEIGHT = 0.2

_MASS_TO_MG = {'mg': 1.0, 'g': 1000.0, 'mcg': 0.001, 'ug': 0.001}

_UNIT_ALIASES = {
    'milligram': 'mg', 'milligrams': 'mg', 'mg': 'mg',
    'gram': 'g', 'grams': 'g', 'g': 'g',
    'microgram': 'mcg', 'micrograms': 'mcg', 'mcg': 'mcg', 'µg': 'mcg', 'ug': 'mcg',
    'milliliter': 'ml', 'milliliters': 'ml', 'ml': 'ml',
    'iu': 'iu', 'unit': 'iu', 'units': 'iu',
}

_FREQUENCY_SYNONYMS = {
    'qd': 'once daily', 'od': 'once daily', 'once a day': 'once daily', 'daily': 'once daily',
    'bid': 'twice daily', 'twice a day': 'twice daily',
    'tid': 'three times daily', 'three times a day': 'three times daily',
    'qw': 'once weekly', 'weekly': 'once weekly', 'once a week': 'once weekly',
}

_ROUTE_SYNONYMS = {
    'po': 'oral', 'orally': 'oral', 'by mouth': 'oral',
    'iv': 'intravenous', 'intravenously': 'intravenous',
    'sc': 'subcutaneous', 'sq': 'subcutaneous', 'subcutaneously': 'subcutaneous',
}

_DOSE_RE = re.compile(r'(\d+(?:\.\d+)?)\s*(µg|[a-z]+)', re.IGNORECASE)


# =============================================================================
# Scorers
# =============================================================================

def objective_score(left, right) -> float:
    return combined_similarity(left.text, right.text)


def endpoint_score(left, right) -> float:
    """0.6 x name + 0.4 x description; name only when neither has a description."""
    name = combined_similarity(left.name, right.name)
    if not normalize_text(left.description) and not normalize_text(right.description):
        return name
    description = combined_similarity(left.description, right.description)
    return ENDPOINT_NAME_WEIGHT * name + ENDPOINT_DESCRIPTION_WEIGHT * description


def endpoint_name_score(left, right) -> float:
    return combined_similarity(left.name, right.name)


def parse_dose(dose: Optional[str]) -> Optional[Tuple[float, str]]:
    """(amount, canonical unit) from a dose string like '10 mg', or None."""
    match = _DOSE_RE.search((dose or '').replace(',', ''))
    if not match:
        return None
    unit = _UNIT_ALIASES.get(match.group(2).lower())
    if unit is None:
        return None
    return float(match.group(1)), unit


def compare_doses(dose1: Optional[str], dose2: Optional[str]) -> float:
    """
    Dose agreement in [0, 1].

    Mass units are converted to mg first. Equal amounts score 1.0, amounts
    within 10% score 0.9, anything else (including incomparable units) 0.0.
    Unparseable doses fall back to text similarity.
    """
    parsed1, parsed2 = parse_dose(dose1), parse_dose(dose2)
    if parsed1 is None or parsed2 is None:
        return combined_similarity(dose1, dose2)

    (amount1, unit1), (amount2, unit2) = parsed1, parsed2
    if unit1 in _MASS_TO_MG and unit2 in _MASS_TO_MG:
        amount1 *= _MASS_TO_MG[unit1]
        amount2 *= _MASS_TO_MG[unit2]
    elif unit1 != unit2:
        return 0.0

    if amount1 == amount2:
        return 1.0
    if max(amount1, amount2) > 0 and abs(amount1 - amount2) / max(amount1, amount2) < 0.1:
        return 0.9
    return 0.0


def _canonical(value: Optional[str], synonyms: dict) -> str:
    text = normalize_text(value)
    return synonyms.get(text, text)


def compare_routes(route1: Optional[str], route2: Optional[str]) -> float:
    a, b = _canonical(route1, _ROUTE_SYNONYMS), _canonical(route2, _ROUTE_SYNONYMS)
    if a and a == b:
        return 1.0
    return combined_similarity(a, b)


def compare_frequencies(freq1: Optional[str], freq2: Optional[str]) -> float:
    a, b = _canonical(freq1, _FREQUENCY_SYNONYMS), _canonical(freq2, _FREQUENCY_SYNONYMS)
    if a and a == b:
        return 1.0
    return combined_similarity(a, b)


def dose_score(ib_dose, arm) -> float:
    """
    0.5 x dose + 0.3 x route + 0.2 x frequency, over the fields both sides state.

    When both sides state a dose and the amounts disagree, the pair scores 0
    regardless of route and frequency.
    """
    score = 0.0
    if ib_dose.dose and arm.dose:
        dose_part = compare_doses(ib_dose.dose, arm.dose)
        if dose_part == 0.0:
            return 0.0
        score += DOSE_WEIGHT * dose_part
    if ib_dose.route and arm.route:
        score += ROUTE_WEIGHT * compare_routes(ib_dose.route, arm.route)
    if ib_dose.frequency and arm.frequency:
        score += FREQUENCY_WEIGHT * compare_frequencies(ib_dose.frequency, arm.frequency)
    return score


def population_score(left, right) -> float:
    if left.abbreviation and right.abbreviation \
            and left.abbreviation.strip().upper() == right.abbreviation.strip().upper():
        return 1.0
    return combined_similarity(left.name, right.name)


def visit_score(left, right) -> float:
    if left.day is not None and right.day is not None and left.day == right.day:
        return 1.0
    return combined_similarity(left.name, right.name)


# =============================================================================
# Facet aligners
# =============================================================================

def align_objectives(ib: IBDocument, protocol: ProtocolDocument,
                     threshold: float = DEFAULT_THRESHOLD) -> List[Alignment]:
    results = []
    for objective_type in OBJECTIVE_TYPES:
        lefts = [o for o in ib.objectives if o.type == objective_type]
        rights = [o for o in protocol.objectives if o.type == objective_type]
        results.extend(align(
            lefts, rights, objective_score,
            threshold=threshold, keep_below_threshold=True,
            facet='objectives', type=objective_type,
            left_kind=DocumentKind.IB.value, right_kind=DocumentKind.PROTOCOL.value,
        ))
    return results


def align_sap_endpoints(protocol: ProtocolDocument, sap: SAPDocument,
                        threshold: float = DEFAULT_THRESHOLD) -> List[Alignment]:
    results = []
    for endpoint_type, rights in (('primary', sap.primary_endpoints),
                                  ('secondary', sap.secondary_endpoints)):
        results.extend(align(
            protocol.endpoints_of_type(endpoint_type), rights, endpoint_score,
            threshold=threshold, keep_below_threshold=True,
            facet='endpoints', type=endpoint_type,
            left_kind=DocumentKind.PROTOCOL.value, right_kind=DocumentKind.SAP.value,
        ))
    return results


def align_csr_endpoints(protocol: ProtocolDocument, csr: CSRDocument,
                        threshold: float = DEFAULT_THRESHOLD) -> List[Alignment]:
    results = []
    for endpoint_type, rights in (('primary', csr.reported_primary_endpoints),
                                  ('secondary', csr.reported_secondary_endpoints)):
        results.extend(align(
            protocol.endpoints_of_type(endpoint_type), rights, endpoint_name_score,
            threshold=threshold, keep_below_threshold=True,
            facet='endpoints', type=endpoint_type,
            left_kind=DocumentKind.PROTOCOL.value, right_kind=DocumentKind.CSR.value,
        ))
    return results


def align_doses(ib: IBDocument, protocol: ProtocolDocument,
                threshold: float = DEFAULT_THRESHOLD) -> List[Alignment]:
    return align(
        ib.dosing_information, protocol.arms, dose_score,
        threshold=threshold, facet='doses',
        left_kind=DocumentKind.IB.value, right_kind=DocumentKind.PROTOCOL.value,
    )


def align_sap_populations(protocol: ProtocolDocument, sap: SAPDocument,
                          threshold: float = DEFAULT_THRESHOLD) -> List[Alignment]:
    return align(
        protocol.analysis_populations, sap.analysis_populations, population_score,
        threshold=threshold, facet='populations',
        left_kind=DocumentKind.PROTOCOL.value, right_kind=DocumentKind.SAP.value,
    )


def align_csr_populations(protocol: ProtocolDocument, csr: CSRDocument,
                          threshold: float = DEFAULT_THRESHOLD) -> List[Alignment]:
    return align(
        protocol.analysis_populations, csr.analysis_sets, population_score,
        threshold=threshold, facet='populations',
        left_kind=DocumentKind.PROTOCOL.value, right_kind=DocumentKind.CSR.value,
    )


def align_visits(protocol: ProtocolDocument, icf: ICFDocument,
                 threshold: float = DEFAULT_THRESHOLD) -> List[Alignment]:
    return align(
        protocol.visit_schedule, icf.visit_schedule, visit_score,
        threshold=threshold, facet='visits',
        left_kind=DocumentKind.PROTOCOL.value, right_kind=DocumentKind.ICF.value,
    )
