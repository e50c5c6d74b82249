"""
Single-document structural rules.

Check that a document carries the sections the rest of the engine relies on.
Missing required content is an error; missing recommended content (exclusion
criteria, optional fields) is a warning.

Usage:
    from validation.structural_rules import validate_document

    result = validate_document(protocol)
    result.filter(code="PRIMARY_ENDPOINT_MISSING")
"""

import logging
import os
import re
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import yaml

from core.documents import DocumentKind
from core.errors import ConfigurationError
from core.issues import Issue, IssueCategory, IssueLocation, Severity
from .engine import DocumentContext, FunctionRule, RuleEngine, RuleRegistry, rule

logger = logging.getLogger(__name__)

_REQUIREMENTS_PATH = os.path.join(os.path.dirname(__file__), "structural_requirements.yaml")

# A dose needs an amount and a unit
DOSE_PATTERN = re.compile(r'\d+(?:\.\d+)?\s*(?:mg|mcg|µg|g|ml|iu)\b', re.IGNORECASE)


@lru_cache(maxsize=1)
def load_requirements(path: str = _REQUIREMENTS_PATH) -> Dict[str, Dict[str, Tuple[str, ...]]]:
    """Required/recommended fields keyed by section then document kind."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not load structural requirements from {path}", cause=e)
    return {
        section: {kind: tuple(fields or []) for kind, fields in (raw.get(section) or {}).items()}
        for section in ("required", "recommended")
    }


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _issue(code: str, severity: Severity, message: str, kind: DocumentKind,
           field: str = '', entity_id: str = '', **data) -> Issue:
    return Issue(
        code=code,
        severity=severity,
        category=IssueCategory.STRUCTURE,
        message=message,
        locations=[IssueLocation(document_type=kind.value, entity_id=entity_id, field=field)],
        data=data,
    )


def _field_check(ctx: DocumentContext, section: str, code: str, severity: Severity) -> List[Issue]:
    doc = ctx.document
    fields = load_requirements()[section].get(doc.KIND.value, ())
    values = doc.to_dict()
    label = 'Required' if section == 'required' else 'Recommended'
    return [
        _issue(code, severity, f"{label} field '{name}' is missing from {doc.KIND.value} {doc.id}",
               doc.KIND, field=name)
        for name in fields
        if _is_empty(values.get(name))
    ]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@rule('REQUIRED_FIELDS', 'Required fields', severity=Severity.ERROR, category=IssueCategory.STRUCTURE)
def check_required_fields(ctx: DocumentContext) -> List[Issue]:
    """Every required field for the document kind is present and non-empty."""
    return _field_check(ctx, 'required', 'STRUCTURE_REQUIRED_FIELD_MISSING', Severity.ERROR)


@rule('PRIMARY_ENDPOINT', 'Primary endpoint statement', severity=Severity.ERROR,
      category=IssueCategory.STRUCTURE)
def check_primary_endpoint(ctx: DocumentContext) -> List[Issue]:
    """Protocol and SAP each state a primary endpoint; Protocol primaries have a primary objective."""
    doc = ctx.document
    if doc.KIND == DocumentKind.PROTOCOL:
        primaries = doc.endpoints_of_type('primary')
        if not primaries:
            return [_issue('PRIMARY_ENDPOINT_MISSING', Severity.ERROR,
                           f"Protocol {doc.id} has no primary endpoint", doc.KIND, field='endpoints')]
        if not any(o.type == 'primary' for o in doc.objectives):
            return [_issue('PRIMARY_ENDPOINT_WITHOUT_OBJECTIVE', Severity.WARNING,
                           f"Protocol {doc.id} has a primary endpoint but no primary objective",
                           doc.KIND, field='objectives')]
    elif doc.KIND == DocumentKind.SAP and not doc.primary_endpoints:
        return [_issue('PRIMARY_ENDPOINT_MISSING', Severity.ERROR,
                       f"SAP {doc.id} has no primary endpoint", doc.KIND, field='primaryEndpoints')]
    return []


@rule('INCLUSION_CRITERIA', 'Inclusion criteria', severity=Severity.ERROR,
      category=IssueCategory.STRUCTURE)
def check_inclusion_criteria(ctx: DocumentContext) -> List[Issue]:
    doc = ctx.document
    if doc.KIND == DocumentKind.PROTOCOL and not any(c.strip() for c in doc.inclusion_criteria):
        return [_issue('INCLUSION_CRITERIA_MISSING', Severity.ERROR,
                       f"Protocol {doc.id} has no inclusion criteria", doc.KIND, field='inclusionCriteria')]
    return []


@rule('EXCLUSION_CRITERIA', 'Exclusion criteria', severity=Severity.WARNING,
      category=IssueCategory.STRUCTURE)
def check_exclusion_criteria(ctx: DocumentContext) -> List[Issue]:
    doc = ctx.document
    if doc.KIND == DocumentKind.PROTOCOL and not any(c.strip() for c in doc.exclusion_criteria):
        return [_issue('EXCLUSION_CRITERIA_MISSING', Severity.WARNING,
                       f"Protocol {doc.id} has no exclusion criteria", doc.KIND, field='exclusionCriteria')]
    return []


@rule('DOSE_REGIMEN', 'Dose regimen', severity=Severity.ERROR, category=IssueCategory.STRUCTURE)
def check_dose_regimen(ctx: DocumentContext) -> List[Issue]:
    """Protocol defines treatment arms, each with a numeric dose and unit."""
    doc = ctx.document
    if doc.KIND != DocumentKind.PROTOCOL:
        return []
    if not doc.arms:
        return [_issue('DOSE_SECTION_MISSING', Severity.ERROR,
                       f"Protocol {doc.id} defines no treatment arms", doc.KIND, field='arms')]
    issues = []
    for arm in doc.arms:
        if not DOSE_PATTERN.search(arm.dose or ''):
            issues.append(_issue(
                'DOSE_MISSING', Severity.ERROR,
                f"Arm '{arm.name or arm.id}' has no dose with amount and unit",
                doc.KIND, field=f"arms.{arm.id}.dose", entity_id=arm.id, armId=arm.id,
            ))
    return issues


@rule('RECOMMENDED_FIELDS', 'Recommended fields', severity=Severity.WARNING,
      category=IssueCategory.STRUCTURE)
def check_recommended_fields(ctx: DocumentContext) -> List[Issue]:
    return _field_check(ctx, 'recommended', 'STRUCTURE_RECOMMENDED_FIELD_MISSING', Severity.WARNING)


STRUCTURAL_RULES: List[FunctionRule] = [
    check_required_fields,
    check_primary_endpoint,
    check_inclusion_criteria,
    check_exclusion_criteria,
    check_dose_regimen,
    check_recommended_fields,
]


def create_structural_registry() -> RuleRegistry:
    registry = RuleRegistry()
    registry.register_all([r.clone() for r in STRUCTURAL_RULES])
    return registry


def validate_document(document, engine: Optional[RuleEngine] = None):
    """Run the structural rules over one document."""
    engine = engine or RuleEngine(create_structural_registry())
    return engine.run(DocumentContext(document))
