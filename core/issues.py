"""Issue, Suggestion and Patch models shared by rules and the auto-fix engine.

Issues are plain values: they reference documents only by kind and entity id,
and can be round-tripped through ``to_dict``/``from_dict`` so that a caller
can hand back a stored issue list to the auto-fix engine.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Severity(str, Enum):
    CRITICAL = 'critical'
    ERROR = 'error'
    WARNING = 'warning'
    INFO = 'info'

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 3,
    Severity.ERROR: 2,
    Severity.WARNING: 1,
    Severity.INFO: 0,
}


class IssueCategory(str, Enum):
    IB_PROTOCOL = 'IB_PROTOCOL'
    PROTOCOL_ICF = 'PROTOCOL_ICF'
    PROTOCOL_SAP = 'PROTOCOL_SAP'
    PROTOCOL_CSR = 'PROTOCOL_CSR'
    SAP_CSR = 'SAP_CSR'
    GLOBAL = 'GLOBAL'
    STRUCTURE = 'STRUCTURE'
    STUDY_FLOW = 'STUDY_FLOW'


class PatchOperation(str, Enum):
    SET = 'set'
    APPEND = 'append'
    REMOVE = 'remove'


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

@dataclass
class IssueLocation:
    """Where an issue was found: document kind plus optional section/entity/field."""
    document_type: str
    section_id: str = ''
    entity_id: str = ''
    field: str = ''

    def to_dict(self) -> dict:
        d = {'documentType': self.document_type}
        if self.section_id:
            d['sectionId'] = self.section_id
        if self.entity_id:
            d['entityId'] = self.entity_id
        if self.field:
            d['field'] = self.field
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IssueLocation':
        return cls(
            document_type=str(data.get('documentType', '')),
            section_id=data.get('sectionId', '') or '',
            entity_id=data.get('entityId', '') or '',
            field=data.get('field', '') or '',
        )


# ---------------------------------------------------------------------------
# Patches and suggestions
# ---------------------------------------------------------------------------

@dataclass
class Patch:
    """A machine-applicable edit to one field of one document.

    ``field`` is a dotted path. Dict keys are used as-is; list segments are
    resolved by entity id (``id``, then ``endpointId``) or by numeric index,
    e.g. ``primaryEndpoints.sap_ep_1.name`` or ``arms``.
    """
    target_document: str
    field: str
    operation: PatchOperation = PatchOperation.SET
    value: Any = None
    old_value: Any = None
    source_document: Optional[str] = None
    reason: str = ''

    def entry_identity(self) -> str:
        """Identity of the list entry an append/remove touches."""
        value = self.value
        if isinstance(value, dict):
            for key in ('id', 'endpointId'):
                if value.get(key):
                    return str(value[key])
            return json.dumps(value, sort_keys=True, default=str)
        return json.dumps(value, sort_keys=True, default=str)

    @property
    def conflict_key(self) -> Tuple[str, ...]:
        """Patches sharing this key compete; distinct list entries never do."""
        if self.operation == PatchOperation.SET:
            return (self.target_document, self.field)
        return (self.target_document, self.field, self.operation.value, self.entry_identity())

    def same_effect_as(self, other: 'Patch') -> bool:
        return (
            self.conflict_key == other.conflict_key
            and self.operation == other.operation
            and json.dumps(self.value, sort_keys=True, default=str)
            == json.dumps(other.value, sort_keys=True, default=str)
        )

    def to_dict(self) -> dict:
        d = {
            'targetDocument': self.target_document,
            'field': self.field,
            'operation': self.operation.value,
            'value': self.value,
        }
        if self.old_value is not None:
            d['oldValue'] = self.old_value
        if self.source_document:
            d['sourceDocument'] = self.source_document
        if self.reason:
            d['reason'] = self.reason
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Patch':
        return cls(
            target_document=str(data.get('targetDocument', '')),
            field=str(data.get('field', '')),
            operation=PatchOperation(data.get('operation', 'set')),
            value=data.get('value'),
            old_value=data.get('oldValue'),
            source_document=data.get('sourceDocument'),
            reason=data.get('reason', '') or '',
        )


@dataclass
class Suggestion:
    """A proposed fix for an issue, made of one or more patches."""
    id: str
    label: str
    auto_fixable: bool = False
    patches: List[Patch] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'label': self.label,
            'autoFixable': self.auto_fixable,
            'patches': [p.to_dict() for p in self.patches],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Suggestion':
        return cls(
            id=str(data.get('id', '')),
            label=data.get('label', '') or '',
            auto_fixable=bool(data.get('autoFixable', False)),
            patches=[Patch.from_dict(p) for p in data.get('patches', []) or []],
        )


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------

@dataclass
class Issue:
    """A typed, severity-ranked finding produced by a rule.

    ``data`` carries the entity references a fix needs (e.g. which Protocol
    and SAP endpoint ids an alignment paired) so suggestions can be
    re-derived for issues that arrive without them.
    """
    code: str
    severity: Severity
    category: IssueCategory
    message: str
    details: str = ''
    locations: List[IssueLocation] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def auto_fixable_suggestions(self) -> List[Suggestion]:
        return [s for s in self.suggestions if s.auto_fixable and s.patches]

    def to_dict(self) -> dict:
        d = {
            'code': self.code,
            'severity': self.severity.value,
            'category': self.category.value,
            'message': self.message,
            'locations': [loc.to_dict() for loc in self.locations],
        }
        if self.details:
            d['details'] = self.details
        if self.suggestions:
            d['suggestions'] = [s.to_dict() for s in self.suggestions]
        if self.data:
            d['data'] = self.data
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Issue':
        return cls(
            code=str(data['code']),
            severity=Severity(data.get('severity', 'info')),
            category=IssueCategory(data.get('category', 'GLOBAL')),
            message=data.get('message', '') or '',
            details=data.get('details', '') or '',
            locations=[IssueLocation.from_dict(loc) for loc in data.get('locations', []) or []],
            suggestions=[Suggestion.from_dict(s) for s in data.get('suggestions', []) or []],
            data=dict(data.get('data', {}) or {}),
        )


def sort_issues(issues: List[Issue]) -> List[Issue]:
    """Most severe first; stable within a severity."""
    return sorted(issues, key=lambda i: -i.severity.rank)
