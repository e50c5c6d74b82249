"""
Study Flow data model: visits, procedures, endpoint maps and the
visit x procedure matrix.

Pure data. ``StudyFlow.total_duration`` and ``StudyFlow.top_matrix`` are
derived from the current visits/procedures so they can never drift from them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class VisitType(str, Enum):
    SCREENING = 'screening'
    BASELINE = 'baseline'
    TREATMENT = 'treatment'
    END_OF_TREATMENT = 'end_of_treatment'
    FOLLOW_UP = 'follow_up'
    UNSCHEDULED = 'unscheduled'
    UNKNOWN = 'unknown'


TERMINAL_VISIT_TYPES = (VisitType.END_OF_TREATMENT, VisitType.FOLLOW_UP)


class ProcedureCategory(str, Enum):
    EFFICACY = 'efficacy'
    SAFETY = 'safety'
    LABS = 'labs'
    PK = 'pk'
    PD = 'pd'
    QUESTIONNAIRE = 'questionnaire'
    DEVICE = 'device'
    VITAL_SIGNS = 'vital_signs'
    PHYSICAL_EXAM = 'physical_exam'
    IMAGING = 'imaging'
    ECG = 'ecg'
    ADVERSE_EVENTS = 'adverse_events'
    CONCOMITANT_MEDS = 'concomitant_meds'
    OTHER = 'other'


def _visit_type(value: Any) -> VisitType:
    try:
        return VisitType(value)
    except ValueError:
        return VisitType.UNKNOWN


def _procedure_category(value: Any) -> ProcedureCategory:
    try:
        return ProcedureCategory(value)
    except ValueError:
        return ProcedureCategory.OTHER


@dataclass
class VisitWindow:
    minus: int = 0
    plus: int = 0
    unit: str = 'days'

    @property
    def width(self) -> int:
        return self.minus + self.plus

    def to_dict(self) -> dict:
        return {'minus': self.minus, 'plus': self.plus, 'unit': self.unit}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'VisitWindow':
        data = data or {}
        return cls(
            minus=int(data.get('minus', 0) or 0),
            plus=int(data.get('plus', 0) or 0),
            unit=data.get('unit', 'days') or 'days',
        )


@dataclass
class Visit:
    id: str
    name: str
    day: int = 0
    type: VisitType = VisitType.UNKNOWN
    procedures: List[str] = field(default_factory=list)
    required: bool = True
    window: VisitWindow = field(default_factory=VisitWindow)
    cycle: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def inferred(self) -> bool:
        return bool(self.metadata.get('inferred'))

    def to_dict(self) -> dict:
        d = {
            'id': self.id,
            'name': self.name,
            'day': self.day,
            'type': self.type.value,
            'procedures': list(self.procedures),
            'required': self.required,
            'window': self.window.to_dict(),
            'metadata': dict(self.metadata),
        }
        if self.cycle is not None:
            d['cycle'] = self.cycle
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Visit':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', '') or '',
            day=int(data.get('day', 0) or 0),
            type=_visit_type(data.get('type')),
            procedures=[str(p) for p in data.get('procedures', []) or []],
            required=bool(data.get('required', True)),
            window=VisitWindow.from_dict(data.get('window')),
            cycle=data.get('cycle'),
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class Procedure:
    id: str
    name: str
    category: ProcedureCategory = ProcedureCategory.OTHER
    required: bool = False
    linked_endpoints: List[str] = field(default_factory=list)
    standard_code: Optional[Dict[str, str]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def invasive(self) -> bool:
        return bool(self.metadata.get('invasive'))

    def to_dict(self) -> dict:
        d = {
            'id': self.id,
            'name': self.name,
            'category': self.category.value,
            'required': self.required,
            'linkedEndpoints': list(self.linked_endpoints),
            'metadata': dict(self.metadata),
        }
        if self.standard_code:
            d['standardCode'] = dict(self.standard_code)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Procedure':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', '') or '',
            category=_procedure_category(data.get('category')),
            required=bool(data.get('required', False)),
            linked_endpoints=[str(e) for e in data.get('linkedEndpoints', []) or []],
            standard_code=data.get('standardCode'),
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class NormalizedVisit:
    """Result of normalizing one free-text visit label."""
    original_name: str
    normalized_name: str
    day: int
    type: VisitType
    confidence: float

    def to_dict(self) -> dict:
        return {
            'originalName': self.original_name,
            'normalizedName': self.normalized_name,
            'day': self.day,
            'type': self.type.value,
            'confidence': self.confidence,
        }


@dataclass
class EndpointTiming:
    baseline: bool = False
    treatment: bool = False
    follow_up: bool = False

    def phases(self) -> List[str]:
        return [name for name, on in (
            ('baseline', self.baseline),
            ('treatment', self.treatment),
            ('follow_up', self.follow_up),
        ) if on]

    def to_dict(self) -> dict:
        return {'baseline': self.baseline, 'treatment': self.treatment, 'followUp': self.follow_up}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'EndpointTiming':
        data = data or {}
        return cls(
            baseline=bool(data.get('baseline', False)),
            treatment=bool(data.get('treatment', False)),
            follow_up=bool(data.get('followUp', False)),
        )


@dataclass
class EndpointProcedureMap:
    endpoint_id: str
    endpoint_name: str
    endpoint_type: str
    required_procedures: List[str] = field(default_factory=list)
    recommended_procedures: List[str] = field(default_factory=list)
    timing: EndpointTiming = field(default_factory=EndpointTiming)

    @property
    def all_procedures(self) -> List[str]:
        return list(self.required_procedures) + [
            p for p in self.recommended_procedures if p not in self.required_procedures
        ]

    def to_dict(self) -> dict:
        return {
            'endpointId': self.endpoint_id,
            'endpointName': self.endpoint_name,
            'endpointType': self.endpoint_type,
            'requiredProcedures': list(self.required_procedures),
            'recommendedProcedures': list(self.recommended_procedures),
            'timing': self.timing.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EndpointProcedureMap':
        return cls(
            endpoint_id=str(data.get('endpointId', '')),
            endpoint_name=data.get('endpointName', '') or '',
            endpoint_type=data.get('endpointType', 'secondary') or 'secondary',
            required_procedures=list(data.get('requiredProcedures', []) or []),
            recommended_procedures=list(data.get('recommendedProcedures', []) or []),
            timing=EndpointTiming.from_dict(data.get('timing')),
        )


@dataclass
class TopMatrix:
    """Visit x procedure boolean matrix, keyed by visit id then procedure id."""
    visits: List[Visit] = field(default_factory=list)
    procedures: List[Procedure] = field(default_factory=list)
    matrix: Dict[str, Dict[str, bool]] = field(default_factory=dict)

    def cell(self, visit_id: str, procedure_id: str) -> bool:
        return self.matrix.get(visit_id, {}).get(procedure_id, False)

    def to_dict(self) -> dict:
        return {
            'visits': [{'id': v.id, 'name': v.name, 'day': v.day, 'type': v.type.value} for v in self.visits],
            'procedures': [{'id': p.id, 'name': p.name, 'category': p.category.value} for p in self.procedures],
            'matrix': {vid: dict(row) for vid, row in self.matrix.items()},
        }


@dataclass
class Cycle:
    number: int
    length_days: int
    start_day: int
    visit_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'number': self.number,
            'lengthDays': self.length_days,
            'startDay': self.start_day,
            'visitIds': list(self.visit_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Cycle':
        return cls(
            number=int(data.get('number', 0)),
            length_days=int(data.get('lengthDays', 0)),
            start_day=int(data.get('startDay', 0)),
            visit_ids=list(data.get('visitIds', []) or []),
        )


@dataclass
class StudyFlow:
    id: str
    study_id: str = ''
    visits: List[Visit] = field(default_factory=list)
    procedures: List[Procedure] = field(default_factory=list)
    cycles: List[Cycle] = field(default_factory=list)
    endpoint_maps: List[EndpointProcedureMap] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    KIND = 'STUDY_FLOW'

    def __post_init__(self):
        # Stable sort keeps input order among visits on the same day
        self.visits = sorted(self.visits, key=lambda v: v.day)

    @property
    def total_duration(self) -> int:
        return max((v.day for v in self.visits), default=0)

    @property
    def top_matrix(self) -> TopMatrix:
        from .top_matrix import build_top_matrix
        return build_top_matrix(self.visits, self.procedures)

    def visit(self, visit_id: str) -> Optional[Visit]:
        return next((v for v in self.visits if v.id == visit_id), None)

    def procedure(self, procedure_id: str) -> Optional[Procedure]:
        return next((p for p in self.procedures if p.id == procedure_id), None)

    def visits_of_type(self, *types: VisitType) -> List[Visit]:
        return [v for v in self.visits if v.type in types]

    @classmethod
    def schema_fields(cls):
        return ('id', 'studyId', 'visits', 'procedures', 'cycles', 'endpointMaps', 'metadata')

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'studyId': self.study_id,
            'visits': [v.to_dict() for v in self.visits],
            'procedures': [p.to_dict() for p in self.procedures],
            'cycles': [c.to_dict() for c in self.cycles],
            'endpointMaps': [m.to_dict() for m in self.endpoint_maps],
            'metadata': dict(self.metadata),
            'totalDuration': self.total_duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StudyFlow':
        return cls(
            id=str(data.get('id', '')),
            study_id=data.get('studyId', '') or '',
            visits=[Visit.from_dict(v) for v in data.get('visits', []) or []],
            procedures=[Procedure.from_dict(p) for p in data.get('procedures', []) or []],
            cycles=[Cycle.from_dict(c) for c in data.get('cycles', []) or []],
            endpoint_maps=[EndpointProcedureMap.from_dict(m) for m in data.get('endpointMaps', []) or []],
            metadata=dict(data.get('metadata') or {}),
        )
