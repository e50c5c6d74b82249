"""
Typed document models for the clinical document bundle.

One dataclass per document kind (Investigator Brochure, Protocol, Informed
Consent, Statistical Analysis Plan, Clinical Study Report), each carrying only
the domain fields that cross-document checks need. ``to_dict()`` emits the
camelCase wire shape (every top-level field, including empty ones, so patch
paths can be checked against it) and ``from_dict()`` tolerates missing keys.

Documents are treated as immutable snapshots: the engine never mutates one in
place. The auto-fix engine produces new document values with ``from_dict``.

Usage:
    from core.documents import DocumentBundle, ProtocolDocument, SAPDocument

    bundle = DocumentBundle.of(ProtocolDocument.from_dict(p), SAPDocument.from_dict(s))
    bundle.kinds()   # [DocumentKind.PROTOCOL, DocumentKind.SAP]
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union


class DocumentKind(str, Enum):
    IB = 'IB'
    PROTOCOL = 'PROTOCOL'
    ICF = 'ICF'
    SAP = 'SAP'
    CSR = 'CSR'
    STUDY_FLOW = 'STUDY_FLOW'


# Canonical order used whenever the bundle is enumerated
BUNDLE_KINDS = (
    DocumentKind.IB,
    DocumentKind.PROTOCOL,
    DocumentKind.ICF,
    DocumentKind.SAP,
    DocumentKind.CSR,
)

ENDPOINT_DATA_TYPES = ('continuous', 'binary', 'time_to_event', 'ordinal', 'count')


def _list(data: Dict[str, Any], key: str) -> list:
    value = data.get(key)
    return list(value) if isinstance(value, list) else []


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass
class Objective:
    id: str
    type: str = 'primary'
    text: str = ''

    def to_dict(self) -> dict:
        return {'id': self.id, 'type': self.type, 'text': self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Objective':
        return cls(
            id=str(data.get('id', '')),
            type=data.get('type', 'primary') or 'primary',
            text=data.get('text') or data.get('description') or '',
        )


@dataclass
class DosingInfo:
    id: str
    dose: str = ''
    route: str = ''
    frequency: str = ''
    duration: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'dose': self.dose,
            'route': self.route,
            'frequency': self.frequency,
            'duration': self.duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DosingInfo':
        return cls(
            id=str(data.get('id', '')),
            dose=data.get('dose', '') or '',
            route=data.get('route', '') or '',
            frequency=data.get('frequency', '') or '',
            duration=data.get('duration'),
        )


@dataclass
class Endpoint:
    """Protocol endpoint. ``data_type`` drives statistical test compatibility."""
    id: str
    type: str = 'primary'
    name: str = ''
    description: str = ''
    data_type: Optional[str] = None
    variable: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'type': self.type,
            'name': self.name,
            'description': self.description,
            'dataType': self.data_type,
            'variable': self.variable,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Endpoint':
        return cls(
            id=str(data.get('id', '')),
            type=data.get('type', 'primary') or 'primary',
            name=data.get('name', '') or '',
            description=data.get('description', '') or '',
            data_type=data.get('dataType'),
            variable=data.get('variable'),
        )


@dataclass
class SapEndpoint:
    id: str
    name: str = ''
    description: str = ''
    variable: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'variable': self.variable,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SapEndpoint':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', '') or '',
            description=data.get('description', '') or '',
            variable=data.get('variable'),
        )


@dataclass
class TreatmentArm:
    id: str
    name: str = ''
    dose: Optional[str] = None
    route: Optional[str] = None
    frequency: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'dose': self.dose,
            'route': self.route,
            'frequency': self.frequency,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TreatmentArm':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', '') or '',
            dose=data.get('dose'),
            route=data.get('route'),
            frequency=data.get('frequency'),
            description=data.get('description'),
        )


@dataclass
class ScheduledVisit:
    """A visit as written in a Protocol or ICF schedule (not the derived flow)."""
    id: str
    name: str = ''
    day: Optional[int] = None
    week: Optional[int] = None
    procedures: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'day': self.day,
            'week': self.week,
            'procedures': list(self.procedures),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduledVisit':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', '') or '',
            day=data.get('day'),
            week=data.get('week'),
            procedures=[str(p) for p in _list(data, 'procedures')],
        )


@dataclass
class AnalysisPopulation:
    id: str
    name: str = ''
    abbreviation: str = ''
    description: str = ''

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'abbreviation': self.abbreviation,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisPopulation':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', '') or '',
            abbreviation=data.get('abbreviation', '') or '',
            description=data.get('description', '') or '',
        )


@dataclass
class ProcedureDescription:
    id: str
    name: str = ''
    description: str = ''
    invasive: bool = False

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'invasive': self.invasive,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcedureDescription':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', '') or '',
            description=data.get('description', '') or '',
            invasive=bool(data.get('invasive', False)),
        )


@dataclass
class StatisticalTest:
    endpoint_id: str
    test: str = ''
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {'endpointId': self.endpoint_id, 'test': self.test, 'description': self.description}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StatisticalTest':
        return cls(
            endpoint_id=str(data.get('endpointId', '')),
            test=data.get('test', '') or '',
            description=data.get('description'),
        )


@dataclass
class AssessmentSchedule:
    """SAP statement of the visits at which an endpoint is assessed."""
    endpoint_id: str
    visit_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {'endpointId': self.endpoint_id, 'visitIds': list(self.visit_ids)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AssessmentSchedule':
        return cls(
            endpoint_id=str(data.get('endpointId', '')),
            visit_ids=[str(v) for v in _list(data, 'visitIds')],
        )


@dataclass
class CsrEndpoint:
    id: str
    name: str = ''
    result: Optional[str] = None

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'result': self.result}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CsrEndpoint':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', '') or '',
            result=data.get('result'),
        )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class _DocumentMixin:
    """Shared behaviour: kind, schema fields, copy-with-changes."""

    KIND: DocumentKind

    @classmethod
    def schema_fields(cls) -> Tuple[str, ...]:
        """camelCase top-level keys a patch may target."""
        return tuple(cls(id='').to_dict().keys())

    @property
    def kind(self) -> DocumentKind:
        return self.KIND

    def ref(self) -> dict:
        return {'id': self.id, 'type': self.KIND.value, 'version': self.version}


@dataclass
class IBDocument(_DocumentMixin):
    KIND = DocumentKind.IB

    id: str
    version: Optional[str] = None
    objectives: List[Objective] = field(default_factory=list)
    mechanism_of_action: Optional[str] = None
    target_population: Optional[str] = None
    key_risk_profile: List[str] = field(default_factory=list)
    dosing_information: List[DosingInfo] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'version': self.version,
            'objectives': [o.to_dict() for o in self.objectives],
            'mechanismOfAction': self.mechanism_of_action,
            'targetPopulation': self.target_population,
            'keyRiskProfile': list(self.key_risk_profile),
            'dosingInformation': [d.to_dict() for d in self.dosing_information],
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IBDocument':
        return cls(
            id=str(data.get('id', '')),
            version=data.get('version'),
            objectives=[Objective.from_dict(o) for o in _list(data, 'objectives')],
            mechanism_of_action=data.get('mechanismOfAction'),
            target_population=data.get('targetPopulation'),
            key_risk_profile=[str(r) for r in _list(data, 'keyRiskProfile')],
            dosing_information=[DosingInfo.from_dict(d) for d in _list(data, 'dosingInformation')],
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class ProtocolDocument(_DocumentMixin):
    KIND = DocumentKind.PROTOCOL

    id: str
    version: Optional[str] = None
    objectives: List[Objective] = field(default_factory=list)
    endpoints: List[Endpoint] = field(default_factory=list)
    arms: List[TreatmentArm] = field(default_factory=list)
    visit_schedule: List[ScheduledVisit] = field(default_factory=list)
    inclusion_criteria: List[str] = field(default_factory=list)
    exclusion_criteria: List[str] = field(default_factory=list)
    analysis_populations: List[AnalysisPopulation] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def endpoints_of_type(self, endpoint_type: str) -> List[Endpoint]:
        return [e for e in self.endpoints if e.type == endpoint_type]

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'version': self.version,
            'objectives': [o.to_dict() for o in self.objectives],
            'endpoints': [e.to_dict() for e in self.endpoints],
            'arms': [a.to_dict() for a in self.arms],
            'visitSchedule': [v.to_dict() for v in self.visit_schedule],
            'inclusionCriteria': list(self.inclusion_criteria),
            'exclusionCriteria': list(self.exclusion_criteria),
            'analysisPopulations': [p.to_dict() for p in self.analysis_populations],
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProtocolDocument':
        return cls(
            id=str(data.get('id', '')),
            version=data.get('version'),
            objectives=[Objective.from_dict(o) for o in _list(data, 'objectives')],
            endpoints=[Endpoint.from_dict(e) for e in _list(data, 'endpoints')],
            arms=[TreatmentArm.from_dict(a) for a in _list(data, 'arms')],
            visit_schedule=[ScheduledVisit.from_dict(v) for v in _list(data, 'visitSchedule')],
            inclusion_criteria=[str(c) for c in _list(data, 'inclusionCriteria')],
            exclusion_criteria=[str(c) for c in _list(data, 'exclusionCriteria')],
            analysis_populations=[AnalysisPopulation.from_dict(p) for p in _list(data, 'analysisPopulations')],
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class ICFDocument(_DocumentMixin):
    KIND = DocumentKind.ICF

    id: str
    version: Optional[str] = None
    procedure_descriptions: List[ProcedureDescription] = field(default_factory=list)
    visit_burden: Optional[str] = None
    visit_schedule: List[ScheduledVisit] = field(default_factory=list)
    risks: List[str] = field(default_factory=list)
    benefits: List[str] = field(default_factory=list)
    treatment_descriptions: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'version': self.version,
            'procedureDescriptions': [p.to_dict() for p in self.procedure_descriptions],
            'visitBurden': self.visit_burden,
            'visitSchedule': [v.to_dict() for v in self.visit_schedule],
            'risks': list(self.risks),
            'benefits': list(self.benefits),
            'treatmentDescriptions': list(self.treatment_descriptions),
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ICFDocument':
        return cls(
            id=str(data.get('id', '')),
            version=data.get('version'),
            procedure_descriptions=[ProcedureDescription.from_dict(p) for p in _list(data, 'procedureDescriptions')],
            visit_burden=data.get('visitBurden'),
            visit_schedule=[ScheduledVisit.from_dict(v) for v in _list(data, 'visitSchedule')],
            risks=[str(r) for r in _list(data, 'risks')],
            benefits=[str(b) for b in _list(data, 'benefits')],
            treatment_descriptions=[str(t) for t in _list(data, 'treatmentDescriptions')],
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class SAPDocument(_DocumentMixin):
    KIND = DocumentKind.SAP

    id: str
    version: Optional[str] = None
    primary_endpoints: List[SapEndpoint] = field(default_factory=list)
    secondary_endpoints: List[SapEndpoint] = field(default_factory=list)
    statistical_tests: List[StatisticalTest] = field(default_factory=list)
    sample_size_driver_endpoint: Optional[str] = None
    analysis_populations: List[AnalysisPopulation] = field(default_factory=list)
    missing_data_strategy: Optional[str] = None
    multiplicity_strategy: Optional[str] = None
    assessment_schedule: List[AssessmentSchedule] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'version': self.version,
            'primaryEndpoints': [e.to_dict() for e in self.primary_endpoints],
            'secondaryEndpoints': [e.to_dict() for e in self.secondary_endpoints],
            'statisticalTests': [t.to_dict() for t in self.statistical_tests],
            'sampleSizeDriverEndpoint': self.sample_size_driver_endpoint,
            'analysisPopulations': [p.to_dict() for p in self.analysis_populations],
            'missingDataStrategy': self.missing_data_strategy,
            'multiplicityStrategy': self.multiplicity_strategy,
            'assessmentSchedule': [a.to_dict() for a in self.assessment_schedule],
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SAPDocument':
        return cls(
            id=str(data.get('id', '')),
            version=data.get('version'),
            primary_endpoints=[SapEndpoint.from_dict(e) for e in _list(data, 'primaryEndpoints')],
            secondary_endpoints=[SapEndpoint.from_dict(e) for e in _list(data, 'secondaryEndpoints')],
            statistical_tests=[StatisticalTest.from_dict(t) for t in _list(data, 'statisticalTests')],
            sample_size_driver_endpoint=data.get('sampleSizeDriverEndpoint'),
            analysis_populations=[AnalysisPopulation.from_dict(p) for p in _list(data, 'analysisPopulations')],
            missing_data_strategy=data.get('missingDataStrategy'),
            multiplicity_strategy=data.get('multiplicityStrategy'),
            assessment_schedule=[AssessmentSchedule.from_dict(a) for a in _list(data, 'assessmentSchedule')],
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class CSRDocument(_DocumentMixin):
    KIND = DocumentKind.CSR

    id: str
    version: Optional[str] = None
    actual_methods: List[str] = field(default_factory=list)
    analysis_sets: List[AnalysisPopulation] = field(default_factory=list)
    reported_primary_endpoints: List[CsrEndpoint] = field(default_factory=list)
    reported_secondary_endpoints: List[CsrEndpoint] = field(default_factory=list)
    deviations_overview: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'version': self.version,
            'actualMethods': list(self.actual_methods),
            'analysisSets': [p.to_dict() for p in self.analysis_sets],
            'reportedPrimaryEndpoints': [e.to_dict() for e in self.reported_primary_endpoints],
            'reportedSecondaryEndpoints': [e.to_dict() for e in self.reported_secondary_endpoints],
            'deviationsOverview': list(self.deviations_overview),
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CSRDocument':
        return cls(
            id=str(data.get('id', '')),
            version=data.get('version'),
            actual_methods=[str(m) for m in _list(data, 'actualMethods')],
            analysis_sets=[AnalysisPopulation.from_dict(p) for p in _list(data, 'analysisSets')],
            reported_primary_endpoints=[CsrEndpoint.from_dict(e) for e in _list(data, 'reportedPrimaryEndpoints')],
            reported_secondary_endpoints=[CsrEndpoint.from_dict(e) for e in _list(data, 'reportedSecondaryEndpoints')],
            deviations_overview=[str(d) for d in _list(data, 'deviationsOverview')],
            metadata=dict(data.get('metadata') or {}),
        )


Document = Union[IBDocument, ProtocolDocument, ICFDocument, SAPDocument, CSRDocument]

DOCUMENT_CLASSES = {
    DocumentKind.IB: IBDocument,
    DocumentKind.PROTOCOL: ProtocolDocument,
    DocumentKind.ICF: ICFDocument,
    DocumentKind.SAP: SAPDocument,
    DocumentKind.CSR: CSRDocument,
}


def document_from_dict(kind: Union[str, DocumentKind], data: Dict[str, Any]) -> Document:
    """Build the typed document for ``kind`` from its camelCase dict."""
    kind = DocumentKind(kind)
    if kind not in DOCUMENT_CLASSES:
        raise ValueError(f"No document model for kind {kind.value}")
    return DOCUMENT_CLASSES[kind].from_dict(data)


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------

class DocumentBundle:
    """
    Partial mapping from document kind to document.

    Presence is enumerable via ``kinds()`` instead of being inferred from null
    checks. The bundle is never mutated by the engine; ``with_document``
    returns a new bundle.
    """

    def __init__(self, documents: Optional[Dict[DocumentKind, Document]] = None):
        self._documents: Dict[DocumentKind, Document] = {}
        for kind, doc in (documents or {}).items():
            kind = DocumentKind(kind)
            if doc is None:
                continue
            if doc.KIND != kind:
                raise ValueError(f"Document {doc.id!r} is a {doc.KIND.value}, not a {kind.value}")
            self._documents[kind] = doc

    @classmethod
    def of(cls, *documents: Document) -> 'DocumentBundle':
        return cls({doc.KIND: doc for doc in documents if doc is not None})

    def get(self, kind: Union[str, DocumentKind]) -> Optional[Document]:
        return self._documents.get(DocumentKind(kind))

    @property
    def ib(self) -> Optional[IBDocument]:
        return self._documents.get(DocumentKind.IB)

    @property
    def protocol(self) -> Optional[ProtocolDocument]:
        return self._documents.get(DocumentKind.PROTOCOL)

    @property
    def icf(self) -> Optional[ICFDocument]:
        return self._documents.get(DocumentKind.ICF)

    @property
    def sap(self) -> Optional[SAPDocument]:
        return self._documents.get(DocumentKind.SAP)

    @property
    def csr(self) -> Optional[CSRDocument]:
        return self._documents.get(DocumentKind.CSR)

    def kinds(self) -> List[DocumentKind]:
        return [k for k in BUNDLE_KINDS if k in self._documents]

    def documents(self) -> List[Document]:
        return [self._documents[k] for k in self.kinds()]

    def has_all(self, *kinds: DocumentKind) -> bool:
        return all(k in self._documents for k in kinds)

    def with_document(self, document: Document) -> 'DocumentBundle':
        docs = dict(self._documents)
        docs[document.KIND] = document
        return DocumentBundle(docs)

    def document_ids(self) -> Dict[str, str]:
        return {k.value: self._documents[k].id for k in self.kinds()}

    def __contains__(self, kind) -> bool:
        try:
            return DocumentKind(kind) in self._documents
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self) -> Iterator[Document]:
        return iter(self.documents())

    def __eq__(self, other) -> bool:
        if not isinstance(other, DocumentBundle):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        return {k.value: self._documents[k].to_dict() for k in self.kinds()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentBundle':
        """Build from ``{"PROTOCOL": {...}, "SAP": {...}}``; lower-case keys accepted."""
        docs = {}
        for key, value in (data or {}).items():
            if value is None:
                continue
            kind = DocumentKind(str(key).upper())
            docs[kind] = document_from_dict(kind, value)
        return cls(docs)
