"""
Study Flow inference: visits, procedures, endpoint timing and the
visit x procedure matrix derived from a protocol.
"""

from .builder import build_study_flow
from .endpoint_procedure_map import create_endpoint_procedure_maps
from .models import (
    Cycle,
    EndpointProcedureMap,
    EndpointTiming,
    NormalizedVisit,
    Procedure,
    ProcedureCategory,
    StudyFlow,
    TopMatrix,
    Visit,
    VisitType,
    VisitWindow,
)
from .procedure_inference import infer_procedures_from_endpoints
from .top_matrix import build_top_matrix
from .visit_inference import infer_missing_visits
from .visit_normalizer import normalize_visits, to_visits

__all__ = [
    'build_study_flow',
    'build_top_matrix',
    'create_endpoint_procedure_maps',
    'infer_missing_visits',
    'infer_procedures_from_endpoints',
    'normalize_visits',
    'to_visits',
    'Cycle',
    'EndpointProcedureMap',
    'EndpointTiming',
    'NormalizedVisit',
    'Procedure',
    'ProcedureCategory',
    'StudyFlow',
    'TopMatrix',
    'Visit',
    'VisitType',
    'VisitWindow',
]
