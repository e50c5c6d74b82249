"""
Cross-document consistency rules.

Rules are grouped by document pair:

    ib_protocol             IB <-> Protocol (objectives, population, doses)
    protocol_sap            Protocol <-> SAP (endpoints, tests, populations)
    protocol_icf            Protocol <-> ICF (visits, risks, treatments)
    protocol_csr            Protocol/SAP <-> CSR (methods, endpoints, sets)
    global_rules            bundle-wide coherence
    studyflow_consistency   derived Study Flow <-> documents
"""

from .engine import CROSSDOC_RULES, CrossDocEngine, create_crossdoc_registry, validate_bundle
from .global_rules import GLOBAL_RULES
from .ib_protocol import IB_PROTOCOL_RULES
from .protocol_csr import PROTOCOL_CSR_RULES
from .protocol_icf import PROTOCOL_ICF_RULES
from .protocol_sap import PROTOCOL_SAP_RULES
from .studyflow_consistency import STUDYFLOW_RULES

__all__ = [
    'CROSSDOC_RULES',
    'CrossDocEngine',
    'create_crossdoc_registry',
    'validate_bundle',
    'GLOBAL_RULES',
    'IB_PROTOCOL_RULES',
    'PROTOCOL_CSR_RULES',
    'PROTOCOL_ICF_RULES',
    'PROTOCOL_SAP_RULES',
    'STUDYFLOW_RULES',
]
