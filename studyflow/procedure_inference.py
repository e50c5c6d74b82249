"""
Endpoint -> procedure inference.

Each endpoint's name and description are matched against the keyword rules in
``procedure_catalog.yaml``; every matching endpoint category contributes its
procedures. The ``safety`` category applies to every endpoint. Procedures
linked to a primary endpoint are required.

Usage:
    from studyflow.procedure_inference import infer_procedures_from_endpoints

    procedures = infer_procedures_from_endpoints(protocol.endpoints)
"""

import logging
from typing import Dict, List, Optional

from alignment.similarity import normalize_text
from core.documents import Endpoint
from .models import Procedure
from .procedure_catalog import CatalogEntry, ProcedureCatalog, get_catalog

logger = logging.getLogger(__name__)


def detect_endpoint_categories(endpoint: Endpoint,
                               catalog: Optional[ProcedureCatalog] = None) -> List[str]:
    """Endpoint categories whose keywords occur in the endpoint text, in catalog order."""
    catalog = catalog or get_catalog()
    text = normalize_text(f"{endpoint.name} {endpoint.description}")
    return [rule.category for rule in catalog.endpoint_rules() if rule.matches(text)]


def infer_procedures_from_endpoint(endpoint: Endpoint,
                                   catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    catalog = catalog or get_catalog()
    rules = {rule.category: rule for rule in catalog.endpoint_rules()}

    procedure_ids: List[str] = []
    for category in detect_endpoint_categories(endpoint, catalog):
        for proc_id in rules[category].procedures:
            if proc_id not in procedure_ids:
                procedure_ids.append(proc_id)

    procedures = []
    for proc_id in procedure_ids:
        entry = catalog.get(proc_id)
        if entry is None:
            continue
        procedures.append(entry.to_procedure(
            required=endpoint.type == 'primary',
            linked_endpoints=[endpoint.id],
        ))
    return procedures


def infer_procedures_from_endpoints(endpoints: Optional[List[Endpoint]],
                                    catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    """
    Procedures needed to measure all endpoints, deduplicated by id.

    A procedure shared by several endpoints keeps every endpoint id in
    ``linked_endpoints`` and is required if any of them is primary.
    """
    catalog = catalog or get_catalog()
    merged: Dict[str, Procedure] = {}
    for endpoint in endpoints or []:
        found = infer_procedures_from_endpoint(endpoint, catalog)
        if not found:
            logger.info(f"No procedures inferred for endpoint '{endpoint.name}'")
        for proc in found:
            existing = merged.get(proc.id)
            if existing is None:
                merged[proc.id] = proc
                continue
            for endpoint_id in proc.linked_endpoints:
                if endpoint_id not in existing.linked_endpoints:
                    existing.linked_endpoints.append(endpoint_id)
            existing.required = existing.required or proc.required
    return list(merged.values())


# ---------------------------------------------------------------------------
# Fixed procedure sets
# ---------------------------------------------------------------------------

def _procedure_set(name: str, catalog: Optional[ProcedureCatalog]) -> List[Procedure]:
    catalog = catalog or get_catalog()
    entries: List[CatalogEntry] = catalog.procedure_set(name)
    return [entry.to_procedure(required=True) for entry in entries]


def screening_procedures(catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    return _procedure_set('screening', catalog)


def baseline_procedures(catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    return _procedure_set('baseline', catalog)


def end_of_treatment_procedures(catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    return _procedure_set('end_of_treatment', catalog)


def safety_monitoring_procedures(catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    return _procedure_set('safety_monitoring', catalog)


def find_procedure(name: str, catalog: Optional[ProcedureCatalog] = None) -> Optional[Procedure]:
    """Catalog procedure for a free-text name, or None."""
    catalog = catalog or get_catalog()
    entry = catalog.find_procedure(name)
    return entry.to_procedure() if entry else None
