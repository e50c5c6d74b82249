"""
Procedure catalog loader.

Single source of truth for known procedures, the endpoint keyword rules that
imply them, and the fixed procedure sets attached to screening, baseline and
end-of-treatment visits. Everything is read from ``procedure_catalog.yaml``.

Usage:
    from studyflow.procedure_catalog import get_catalog

    catalog = get_catalog()
    entry = catalog.get("proc_hba1c")
    catalog.find_procedure("glycated hemoglobin").id   # "proc_hba1c"
"""

import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import yaml

from alignment.similarity import combined_similarity, normalize_text
from core.errors import ConfigurationError
from .models import Procedure, ProcedureCategory

logger = logging.getLogger(__name__)

_CATALOG_PATH = os.path.join(os.path.dirname(__file__), "procedure_catalog.yaml")

FUZZY_MATCH_THRESHOLD = 0.5


# ---------------------------------------------------------------------------
# Data classes: typed views over the YAML
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalogEntry:
    id: str
    name: str
    category: ProcedureCategory
    synonyms: Tuple[str, ...] = ()
    standard_code: Optional[Tuple[str, str]] = None
    invasive: bool = False

    def to_procedure(self, *, required: bool = False,
                     linked_endpoints: Optional[List[str]] = None) -> Procedure:
        metadata: Dict[str, Any] = {'catalog': True}
        if self.invasive:
            metadata['invasive'] = True
        return Procedure(
            id=self.id,
            name=self.name,
            category=self.category,
            required=required,
            linked_endpoints=list(linked_endpoints or []),
            standard_code=(
                {'system': self.standard_code[0], 'code': self.standard_code[1]}
                if self.standard_code else None
            ),
            metadata=metadata,
        )


@dataclass(frozen=True)
class EndpointRule:
    """An endpoint category: keywords that detect it and procedures it implies."""
    category: str
    patterns: Tuple[str, ...]
    procedures: Tuple[str, ...]
    always: bool = False

    def matches(self, normalized_text: str) -> bool:
        if self.always:
            return True
        return any(re.search(rf"\b(?:{p})\b", normalized_text) for p in self.patterns)


@dataclass
class ProcedureCatalog:
    schema_version: str
    _entries: Dict[str, CatalogEntry] = field(default_factory=dict)
    _rules: Tuple[EndpointRule, ...] = ()
    _sets: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def get(self, procedure_id: str) -> Optional[CatalogEntry]:
        return self._entries.get(procedure_id)

    def entries(self) -> List[CatalogEntry]:
        return list(self._entries.values())

    def by_category(self, category: ProcedureCategory) -> List[CatalogEntry]:
        return [e for e in self._entries.values() if e.category == category]

    def endpoint_rules(self) -> List[EndpointRule]:
        return list(self._rules)

    def procedure_set(self, name: str) -> List[CatalogEntry]:
        """Resolved entries for a named set; unknown ids are skipped."""
        return [self._entries[pid] for pid in self._sets.get(name, ()) if pid in self._entries]

    def search(self, query: str) -> List[CatalogEntry]:
        """Entries whose name or a synonym contains the query (case-insensitive)."""
        q = query.lower().strip()
        if not q:
            return []
        return [
            e for e in self._entries.values()
            if q in e.name.lower() or any(q in s.lower() for s in e.synonyms)
        ]

    def find_procedure(self, name: str) -> Optional[CatalogEntry]:
        """
        Map a free-text procedure name to a catalog entry.

        Exact match on name or synonym first, then the best fuzzy match whose
        combined similarity exceeds 0.5.
        """
        norm = normalize_text(name)
        if not norm:
            return None
        for entry in self._entries.values():
            if norm == normalize_text(entry.name) or any(norm == normalize_text(s) for s in entry.synonyms):
                return entry

        best: Optional[Tuple[CatalogEntry, float]] = None
        for entry in self._entries.values():
            score = max(
                [combined_similarity(name, entry.name)]
                + [combined_similarity(name, s) for s in entry.synonyms]
            )
            if score > FUZZY_MATCH_THRESHOLD and (best is None or score > best[1]):
                best = (entry, score)
        return best[0] if best else None

    def statistics(self) -> Dict[str, Any]:
        by_category: Dict[str, int] = {}
        for entry in self._entries.values():
            by_category[entry.category.value] = by_category.get(entry.category.value, 0) + 1
        return {
            'total': len(self._entries),
            'byCategory': by_category,
            'withStandardCodes': sum(1 for e in self._entries.values() if e.standard_code),
        }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _parse_catalog(raw: Dict[str, Any]) -> ProcedureCatalog:
    """Parse raw YAML dict into a typed ProcedureCatalog."""
    entries: Dict[str, CatalogEntry] = {}
    for item in raw.get("procedures", []) or []:
        code = item.get("standard_code")
        try:
            category = ProcedureCategory(item.get("category", "other"))
        except ValueError as e:
            raise ConfigurationError(f"Unknown procedure category for {item.get('id')}", cause=e)
        entries[item["id"]] = CatalogEntry(
            id=item["id"],
            name=item["name"],
            category=category,
            synonyms=tuple(str(s) for s in item.get("synonyms", []) or []),
            standard_code=(str(code["system"]), str(code["code"])) if code else None,
            invasive=bool(item.get("invasive", False)),
        )

    rules = []
    for category, rule in (raw.get("endpoint_rules", {}) or {}).items():
        unknown = [pid for pid in rule.get("procedures", []) if pid not in entries]
        if unknown:
            raise ConfigurationError(f"Endpoint rule '{category}' references unknown procedures: {unknown}")
        rules.append(EndpointRule(
            category=category,
            patterns=tuple(rule.get("keywords", []) or []),
            procedures=tuple(rule.get("procedures", []) or []),
            always=bool(rule.get("always", False)),
        ))

    sets = {
        name: tuple(ids or [])
        for name, ids in (raw.get("procedure_sets", {}) or {}).items()
    }

    return ProcedureCatalog(
        schema_version=str(raw.get("schema_version", "")),
        _entries=entries,
        _rules=tuple(rules),
        _sets=sets,
    )


def load_catalog(path: str = _CATALOG_PATH) -> ProcedureCatalog:
    """Load and parse the procedure catalog YAML."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not load procedure catalog from {path}", cause=e)
    catalog = _parse_catalog(raw or {})
    logger.debug(
        f"Loaded procedure catalog v{catalog.schema_version}: "
        f"{len(catalog.entries())} procedures, {len(catalog.endpoint_rules())} endpoint rules"
    )
    return catalog


@lru_cache(maxsize=1)
def get_catalog() -> ProcedureCatalog:
    """Get the cached procedure catalog."""
    return load_catalog()
