"""
Patch application.

Patches are applied to a deep copy of the target document's ``to_dict()``
and the document is rebuilt with ``from_dict``; the input document is never
touched.

Field paths are dotted. Each segment is a dict key, or for lists an entity
identifier (matched against ``id``, then ``endpointId``) or a numeric index:

    primaryEndpoints.sap_ep_1            SAP primary endpoint with id sap_ep_1
    statisticalTests.ep_1.test           test of the entry whose endpointId is ep_1
    visits.visit_3.window                window of flow visit visit_3
    arms                                 the arms list itself (append/remove)
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from core.documents import DocumentBundle, DocumentKind
from core.errors import InvalidPatchError, MissingTargetError
from core.issues import Patch, PatchOperation
from studyflow.models import StudyFlow

logger = logging.getLogger(__name__)

STUDY_FLOW = DocumentKind.STUDY_FLOW.value


# =============================================================================
# Target
# =============================================================================

@dataclass
class PatchTarget:
    """What auto-fixes operate on: a bundle, a study flow, or both."""
    bundle: Optional[DocumentBundle] = None
    flow: Optional[StudyFlow] = None

    @classmethod
    def of(cls, target: Union['PatchTarget', DocumentBundle, StudyFlow, None]) -> 'PatchTarget':
        if isinstance(target, PatchTarget):
            if target.bundle is None and target.flow is None:
                raise MissingTargetError("Auto-fix target has neither a bundle nor a study flow")
            return target
        if isinstance(target, DocumentBundle):
            return cls(bundle=target)
        if isinstance(target, StudyFlow):
            return cls(flow=target)
        raise MissingTargetError(
            f"Auto-fix needs a DocumentBundle or StudyFlow, got {type(target).__name__}"
        )

    def document(self, kind: str):
        """Document a patch targets; InvalidPatchError when it is not part of the target."""
        if kind == STUDY_FLOW:
            if self.flow is None:
                raise InvalidPatchError("Patch targets the study flow but none was supplied",
                                        document=kind)
            return self.flow
        try:
            doc_kind = DocumentKind(kind)
        except ValueError:
            raise InvalidPatchError(f"Unknown target document '{kind}'", document=kind)
        document = self.bundle.get(doc_kind) if self.bundle is not None else None
        if document is None:
            raise InvalidPatchError(f"Target document {kind} is not in the bundle", document=kind)
        return document

    def replace(self, document) -> 'PatchTarget':
        """New target with ``document`` swapped in."""
        if isinstance(document, StudyFlow):
            return PatchTarget(bundle=self.bundle, flow=document)
        return PatchTarget(bundle=self.bundle.with_document(document), flow=self.flow)


# =============================================================================
# Path resolution
# =============================================================================

def _entry_index(items: list, segment: str, path: str) -> int:
    for key in ('id', 'endpointId'):
        for idx, item in enumerate(items):
            if isinstance(item, dict) and str(item.get(key)) == segment:
                return idx
    if segment.isdigit() and int(segment) < len(items):
        return int(segment)
    raise InvalidPatchError(f"No entry '{segment}' in '{path}'")


def _step(container: Any, segment: str, path: str) -> Any:
    if isinstance(container, dict):
        if segment not in container:
            raise InvalidPatchError(f"Unknown field '{segment}' in '{path}'")
        return container[segment]
    if isinstance(container, list):
        return container[_entry_index(container, segment, path)]
    raise InvalidPatchError(f"Cannot descend into '{segment}' of '{path}'")


def _matches(entry: Any, value: Any) -> bool:
    if entry == value:
        return True
    if isinstance(entry, dict):
        ident = value.get('id') if isinstance(value, dict) else value
        return ident is not None and (entry.get('id') == ident or entry.get('endpointId') == ident)
    return False


def resolve_field(data: dict, path: str) -> Any:
    """Current value at a dotted path of a document dict."""
    value: Any = data
    for segment in path.split('.'):
        value = _step(value, segment, path)
    return value


# =============================================================================
# Application
# =============================================================================

def _apply_to_dict(data: dict, patch: Patch) -> Any:
    """Mutate ``data`` in place; return the value the patch replaced."""
    segments = patch.field.split('.')
    parent: Any = data
    for segment in segments[:-1]:
        parent = _step(parent, segment, patch.field)
    last = segments[-1]

    if patch.operation == PatchOperation.SET:
        if isinstance(parent, dict):
            if last not in parent:
                raise InvalidPatchError(f"Unknown field '{last}' in '{patch.field}'")
            old = parent[last]
            parent[last] = copy.deepcopy(patch.value)
            return old
        if isinstance(parent, list):
            idx = _entry_index(parent, last, patch.field)
            old = parent[idx]
            parent[idx] = copy.deepcopy(patch.value)
            return old
        raise InvalidPatchError(f"Cannot set '{patch.field}'")

    items = _step(parent, last, patch.field)
    if not isinstance(items, list):
        raise InvalidPatchError(f"'{patch.field}' is not a list; cannot {patch.operation.value}")

    if patch.operation == PatchOperation.APPEND:
        items.append(copy.deepcopy(patch.value))
        return None

    for idx, entry in enumerate(items):
        if _matches(entry, patch.value):
            return items.pop(idx)
    raise InvalidPatchError(f"No entry matching {patch.value!r} in '{patch.field}'")


def apply_patch(document, patch: Patch) -> Tuple[Any, Any]:
    """
    Apply one patch to a document.

    Returns:
        ``(new_document, old_value)``; ``document`` itself is unchanged.

    Raises:
        InvalidPatchError: unknown top-level field, list entry or path.
    """
    top = patch.field.split('.')[0]
    if not patch.field or top not in document.schema_fields():
        raise InvalidPatchError(
            f"Field '{patch.field}' is not part of the {patch.target_document} schema",
            document=patch.target_document,
        )

    data = copy.deepcopy(document.to_dict())
    old_value = _apply_to_dict(data, patch)
    try:
        updated = type(document).from_dict(data)
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise InvalidPatchError(f"Patched {patch.target_document} is malformed: {e}",
                                document=patch.target_document, cause=e)
    logger.debug(f"Applied {patch.operation.value} {patch.target_document}.{patch.field}")
    return updated, old_value


def apply_to_target(target: PatchTarget, patch: Patch) -> Tuple[PatchTarget, Any]:
    document = target.document(patch.target_document)
    updated, old_value = apply_patch(document, patch)
    return target.replace(updated), old_value


def apply_patches(target: PatchTarget, patches: List[Patch]) -> PatchTarget:
    """Apply patches in order; the first invalid one raises."""
    for patch in patches:
        target, _ = apply_to_target(target, patch)
    return target
