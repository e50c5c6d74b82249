"""
Change tracking helpers.

Human-readable descriptions of patches and changelogs, patch pre-checks, and
a rough impact estimate for reviewers deciding whether to apply a batch.
"""

import json
from typing import Any, Dict, List, Tuple

from core.errors import PatchError
from core.issues import Patch, PatchOperation
from .patching import PatchTarget, apply_to_target

MAX_VALUE_LENGTH = 50

# Fields whose change alters what the study measures or how it is analysed
HIGH_RISK_FIELDS = (
    'objectives',
    'endpoints',
    'primaryEndpoints',
    'statisticalTests',
    'sampleSizeDriverEndpoint',
    'arms',
)


def _truncate(value: Any, max_length: int = MAX_VALUE_LENGTH) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    if len(text) <= max_length:
        return text
    return text[:max_length] + '...'


def describe_change(patch: Patch, old_value: Any = None) -> str:
    old = patch.old_value if old_value is None else old_value
    where = f"{patch.target_document} {patch.field}"
    if patch.operation == PatchOperation.APPEND:
        text = f"Added to {where}: \"{_truncate(patch.value)}\""
    elif patch.operation == PatchOperation.REMOVE:
        text = f"Removed from {where}: \"{_truncate(patch.value)}\""
    else:
        text = f"Changed {where}: \"{_truncate(old if old is not None else '')}\" -> \"{_truncate(patch.value)}\""
    if patch.reason:
        text += f". Reason: {patch.reason}"
    return text


def describe_changes(patches: List[Patch]) -> Dict[str, List[str]]:
    """Descriptions grouped by target document, in first-seen order."""
    grouped: Dict[str, List[str]] = {}
    for patch in patches:
        grouped.setdefault(patch.target_document, []).append(describe_change(patch))
    return grouped


def format_changes(patches: List[Patch]) -> str:
    if not patches:
        return 'No changes made.'
    lines = []
    for document, descriptions in describe_changes(patches).items():
        lines.append(f"{document}:")
        lines.extend(f"  - {d}" for d in descriptions)
    return '\n'.join(lines)


def validate_patch(patch: Patch, target=None) -> Tuple[bool, List[str]]:
    """
    Check a patch before applying it.

    Without a target only the patch itself is checked; with one, the patch is
    dry-run against a copy of the target document.
    """
    errors = []
    if not patch.target_document:
        errors.append('Patch missing targetDocument')
    if not patch.field:
        errors.append('Patch missing field')
    if patch.operation != PatchOperation.REMOVE and patch.value is None:
        errors.append('Patch missing value')
    if target is not None and not errors:
        try:
            apply_to_target(PatchTarget.of(target), patch)
        except PatchError as e:
            errors.append(str(e))
    return not errors, errors


def merge_patches(patches: List[Patch]) -> List[Patch]:
    """One patch per conflict key; the last one wins, in first-seen key order."""
    merged: Dict[Tuple[str, ...], Patch] = {}
    for patch in patches:
        merged[patch.conflict_key] = patch
    return list(merged.values())


def estimate_impact(patches: List[Patch]) -> Dict[str, Any]:
    documents = {p.target_document for p in patches}
    fields = {f"{p.target_document}:{p.field}" for p in patches}
    high_risk = any(p.field.split('.')[0] in HIGH_RISK_FIELDS for p in patches)
    if high_risk or len(documents) >= 3:
        risk = 'high'
    elif len(documents) == 2 or len(patches) > 5:
        risk = 'medium'
    else:
        risk = 'low'
    return {
        'documentsAffected': len(documents),
        'fieldsChanged': len(fields),
        'totalChanges': len(patches),
        'riskLevel': risk,
    }
