"""
Auto-fix: turn selected issues into applied patches.

    engine          apply_auto_fixes, request/result/changelog types
    strategies      conflict resolution strategies
    patching        dotted-path patch application on document copies
    synthesis       re-derive suggestions for issues that carry none
    change_tracker  descriptions, pre-checks and impact estimates
"""

from .change_tracker import describe_change, describe_changes, estimate_impact, merge_patches, validate_patch
from .engine import AutoFixRequest, AutoFixResult, ChangelogEntry, FixOutcome, apply_auto_fixes
from .patching import PatchTarget, apply_patch, apply_patches
from .strategies import Strategy, resolve_conflicts
from .synthesis import synthesize_suggestions

__all__ = [
    'AutoFixRequest',
    'AutoFixResult',
    'ChangelogEntry',
    'FixOutcome',
    'PatchTarget',
    'Strategy',
    'apply_auto_fixes',
    'apply_patch',
    'apply_patches',
    'describe_change',
    'describe_changes',
    'estimate_impact',
    'merge_patches',
    'resolve_conflicts',
    'synthesize_suggestions',
    'validate_patch',
]
