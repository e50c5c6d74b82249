"""Shared helpers for cross-document rules."""

from typing import Any, Dict, Iterable, List, Optional

from core.issues import Issue, IssueCategory, IssueLocation, Patch, PatchOperation, Severity, Suggestion


def loc(document_type: str, section_id: str = '', entity_id: Optional[str] = '',
        field: str = '') -> IssueLocation:
    return IssueLocation(document_type=document_type, section_id=section_id,
                         entity_id=entity_id or '', field=field)


def make_issue(code: str, severity: Severity, category: IssueCategory, message: str, *,
               details: str = '', locations: Iterable[IssueLocation] = (),
               suggestions: Iterable[Suggestion] = (), data: Optional[Dict[str, Any]] = None) -> Issue:
    return Issue(
        code=code,
        severity=severity,
        category=category,
        message=message,
        details=details,
        locations=list(locations),
        suggestions=list(suggestions),
        data={k: v for k, v in (data or {}).items() if v is not None},
    )


def set_patch(target: str, field: str, value: Any, *, old_value: Any = None,
              source: Optional[str] = None, reason: str = '') -> Patch:
    return Patch(target_document=target, field=field, operation=PatchOperation.SET,
                 value=value, old_value=old_value, source_document=source, reason=reason)


def append_patch(target: str, field: str, value: Any, *, source: Optional[str] = None,
                 reason: str = '') -> Patch:
    return Patch(target_document=target, field=field, operation=PatchOperation.APPEND,
                 value=value, source_document=source, reason=reason)


def fix(suggestion_id: str, label: str, patches: List[Patch]) -> Suggestion:
    """Auto-fixable suggestion."""
    return Suggestion(id=suggestion_id, label=label, auto_fixable=True, patches=patches)


def advice(suggestion_id: str, label: str) -> Suggestion:
    """Manual suggestion with no patches."""
    return Suggestion(id=suggestion_id, label=label, auto_fixable=False)
