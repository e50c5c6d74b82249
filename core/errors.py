"""
EngineError hierarchy for the consistency engine.

Provides typed exceptions so callers can tell a rejected call (bad input
contract) apart from an internal failure, and so logging can categorize
failures without parsing message strings.

Hierarchy:
    EngineError                         (base of all engine errors)
    ├── ConfigurationError              (bad YAML file, invalid env override)
    ├── InputContractError              (call rejected before any work is done)
    │   ├── InsufficientDocumentsError  (< 2 documents for cross-doc validation)
    │   ├── EmptyIssueSelectionError    (auto-fix called with no issue ids)
    │   └── MissingTargetError          (no bundle/flow, unknown strategy)
    ├── RuleEvaluationError             (a rule raised while evaluating)
    └── PatchError                      (a patch could not be applied)
        └── InvalidPatchError           (unknown document, field or entry)

Only InputContractError and ConfigurationError reach callers. Rule and patch
failures are recorded in the validation result / auto-fix changelog.
"""

from typing import Optional


class EngineError(Exception):
    """Base exception for all consistency engine errors."""

    def __init__(self, message: str, *, rule: Optional[str] = None,
                 document: Optional[str] = None, cause: Optional[Exception] = None):
        self.rule = rule
        self.document = document
        self.cause = cause
        super().__init__(message)
        if cause and not self.__cause__:
            self.__cause__ = cause

    def to_dict(self) -> dict:
        """Structured representation for logging and result payloads."""
        d = {
            "error_type": type(self).__name__,
            "message": str(self),
        }
        if self.rule:
            d["rule"] = self.rule
        if self.document:
            d["document"] = self.document
        if self.cause:
            d["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return d


# ── Configuration ────────────────────────────────────────────────────

class ConfigurationError(EngineError):
    """Invalid config file contents or environment override."""
    pass


# ── Input contract ───────────────────────────────────────────────────

class InputContractError(EngineError):
    """The call violates the engine's input contract and is rejected."""
    pass


class InsufficientDocumentsError(InputContractError):
    """Cross-document validation needs at least two documents."""

    def __init__(self, message: str = "At least 2 document IDs are required for cross-document validation",
                 *, present: Optional[list] = None, **kwargs):
        self.present = list(present or [])
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["present"] = self.present
        return d


class EmptyIssueSelectionError(InputContractError):
    """Auto-fix was called without any issue ids to fix."""

    def __init__(self, message: str = "issueIds must contain at least one issue code", **kwargs):
        super().__init__(message, **kwargs)


class MissingTargetError(InputContractError):
    """No bundle/flow to operate on, or an unknown strategy name."""
    pass


# ── Rules ────────────────────────────────────────────────────────────

class RuleEvaluationError(EngineError):
    """A registered rule raised while evaluating a context."""
    pass


# ── Patches ──────────────────────────────────────────────────────────

class PatchError(EngineError):
    """A patch could not be applied to its target document."""
    pass


class InvalidPatchError(PatchError):
    """Patch targets a document, field or list entry that does not exist."""
    pass
