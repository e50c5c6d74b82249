"""
Tests for core.errors: EngineError hierarchy.

Validates:
- Hierarchy relationships (isinstance checks)
- Structured to_dict() output
- Cause chaining
- Default messages on input contract errors
"""

import pytest
from core.errors import (
    EngineError,
    ConfigurationError,
    InputContractError,
    InsufficientDocumentsError,
    EmptyIssueSelectionError,
    MissingTargetError,
    RuleEvaluationError,
    PatchError,
    InvalidPatchError,
)


# ── Hierarchy ────────────────────────────────────────────────────────

class TestHierarchy:
    """All errors inherit from EngineError and Exception."""

    @pytest.mark.parametrize("cls", [
        ConfigurationError,
        InputContractError, InsufficientDocumentsError,
        EmptyIssueSelectionError, MissingTargetError,
        RuleEvaluationError, PatchError, InvalidPatchError,
    ])
    def test_is_engine_error(self, cls):
        err = cls("test")
        assert isinstance(err, EngineError)
        assert isinstance(err, Exception)

    def test_input_contract_subtypes(self):
        assert issubclass(InsufficientDocumentsError, InputContractError)
        assert issubclass(EmptyIssueSelectionError, InputContractError)
        assert issubclass(MissingTargetError, InputContractError)

    def test_patch_subtypes(self):
        assert issubclass(InvalidPatchError, PatchError)
        assert not issubclass(PatchError, InputContractError)


# ── Attributes ───────────────────────────────────────────────────────

class TestAttributes:
    """Test rule, document, cause attributes."""

    def test_base_attributes(self):
        err = EngineError("boom", rule="PRIMARY_ENDPOINT_DRIFT", document="SAP")
        assert str(err) == "boom"
        assert err.rule == "PRIMARY_ENDPOINT_DRIFT"
        assert err.document == "SAP"
        assert err.cause is None

    def test_cause_chaining(self):
        original = KeyError("primaryEndpoints")
        err = InvalidPatchError("bad path", cause=original)
        assert err.cause is original
        assert err.__cause__ is original

    def test_insufficient_documents_default_message(self):
        err = InsufficientDocumentsError(present=["PROTOCOL"])
        assert "At least 2 document IDs are required" in str(err)
        assert err.present == ["PROTOCOL"]

    def test_empty_selection_default_message(self):
        assert "at least one issue" in str(EmptyIssueSelectionError())


# ── to_dict ──────────────────────────────────────────────────────────

class TestToDict:
    """Structured output for logging and result payloads."""

    def test_minimal(self):
        d = EngineError("oops").to_dict()
        assert d == {"error_type": "EngineError", "message": "oops"}

    def test_full(self):
        cause = ZeroDivisionError("division by zero")
        err = RuleEvaluationError("rule failed", rule="TEST_MISMATCH", document="PROTOCOL,SAP", cause=cause)
        d = err.to_dict()
        assert d["error_type"] == "RuleEvaluationError"
        assert d["rule"] == "TEST_MISMATCH"
        assert d["document"] == "PROTOCOL,SAP"
        assert "ZeroDivisionError: division by zero" in d["cause"]

    def test_insufficient_documents_lists_present(self):
        d = InsufficientDocumentsError(present=["SAP"]).to_dict()
        assert d["error_type"] == "InsufficientDocumentsError"
        assert d["present"] == ["SAP"]


# ── Catch patterns ───────────────────────────────────────────────────

class TestCatchPatterns:
    """Verify real-world except clauses work as expected."""

    def test_catch_all_contract_errors(self):
        with pytest.raises(InputContractError):
            raise EmptyIssueSelectionError()

    def test_catch_patch_errors(self):
        with pytest.raises(PatchError):
            raise InvalidPatchError("unknown field")

    def test_catch_as_exception(self):
        with pytest.raises(Exception):
            raise ConfigurationError("bad yaml")
