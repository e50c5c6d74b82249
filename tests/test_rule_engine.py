"""
Tests for validation.engine: registry, engine and result types.

Validates:
- Registration order, replacement, enable/disable
- The @rule decorator and FunctionRule.clone isolation
- A raising rule is recorded, never aborts the run
- Parallel runs produce the same issues in the same order as serial runs
- ValidationResult summary, filtering, merge and report writing
"""

import json
import logging
import time

import pytest

from core.config import EngineConfig
from core.issues import Issue, IssueCategory, Severity
from validation.engine import (
    DocumentContext,
    FunctionRule,
    RuleConfig,
    RuleEngine,
    RuleRegistry,
    ValidationResult,
    rule,
    save_validation_report,
)
from conftest import make_protocol


def _issue(code, severity=Severity.WARNING, category=IssueCategory.STRUCTURE):
    return Issue(code=code, severity=severity, category=category, message=code)


def _const_rule(rule_id, *codes, delay=0.0):
    def fn(ctx):
        if delay:
            time.sleep(delay)
        return [_issue(c) for c in codes]
    return FunctionRule(RuleConfig(rule_id=rule_id, name=rule_id), fn)


def _failing_rule(rule_id):
    def fn(ctx):
        raise ZeroDivisionError("division by zero")
    return FunctionRule(RuleConfig(rule_id=rule_id, name=rule_id), fn)


@pytest.fixture
def context():
    return DocumentContext(make_protocol(), config=EngineConfig())


# ── Registry ─────────────────────────────────────────────────────────

class TestRuleRegistry:

    def test_registration_order(self):
        registry = RuleRegistry()
        registry.register_all([_const_rule("B"), _const_rule("A"), _const_rule("C")])
        assert registry.get_names() == ["B", "A", "C"]
        assert len(registry) == 3
        assert "A" in registry
        assert registry.has("C")
        assert registry.get("Z") is None

    def test_replace_keeps_position(self, caplog):
        registry = RuleRegistry()
        registry.register_all([_const_rule("A", "OLD"), _const_rule("B")])
        with caplog.at_level(logging.WARNING):
            registry.register(_const_rule("A", "NEW"))
        assert registry.get_names() == ["A", "B"]
        assert "already registered" in caplog.text

    def test_enable_disable(self):
        registry = RuleRegistry()
        registry.register_all([_const_rule("A"), _const_rule("B")])
        registry.set_enabled("A", False)
        assert [r.rule_id for r in registry.get_enabled()] == ["B"]
        assert len(registry.get_all()) == 2

    def test_enable_unknown(self):
        with pytest.raises(KeyError):
            RuleRegistry().set_enabled("NOPE", True)

    def test_reset(self):
        registry = RuleRegistry()
        registry.register(_const_rule("A"))
        registry.reset()
        assert len(registry) == 0
        assert registry.get_names() == []


# ── Decorator ────────────────────────────────────────────────────────

class TestRuleDecorator:

    def test_decorator_builds_function_rule(self):
        @rule("MY_RULE", "My rule", severity=Severity.ERROR, category=IssueCategory.GLOBAL)
        def my_rule(ctx):
            """First line becomes the description.

            More text.
            """
            return [_issue("X")]

        assert isinstance(my_rule, FunctionRule)
        assert my_rule.rule_id == "MY_RULE"
        assert my_rule.severity == Severity.ERROR
        assert my_rule.description == "First line becomes the description."
        assert my_rule.config.to_dict()["category"] == "GLOBAL"

    def test_none_return_is_empty(self, context):
        @rule("NONE", "Returns None", severity=Severity.INFO, category=IssueCategory.GLOBAL)
        def returns_none(ctx):
            return None

        assert returns_none.evaluate(context) == []

    def test_clone_isolates_enabled_flag(self):
        original = _const_rule("A")
        r1, r2 = RuleRegistry(), RuleRegistry()
        r1.register(original.clone())
        r2.register(original.clone())
        r1.set_enabled("A", False)
        assert r2.get("A").config.enabled
        assert original.config.enabled


# ── Engine ───────────────────────────────────────────────────────────

class TestRuleEngine:

    def test_issues_in_registration_order(self, context):
        registry = RuleRegistry()
        registry.register_all([_const_rule("A", "A1", "A2"), _const_rule("B", "B1")])
        result = RuleEngine(registry).run(context)
        assert result.issue_codes() == ["A1", "A2", "B1"]
        assert result.rules_run == ["A", "B"]

    def test_disabled_rules_skipped(self, context):
        registry = RuleRegistry()
        registry.register_all([_const_rule("A", "A1"), _const_rule("B", "B1")])
        registry.set_enabled("A", False)
        result = RuleEngine(registry).run(context)
        assert result.issue_codes() == ["B1"]
        assert result.rules_run == ["B"]

    def test_failing_rule_recorded(self, context):
        registry = RuleRegistry()
        registry.register_all([_const_rule("A", "A1"), _failing_rule("BOOM"), _const_rule("C", "C1")])
        result = RuleEngine(registry).run(context)
        assert result.issue_codes() == ["A1", "C1"]
        assert len(result.rule_errors) == 1
        error = result.rule_errors[0]
        assert error["error_type"] == "RuleEvaluationError"
        assert error["rule"] == "BOOM"
        assert error["document"] == "PROTOCOL:prot_001"
        assert "ZeroDivisionError" in error["cause"]

    def test_parallel_matches_serial(self, context):
        def registry():
            reg = RuleRegistry()
            reg.register_all([
                _const_rule("SLOW", "S1", delay=0.05),
                _const_rule("FAST", "F1"),
                _failing_rule("BOOM"),
                _const_rule("MID", "M1", "M2", delay=0.01),
            ])
            return reg

        serial = RuleEngine(registry()).run(context)
        parallel = RuleEngine(registry(), parallel=True, max_workers=4).run(context)
        assert parallel.issue_codes() == serial.issue_codes() == ["S1", "F1", "M1", "M2"]
        assert parallel.rule_errors == serial.rule_errors

    def test_empty_registry(self, context):
        result = RuleEngine(RuleRegistry()).run(context)
        assert result.issues == []
        assert result.summary["total"] == 0


# ── Result ───────────────────────────────────────────────────────────

class TestValidationResult:

    def _result(self):
        return ValidationResult(issues=[
            _issue("A", Severity.CRITICAL, IssueCategory.PROTOCOL_SAP),
            _issue("B", Severity.WARNING, IssueCategory.PROTOCOL_SAP),
            _issue("C", Severity.INFO, IssueCategory.GLOBAL),
        ], rules_run=["R1"])

    def test_summary(self):
        assert self._result().summary == {"total": 3, "critical": 1, "error": 0, "warning": 1, "info": 1}

    def test_by_category(self):
        grouped = self._result().by_category
        assert [i.code for i in grouped["PROTOCOL_SAP"]] == ["A", "B"]

    def test_blocking(self):
        assert self._result().has_blocking_issues
        assert not ValidationResult(issues=[_issue("W")]).has_blocking_issues

    def test_filter(self):
        result = self._result()
        assert [i.code for i in result.filter(severity=Severity.WARNING)] == ["B"]
        assert [i.code for i in result.filter(category=IssueCategory.GLOBAL)] == ["C"]
        assert [i.code for i in result.filter(code="A")] == ["A"]

    def test_merge(self):
        merged = self._result().merge(ValidationResult(issues=[_issue("D")], rules_run=["R2"]))
        assert merged.issue_codes() == ["A", "B", "C", "D"]
        assert merged.rules_run == ["R1", "R2"]

    def test_save_report(self, tmp_path):
        path = save_validation_report(self._result(), str(tmp_path / "out"))
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        assert data["summary"]["total"] == 3
        assert data["byCategory"]["GLOBAL"] == ["C"]
        assert "ruleErrors" not in data
