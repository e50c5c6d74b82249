"""
Tests for core.logging_config: structured JSON logging.

Validates:
- JSONFormatter produces valid JSON lines
- ConsoleFormatter produces human-readable output
- configure_logging() sets up handlers correctly
- RuleLoggerAdapter injects rule/document/pair into records
- FixLoggerAdapter injects issue code, strategy and patched field
- Rule and fix records from the engines carry that context
"""

import json
import logging
import sys

import pytest

from conftest import make_protocol, make_sap
from autofix.engine import AutoFixRequest, apply_auto_fixes
from core.config import EngineConfig
from core.documents import DocumentBundle
from core.issues import Issue, IssueCategory, Patch, PatchOperation, Severity, Suggestion
from core.logging_config import (
    JSONFormatter,
    ConsoleFormatter,
    FixLoggerAdapter,
    RuleLoggerAdapter,
    configure_logging,
    document_pair,
)
from validation.crossdoc import CrossDocEngine


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Reset root logger between tests."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    for h in root.handlers[:]:
        if isinstance(h, logging.FileHandler):
            h.close()
    root.handlers = original_handlers
    root.level = original_level


def _record(msg="hello", level=logging.INFO, name="test.module", args=(), exc_info=None):
    return logging.LogRecord(
        name=name, level=level, pathname="",
        lineno=0, msg=msg, args=args, exc_info=exc_info,
    )


# ── JSONFormatter ────────────────────────────────────────────────────

class TestJSONFormatter:
    """JSON formatter produces valid, parseable JSON lines."""

    def test_basic_record(self):
        data = json.loads(JSONFormatter().format(_record("hello %s", args=("world",))))
        assert data["level"] == "INFO"
        assert data["logger"] == "test.module"
        assert data["msg"] == "hello world"
        assert "ts" in data

    def test_includes_rule_and_document(self):
        record = _record("evaluating")
        record.rule = "TEST_MISMATCH"
        record.document = "PROTOCOL,SAP"
        data = json.loads(JSONFormatter().format(record))
        assert data["rule"] == "TEST_MISMATCH"
        assert data["document"] == "PROTOCOL,SAP"

    def test_includes_issue_code(self):
        record = _record("skipped")
        record.issue_code = "PRIMARY_ENDPOINT_DRIFT"
        data = json.loads(JSONFormatter().format(record))
        assert data["issue_code"] == "PRIMARY_ENDPOINT_DRIFT"

    def test_empty_extras_omitted(self):
        record = _record()
        record.rule = ""
        data = json.loads(JSONFormatter().format(record))
        assert "rule" not in data

    def test_includes_error_on_exception(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            exc_info = sys.exc_info()
        data = json.loads(JSONFormatter().format(_record("failed", level=logging.ERROR, exc_info=exc_info)))
        assert data["error"]["type"] == "ValueError"
        assert "bad value" in data["error"]["message"]

    def test_no_error_key_without_exception(self):
        data = json.loads(JSONFormatter().format(_record("warn", level=logging.WARNING)))
        assert "error" not in data


# ── ConsoleFormatter ─────────────────────────────────────────────────

class TestConsoleFormatter:

    def test_info_format(self):
        line = ConsoleFormatter().format(_record("hello"))
        assert "[INFO]" in line
        assert "hello" in line

    def test_error_format(self):
        line = ConsoleFormatter().format(_record("boom", level=logging.ERROR))
        assert "ERROR" in line
        assert "boom" in line

    def test_rule_prefix(self):
        record = _record("2 issue(s)")
        record.rule = "ICF_RISKS"
        assert "(ICF_RISKS) 2 issue(s)" in ConsoleFormatter().format(record)


# ── configure_logging ────────────────────────────────────────────────

class TestConfigureLogging:

    def test_default_console_handler(self):
        configure_logging()
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ConsoleFormatter)

    def test_json_mode_console(self):
        configure_logging(json_mode=True)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_quiet_mode_no_console(self):
        configure_logging(quiet=True)
        assert len(logging.getLogger().handlers) == 0

    def test_log_file_writes_json(self, tmp_path):
        path = tmp_path / "logs" / "engine.jsonl"
        configure_logging(log_file=str(path), quiet=True)
        logging.getLogger("test.json_write").info("test message")
        for h in logging.getLogger().handlers:
            h.flush()
        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) >= 1
        assert json.loads(lines[0])["msg"] == "test message"


# ── RuleLoggerAdapter ────────────────────────────────────────────────

class TestRuleLoggerAdapter:

    def test_adapter_adds_rule(self):
        adapter = RuleLoggerAdapter(logging.getLogger("test.adapter"),
                                    {"rule": "SF_001", "document": "STUDY_FLOW:flow_1"})
        _, kwargs = adapter.process("msg", {})
        assert kwargs["extra"]["rule"] == "SF_001"
        assert kwargs["extra"]["document"] == "STUDY_FLOW:flow_1"

    def test_adapter_defaults(self):
        adapter = RuleLoggerAdapter(logging.getLogger("test.adapter2"), {})
        _, kwargs = adapter.process("msg", {})
        assert kwargs["extra"]["rule"] == ""
        assert kwargs["extra"]["document"] == ""

    def test_adapter_adds_pair(self):
        adapter = RuleLoggerAdapter(logging.getLogger("test.adapter3"),
                                    {"rule": "TEST_MISMATCH", "pair": "PROTOCOL/SAP"})
        _, kwargs = adapter.process("msg", {})
        assert kwargs["extra"]["pair"] == "PROTOCOL/SAP"

    @pytest.mark.parametrize("category, pair", [
        ("PROTOCOL_SAP", "PROTOCOL/SAP"),
        ("IB_PROTOCOL", "IB/PROTOCOL"),
        ("SAP_CSR", "SAP/CSR"),
        ("GLOBAL", ""),
        (None, ""),
    ])
    def test_document_pair(self, category, pair):
        assert document_pair(category) == pair

    def test_rule_records_carry_pair(self, caplog):
        engine = CrossDocEngine.create_default(EngineConfig())
        with caplog.at_level(logging.DEBUG, logger="validation.engine"):
            engine.run(DocumentBundle.of(make_protocol(), make_sap()))
        records = [r for r in caplog.records if getattr(r, "rule", "") == "TEST_MISMATCH"]
        assert records
        assert records[0].pair == "PROTOCOL/SAP"
        assert records[0].document == "PROTOCOL,SAP"


# ── FixLoggerAdapter ─────────────────────────────────────────────────

class TestFixLoggerAdapter:

    def test_adapter_adds_fix_context(self):
        adapter = FixLoggerAdapter(logging.getLogger("test.fix"), {
            "issue_code": "TEST_MISMATCH", "strategy": "balanced", "target": "SAP.statisticalTests.ep_1.test",
        })
        _, kwargs = adapter.process("msg", {})
        assert kwargs["extra"]["issue_code"] == "TEST_MISMATCH"
        assert kwargs["extra"]["strategy"] == "balanced"
        assert kwargs["extra"]["target"] == "SAP.statisticalTests.ep_1.test"

    def test_console_fix_prefix(self):
        record = _record("Skipping invalid patch")
        record.issue_code = "PRIMARY_ENDPOINT_DRIFT"
        record.target = "CSR.actualMethods"
        line = ConsoleFormatter().format(record)
        assert "(PRIMARY_ENDPOINT_DRIFT -> CSR.actualMethods) Skipping invalid patch" in line

    def test_skipped_patch_logged_with_context(self, caplog):
        bundle = DocumentBundle.of(make_protocol(), make_sap())
        patch = Patch("CSR", "actualMethods", PatchOperation.SET, [])
        issue = Issue(code="CSR_METHODS", severity=Severity.ERROR, category=IssueCategory.PROTOCOL_CSR,
                      message="x", suggestions=[Suggestion(id="s", label="d", auto_fixable=True, patches=[patch])])
        with caplog.at_level(logging.WARNING, logger="autofix.engine"):
            apply_auto_fixes([issue], bundle, AutoFixRequest(issue_ids=["CSR_METHODS"], strategy="balanced"))
        record = next(r for r in caplog.records if "Skipping invalid patch" in r.getMessage())
        assert record.issue_code == "CSR_METHODS"
        assert record.strategy == "balanced"
        assert record.target == "CSR.actualMethods"
