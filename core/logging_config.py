"""
Structured logging configuration for the consistency engine.

Provides two formatters:
- **ConsoleFormatter**: Human-readable colored output (default for terminal)
- **JSONFormatter**: Machine-parseable JSON lines (for log files and collectors)

Records logged while a rule runs carry ``rule``, ``document`` (the context
label) and ``pair`` (the two document kinds the rule compares, e.g.
``PROTOCOL/SAP``). Records logged while a fix is applied carry
``issue_code``, ``strategy`` and ``target`` (``<document>.<field>``). Both
formatters render these when present; ``RuleLoggerAdapter`` and
``FixLoggerAdapter`` inject them.

Usage:
    from core.logging_config import configure_logging
    configure_logging(json_mode=True, log_file="logs/engine.jsonl")
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

_EXTRA_FIELDS = ("rule", "document", "pair", "issue_code", "strategy", "target")

# Issue categories that compare two documents, keyed to their pair label
_PAIR_CATEGORIES = {
    "IB_PROTOCOL": ("IB", "PROTOCOL"),
    "PROTOCOL_ICF": ("PROTOCOL", "ICF"),
    "PROTOCOL_SAP": ("PROTOCOL", "SAP"),
    "PROTOCOL_CSR": ("PROTOCOL", "CSR"),
    "SAP_CSR": ("SAP", "CSR"),
}


def document_pair(category: Optional[str]) -> str:
    """``LEFT/RIGHT`` label for a pairwise rule category, empty otherwise."""
    pair = _PAIR_CATEGORIES.get(str(category or ""))
    return "/".join(pair) if pair else ""


def _context_prefix(record: logging.LogRecord) -> str:
    rule = getattr(record, "rule", None)
    if rule:
        pair = getattr(record, "pair", None)
        return f"({rule} {pair})" if pair else f"({rule})"
    issue_code = getattr(record, "issue_code", None)
    if issue_code:
        target = getattr(record, "target", None)
        return f"({issue_code} -> {target})" if target else f"({issue_code})"
    return ""


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value:
                entry[name] = value
        if record.exc_info and record.exc_info[1]:
            entry["error"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter; rule and fix context go before the message."""

    FORMATS = {
        logging.DEBUG: "\033[90m[DEBUG]\033[0m %(message)s",
        logging.INFO: "[%(levelname)s] %(message)s",
        logging.WARNING: "\033[33m[WARN]\033[0m %(message)s",
        logging.ERROR: "\033[31m[ERROR]\033[0m %(message)s",
        logging.CRITICAL: "\033[1;31m[CRIT]\033[0m %(message)s",
    }

    def format(self, record: logging.LogRecord) -> str:
        fmt = self.FORMATS.get(record.levelno, "[%(levelname)s] %(message)s")
        prefix = _context_prefix(record).replace("%", "%%")
        if prefix:
            fmt = fmt.replace("%(message)s", f"{prefix} %(message)s")
        return logging.Formatter(fmt).format(record)


def configure_logging(
    *,
    json_mode: bool = False,
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    quiet: bool = False,
) -> None:
    """
    Configure root logger with appropriate handlers.

    Args:
        json_mode: If True, use JSON formatter for console output.
        log_file: If set, also write JSON logs to this file.
        level: Logging level (default INFO).
        quiet: If True, suppress console output (only file).
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if not quiet:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(level)
        console.setFormatter(JSONFormatter() if json_mode else ConsoleFormatter())
        root.addHandler(console)

    # File handler is always JSON
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(JSONFormatter())
        root.addHandler(fh)


class _ContextAdapter(logging.LoggerAdapter):
    FIELDS = ()

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        for name in self.FIELDS:
            extra.setdefault(name, self.extra.get(name, ""))
        return msg, kwargs


class RuleLoggerAdapter(_ContextAdapter):
    """Stamps the evaluating rule, its context label and its document pair."""
    FIELDS = ("rule", "document", "pair")


class FixLoggerAdapter(_ContextAdapter):
    """Stamps the issue being fixed, the strategy and the patched field."""
    FIELDS = ("issue_code", "strategy", "target")
