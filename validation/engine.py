"""
Generic rule engine.

A rule is a stateless object with an id, a severity, a category and an
``evaluate(context) -> List[Issue]`` method. Rules are registered into an
explicitly constructed ``RuleRegistry`` and evaluated by a ``RuleEngine``.
The engine runs every enabled rule against the same context and concatenates
their issues in registration order; no rule can suppress another.

Three context types are used by the concrete registries:

    DocumentContext   one document                 (structural rules)
    CrossDocContext   bundle + alignment set        (cross-document rules)
    FlowContext       study flow (+ optional bundle) (flow rules)

Usage:
    registry = RuleRegistry()
    registry.register(MyRule())
    result = RuleEngine(registry).run(DocumentContext(protocol))
    result.summary   # {'total': 2, 'critical': 0, 'error': 1, ...}
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.config import EngineConfig, get_config
from core.errors import RuleEvaluationError
from core.issues import Issue, IssueCategory, Severity
from core.logging_config import RuleLoggerAdapter, document_pair

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------

@dataclass
class DocumentContext:
    document: Any
    config: EngineConfig = field(default_factory=get_config)

    @property
    def label(self) -> str:
        return f"{self.document.KIND.value}:{self.document.id}"


@dataclass
class CrossDocContext:
    bundle: Any
    alignments: Any
    study_flow: Any = None
    config: EngineConfig = field(default_factory=get_config)

    @property
    def label(self) -> str:
        return ','.join(k.value for k in self.bundle.kinds())


@dataclass
class FlowContext:
    flow: Any
    bundle: Any = None
    config: EngineConfig = field(default_factory=get_config)

    @property
    def label(self) -> str:
        return f"STUDY_FLOW:{self.flow.id}"


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@dataclass
class RuleConfig:
    """Static description of a rule."""
    rule_id: str
    name: str
    description: str = ''
    severity: Severity = Severity.WARNING
    category: IssueCategory = IssueCategory.STRUCTURE
    enabled: bool = True

    def to_dict(self) -> dict:
        return {
            'ruleId': self.rule_id,
            'name': self.name,
            'description': self.description,
            'severity': self.severity.value,
            'category': self.category.value,
            'enabled': self.enabled,
        }


class BaseRule(ABC):
    """A stateless rule: ``evaluate(context)`` returns the issues it finds."""

    def __init__(self, config: RuleConfig):
        self.config = config

    @property
    def rule_id(self) -> str:
        return self.config.rule_id

    @property
    def severity(self) -> Severity:
        return self.config.severity

    @property
    def description(self) -> str:
        return self.config.description

    @abstractmethod
    def evaluate(self, context: Any) -> List[Issue]:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.rule_id!r})"


class FunctionRule(BaseRule):
    """Rule backed by a plain ``fn(context) -> List[Issue]``."""

    def __init__(self, config: RuleConfig, fn: Callable[[Any], List[Issue]]):
        super().__init__(config)
        self._fn = fn

    def evaluate(self, context: Any) -> List[Issue]:
        return list(self._fn(context) or [])

    def clone(self) -> 'FunctionRule':
        """Copy with its own config, so enabling it in one registry leaves others alone."""
        return FunctionRule(replace(self.config), self._fn)


def rule(rule_id: str, name: str, *, severity: Severity, category: IssueCategory,
         description: str = '') -> Callable[[Callable], FunctionRule]:
    """
    Decorator turning a function into a FunctionRule.

        @rule('DOSE_REGIMEN', 'Dose regimen', severity=Severity.ERROR,
              category=IssueCategory.STRUCTURE)
        def check_dose_regimen(ctx):
            ...
    """
    def decorator(fn: Callable) -> FunctionRule:
        doc = (fn.__doc__ or '').strip().splitlines()
        config = RuleConfig(
            rule_id=rule_id,
            name=name,
            description=description or (doc[0] if doc else ''),
            severity=severity,
            category=category,
        )
        return FunctionRule(config, fn)
    return decorator


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class RuleRegistry:
    """
    Ordered collection of rules.

    Each engine owns its own registry instance; there is no process-wide one.
    """

    def __init__(self):
        self._rules: Dict[str, BaseRule] = {}
        self._order: List[str] = []

    def register(self, rule_obj: BaseRule) -> BaseRule:
        rule_id = rule_obj.rule_id
        if rule_id in self._rules:
            logger.warning(f"Rule '{rule_id}' already registered, replacing")
        self._rules[rule_id] = rule_obj
        if rule_id not in self._order:
            self._order.append(rule_id)
        return rule_obj

    def register_all(self, rules: List[BaseRule]) -> None:
        for rule_obj in rules:
            self.register(rule_obj)

    def get(self, rule_id: str) -> Optional[BaseRule]:
        return self._rules.get(rule_id)

    def get_all(self) -> List[BaseRule]:
        """All rules in registration order."""
        return [self._rules[rule_id] for rule_id in self._order]

    def get_enabled(self) -> List[BaseRule]:
        return [r for r in self.get_all() if r.config.enabled]

    def get_names(self) -> List[str]:
        return list(self._order)

    def has(self, rule_id: str) -> bool:
        return rule_id in self._rules

    def set_enabled(self, rule_id: str, enabled: bool) -> None:
        rule_obj = self._rules.get(rule_id)
        if rule_obj is None:
            raise KeyError(f"Unknown rule: {rule_id}")
        rule_obj.config.enabled = enabled

    def __contains__(self, rule_id: str) -> bool:
        return self.has(rule_id)

    def __len__(self) -> int:
        return len(self._rules)

    def reset(self) -> None:
        """Clear all registered rules."""
        self._rules.clear()
        self._order.clear()


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class ValidationResult:
    issues: List[Issue] = field(default_factory=list)
    rule_errors: List[dict] = field(default_factory=list)
    rules_run: List[str] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        counts = {'total': len(self.issues)}
        for severity in Severity:
            counts[severity.value] = sum(1 for i in self.issues if i.severity == severity)
        return counts

    @property
    def by_category(self) -> Dict[str, List[Issue]]:
        grouped: Dict[str, List[Issue]] = {}
        for issue in self.issues:
            grouped.setdefault(issue.category.value, []).append(issue)
        return grouped

    @property
    def has_blocking_issues(self) -> bool:
        return any(i.severity in (Severity.CRITICAL, Severity.ERROR) for i in self.issues)

    def issue_codes(self) -> List[str]:
        return [i.code for i in self.issues]

    def filter(self, *, severity: Optional[Severity] = None,
               category: Optional[IssueCategory] = None,
               code: Optional[str] = None) -> List[Issue]:
        return [
            i for i in self.issues
            if (severity is None or i.severity == severity)
            and (category is None or i.category == category)
            and (code is None or i.code == code)
        ]

    def merge(self, other: 'ValidationResult') -> 'ValidationResult':
        return ValidationResult(
            issues=self.issues + other.issues,
            rule_errors=self.rule_errors + other.rule_errors,
            rules_run=self.rules_run + other.rules_run,
        )

    def to_dict(self) -> dict:
        d = {
            'summary': self.summary,
            'byCategory': {cat: [i.code for i in issues] for cat, issues in self.by_category.items()},
            'issues': [i.to_dict() for i in self.issues],
            'rulesRun': list(self.rules_run),
        }
        if self.rule_errors:
            d['ruleErrors'] = list(self.rule_errors)
        return d


def save_validation_report(result: ValidationResult, output_dir: str) -> str:
    """Write validation_report.json to ``output_dir`` and return its path."""
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, 'validation_report.json')
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(result.to_dict(), f, indent=2)
    logger.info(f"Saved validation report to {path}")
    return path


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class RuleEngine:
    """
    Evaluates every enabled rule of a registry against one context.

    With ``parallel=True`` rules run on a thread pool; results are still
    reassembled in registration order so output is identical to a serial run.
    """

    def __init__(self, registry: RuleRegistry, *, parallel: bool = False, max_workers: int = 4):
        self.registry = registry
        self.parallel = parallel
        self.max_workers = max_workers

    def _evaluate(self, rule_obj: BaseRule, context: Any) -> Tuple[List[Issue], Optional[dict]]:
        rule_log = RuleLoggerAdapter(logger, {
            'rule': rule_obj.rule_id,
            'document': getattr(context, 'label', ''),
            'pair': document_pair(rule_obj.config.category.value),
        })
        try:
            issues = rule_obj.evaluate(context)
        except Exception as e:
            rule_log.error(f"Rule raised {type(e).__name__}: {e}", exc_info=True)
            error = RuleEvaluationError(
                f"Rule '{rule_obj.rule_id}' failed: {e}",
                rule=rule_obj.rule_id,
                document=getattr(context, 'label', None),
                cause=e,
            )
            return [], error.to_dict()
        rule_log.debug(f"{len(issues)} issue(s)")
        return issues, None

    def run(self, context: Any) -> ValidationResult:
        rules = self.registry.get_enabled()
        if self.parallel and len(rules) > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(rules))) as executor:
                outcomes = list(executor.map(lambda r: self._evaluate(r, context), rules))
        else:
            outcomes = [self._evaluate(r, context) for r in rules]

        result = ValidationResult(rules_run=[r.rule_id for r in rules])
        for issues, error in outcomes:
            result.issues.extend(issues)
            if error:
                result.rule_errors.append(error)

        logger.info(
            f"Ran {len(rules)} rules on {getattr(context, 'label', 'context')}: "
            f"{result.summary['total']} issues "
            f"({result.summary['critical']} critical, {result.summary['error']} error, "
            f"{result.summary['warning']} warning, {result.summary['info']} info)"
        )
        return result
