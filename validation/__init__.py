"""
Validation Package

Rule-based validation of clinical documents and derived study flows.

Architecture:
    1. engine            - generic rule registry, engine and result types
    2. structural_rules  - single-document required/recommended content
    3. crossdoc          - bundle + alignment consistency rules
    4. flow_rules        - study flow structure and flow/document checks

Every entry point builds its own registry; there is no shared global one.
"""

from .engine import (
    BaseRule,
    CrossDocContext,
    DocumentContext,
    FlowContext,
    FunctionRule,
    RuleConfig,
    RuleEngine,
    RuleRegistry,
    ValidationResult,
    rule,
    save_validation_report,
)
from .structural_rules import create_structural_registry, validate_document
from .crossdoc import CrossDocEngine, create_crossdoc_registry, validate_bundle
from .flow_rules import check_missing_mandatory_visits, create_flow_registry, validate_study_flow

__all__ = [
    'BaseRule',
    'CrossDocContext',
    'DocumentContext',
    'FlowContext',
    'FunctionRule',
    'RuleConfig',
    'RuleEngine',
    'RuleRegistry',
    'ValidationResult',
    'rule',
    'save_validation_report',
    'create_structural_registry',
    'validate_document',
    'CrossDocEngine',
    'create_crossdoc_registry',
    'validate_bundle',
    'check_missing_mandatory_visits',
    'create_flow_registry',
    'validate_study_flow',
]
