"""
Core types and shared infrastructure for the consistency engine.

This module consolidates what every other package depends on:
- Document model and document bundle
- Issues, suggestions and patches
- Engine configuration
- Error hierarchy and logging setup
"""

from .config import EngineConfig, get_config, load_config
from .documents import (
    AnalysisPopulation,
    AssessmentSchedule,
    CSRDocument,
    CsrEndpoint,
    DOCUMENT_CLASSES,
    DocumentBundle,
    DocumentKind,
    DosingInfo,
    Endpoint,
    IBDocument,
    ICFDocument,
    Objective,
    ProcedureDescription,
    ProtocolDocument,
    SAPDocument,
    SapEndpoint,
    ScheduledVisit,
    StatisticalTest,
    TreatmentArm,
    document_from_dict,
)
from .errors import (
    ConfigurationError,
    EmptyIssueSelectionError,
    EngineError,
    InputContractError,
    InsufficientDocumentsError,
    InvalidPatchError,
    MissingTargetError,
    PatchError,
    RuleEvaluationError,
)
from .issues import (
    Issue,
    IssueCategory,
    IssueLocation,
    Patch,
    PatchOperation,
    Severity,
    Suggestion,
    sort_issues,
)
from .logging_config import configure_logging

__all__ = [
    # Config
    'EngineConfig',
    'get_config',
    'load_config',
    # Documents
    'AnalysisPopulation',
    'AssessmentSchedule',
    'CSRDocument',
    'CsrEndpoint',
    'DOCUMENT_CLASSES',
    'DocumentBundle',
    'DocumentKind',
    'DosingInfo',
    'Endpoint',
    'IBDocument',
    'ICFDocument',
    'Objective',
    'ProcedureDescription',
    'ProtocolDocument',
    'SAPDocument',
    'SapEndpoint',
    'ScheduledVisit',
    'StatisticalTest',
    'TreatmentArm',
    'document_from_dict',
    # Errors
    'ConfigurationError',
    'EmptyIssueSelectionError',
    'EngineError',
    'InputContractError',
    'InsufficientDocumentsError',
    'InvalidPatchError',
    'MissingTargetError',
    'PatchError',
    'RuleEvaluationError',
    # Issues
    'Issue',
    'IssueCategory',
    'IssueLocation',
    'Patch',
    'PatchOperation',
    'Severity',
    'Suggestion',
    'sort_issues',
    # Logging
    'configure_logging',
]
