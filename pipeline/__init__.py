"""
Remediation pipeline.

Composes validation and auto-fix into a single validate -> fix -> revalidate
call for bundles and study flows.
"""

from .revalidation import (
    RemediationResult,
    fix_and_revalidate,
    fix_flow_and_revalidate,
    save_remediation_report,
)

__all__ = [
    'RemediationResult',
    'fix_and_revalidate',
    'fix_flow_and_revalidate',
    'save_remediation_report',
]
