"""Remediation loop: analyze → fix → re-analyze → decide."""

from seo_pipeline.remediation.loop import RemediationController, run_remediation_loop
from seo_pipeline.remediation.models import RemediationConfig, RemediationResult, StopReason

__all__ = [
    "RemediationConfig",
    "RemediationController",
    "RemediationResult",
    "StopReason",
    "run_remediation_loop",
]
