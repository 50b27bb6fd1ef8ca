"""Environment-backed settings.

Loads ``seo_pipeline/.env`` (if present) with python-dotenv, then reads:

    MISTRAL_API_KEY              — key for the Mistral fix applier
    FIXER_MODEL                  — Mistral model id (default: mistral-small-latest)
    SEO_HTTP_TIMEOUT             — seconds per page fetch (default: 30)
    REMEDIATION_TARGET_SCORE     — default target score (default: 85)
    REMEDIATION_MAX_ITERATIONS   — default iteration budget (default: 5)
    REMEDIATION_MIN_IMPROVEMENT  — minimum gain per iteration (default: 2)
    REMEDIATION_MAX_CHANGES      — fixes applied per iteration (default: 20)
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from seo_pipeline.remediation.models import RemediationConfig

_env_path = Path(__file__).resolve().parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

FIXER_MODEL = os.getenv("FIXER_MODEL", "mistral-small-latest")
SEO_HTTP_TIMEOUT = float(os.getenv("SEO_HTTP_TIMEOUT", 30))

REMEDIATION_TARGET_SCORE = float(os.getenv("REMEDIATION_TARGET_SCORE", 85))
REMEDIATION_MAX_ITERATIONS = int(os.getenv("REMEDIATION_MAX_ITERATIONS", 5))
REMEDIATION_MIN_IMPROVEMENT = float(os.getenv("REMEDIATION_MIN_IMPROVEMENT", 2))
REMEDIATION_MAX_CHANGES = int(os.getenv("REMEDIATION_MAX_CHANGES", 20))


def default_config() -> RemediationConfig:
    return RemediationConfig(
        target_score=REMEDIATION_TARGET_SCORE,
        max_iterations=REMEDIATION_MAX_ITERATIONS,
        min_improvement_threshold=REMEDIATION_MIN_IMPROVEMENT,
        max_changes_per_iteration=REMEDIATION_MAX_CHANGES,
    )
