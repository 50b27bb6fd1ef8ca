"""Exceptions raised by the remediation pipeline."""

from __future__ import annotations


class RemediationError(Exception):
    """Base class for every remediation failure."""


class InvalidConfigError(RemediationError):
    """Config rejected before any analysis runs (target score or iteration budget out of range)."""


class NoAnalysisError(RemediationError):
    """No prior SEO analysis exists for the site."""

    def __init__(self, site_id: str) -> None:
        super().__init__(f"No SEO analysis found for website {site_id}")
        self.site_id = site_id


class SiteUnreachableError(RemediationError):
    """The analyzer could not fetch the site."""

    def __init__(self, site_id: str, reason: str = "") -> None:
        message = f"Cannot access website {site_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.site_id = site_id
        self.reason = reason


class FixApplicationError(RemediationError):
    """A single issue could not be fixed. Recorded, never fatal to the loop."""

    def __init__(self, fix_type: str, reason: str) -> None:
        super().__init__(f"{fix_type}: {reason}")
        self.fix_type = fix_type
        self.reason = reason


class RemediationInProgressError(RemediationError):
    """Another remediation run already holds the site."""

    def __init__(self, site_id: str) -> None:
        super().__init__(f"Remediation already running for website {site_id}")
        self.site_id = site_id
