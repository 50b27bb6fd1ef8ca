"""Site records, stored analyses, credentials and per-site run locks.

The relational store of the full backend sits behind :class:`SiteStore`;
:class:`InMemorySiteStore` backs the CLI and the tests.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

from seo_pipeline.remediation.errors import RemediationInProgressError
from seo_pipeline.remediation.models import AnalyzerOutput, RunRecord, Website

logger = logging.getLogger(__name__)


class SiteStore(Protocol):
    """Protocol for website lookup and stored SEO analyses."""

    def get_site(self, site_id: str) -> Website | None: ...

    def latest_analysis(self, site_id: str) -> AnalyzerOutput | None: ...

    def save_analysis(self, site_id: str, output: AnalyzerOutput) -> None: ...

    def record_run(self, record: RunRecord) -> None: ...

    def run_history(self, site_id: str) -> list[RunRecord]: ...


class InMemorySiteStore:
    def __init__(self, sites: list[Website] | None = None) -> None:
        self._sites: dict[str, Website] = {s.id: s for s in sites or []}
        self._analyses: dict[str, list[AnalyzerOutput]] = {}
        self._runs: dict[str, list[RunRecord]] = {}

    def add_site(self, site: Website) -> None:
        self._sites[site.id] = site

    def get_site(self, site_id: str) -> Website | None:
        return self._sites.get(site_id)

    def latest_analysis(self, site_id: str) -> AnalyzerOutput | None:
        history = self._analyses.get(site_id)
        return history[-1] if history else None

    def save_analysis(self, site_id: str, output: AnalyzerOutput) -> None:
        self._analyses.setdefault(site_id, []).append(output)
        logger.debug("Stored analysis for %s (score %.1f)", site_id, output.score)

    def record_run(self, record: RunRecord) -> None:
        self._runs.setdefault(record.site_id, []).append(record)
        logger.debug("Recorded %s run for %s (%s)", record.kind, record.site_id, record.type)

    def run_history(self, site_id: str) -> list[RunRecord]:
        """Finished runs for the site, newest first."""
        return list(reversed(self._runs.get(site_id, [])))


class CredentialStore:
    """Provider tokens owned by whoever builds the pipeline.

    Components receive the store explicitly; nothing reads tokens from module state.
    """

    ENV_KEYS = {
        "mistral": "MISTRAL_API_KEY",
    }

    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self._tokens: dict[str, str] = dict(tokens or {})

    @classmethod
    def from_env(cls) -> CredentialStore:
        tokens = {}
        for provider, env_key in cls.ENV_KEYS.items():
            value = (os.getenv(env_key) or "").strip()
            if value:
                tokens[provider] = value
        return cls(tokens)

    def get(self, provider: str) -> str | None:
        return self._tokens.get(provider)

    def set(self, provider: str, token: str) -> None:
        self._tokens[provider] = token

    def clear(self, provider: str | None = None) -> None:
        if provider is None:
            self._tokens.clear()
        else:
            self._tokens.pop(provider, None)

    def __contains__(self, provider: str) -> bool:
        return provider in self._tokens


class SiteLockRegistry:
    """At-most-one remediation run per site, for callers that want it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, site_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(site_id, threading.Lock())

    def is_held(self, site_id: str) -> bool:
        return self._lock_for(site_id).locked()

    @contextmanager
    def hold(self, site_id: str) -> Iterator[None]:
        lock = self._lock_for(site_id)
        if not lock.acquire(blocking=False):
            raise RemediationInProgressError(site_id)
        try:
            yield
        finally:
            lock.release()
