"""Mistral-powered SEO fix applier.

Takes the issues reported by the analyzer, asks a Mistral model for replacement
content per issue (alt text, meta description, title, ...) and hands each
result to a SiteWriter. A single issue failing (model or write) is reported
as a failed outcome; only a failed backup escapes the call.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable
from typing import Protocol

from mistralai import Mistral

from seo_pipeline.remediation.errors import FixApplicationError
from seo_pipeline.remediation.models import FixOutcome, FixType, Issue
from seo_pipeline.remediation.store import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHANGES = 20


class FixApplier(Protocol):
    """Protocol for any fix applier implementation (real or mock)."""

    def apply(
        self,
        site_id: str,
        issues: list[Issue],
        allowed_types: Iterable[FixType] | None = None,
        max_changes: int = DEFAULT_MAX_CHANGES,
        skip_backup: bool = False,
    ) -> list[FixOutcome]: ...


class SiteWriter(Protocol):
    """Where fixed content ends up (CMS, static files, a dry-run log)."""

    def backup(self, site_id: str) -> None: ...

    def write(self, site_id: str, issue: Issue, value: str) -> None: ...


def select_issues(
    issues: list[Issue],
    allowed_types: Iterable[FixType] | None = None,
    max_changes: int = DEFAULT_MAX_CHANGES,
) -> list[Issue]:
    """Filter issues to the allowlist (if any), keep analyzer order, cap at max_changes."""
    allowed = set(allowed_types) if allowed_types is not None else None
    selected = [i for i in issues if allowed is None or i.type in allowed]
    return selected[:max(max_changes, 0)]


class DryRunSiteWriter:
    """Records proposed changes instead of touching the site."""

    def __init__(self) -> None:
        self.backups: list[str] = []
        self.changes: list[tuple[str, Issue, str]] = []

    def backup(self, site_id: str) -> None:
        self.backups.append(site_id)
        logger.info("[dry-run] Backup requested for %s", site_id)

    def write(self, site_id: str, issue: Issue, value: str) -> None:
        self.changes.append((site_id, issue, value))
        logger.info("[dry-run] %s on %s -> %r", issue.type, site_id, value[:120])


class MockFixApplier:
    """Returns predefined outcomes for testing — no API calls.

    Without ``outcomes`` every selected issue succeeds, except those whose type
    is in ``failing_types``. ``fail_on_call`` (1-based) makes that call raise.
    """

    def __init__(
        self,
        outcomes: list[FixOutcome] | None = None,
        failing_types: set[FixType] | None = None,
        fail_on_call: int | None = None,
    ) -> None:
        self._outcomes = outcomes
        self._failing_types = failing_types or set()
        self._fail_on_call = fail_on_call
        self.call_count = 0
        self.calls: list[list[Issue]] = []

    def apply(
        self,
        site_id: str,
        issues: list[Issue],
        allowed_types: Iterable[FixType] | None = None,
        max_changes: int = DEFAULT_MAX_CHANGES,
        skip_backup: bool = False,
    ) -> list[FixOutcome]:
        self.call_count += 1
        if self._fail_on_call is not None and self.call_count == self._fail_on_call:
            raise RuntimeError(f"mock fix applier failure on call {self.call_count}")

        selected = select_issues(issues, allowed_types, max_changes)
        self.calls.append(selected)
        if self._outcomes is not None:
            return list(self._outcomes)
        return [
            FixOutcome(
                type=issue.type,
                success=issue.type not in self._failing_types,
                error="mock failure" if issue.type in self._failing_types else None,
                detail=issue.detail,
            )
            for issue in selected
        ]


FIX_SYSTEM_PROMPT = """\
You are an expert technical SEO editor. You receive one SEO issue found on a
web page and must produce the replacement content that fixes it.
Respond ONLY with a JSON object:

{"value": "<replacement content>", "rationale": "<one sentence>"}

Rules:
- Plain text only, no HTML unless the issue asks for a link.
- Stay factual; do not invent claims about the business.
"""

FIX_INSTRUCTIONS: dict[FixType, str] = {
    FixType.MISSING_ALT_TEXT: "Write concise, descriptive alt text (max 125 characters) for this image.",
    FixType.MISSING_META_DESCRIPTION: "Write a compelling meta description between 120 and 155 characters.",
    FixType.POOR_TITLE_TAG: "Write a title tag between 30 and 60 characters with the main topic first.",
    FixType.HEADING_STRUCTURE: "Propose corrected heading text and level so the hierarchy has no gaps.",
    FixType.INTERNAL_LINKING: "Suggest an anchor text and relative URL for a relevant internal link.",
    FixType.IMAGE_OPTIMIZATION: "Suggest an optimized file name and explicit width/height for this image.",
}


class MistralFixApplier:
    """Calls Mistral to produce replacement content for each SEO issue."""

    def __init__(
        self,
        writer: SiteWriter,
        credentials: CredentialStore | None = None,
        model_id: str = "mistral-small-latest",
        client: Mistral | None = None,
        max_retries: int = 3,
        retry_delay: float = 5.0,
    ) -> None:
        self._writer = writer
        self._model_id = model_id
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        if client is None:
            api_key = credentials.get("mistral") if credentials else None
            client = Mistral(api_key=api_key or "")
        self._client = client

    def apply(
        self,
        site_id: str,
        issues: list[Issue],
        allowed_types: Iterable[FixType] | None = None,
        max_changes: int = DEFAULT_MAX_CHANGES,
        skip_backup: bool = False,
    ) -> list[FixOutcome]:
        selected = select_issues(issues, allowed_types, max_changes)
        if not selected:
            return []

        if not skip_backup:
            self._writer.backup(site_id)

        outcomes: list[FixOutcome] = []
        for issue in selected:
            try:
                value = self._generate(issue)
                self._writer.write(site_id, issue, value)
            except FixApplicationError as e:
                logger.warning("Fix for %s on %s failed: %s", issue.type, site_id, e.reason)
                outcomes.append(FixOutcome(type=issue.type, success=False, error=e.reason, detail=issue.detail))
                continue
            except Exception as e:
                logger.warning("Writing %s on %s failed: %s", issue.type, site_id, e)
                outcomes.append(FixOutcome(type=issue.type, success=False, error=str(e), detail=issue.detail))
                continue
            outcomes.append(FixOutcome(type=issue.type, success=True, detail=issue.detail, value=value))

        logger.info(
            "Applied %d/%d fix(es) on %s",
            sum(1 for o in outcomes if o.success),
            len(outcomes),
            site_id,
        )
        return outcomes

    def _generate(self, issue: Issue) -> str:
        raw = self._call_model(issue)
        value = self._parse_value(raw)
        if not value:
            raise FixApplicationError(issue.type, "model returned no content")
        return value

    def _call_model(self, issue: Issue) -> str:
        user_prompt = (
            f"Issue type: {issue.type}\n"
            f"Problem: {issue.detail}\n"
            f"Current element: {issue.element or 'N/A'}\n\n"
            f"{FIX_INSTRUCTIONS[issue.type]}"
        )
        messages = [
            {"role": "system", "content": FIX_SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

        for attempt in range(self._max_retries):
            try:
                response = self._client.chat.complete(
                    model=self._model_id,
                    messages=messages,
                    response_format={"type": "json_object"},
                    temperature=0.3,
                )
                return response.choices[0].message.content or ""
            except Exception as e:
                if attempt == self._max_retries - 1:
                    logger.error("Fix call failed after %d attempts: %s", self._max_retries, e)
                    raise FixApplicationError(issue.type, f"model call failed: {e}") from e
                logger.warning("Attempt %d failed: %s — retrying in %.1fs", attempt + 1, e, self._retry_delay)
                time.sleep(self._retry_delay)

        raise FixApplicationError(issue.type, "model call not attempted")

    @staticmethod
    def _parse_value(raw: str) -> str:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Failed to parse fix JSON response")
            return ""
        if not isinstance(data, dict):
            return ""
        value = data.get("value")
        return value.strip() if isinstance(value, str) else ""
