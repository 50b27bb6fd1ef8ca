"""SEO analyzer abstraction.

Provides a protocol for the analyzer and implementations:
- MockAnalyzer: replays a scripted score sequence for development/testing.
- HtmlSeoAnalyzer: fetches the site's page and scores on-page SEO issues.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Protocol
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from seo_pipeline.remediation.errors import SiteUnreachableError
from seo_pipeline.remediation.models import AnalyzerOutput, FixType, Issue, clamp_score
from seo_pipeline.remediation.store import SiteStore

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; SeoPipeline/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

TITLE_LENGTH = (10, 60)
META_DESCRIPTION_LENGTH = (50, 160)
MIN_INTERNAL_LINKS = 3
LEGACY_IMAGE_FORMATS = (".jpg", ".jpeg", ".png", ".gif", ".bmp")

# Points deducted per issue, and the most a single fix type can cost.
ISSUE_WEIGHTS: dict[FixType, float] = {
    FixType.POOR_TITLE_TAG: 15,
    FixType.MISSING_META_DESCRIPTION: 15,
    FixType.MISSING_ALT_TEXT: 5,
    FixType.HEADING_STRUCTURE: 10,
    FixType.INTERNAL_LINKING: 10,
    FixType.IMAGE_OPTIMIZATION: 3,
}
ISSUE_CAPS: dict[FixType, float] = {
    FixType.MISSING_ALT_TEXT: 20,
    FixType.HEADING_STRUCTURE: 15,
    FixType.IMAGE_OPTIMIZATION: 15,
}


class Analyzer(Protocol):
    """Protocol that any analyzer implementation must satisfy."""

    def analyze(self, site_id: str) -> AnalyzerOutput: ...


class MockAnalyzer:
    """Replays scripted scores, one per call; the last score repeats once exhausted.

    ``fail_on_call`` makes that call (1-based) raise SiteUnreachableError.
    """

    def __init__(
        self,
        scores: list[float] | None = None,
        issues: list[Issue] | None = None,
        fail_on_call: int | None = None,
    ) -> None:
        if scores is not None and not scores:
            raise ValueError("MockAnalyzer needs at least one score")
        self._scores = scores if scores is not None else [60.0, 100.0]
        self._issues = issues
        self._fail_on_call = fail_on_call
        self.call_count = 0

    def analyze(self, site_id: str) -> AnalyzerOutput:
        self.call_count += 1
        if self._fail_on_call is not None and self.call_count == self._fail_on_call:
            raise SiteUnreachableError(site_id, "mock analyzer failure")

        score = self._scores[min(self.call_count, len(self._scores)) - 1]
        if self._issues is not None:
            issues = list(self._issues)
        else:
            issues = [
                Issue(type=FixType.MISSING_META_DESCRIPTION, detail="Page has no meta description"),
                Issue(type=FixType.MISSING_ALT_TEXT, detail="Image without alt text", element="/img/hero.jpg"),
            ]
        return AnalyzerOutput(score=score, issues=issues, url=f"mock://{site_id}")


def score_issues(issues: list[Issue]) -> float:
    """Deduct weighted penalties from 100, capping each fix type's total."""
    counts = Counter(issue.type for issue in issues)
    penalty = 0.0
    for fix_type, count in counts.items():
        cost = ISSUE_WEIGHTS.get(fix_type, 0) * count
        cap = ISSUE_CAPS.get(fix_type)
        if cap is not None:
            cost = min(cost, cap)
        penalty += cost
    return clamp_score(100.0 - penalty)


def find_issues(html: str, page_url: str) -> list[Issue]:
    """Inspect one HTML document and list on-page SEO issues in document order."""
    soup = BeautifulSoup(html, "html.parser")
    issues: list[Issue] = []

    title = soup.title.get_text(strip=True) if soup.title else ""
    if not title:
        issues.append(Issue(type=FixType.POOR_TITLE_TAG, detail="Missing <title> tag"))
    elif not TITLE_LENGTH[0] <= len(title) <= TITLE_LENGTH[1]:
        issues.append(Issue(
            type=FixType.POOR_TITLE_TAG,
            detail=f"Title length {len(title)} outside {TITLE_LENGTH[0]}-{TITLE_LENGTH[1]} characters",
            element=title,
        ))

    meta = soup.find("meta", attrs={"name": "description"})
    description = (meta.get("content") or "").strip() if meta else ""
    if not description:
        issues.append(Issue(type=FixType.MISSING_META_DESCRIPTION, detail="Missing meta description"))
    elif not META_DESCRIPTION_LENGTH[0] <= len(description) <= META_DESCRIPTION_LENGTH[1]:
        issues.append(Issue(
            type=FixType.MISSING_META_DESCRIPTION,
            detail=f"Meta description length {len(description)} outside "
                   f"{META_DESCRIPTION_LENGTH[0]}-{META_DESCRIPTION_LENGTH[1]} characters",
            element=description,
        ))

    headings = soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
    h1_count = sum(1 for h in headings if h.name == "h1")
    if h1_count != 1:
        issues.append(Issue(type=FixType.HEADING_STRUCTURE, detail=f"Expected one <h1>, found {h1_count}"))
    previous_level = 0
    for heading in headings:
        level = int(heading.name[1])
        if previous_level and level > previous_level + 1:
            issues.append(Issue(
                type=FixType.HEADING_STRUCTURE,
                detail=f"Heading level skips from h{previous_level} to h{level}",
                element=heading.get_text(strip=True)[:80],
            ))
        previous_level = level

    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if not (img.get("alt") or "").strip():
            issues.append(Issue(type=FixType.MISSING_ALT_TEXT, detail="Image without alt text", element=src))
        if urlparse(src).path.lower().endswith(LEGACY_IMAGE_FORMATS) and not (img.get("width") and img.get("height")):
            issues.append(Issue(
                type=FixType.IMAGE_OPTIMIZATION,
                detail="Legacy-format image without explicit dimensions",
                element=src,
            ))

    host = urlparse(page_url).netloc
    internal_links = 0
    for anchor in soup.find_all("a", href=True):
        target = urlparse(urljoin(page_url, anchor["href"]))
        if target.scheme in ("http", "https") and target.netloc == host:
            internal_links += 1
    if internal_links < MIN_INTERNAL_LINKS:
        issues.append(Issue(
            type=FixType.INTERNAL_LINKING,
            detail=f"Only {internal_links} internal link(s), expected at least {MIN_INTERNAL_LINKS}",
        ))

    return issues


class HtmlSeoAnalyzer:
    """Fetches a website's page over HTTP and scores its on-page SEO."""

    def __init__(
        self,
        store: SiteStore,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._store = store
        self._client = client or httpx.Client(timeout=timeout, headers=HEADERS, follow_redirects=True)

    def analyze(self, site_id: str) -> AnalyzerOutput:
        site = self._store.get_site(site_id)
        if site is None:
            raise SiteUnreachableError(site_id, "unknown website")

        html, final_url = self._fetch(site_id, site.url)
        issues = find_issues(html, final_url)
        score = score_issues(issues)
        logger.info("Analyzed %s: score %.1f, %d issue(s)", final_url, score, len(issues))
        return AnalyzerOutput(score=score, issues=issues, url=final_url)

    def _fetch(self, site_id: str, url: str) -> tuple[str, str]:
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SiteUnreachableError(site_id, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise SiteUnreachableError(site_id, str(e) or type(e).__name__) from e
        return response.text, str(response.url)

    def close(self) -> None:
        self._client.close()
