#!/usr/bin/env python3
"""Iterative SEO remediation entry point.

How to verify it works (no API key needed):
  uv run pytest tests/seo_pipeline/remediation/ -v
  uv run python -m seo_pipeline.remediate --mock https://example.com

Once you have a Mistral key, run without --mock. Fixes are generated by the
model and recorded by a dry-run writer (nothing is pushed to the site):

  export MISTRAL_API_KEY=your_key
  uv run python -m seo_pipeline.remediate https://example.com

Usage:
    # Only fix alt text and meta descriptions, at most 10 changes per pass:
    uv run python -m seo_pipeline.remediate --fix-type missing_alt_text \\
        --fix-type missing_meta_description --max-changes 10 https://example.com

    # One pass, only listing the fixes it would make (add --apply to write them):
    uv run python -m seo_pipeline.remediate --mock --once https://example.com

    # Higher target, more iterations, JSON output:
    uv run python -m seo_pipeline.remediate --mock --target-score 95 \\
        --max-iterations 8 --output-json results.json https://example.com
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from seo_pipeline import config
from seo_pipeline.remediation.analyzer import Analyzer, HtmlSeoAnalyzer, MockAnalyzer
from seo_pipeline.remediation.errors import InvalidConfigError, NoAnalysisError, SiteUnreachableError
from seo_pipeline.remediation.fixer import DryRunSiteWriter, FixApplier, MistralFixApplier, MockFixApplier
from seo_pipeline.remediation.loop import RemediationController, validate_config
from seo_pipeline.remediation.models import FixType, RemediationConfig, RemediationResult, SinglePassResult, Website
from seo_pipeline.remediation.report import build_recommendations, build_stats, result_payload, single_pass_payload
from seo_pipeline.remediation.store import CredentialStore, InMemorySiteStore

MOCK_SCORES = [60.0, 60.0, 70.0, 80.0, 90.0]


def print_summary(result: RemediationResult) -> None:
    """Pretty-print the remediation result to stdout."""
    stats = build_stats(result)
    print("\n" + "=" * 60)
    print("SEO REMEDIATION SUMMARY")
    print("=" * 60)
    print(f"  Website:              {result.site_id}")
    print(f"  Initial score:        {result.initial_score:.1f}")
    print(f"  Final score:          {result.final_score:.1f}")
    print(f"  Target score:         {result.target_score:.1f}")
    print(f"  Iterations run:       {result.iterations_completed}")
    print(f"  Stopped because:      {result.stopped_reason}")
    print(f"  Fixes successful:     {stats.fixes_successful}/{stats.fixes_attempted}")
    print("=" * 60)

    for record in result.iterations:
        print(
            f"  [{record.iteration_number}] {record.score_before:5.1f} -> {record.score_after:5.1f} "
            f"({record.improvement:+.1f})  fixes {record.fixes_successful}/{record.fixes_attempted}  "
            f"{record.fix_time_seconds + record.analysis_time_seconds:.1f}s"
        )

    if result.errors:
        print("\nErrors:")
        for error in result.errors:
            print(f"  ! {error}")

    print("\nRecommendations:")
    for line in build_recommendations(result):
        print(f"  - {line}")


def print_single_pass(result: SinglePassResult) -> None:
    mode = "DRY RUN" if result.dry_run else "APPLIED"
    print("\n" + "=" * 60)
    print(f"SEO SINGLE-PASS FIX ({mode})")
    print("=" * 60)
    print(f"  Website:              {result.site_id}")
    print(f"  Status:               {result.status}")
    print(f"  Score before:         {result.score_before:.1f}")
    if result.score_after is not None:
        print(f"  Score after:          {result.score_after:.1f}")
    print(f"  Issues found:         {result.issues_found}")
    print(f"  Fixes planned:        {len(result.planned)}")
    print(f"  Estimated impact:     +{result.estimated_impact:.1f}")
    print("=" * 60)

    for issue in result.planned:
        print(f"  - {issue.type}: {issue.detail}")

    if result.errors:
        print("\nErrors:")
        for error in result.errors:
            print(f"  ! {error}")


def build_parser() -> argparse.ArgumentParser:
    defaults = config.default_config()
    parser = argparse.ArgumentParser(
        description="Iterative SEO remediation — analyzer -> fix applier -> re-analyzer until the target score",
    )
    parser.add_argument("url", help="Website URL to remediate")
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use mock analyzer and fix applier (no network, no API key)",
    )
    parser.add_argument("--target-score", type=float, default=defaults.target_score)
    parser.add_argument("--max-iterations", type=int, default=defaults.max_iterations)
    parser.add_argument("--min-improvement", type=float, default=defaults.min_improvement_threshold)
    parser.add_argument(
        "--fix-type",
        action="append",
        choices=[str(t) for t in FixType],
        default=None,
        help="Restrict remediation to this fix type (repeatable)",
    )
    parser.add_argument("--max-changes", type=int, default=defaults.max_changes_per_iteration)
    parser.add_argument("--skip-backup", action="store_true", help="Do not request a backup before writing fixes")
    parser.add_argument(
        "--fixer-model",
        default=config.FIXER_MODEL,
        help=f"Mistral model used to generate fixes (default: {config.FIXER_MODEL})",
    )
    parser.add_argument("--once", action="store_true", help="Run a single analyze -> fix pass instead of the loop")
    parser.add_argument("--apply", action="store_true", help="With --once, write the fixes instead of a dry run")
    parser.add_argument("--output-json", default=None, help="Write full JSON results to this path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    run_config = RemediationConfig(
        target_score=args.target_score,
        max_iterations=args.max_iterations,
        min_improvement_threshold=args.min_improvement,
        fix_types={FixType(t) for t in args.fix_type} if args.fix_type else None,
        max_changes_per_iteration=args.max_changes,
        skip_backup=args.skip_backup,
    )
    try:
        validate_config(run_config)
    except InvalidConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    site = Website(id=args.url, name=args.url, url=args.url)
    store = InMemorySiteStore([site])

    analyzer: Analyzer
    fixer: FixApplier
    if args.mock:
        analyzer = MockAnalyzer(scores=MOCK_SCORES)
        fixer = MockFixApplier()
    else:
        credentials = CredentialStore.from_env()
        if "mistral" not in credentials:
            print("Error: MISTRAL_API_KEY is not set (use --mock to run without it)", file=sys.stderr)
            return 1
        analyzer = HtmlSeoAnalyzer(store, timeout=config.SEO_HTTP_TIMEOUT)
        fixer = MistralFixApplier(DryRunSiteWriter(), credentials=credentials, model_id=args.fixer_model)

    try:
        return _remediate(args, site, store, analyzer, fixer, run_config)
    finally:
        if isinstance(analyzer, HtmlSeoAnalyzer):
            analyzer.close()


def _remediate(
    args: argparse.Namespace,
    site: Website,
    store: InMemorySiteStore,
    analyzer: Analyzer,
    fixer: FixApplier,
    run_config: RemediationConfig,
) -> int:
    # Baseline analysis satisfies the "analysis must exist" precondition.
    try:
        store.save_analysis(site.id, analyzer.analyze(site.id))
    except SiteUnreachableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    controller = RemediationController(analyzer, fixer, store)
    try:
        if args.once:
            single = controller.apply_once(
                site.id,
                dry_run=not args.apply,
                fix_types=run_config.fix_types,
                max_changes=run_config.max_changes_per_iteration,
                skip_backup=run_config.skip_backup,
            )
            payload = single_pass_payload(single)
            print_single_pass(single)
        else:
            result = controller.run(site.id, run_config)
            payload = result_payload(result)
            print_summary(result)
    except NoAnalysisError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.output_json:
        out_path = Path(args.output_json)
        out_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"\nFull results written to {out_path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
