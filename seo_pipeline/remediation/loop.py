"""Iterative SEO remediation controller.

Flow per iteration:
  1. Fix applier remediates the issues from the latest analysis
  2. Analyzer re-scores the site
  3. An IterationRecord captures before/after scores and timings
  4. Controller decides: target reached, too little improvement, or continue

The loop never runs more than ``max_iterations`` passes. Collaborator calls are
turned into tagged step results (success / partial / fatal); a fatal step ends
the run with ``stopped_reason=error`` and keeps everything completed so far.
Every finished run, iterative or single-pass, is appended to the store's run history.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from seo_pipeline.remediation.analyzer import Analyzer, score_issues
from seo_pipeline.remediation.errors import FixApplicationError, InvalidConfigError, NoAnalysisError
from seo_pipeline.remediation.fixer import DEFAULT_MAX_CHANGES, FixApplier, select_issues
from seo_pipeline.remediation.models import (
    ActivityType,
    AnalysisStep,
    FixBatch,
    FixOutcome,
    FixType,
    IterationRecord,
    Issue,
    RemediationConfig,
    RemediationResult,
    RunKind,
    RunRecord,
    SinglePassResult,
    StepStatus,
    StopReason,
    clamp_score,
)
from seo_pipeline.remediation.store import SiteStore

logger = logging.getLogger(__name__)

TARGET_SCORE_RANGE = (50, 100)
MAX_ITERATIONS_RANGE = (1, 10)


def validate_config(config: RemediationConfig) -> None:
    """Reject out-of-range settings before any work starts."""
    low, high = TARGET_SCORE_RANGE
    if not low <= config.target_score <= high:
        raise InvalidConfigError(f"Target score must be between {low} and {high}, got {config.target_score}")
    low, high = MAX_ITERATIONS_RANGE
    if not low <= config.max_iterations <= high:
        raise InvalidConfigError(f"Max iterations must be between {low} and {high}, got {config.max_iterations}")
    _validate_max_changes(config.max_changes_per_iteration)


def _validate_max_changes(max_changes: int) -> None:
    if max_changes < 1:
        raise InvalidConfigError(f"Max changes per iteration must be at least 1, got {max_changes}")


def _activity_type(fixes_successful: int, failed: bool) -> ActivityType:
    if fixes_successful > 0:
        return ActivityType.AI_FIXES_APPLIED
    if failed:
        return ActivityType.AI_FIX_FAILED
    return ActivityType.AI_FIX_ATTEMPTED


def _failure_messages(outcomes: list[FixOutcome]) -> list[str]:
    return [
        str(FixApplicationError(o.type, o.error or "unknown error"))
        for o in outcomes
        if not o.success
    ]


class RemediationController:
    """Drives analyze -> fix -> re-analyze cycles for one site at a time."""

    def __init__(self, analyzer: Analyzer, fixer: FixApplier, store: SiteStore) -> None:
        self._analyzer = analyzer
        self._fixer = fixer
        self._store = store

    def run(self, site_id: str, config: RemediationConfig | None = None) -> RemediationResult:
        config = config or RemediationConfig()
        validate_config(config)

        prior = self._store.latest_analysis(site_id)
        if prior is None:
            raise NoAnalysisError(site_id)

        logger.info(
            "Starting remediation for %s (target: %.1f, max iterations: %d)",
            site_id,
            config.target_score,
            config.max_iterations,
        )

        iterations: list[IterationRecord] = []
        fixes_applied: list[FixOutcome] = []
        errors: list[str] = []
        log: list[str] = []
        stopped_reason: StopReason | None = None

        baseline, _ = self._analyze(site_id)
        if baseline.status is StepStatus.FATAL:
            errors.append(baseline.error or "initial analysis failed")
            initial_score = clamp_score(prior.score)
            logger.error("Initial analysis failed for %s: %s", site_id, baseline.error)
            log.append(f"Initial analysis failed: {baseline.error}")
            return self._finish(
                site_id, config, initial_score, iterations, fixes_applied, errors, log, StopReason.ERROR
            )

        initial_score = baseline.score
        current_score = initial_score
        issues: list[Issue] = baseline.output.issues if baseline.output else []
        logger.info("Initial score for %s: %.1f (%d issue(s))", site_id, initial_score, len(issues))
        log.append(f"Initial score {initial_score:.1f} with {len(issues)} issue(s)")

        while len(iterations) < config.max_iterations and current_score < config.target_score:
            number = len(iterations) + 1
            logger.info("=== Remediation iteration %d / %d ===", number, config.max_iterations)
            score_before = current_score

            fix_started = time.monotonic()
            batch = self._apply_fixes(
                site_id,
                issues,
                config.fix_types,
                config.max_changes_per_iteration,
                config.skip_backup,
            )
            fix_time = time.monotonic() - fix_started

            fixes_applied.extend(batch.outcomes)
            errors.extend(_failure_messages(batch.outcomes))

            if batch.status is StepStatus.FATAL:
                errors.append(batch.error or "fix application failed")
                logger.error("Fix application failed on iteration %d: %s", number, batch.error)
                log.append(f"Iteration {number}: fix application failed: {batch.error}")
                stopped_reason = StopReason.ERROR
                break

            after, analysis_time = self._analyze(site_id)
            if after.status is StepStatus.FATAL:
                errors.append(after.error or "re-analysis failed")
                logger.error("Re-analysis failed on iteration %d: %s", number, after.error)
                log.append(f"Iteration {number}: re-analysis failed: {after.error}")
                stopped_reason = StopReason.ERROR
                break

            score_after = after.score
            improvement = score_after - score_before
            record = IterationRecord(
                iteration_number=number,
                score_before=score_before,
                score_after=score_after,
                improvement=improvement,
                fixes_attempted=len(batch.outcomes),
                fixes_successful=sum(1 for o in batch.outcomes if o.success),
                analysis_time_seconds=analysis_time,
                fix_time_seconds=fix_time,
            )
            iterations.append(record)
            current_score = score_after
            issues = after.output.issues if after.output else []

            logger.info(
                "  Score %.1f -> %.1f (%+.1f) | Fixes: %d/%d",
                score_before,
                score_after,
                improvement,
                record.fixes_successful,
                record.fixes_attempted,
            )
            log.append(
                f"Iteration {number}: {score_before:.1f} -> {score_after:.1f} ({improvement:+.1f}), "
                f"{record.fixes_successful}/{record.fixes_attempted} fix(es) applied"
            )

            if score_after >= config.target_score:
                stopped_reason = StopReason.TARGET_REACHED
                break
            if improvement < config.min_improvement_threshold:
                logger.info(
                    "Improvement %.1f below threshold %.1f — stopping.",
                    improvement,
                    config.min_improvement_threshold,
                )
                stopped_reason = StopReason.NO_IMPROVEMENT
                break

        if stopped_reason is None:
            if current_score >= config.target_score:
                stopped_reason = StopReason.TARGET_REACHED
            else:
                stopped_reason = StopReason.MAX_ITERATIONS

        return self._finish(site_id, config, initial_score, iterations, fixes_applied, errors, log, stopped_reason)

    def apply_once(
        self,
        site_id: str,
        dry_run: bool = True,
        fix_types: Iterable[FixType] | None = None,
        max_changes: int = DEFAULT_MAX_CHANGES,
        skip_backup: bool = False,
    ) -> SinglePassResult:
        """Analyze and fix a site once. A dry run only reports the fixes it would apply."""
        _validate_max_changes(max_changes)
        prior = self._store.latest_analysis(site_id)
        if prior is None:
            raise NoAnalysisError(site_id)

        logger.info("Single-pass fix for %s (dry run: %s)", site_id, dry_run)
        fix_types = set(fix_types) if fix_types is not None else None

        before, _ = self._analyze(site_id)
        if before.status is StepStatus.FATAL:
            result = SinglePassResult(
                site_id=site_id,
                dry_run=dry_run,
                status=StepStatus.FATAL,
                score_before=clamp_score(prior.score),
                errors=[before.error or "analysis failed"],
                detailed_log=[f"Analysis failed: {before.error}"],
            )
            return self._record_single_pass(result)

        issues = before.output.issues if before.output else []
        planned = select_issues(issues, fix_types, max_changes)
        planned_ids = {id(i) for i in planned}
        unplanned = [i for i in issues if id(i) not in planned_ids]
        result = SinglePassResult(
            site_id=site_id,
            dry_run=dry_run,
            status=StepStatus.SUCCESS,
            score_before=before.score,
            issues_found=len(issues),
            planned=planned,
            estimated_impact=score_issues(unplanned) - score_issues(issues),
            detailed_log=[
                f"Score {before.score:.1f} with {len(issues)} issue(s), {len(planned)} fix(es) planned"
            ],
        )
        if dry_run or not planned:
            return self._record_single_pass(result)

        batch = self._apply_fixes(site_id, issues, fix_types, max_changes, skip_backup)
        result.fixes_applied = batch.outcomes
        result.errors.extend(_failure_messages(batch.outcomes))
        result.status = batch.status
        if batch.status is StepStatus.FATAL:
            result.errors.append(batch.error or "fix application failed")
            result.detailed_log.append(f"Fix application failed: {batch.error}")
            return self._record_single_pass(result)

        successful = sum(1 for o in batch.outcomes if o.success)
        result.detailed_log.append(f"{successful}/{len(batch.outcomes)} fix(es) applied")

        after, _ = self._analyze(site_id)
        if after.status is StepStatus.FATAL:
            result.status = StepStatus.FATAL
            result.errors.append(after.error or "re-analysis failed")
            result.detailed_log.append(f"Re-analysis failed: {after.error}")
        else:
            result.score_after = after.score
            result.detailed_log.append(f"Score after fixes {after.score:.1f}")
        return self._record_single_pass(result)

    def _analyze(self, site_id: str) -> tuple[AnalysisStep, float]:
        started = time.monotonic()
        try:
            output = self._analyzer.analyze(site_id)
        except Exception as e:
            logger.exception("Analyzer failed for %s", site_id)
            return AnalysisStep(status=StepStatus.FATAL, error=str(e)), time.monotonic() - started
        step = AnalysisStep(status=StepStatus.SUCCESS, output=output, score=clamp_score(output.score))
        return step, time.monotonic() - started

    def _apply_fixes(
        self,
        site_id: str,
        issues: list[Issue],
        fix_types: set[FixType] | None,
        max_changes: int,
        skip_backup: bool,
    ) -> FixBatch:
        try:
            outcomes = self._fixer.apply(
                site_id,
                issues,
                allowed_types=fix_types,
                max_changes=max_changes,
                skip_backup=skip_backup,
            )
        except Exception as e:
            logger.exception("Fix applier failed for %s", site_id)
            return FixBatch(status=StepStatus.FATAL, error=str(e))
        return FixBatch.from_outcomes(outcomes)

    def _record_single_pass(self, result: SinglePassResult) -> SinglePassResult:
        successful = sum(1 for o in result.fixes_applied if o.success)
        if result.dry_run:
            description = f"Dry run: {len(result.planned)} fix(es) planned"
        else:
            description = f"Applied {successful}/{len(result.fixes_applied)} fix(es)"
        self._store.record_run(RunRecord(
            site_id=result.site_id,
            kind=RunKind.SINGLE_PASS,
            type=_activity_type(successful, result.status is StepStatus.FATAL),
            description=description,
            dry_run=result.dry_run,
            score_before=result.score_before,
            score_after=result.score_after if result.score_after is not None else result.score_before,
            fixes_attempted=len(result.fixes_applied),
            fixes_successful=successful,
            errors=list(result.errors),
        ))
        return result

    def _finish(
        self,
        site_id: str,
        config: RemediationConfig,
        initial_score: float,
        iterations: list[IterationRecord],
        fixes_applied: list[FixOutcome],
        errors: list[str],
        log: list[str],
        stopped_reason: StopReason,
    ) -> RemediationResult:
        final_score = iterations[-1].score_after if iterations else initial_score
        log.append(f"Stopped: {stopped_reason} at score {final_score:.1f}")
        result = RemediationResult(
            site_id=site_id,
            initial_score=initial_score,
            final_score=final_score,
            score_improvement=final_score - initial_score,
            target_score=config.target_score,
            iterations_completed=len(iterations),
            stopped_reason=stopped_reason,
            iterations=iterations,
            fixes_applied=fixes_applied,
            errors=errors,
            detailed_log=log,
        )
        logger.info(
            "Remediation for %s finished: %.1f -> %.1f after %d iteration(s) (%s)",
            site_id,
            initial_score,
            final_score,
            result.iterations_completed,
            stopped_reason,
        )

        successful = sum(1 for f in fixes_applied if f.success)
        self._store.record_run(RunRecord(
            site_id=site_id,
            kind=RunKind.ITERATIVE,
            type=_activity_type(successful, stopped_reason is StopReason.ERROR),
            description=(
                f"Iterative fix: {initial_score:.1f} -> {final_score:.1f} "
                f"in {len(iterations)} iteration(s) ({stopped_reason})"
            ),
            score_before=initial_score,
            score_after=final_score,
            fixes_attempted=len(fixes_applied),
            fixes_successful=successful,
            stopped_reason=stopped_reason,
            errors=list(errors),
        ))
        return result


def run_remediation_loop(
    site_id: str,
    analyzer: Analyzer,
    fixer: FixApplier,
    store: SiteStore,
    config: RemediationConfig | None = None,
) -> RemediationResult:
    """Execute the full analyze -> fix -> re-analyze loop for one site."""
    return RemediationController(analyzer, fixer, store).run(site_id, config)
