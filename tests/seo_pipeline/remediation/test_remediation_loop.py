"""Tests for the remediation loop — run with: uv run pytest tests/seo_pipeline/remediation/ -v

These tests use MockAnalyzer, MockFixApplier and a fake Mistral client. No API keys or network required.
"""

from __future__ import annotations

import json
from types import SimpleNamespace

import pydantic
import pytest

from seo_pipeline.remediation.analyzer import MockAnalyzer
from seo_pipeline.remediation.errors import InvalidConfigError, NoAnalysisError
from seo_pipeline.remediation.fixer import DryRunSiteWriter, MistralFixApplier, MockFixApplier
from seo_pipeline.remediation.loop import RemediationController, run_remediation_loop
from seo_pipeline.remediation.models import (
    ActivityType,
    AnalyzerOutput,
    FixOutcome,
    FixType,
    Issue,
    RemediationConfig,
    RunKind,
    StepStatus,
    StopReason,
    Website,
)
from seo_pipeline.remediation.store import InMemorySiteStore

SITE_ID = "site-1"


@pytest.fixture
def store() -> InMemorySiteStore:
    s = InMemorySiteStore([Website(id=SITE_ID, name="Example", url="https://example.com")])
    s.save_analysis(SITE_ID, AnalyzerOutput(score=55))
    return s


def _controller(analyzer: MockAnalyzer, fixer: MockFixApplier, store: InMemorySiteStore) -> RemediationController:
    return RemediationController(analyzer, fixer, store)


# --- Stop conditions ---


def test_stops_when_target_reached(store: InMemorySiteStore) -> None:
    """60 -> 70 -> 80 -> 90 with target 85: three iterations, target reached."""
    analyzer = MockAnalyzer(scores=[60, 70, 80, 90])
    fixer = MockFixApplier()

    result = _controller(analyzer, fixer, store).run(
        SITE_ID, RemediationConfig(target_score=85, max_iterations=5)
    )

    assert result.stopped_reason == StopReason.TARGET_REACHED
    assert result.iterations_completed == 3
    assert result.initial_score == 60
    assert result.final_score == 90
    assert result.final_score >= result.target_score
    assert result.score_improvement == 30
    assert [r.improvement for r in result.iterations] == [10, 10, 10]
    assert [r.iteration_number for r in result.iterations] == [1, 2, 3]
    assert analyzer.call_count == 4
    assert fixer.call_count == 3


def test_stops_on_low_improvement(store: InMemorySiteStore) -> None:
    """A +1 gain is under the default threshold of 2."""
    analyzer = MockAnalyzer(scores=[60, 61, 90])
    fixer = MockFixApplier()

    result = _controller(analyzer, fixer, store).run(SITE_ID, RemediationConfig())

    assert result.stopped_reason == StopReason.NO_IMPROVEMENT
    assert result.iterations_completed == 1
    assert result.final_score == 61
    assert result.iterations[-1].improvement < 2


def test_stops_on_regression(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[60, 55])

    result = _controller(analyzer, MockFixApplier(), store).run(SITE_ID, RemediationConfig())

    assert result.stopped_reason == StopReason.NO_IMPROVEMENT
    assert result.iterations[0].improvement == -5
    assert result.final_score == 55


def test_stops_at_max_iterations(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[50, 55, 60, 65])

    result = _controller(analyzer, MockFixApplier(), store).run(
        SITE_ID, RemediationConfig(target_score=90, max_iterations=3)
    )

    assert result.stopped_reason == StopReason.MAX_ITERATIONS
    assert result.iterations_completed == 3
    assert result.final_score == 65
    assert result.iterations_completed <= 3


def test_target_already_met_runs_no_iterations(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[92])
    fixer = MockFixApplier()

    result = _controller(analyzer, fixer, store).run(SITE_ID, RemediationConfig(target_score=85))

    assert result.stopped_reason == StopReason.TARGET_REACHED
    assert result.iterations_completed == 0
    assert result.iterations == []
    assert result.final_score == result.initial_score == 92
    assert fixer.call_count == 0
    assert analyzer.call_count == 1


def test_improvement_check_uses_only_current_iteration(store: InMemorySiteStore) -> None:
    """A big first gain does not carry over a weak second one."""
    analyzer = MockAnalyzer(scores=[50, 70, 71, 95])

    result = _controller(analyzer, MockFixApplier(), store).run(SITE_ID, RemediationConfig())

    assert result.stopped_reason == StopReason.NO_IMPROVEMENT
    assert result.iterations_completed == 2
    assert result.final_score == 71


# --- Score clamping ---


def test_scores_are_clamped(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[-20, 140])

    result = _controller(analyzer, MockFixApplier(), store).run(SITE_ID, RemediationConfig())

    assert result.initial_score == 0
    assert result.final_score == 100
    assert result.iterations[0].score_after == 100
    assert result.stopped_reason == StopReason.TARGET_REACHED


# --- Config validation and preconditions ---


@pytest.mark.parametrize(
    "config",
    [
        RemediationConfig(target_score=120),
        RemediationConfig(target_score=49),
        RemediationConfig(max_iterations=0),
        RemediationConfig(max_iterations=11),
        RemediationConfig(max_changes_per_iteration=0),
    ],
)
def test_invalid_config_rejected_before_analysis(store: InMemorySiteStore, config: RemediationConfig) -> None:
    analyzer = MockAnalyzer()
    fixer = MockFixApplier()

    with pytest.raises(InvalidConfigError):
        _controller(analyzer, fixer, store).run(SITE_ID, config)

    assert analyzer.call_count == 0
    assert fixer.call_count == 0


def test_missing_prior_analysis_raises() -> None:
    store = InMemorySiteStore([Website(id=SITE_ID, url="https://example.com")])
    analyzer = MockAnalyzer()

    with pytest.raises(NoAnalysisError):
        _controller(analyzer, MockFixApplier(), store).run(SITE_ID)

    assert analyzer.call_count == 0


# --- Failure handling ---


def test_fix_applier_failure_keeps_partial_progress(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[60, 70, 80])
    fixer = MockFixApplier(fail_on_call=2)

    result = _controller(analyzer, fixer, store).run(
        SITE_ID, RemediationConfig(target_score=85, max_iterations=5)
    )

    assert result.stopped_reason == StopReason.ERROR
    assert result.iterations_completed == 1
    assert result.errors
    assert "mock fix applier failure" in result.errors[-1]
    assert result.final_score == result.iterations[0].score_after == 70


def test_reanalysis_failure_stops_with_error(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[60, 70, 80], fail_on_call=3)

    result = _controller(analyzer, MockFixApplier(), store).run(SITE_ID, RemediationConfig())

    assert result.stopped_reason == StopReason.ERROR
    assert result.iterations_completed == 1
    assert result.final_score == 70
    assert any("Cannot access website" in e for e in result.errors)
    # fixes from the aborted iteration are still reported
    assert len(result.fixes_applied) == 4


def test_initial_analysis_failure_falls_back_to_stored_score(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(fail_on_call=1)
    fixer = MockFixApplier()

    result = _controller(analyzer, fixer, store).run(SITE_ID, RemediationConfig())

    assert result.stopped_reason == StopReason.ERROR
    assert result.iterations_completed == 0
    assert result.initial_score == result.final_score == 55
    assert result.errors
    assert fixer.call_count == 0


def test_per_issue_failures_are_recorded_not_fatal(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[60, 90])
    fixer = MockFixApplier(failing_types={FixType.MISSING_ALT_TEXT})

    result = _controller(analyzer, fixer, store).run(SITE_ID, RemediationConfig())

    assert result.stopped_reason == StopReason.TARGET_REACHED
    assert result.iterations[0].fixes_attempted == 2
    assert result.iterations[0].fixes_successful == 1
    assert result.errors == ["missing_alt_text: mock failure"]


# --- Fix selection passed through to the applier ---


def test_fix_types_and_cap_are_forwarded(store: InMemorySiteStore) -> None:
    issues = [Issue(type=FixType.MISSING_ALT_TEXT, element=f"/img/{i}.jpg") for i in range(5)]
    issues.append(Issue(type=FixType.POOR_TITLE_TAG))
    analyzer = MockAnalyzer(scores=[60, 90], issues=issues)
    fixer = MockFixApplier()

    config = RemediationConfig(fix_types={FixType.MISSING_ALT_TEXT}, max_changes_per_iteration=3)
    _controller(analyzer, fixer, store).run(SITE_ID, config)

    assert len(fixer.calls) == 1
    assert len(fixer.calls[0]) == 3
    assert all(i.type == FixType.MISSING_ALT_TEXT for i in fixer.calls[0])


def test_predefined_outcomes_are_collected_in_order(store: InMemorySiteStore) -> None:
    outcomes = [
        FixOutcome(type=FixType.POOR_TITLE_TAG, success=True),
        FixOutcome(type=FixType.HEADING_STRUCTURE, success=False, error="locked template"),
    ]
    analyzer = MockAnalyzer(scores=[60, 70, 90])

    result = run_remediation_loop(SITE_ID, analyzer, MockFixApplier(outcomes=outcomes), store)

    assert [f.type for f in result.fixes_applied] == [
        FixType.POOR_TITLE_TAG,
        FixType.HEADING_STRUCTURE,
        FixType.POOR_TITLE_TAG,
        FixType.HEADING_STRUCTURE,
    ]
    assert result.errors == ["heading_structure: locked template"] * 2


# --- Invariants across many score paths ---


@pytest.mark.parametrize(
    "scores",
    [
        [10, 20, 30, 40, 50, 60, 70, 80, 90, 100, 100],
        [50, 52, 54, 56, 58, 60],
        [80, 79],
        [0, 100],
        [40, 45, 45],
    ],
)
@pytest.mark.parametrize("max_iterations", [1, 3, 10])
def test_result_invariants(store: InMemorySiteStore, scores: list[float], max_iterations: int) -> None:
    config = RemediationConfig(max_iterations=max_iterations)

    result = _controller(MockAnalyzer(scores=scores), MockFixApplier(), store).run(SITE_ID, config)

    assert result.iterations_completed == len(result.iterations) <= max_iterations
    if result.iterations:
        assert result.final_score == result.iterations[-1].score_after
    else:
        assert result.final_score == result.initial_score
    if result.stopped_reason == StopReason.TARGET_REACHED:
        assert result.final_score >= result.target_score
    if result.stopped_reason == StopReason.NO_IMPROVEMENT:
        assert result.iterations[-1].improvement < config.min_improvement_threshold


# --- Iteration records ---


def test_iteration_records_are_frozen(store: InMemorySiteStore) -> None:
    result = _controller(MockAnalyzer(scores=[60, 90]), MockFixApplier(), store).run(SITE_ID)

    with pytest.raises(pydantic.ValidationError):
        result.iterations[0].score_after = 10
    assert result.iterations[0].score_after == 90


def test_iteration_records_carry_timings_and_timestamp(store: InMemorySiteStore) -> None:
    result = _controller(MockAnalyzer(scores=[60, 70, 90]), MockFixApplier(), store).run(SITE_ID)

    assert result.iterations_completed == 2
    for record in result.iterations:
        assert record.analysis_time_seconds >= 0
        assert record.fix_time_seconds >= 0
        assert record.timestamp is not None
        assert record.timestamp.tzinfo is not None
    assert result.iterations[0].timestamp <= result.iterations[1].timestamp


# --- Detailed log and run history ---


def test_detailed_log_follows_the_run(store: InMemorySiteStore) -> None:
    result = _controller(MockAnalyzer(scores=[60, 70, 90]), MockFixApplier(), store).run(SITE_ID)

    assert result.detailed_log == [
        "Initial score 60.0 with 2 issue(s)",
        "Iteration 1: 60.0 -> 70.0 (+10.0), 2/2 fix(es) applied",
        "Iteration 2: 70.0 -> 90.0 (+20.0), 2/2 fix(es) applied",
        "Stopped: target_reached at score 90.0",
    ]


def test_detailed_log_records_initial_failure(store: InMemorySiteStore) -> None:
    result = _controller(MockAnalyzer(fail_on_call=1), MockFixApplier(), store).run(SITE_ID)

    assert result.detailed_log[0].startswith("Initial analysis failed: Cannot access website")
    assert result.detailed_log[-1] == "Stopped: error at score 55.0"


def test_run_is_recorded_in_history(store: InMemorySiteStore) -> None:
    controller = _controller(MockAnalyzer(scores=[60, 70, 90]), MockFixApplier(), store)

    result = controller.run(SITE_ID)

    [record] = store.run_history(SITE_ID)
    assert record.kind == RunKind.ITERATIVE
    assert record.type == ActivityType.AI_FIXES_APPLIED
    assert record.dry_run is False
    assert record.score_before == result.initial_score == 60
    assert record.score_after == result.final_score == 90
    assert record.fixes_attempted == record.fixes_successful == 4
    assert record.stopped_reason == StopReason.TARGET_REACHED


def test_failed_run_is_recorded_as_failure(store: InMemorySiteStore) -> None:
    _controller(MockAnalyzer(scores=[60]), MockFixApplier(fail_on_call=1), store).run(SITE_ID)

    [record] = store.run_history(SITE_ID)
    assert record.type == ActivityType.AI_FIX_FAILED
    assert record.stopped_reason == StopReason.ERROR
    assert any("mock fix applier failure" in e for e in record.errors)


def test_run_without_fixes_is_recorded_as_attempt(store: InMemorySiteStore) -> None:
    _controller(MockAnalyzer(scores=[95]), MockFixApplier(), store).run(SITE_ID)

    [record] = store.run_history(SITE_ID)
    assert record.type == ActivityType.AI_FIX_ATTEMPTED
    assert record.fixes_attempted == 0


# --- Fix applier write failures through the controller ---


class FlakyCmsWriter(DryRunSiteWriter):
    def write(self, site_id: str, issue: Issue, value: str) -> None:
        if issue.type == FixType.MISSING_ALT_TEXT:
            raise ConnectionError("CMS timed out")
        super().write(site_id, issue, value)


def test_write_errors_do_not_abort_the_run(store: InMemorySiteStore) -> None:
    writer = FlakyCmsWriter()
    chat = SimpleNamespace(complete=lambda **kwargs: SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps({"value": "generated"})))]
    ))
    fixer = MistralFixApplier(writer, client=SimpleNamespace(chat=chat), retry_delay=0)

    result = RemediationController(MockAnalyzer(scores=[60, 90]), fixer, store).run(SITE_ID)

    assert result.stopped_reason == StopReason.TARGET_REACHED
    assert result.iterations_completed == 1
    assert result.iterations[0].fixes_attempted == 2
    assert result.iterations[0].fixes_successful == 1
    assert [f.success for f in result.fixes_applied] == [True, False]
    assert result.errors == ["missing_alt_text: CMS timed out"]
    assert len(writer.changes) == 1


# --- Single pass ---


def test_apply_once_dry_run_plans_without_fixing(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[60])
    fixer = MockFixApplier()

    result = _controller(analyzer, fixer, store).apply_once(SITE_ID)

    assert result.dry_run is True
    assert result.status == StepStatus.SUCCESS
    assert result.score_before == 60
    assert result.score_after is None
    assert result.issues_found == 2
    assert [i.type for i in result.planned] == [FixType.MISSING_META_DESCRIPTION, FixType.MISSING_ALT_TEXT]
    assert result.estimated_impact == 20
    assert result.fixes_applied == []
    assert fixer.call_count == 0
    assert analyzer.call_count == 1

    [record] = store.run_history(SITE_ID)
    assert record.kind == RunKind.SINGLE_PASS
    assert record.type == ActivityType.AI_FIX_ATTEMPTED
    assert record.dry_run is True
    assert record.description == "Dry run: 2 fix(es) planned"


def test_apply_once_estimate_covers_only_selected_types(store: InMemorySiteStore) -> None:
    result = _controller(MockAnalyzer(scores=[60]), MockFixApplier(), store).apply_once(
        SITE_ID, fix_types=[FixType.MISSING_ALT_TEXT]
    )

    assert [i.type for i in result.planned] == [FixType.MISSING_ALT_TEXT]
    assert result.estimated_impact == 5


def test_apply_once_writes_fixes_and_rescores(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[60, 75])
    fixer = MockFixApplier(failing_types={FixType.MISSING_ALT_TEXT})

    result = _controller(analyzer, fixer, store).apply_once(SITE_ID, dry_run=False)

    assert result.status == StepStatus.PARTIAL
    assert result.score_before == 60
    assert result.score_after == 75
    assert [f.success for f in result.fixes_applied] == [True, False]
    assert result.errors == ["missing_alt_text: mock failure"]
    assert result.detailed_log[-1] == "Score after fixes 75.0"
    assert analyzer.call_count == 2

    [record] = store.run_history(SITE_ID)
    assert record.type == ActivityType.AI_FIXES_APPLIED
    assert record.description == "Applied 1/2 fix(es)"
    assert record.score_after == 75


def test_apply_once_applier_failure_is_fatal(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[60, 75])

    result = _controller(analyzer, MockFixApplier(fail_on_call=1), store).apply_once(SITE_ID, dry_run=False)

    assert result.status == StepStatus.FATAL
    assert result.score_after is None
    assert "mock fix applier failure" in result.errors[-1]
    assert analyzer.call_count == 1
    assert store.run_history(SITE_ID)[0].type == ActivityType.AI_FIX_FAILED


def test_apply_once_reanalysis_failure_keeps_outcomes(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer(scores=[60, 75], fail_on_call=2)

    result = _controller(analyzer, MockFixApplier(), store).apply_once(SITE_ID, dry_run=False)

    assert result.status == StepStatus.FATAL
    assert result.score_after is None
    assert len(result.fixes_applied) == 2
    assert any("Cannot access website" in e for e in result.errors)


def test_apply_once_analysis_failure_uses_stored_score(store: InMemorySiteStore) -> None:
    fixer = MockFixApplier()

    result = _controller(MockAnalyzer(fail_on_call=1), fixer, store).apply_once(SITE_ID, dry_run=False)

    assert result.status == StepStatus.FATAL
    assert result.score_before == 55
    assert fixer.call_count == 0


def test_apply_once_requires_prior_analysis() -> None:
    empty = InMemorySiteStore([Website(id=SITE_ID, url="https://example.com")])
    analyzer = MockAnalyzer()

    with pytest.raises(NoAnalysisError):
        _controller(analyzer, MockFixApplier(), empty).apply_once(SITE_ID)
    assert analyzer.call_count == 0
    assert empty.run_history(SITE_ID) == []


def test_apply_once_rejects_zero_changes(store: InMemorySiteStore) -> None:
    analyzer = MockAnalyzer()

    with pytest.raises(InvalidConfigError):
        _controller(analyzer, MockFixApplier(), store).apply_once(SITE_ID, max_changes=0)
    assert analyzer.call_count == 0
