"""Data contracts for the SEO remediation loop.

Defines the structured types flowing between analyzer -> fix applier -> re-analyzer -> controller.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum, auto

from pydantic import BaseModel, ConfigDict, Field

MIN_SCORE = 0.0
MAX_SCORE = 100.0


class FixType(StrEnum):
    MISSING_ALT_TEXT = auto()
    MISSING_META_DESCRIPTION = auto()
    POOR_TITLE_TAG = auto()
    HEADING_STRUCTURE = auto()
    INTERNAL_LINKING = auto()
    IMAGE_OPTIMIZATION = auto()


FIX_TYPE_DESCRIPTIONS: dict[FixType, str] = {
    FixType.MISSING_ALT_TEXT: "Add missing alt text to images",
    FixType.MISSING_META_DESCRIPTION: "Optimize meta descriptions",
    FixType.POOR_TITLE_TAG: "Improve title tags",
    FixType.HEADING_STRUCTURE: "Fix heading hierarchy",
    FixType.INTERNAL_LINKING: "Add internal links",
    FixType.IMAGE_OPTIMIZATION: "Optimize images for SEO",
}


class StopReason(StrEnum):
    TARGET_REACHED = auto()
    MAX_ITERATIONS = auto()
    NO_IMPROVEMENT = auto()
    ERROR = auto()


class StepStatus(StrEnum):
    """Tagged outcome of one collaborator call inside the loop."""

    SUCCESS = auto()
    PARTIAL = auto()
    FATAL = auto()


def clamp_score(value: float) -> float:
    """Pin an analyzer score into [0, 100]."""
    return max(MIN_SCORE, min(MAX_SCORE, float(value)))


class Website(BaseModel):
    id: str
    name: str = ""
    url: str


class Issue(BaseModel):
    """A single remediable SEO problem detected by the analyzer."""

    type: FixType = Field(description="Fix-type category this issue belongs to")
    detail: str = Field(default="", description="Human readable description of the problem")
    element: str | None = Field(default=None, description="Selector, src or snippet locating the issue")


class AnalyzerOutput(BaseModel):
    """Structured output from the SEO analyzer.

    ``score`` is stored exactly as reported; readers pin it with :func:`clamp_score`.
    """

    score: float
    issues: list[Issue] = Field(default_factory=list)
    url: str = ""
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FixOutcome(BaseModel):
    """Per-issue result reported by the fix applier."""

    type: FixType
    success: bool
    error: str | None = None
    detail: str = ""
    value: str | None = Field(default=None, description="Content written to the site, if any")


class FixBatch(BaseModel):
    """Result of one fix-application step."""

    status: StepStatus
    outcomes: list[FixOutcome] = Field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_outcomes(cls, outcomes: list[FixOutcome]) -> FixBatch:
        if all(o.success for o in outcomes):
            return cls(status=StepStatus.SUCCESS, outcomes=outcomes)
        return cls(status=StepStatus.PARTIAL, outcomes=outcomes)


class AnalysisStep(BaseModel):
    """Result of one analysis step; ``score`` is already clamped."""

    status: StepStatus
    output: AnalyzerOutput | None = None
    score: float = 0.0
    error: str | None = None


class RemediationConfig(BaseModel):
    target_score: float = 85
    max_iterations: int = 5
    min_improvement_threshold: float = 2
    fix_types: set[FixType] | None = None
    max_changes_per_iteration: int = 20
    skip_backup: bool = False


class IterationRecord(BaseModel):
    """One analyze -> fix -> re-analyze pass. Frozen once appended."""

    model_config = ConfigDict(frozen=True)

    iteration_number: int = Field(ge=1)
    score_before: float = Field(ge=MIN_SCORE, le=MAX_SCORE)
    score_after: float = Field(ge=MIN_SCORE, le=MAX_SCORE)
    improvement: float
    fixes_attempted: int = 0
    fixes_successful: int = 0
    analysis_time_seconds: float = 0.0
    fix_time_seconds: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RemediationResult(BaseModel):
    """Full result of one remediation run."""

    site_id: str
    initial_score: float
    final_score: float
    score_improvement: float = 0.0
    target_score: float
    iterations_completed: int = 0
    stopped_reason: StopReason
    iterations: list[IterationRecord] = Field(default_factory=list)
    fixes_applied: list[FixOutcome] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    detailed_log: list[str] = Field(default_factory=list)

    @property
    def target_reached(self) -> bool:
        return self.final_score >= self.target_score


class SinglePassResult(BaseModel):
    """One analyze -> fix (-> re-analyze) pass; a dry run only plans fixes."""

    site_id: str
    dry_run: bool
    status: StepStatus
    score_before: float
    score_after: float | None = None
    issues_found: int = 0
    planned: list[Issue] = Field(default_factory=list)
    fixes_applied: list[FixOutcome] = Field(default_factory=list)
    estimated_impact: float = Field(default=0.0, description="Score points gained if every planned fix succeeds")
    errors: list[str] = Field(default_factory=list)
    detailed_log: list[str] = Field(default_factory=list)


class RunKind(StrEnum):
    ITERATIVE = auto()
    SINGLE_PASS = auto()


class ActivityType(StrEnum):
    AI_FIXES_APPLIED = auto()
    AI_FIX_ATTEMPTED = auto()
    AI_FIX_FAILED = auto()


class RunRecord(BaseModel):
    """History entry written once per finished run."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    kind: RunKind
    type: ActivityType
    description: str
    dry_run: bool = False
    score_before: float
    score_after: float
    fixes_attempted: int = 0
    fixes_successful: int = 0
    stopped_reason: StopReason | None = None
    errors: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RemediationStats(BaseModel):
    """Aggregate numbers derived from a finished run."""

    fixes_attempted: int = 0
    fixes_successful: int = 0
    fixes_failed: int = 0
    score_progression_percentage: int = 0
    average_improvement_per_iteration: float = 0.0
    total_processing_time: float = 0.0
