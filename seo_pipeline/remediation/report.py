"""Summaries, statistics and next-step recommendations for finished runs."""

from __future__ import annotations

from collections import Counter

from seo_pipeline.remediation.models import (
    FIX_TYPE_DESCRIPTIONS,
    ActivityType,
    FixType,
    RemediationResult,
    RemediationStats,
    SinglePassResult,
    StopReason,
)
from seo_pipeline.remediation.store import SiteStore


def build_stats(result: RemediationResult) -> RemediationStats:
    attempted = len(result.fixes_applied)
    successful = sum(1 for f in result.fixes_applied if f.success)
    progression = 0
    if result.initial_score > 0:
        progression = round(result.score_improvement / result.initial_score * 100)
    average = 0.0
    if result.iterations_completed > 0:
        average = result.score_improvement / result.iterations_completed
    return RemediationStats(
        fixes_attempted=attempted,
        fixes_successful=successful,
        fixes_failed=attempted - successful,
        score_progression_percentage=progression,
        average_improvement_per_iteration=average,
        total_processing_time=sum(i.fix_time_seconds + i.analysis_time_seconds for i in result.iterations),
    )


def applied_by_type(result: RemediationResult | SinglePassResult) -> dict[FixType, int]:
    """Count successful fixes per fix type; every type is present."""
    counts = Counter(f.type for f in result.fixes_applied if f.success)
    return {fix_type: counts.get(fix_type, 0) for fix_type in FixType}


def build_recommendations(result: RemediationResult) -> list[str]:
    recommendations: list[str] = []

    if result.stopped_reason is StopReason.TARGET_REACHED:
        recommendations.append(f"Target reached: the website now scores {result.final_score:.0f}/100.")
        recommendations.append("Monitor the SEO score weekly to maintain this performance.")
        if result.final_score < 95:
            recommendations.append("Consider a detailed content audit to reach a 95+ score.")
    elif result.stopped_reason is StopReason.MAX_ITERATIONS:
        recommendations.append(
            f"Reached maximum iterations. Score improved by {result.score_improvement:.1f} points."
        )
        recommendations.append("Run the process again after addressing remaining critical issues manually.")
        recommendations.append("Review technical SEO elements that require manual intervention.")
    elif result.stopped_reason is StopReason.NO_IMPROVEMENT:
        recommendations.append("Score improvement plateaued. Consider manual optimization for remaining issues.")
        recommendations.append("Focus on content quality improvements and technical SEO elements.")
        recommendations.append("Review website structure and user experience factors.")
    elif result.stopped_reason is StopReason.ERROR:
        recommendations.append("Process encountered errors. Check website accessibility and try again.")
        recommendations.append("Review error logs for specific issues that need manual attention.")

    if result.final_score < 70:
        recommendations.append("Focus on critical SEO issues: meta descriptions, title tags, and image optimization.")
    elif result.final_score < 85:
        recommendations.append("Work on advanced SEO: internal linking, content structure, and technical optimization.")

    if result.iterations_completed > 0:
        average = result.score_improvement / result.iterations_completed
        if average > 5:
            recommendations.append(f"Strong improvement trend (+{average:.1f} points/iteration).")
        elif average > 2:
            recommendations.append(
                f"Steady improvement (+{average:.1f} points/iteration). Consider focusing on high-impact fixes."
            )

    return recommendations


def available_fixes(store: SiteStore, site_id: str) -> dict:
    """Issue counts per fix type from the latest stored analysis, plus the catalog."""
    analysis = store.latest_analysis(site_id)
    counts = Counter(issue.type for issue in analysis.issues) if analysis else Counter()
    return {
        "site_id": site_id,
        "has_analysis": analysis is not None,
        "score": analysis.score if analysis else None,
        "issue_counts": {str(fix_type): counts.get(fix_type, 0) for fix_type in FixType},
        "total_fixable": sum(counts.values()),
        "fix_types": {str(fix_type): desc for fix_type, desc in FIX_TYPE_DESCRIPTIONS.items()},
    }


def result_payload(result: RemediationResult) -> dict:
    """JSON-ready view of a run, shaped for API responses and --output-json."""
    return {
        **result.model_dump(mode="json"),
        "target_reached": result.target_reached,
        "stats": build_stats(result).model_dump(mode="json"),
        "applied": _applied_block(result),
        "recommendations": build_recommendations(result),
    }


def _applied_block(result: RemediationResult | SinglePassResult) -> dict:
    counts = applied_by_type(result)
    return {
        "total_fixes_applied": sum(counts.values()),
        **{str(fix_type): count for fix_type, count in counts.items()},
    }


def single_pass_payload(result: SinglePassResult) -> dict:
    """JSON-ready view of a one-shot fix, including the estimated score gain."""
    successful = sum(1 for f in result.fixes_applied if f.success)
    return {
        **result.model_dump(mode="json"),
        "stats": {
            "issues_found": result.issues_found,
            "fixes_planned": len(result.planned),
            "fixes_attempted": len(result.fixes_applied),
            "fixes_successful": successful,
            "estimated_impact": result.estimated_impact,
        },
        "applied": _applied_block(result),
    }


def fix_history(store: SiteStore, site_id: str) -> list[dict]:
    """Finished runs for a site, newest first."""
    return [
        {
            "date": record.created_at.isoformat(),
            "kind": str(record.kind),
            "type": str(record.type),
            "description": record.description,
            "success": record.type is ActivityType.AI_FIXES_APPLIED,
            "metadata": {
                "dry_run": record.dry_run,
                "score_before": record.score_before,
                "score_after": record.score_after,
                "fixes_attempted": record.fixes_attempted,
                "fixes_successful": record.fixes_successful,
                "stopped_reason": str(record.stopped_reason) if record.stopped_reason else None,
                "errors": list(record.errors),
            },
        }
        for record in store.run_history(site_id)
    ]
