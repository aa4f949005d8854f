"""
Matching and run-level telemetry.

Specialised helpers on top of ``autoapply.metrics.core`` for timing the
matching paths, reporting hybrid score distributions and batch run outcomes.
"""

from typing import Dict, List, Optional, Callable

from autoapply.core.config import settings
from autoapply.libs.matching.models import SkipReason
from autoapply.metrics.core import (
    MetricNames,
    async_timer,
    increment_counter,
    report_gauge,
    report_statistical_metrics,
    report_timing,
)


def async_matching_algorithm_timer(algorithm_name: str) -> Callable:
    """
    Decorator to time an async matching path.

    Example:
        @async_matching_algorithm_timer("candidate_to_jobs")
        async def find_matching_jobs(...):
            ...
    """
    return async_timer(
        MetricNames.MATCHING_DURATION,
        {"algorithm": algorithm_name}
    )


def report_match_score_distribution(
    scores: List[int],
    tags: Optional[Dict[str, str]] = None
) -> None:
    """
    Report statistics and 10-point buckets for hybrid match scores (0-100).

    Example:
        report_match_score_distribution([72, 88, 95], {"direction": "candidate_to_jobs"})
    """
    if not settings.metrics_enabled or not scores:
        return

    report_statistical_metrics(MetricNames.MATCH_SCORE, [float(s) for s in scores], tags)
    report_gauge(MetricNames.MATCH_COUNT, len(scores), tags)

    buckets = {f"{i * 10}-{i * 10 + 9}": 0 for i in range(10)}
    for score in scores:
        # 100 falls into the top bucket
        index = min(9, max(0, int(score) // 10))
        buckets[f"{index * 10}-{index * 10 + 9}"] += 1

    for bucket, count in buckets.items():
        bucket_tags = dict(tags) if tags else {}
        bucket_tags["bucket"] = bucket
        report_gauge(f"{MetricNames.MATCH_SCORE}.bucket", count, bucket_tags)


def report_submission_outcome(success: bool, reason: Optional[str] = None) -> None:
    if not settings.metrics_enabled:
        return
    if success:
        increment_counter(MetricNames.APPLICATION_SUBMITTED)
    else:
        increment_counter(MetricNames.APPLICATION_SKIPPED, {"reason": _reason_tag(reason)})


def report_run_outcome(status: str, duration_seconds: float, stats: Dict[str, int]) -> None:
    """Report duration, final status and counters for a finished batch run."""
    if not settings.metrics_enabled:
        return

    tags = {"status": status}
    report_timing(MetricNames.RUN_DURATION, duration_seconds, tags)
    increment_counter(MetricNames.RUN_OUTCOME, tags)
    report_gauge(MetricNames.RUN_CANDIDATES, stats.get("candidates_evaluated", 0), tags)
    report_gauge(MetricNames.RUN_CANDIDATE_FAILURES, stats.get("candidates_failed", 0), tags)


def _reason_tag(reason: Optional[str]) -> str:
    if not reason:
        return "unknown"
    if SkipReason.is_below_threshold(reason):
        return "below_threshold"
    if reason in (SkipReason.AUTO_APPLY_DISABLED, SkipReason.DAILY_LIMIT_REACHED, SkipReason.ALREADY_APPLIED):
        return reason.lower().replace(" ", "_").replace("-", "_")
    return "error"
