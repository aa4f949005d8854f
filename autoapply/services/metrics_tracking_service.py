"""
Run-level matching metrics.

A ``MatchingMetrics`` record is created empty when a run starts, folded with
every batch of matches and submission results, finalized once when the run
ends and then persisted through a ``MetricsStore``.
"""
import statistics
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from autoapply.core.interfaces import MetricsStore
from autoapply.libs.matching.exceptions import MetricsFinalizedError
from autoapply.libs.matching.models import (
    ApplicationSubmissionResult,
    Match,
    SkipReason,
    utcnow,
)
from autoapply.log.logging import logger

MAX_RECORDED_ERRORS = 100


@dataclass
class MatchingMetrics:
    """Aggregate metrics for one batch run."""

    run_id: str
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None

    # Candidates and jobs
    total_candidates_evaluated: int = 0
    candidates_with_embeddings: int = 0
    total_jobs_available: int = 0
    total_jobs_with_embeddings: int = 0

    # Matching results
    total_matches: int = 0
    total_unique_candidates: int = 0
    total_unique_jobs: int = 0
    average_matches_per_candidate: float = 0.0

    # Application outcomes
    applications_submitted: int = 0
    applications_skipped: int = 0
    duplicate_applications: int = 0
    below_threshold_skipped: int = 0
    rate_limit_skipped: int = 0

    # Quality
    average_match_score: float = 0.0
    average_embedding_similarity: float = 0.0
    median_match_score: float = 0.0
    median_embedding_similarity: float = 0.0
    score_above_80_count: int = 0
    score_above_70_count: int = 0
    score_above_60_count: int = 0
    similarity_above_80_count: int = 0
    similarity_above_70_count: int = 0

    # Performance and cost
    vector_search_latency_ms: Optional[float] = None
    scoring_latency_ms: Optional[float] = None
    application_submission_latency_ms: Optional[float] = None
    total_cost_usd: Optional[float] = None
    cost_per_application: Optional[float] = None
    cost_per_match: Optional[float] = None

    config: Dict[str, Any] = field(default_factory=dict)
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    finalized: bool = False

    _scores: List[int] = field(default_factory=list, repr=False)
    _similarities: List[float] = field(default_factory=list, repr=False)
    _candidate_ids: Set[str] = field(default_factory=set, repr=False)
    _job_ids: Set[str] = field(default_factory=set, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Flat representation used by the metrics store and reports."""
        return {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "total_candidates_evaluated": self.total_candidates_evaluated,
            "candidates_with_embeddings": self.candidates_with_embeddings,
            "total_jobs_available": self.total_jobs_available,
            "total_jobs_with_embeddings": self.total_jobs_with_embeddings,
            "total_matches": self.total_matches,
            "total_unique_candidates": self.total_unique_candidates,
            "total_unique_jobs": self.total_unique_jobs,
            "avg_matches_per_candidate": self.average_matches_per_candidate,
            "applications_submitted": self.applications_submitted,
            "applications_skipped": self.applications_skipped,
            "duplicate_applications": self.duplicate_applications,
            "below_threshold_skipped": self.below_threshold_skipped,
            "rate_limit_skipped": self.rate_limit_skipped,
            "avg_match_score": self.average_match_score,
            "avg_embedding_similarity": self.average_embedding_similarity,
            "median_match_score": self.median_match_score,
            "median_embedding_similarity": self.median_embedding_similarity,
            "score_above_80": self.score_above_80_count,
            "score_above_70": self.score_above_70_count,
            "score_above_60": self.score_above_60_count,
            "similarity_above_80": self.similarity_above_80_count,
            "similarity_above_70": self.similarity_above_70_count,
            "vector_search_latency_ms": self.vector_search_latency_ms,
            "scoring_latency_ms": self.scoring_latency_ms,
            "application_submission_latency_ms": self.application_submission_latency_ms,
            "total_cost_usd": self.total_cost_usd,
            "cost_per_application": self.cost_per_application,
            "cost_per_match": self.cost_per_match,
            "error_count": self.error_count,
            "errors": list(self.errors) if self.errors else None,
            "config": self.config or None,
        }


def _ensure_open(metrics: MatchingMetrics) -> None:
    if metrics.finalized:
        raise MetricsFinalizedError(f"Metrics for run {metrics.run_id} are already finalized")


def _add_latency(current: Optional[float], value: Optional[float]) -> Optional[float]:
    if value is None:
        return current
    return (current or 0.0) + value


def create_empty_metrics(run_id: str, config: Optional[Dict[str, Any]] = None) -> MatchingMetrics:
    return MatchingMetrics(run_id=run_id, config=dict(config or {}))


def track_pool(
    metrics: MatchingMetrics,
    candidates_evaluated: int = 0,
    candidates_with_embeddings: int = 0,
    jobs_available: int = 0,
    jobs_with_embeddings: int = 0,
    vector_search_latency_ms: Optional[float] = None,
) -> MatchingMetrics:
    """Fold candidate and job pool sizes."""
    _ensure_open(metrics)
    metrics.total_candidates_evaluated += candidates_evaluated
    metrics.candidates_with_embeddings += candidates_with_embeddings
    metrics.total_jobs_available = max(metrics.total_jobs_available, jobs_available)
    metrics.total_jobs_with_embeddings = max(metrics.total_jobs_with_embeddings, jobs_with_embeddings)
    metrics.vector_search_latency_ms = _add_latency(metrics.vector_search_latency_ms, vector_search_latency_ms)
    return metrics


def track_matches(
    metrics: MatchingMetrics,
    matches: Sequence[Match],
    scoring_latency_ms: Optional[float] = None,
) -> MatchingMetrics:
    """
    Fold a batch of matches.

    Averages, medians and threshold buckets are recomputed over every match
    folded so far, not just the latest batch.
    """
    _ensure_open(metrics)
    for match in matches:
        metrics._scores.append(match.match_score)
        metrics._similarities.append(match.embedding_similarity)
        metrics._candidate_ids.add(match.candidate_id)
        metrics._job_ids.add(match.job_posting_id)

    scores = metrics._scores
    similarities = metrics._similarities

    metrics.total_matches = len(scores)
    metrics.total_unique_candidates = len(metrics._candidate_ids)
    metrics.total_unique_jobs = len(metrics._job_ids)
    metrics.average_matches_per_candidate = (
        len(scores) / len(metrics._candidate_ids) if metrics._candidate_ids else 0.0
    )
    if scores:
        metrics.average_match_score = statistics.fmean(scores)
        metrics.average_embedding_similarity = statistics.fmean(similarities)
        metrics.median_match_score = float(statistics.median(scores))
        metrics.median_embedding_similarity = float(statistics.median(similarities))
    metrics.score_above_80_count = sum(1 for s in scores if s >= 80)
    metrics.score_above_70_count = sum(1 for s in scores if s >= 70)
    metrics.score_above_60_count = sum(1 for s in scores if s >= 60)
    metrics.similarity_above_80_count = sum(1 for s in similarities if s >= 0.8)
    metrics.similarity_above_70_count = sum(1 for s in similarities if s >= 0.7)
    metrics.scoring_latency_ms = _add_latency(metrics.scoring_latency_ms, scoring_latency_ms)
    return metrics


def track_applications(
    metrics: MatchingMetrics,
    submitted: Sequence[ApplicationSubmissionResult],
    skipped: Sequence[ApplicationSubmissionResult],
    submission_latency_ms: Optional[float] = None,
) -> MatchingMetrics:
    """Fold submission results, splitting skips by reason."""
    _ensure_open(metrics)
    metrics.applications_submitted += len(submitted)
    metrics.applications_skipped += len(skipped)

    for result in skipped:
        if result.reason == SkipReason.ALREADY_APPLIED:
            metrics.duplicate_applications += 1
        elif SkipReason.is_below_threshold(result.reason):
            metrics.below_threshold_skipped += 1
        elif result.reason == SkipReason.DAILY_LIMIT_REACHED:
            metrics.rate_limit_skipped += 1

    metrics.application_submission_latency_ms = _add_latency(
        metrics.application_submission_latency_ms, submission_latency_ms
    )
    return metrics


def record_error(metrics: MatchingMetrics, message: str) -> MatchingMetrics:
    _ensure_open(metrics)
    metrics.error_count += 1
    if len(metrics.errors) < MAX_RECORDED_ERRORS:
        metrics.errors.append(message)
    return metrics


def finalize_metrics(
    metrics: MatchingMetrics,
    total_cost_usd: Optional[float] = None,
    now: Optional[datetime] = None,
) -> MatchingMetrics:
    """Stamp end time and duration, derive per-unit costs and freeze the record."""
    _ensure_open(metrics)
    metrics.end_time = now or utcnow()
    metrics.duration_ms = int((metrics.end_time - metrics.start_time).total_seconds() * 1000)

    if total_cost_usd is not None:
        metrics.total_cost_usd = total_cost_usd
    if metrics.total_cost_usd is not None:
        if metrics.applications_submitted:
            metrics.cost_per_application = metrics.total_cost_usd / metrics.applications_submitted
        if metrics.total_matches:
            metrics.cost_per_match = metrics.total_cost_usd / metrics.total_matches

    metrics.finalized = True
    return metrics


def _empty_aggregation() -> Dict[str, float]:
    return {
        "count": 0,
        "average": 0.0,
        "min": 0.0,
        "max": 0.0,
        "std_dev": 0.0
    }


def _calculate_aggregation(values: List[float]) -> Dict[str, float]:
    if not values:
        return _empty_aggregation()
    count = len(values)
    avg = sum(values) / count
    std_dev = (sum((x - avg) ** 2 for x in values) / count) ** 0.5
    return {
        "count": count,
        "average": avg,
        "min": min(values),
        "max": max(values),
        "std_dev": std_dev
    }


def summarize_runs(runs: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Build a comparison report over several persisted runs.

    Args:
        runs: Metrics records as produced by ``MatchingMetrics.to_dict``

    Returns:
        Dictionary with the runs and a summary of averages and totals
    """
    count = len(runs)
    durations = [float(r.get("duration_ms") or 0) for r in runs]
    applications = [int(r.get("applications_submitted") or 0) for r in runs]
    costs = [float(r.get("total_cost_usd") or 0.0) for r in runs]
    matches = [int(r.get("total_matches") or 0) for r in runs]

    summary = {
        "total_runs": count,
        "average_duration_ms": sum(durations) / count if count else 0.0,
        "average_applications_per_run": sum(applications) / count if count else 0.0,
        "average_cost_per_run": sum(costs) / count if count else 0.0,
        "total_matches": sum(matches),
        "total_applications": sum(applications),
        "total_cost_usd": sum(costs),
        "duration_ms": _calculate_aggregation(durations),
    }
    return {"runs": list(runs), "summary": summary}


class MetricsTrackingService:
    """Persists finalized run metrics and reads them back for reporting."""

    def __init__(self, store: MetricsStore):
        self.store = store

    async def save_metrics(self, metrics: MatchingMetrics) -> None:
        if not metrics.finalized:
            raise ValueError(f"Metrics for run {metrics.run_id} must be finalized before saving")
        try:
            await self.store.save_metrics(metrics)
        except Exception as e:
            logger.error(
                "Failed to save run metrics",
                run_id=metrics.run_id,
                error=str(e),
                error_type=type(e).__name__
            )
            raise
        logger.info("Run metrics saved", run_id=metrics.run_id, duration_ms=metrics.duration_ms)

    async def get_metrics_summary(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored metrics of one run, or None when unavailable."""
        try:
            return await self.store.load_metrics(run_id)
        except Exception as e:
            logger.error("Error retrieving run metrics", run_id=run_id, error=str(e))
            return None

    async def generate_comparison_report(self, run_ids: List[str]) -> Dict[str, Any]:
        try:
            runs = await self.store.load_many(run_ids)
        except Exception as e:
            logger.error(
                "Error generating comparison report",
                run_count=len(run_ids),
                error=str(e)
            )
            raise
        return summarize_runs(runs)
