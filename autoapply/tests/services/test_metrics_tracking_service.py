from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from autoapply.libs.matching.exceptions import MetricsFinalizedError
from autoapply.libs.matching.models import ApplicationSubmissionResult, SkipReason
from autoapply.services.metrics_tracking_service import (
    MAX_RECORDED_ERRORS,
    MetricsTrackingService,
    create_empty_metrics,
    finalize_metrics,
    record_error,
    summarize_runs,
    track_applications,
    track_matches,
    track_pool,
)
from autoapply.tests.factories import make_match


class TestFolding:

    def test_track_matches_is_cumulative(self):
        metrics = create_empty_metrics("run-1")
        track_matches(metrics, [make_match("c1", "j1", score=90, similarity=0.9)], scoring_latency_ms=5)
        track_matches(
            metrics,
            [make_match("c2", "j1", score=70, similarity=0.7), make_match("c2", "j2", score=50, similarity=0.5)],
            scoring_latency_ms=7,
        )

        assert metrics.total_matches == 3
        assert metrics.total_unique_candidates == 2
        assert metrics.total_unique_jobs == 2
        assert metrics.average_matches_per_candidate == pytest.approx(1.5)
        assert metrics.average_match_score == pytest.approx(70.0)
        assert metrics.median_match_score == 70.0
        assert metrics.average_embedding_similarity == pytest.approx(0.7)
        assert metrics.score_above_80_count == 1
        assert metrics.score_above_70_count == 2
        assert metrics.score_above_60_count == 2
        assert metrics.similarity_above_80_count == 1
        assert metrics.scoring_latency_ms == 12

    def test_empty_batch_keeps_zeroes(self):
        metrics = track_matches(create_empty_metrics("run-1"), [])
        assert metrics.total_matches == 0
        assert metrics.average_match_score == 0.0
        assert metrics.scoring_latency_ms is None

    def test_skips_are_categorized(self):
        match = make_match()
        metrics = create_empty_metrics("run-1")
        track_applications(
            metrics,
            [ApplicationSubmissionResult.submitted(match, "app-1")],
            [
                ApplicationSubmissionResult.skipped(match, SkipReason.ALREADY_APPLIED),
                ApplicationSubmissionResult.skipped(match, SkipReason.below_threshold(60, 70)),
                ApplicationSubmissionResult.skipped(match, SkipReason.DAILY_LIMIT_REACHED),
                ApplicationSubmissionResult.skipped(match, SkipReason.AUTO_APPLY_DISABLED),
            ],
        )

        assert metrics.applications_submitted == 1
        assert metrics.applications_skipped == 4
        assert metrics.duplicate_applications == 1
        assert metrics.below_threshold_skipped == 1
        assert metrics.rate_limit_skipped == 1

    def test_pool_sizes(self):
        metrics = create_empty_metrics("run-1")
        track_pool(metrics, candidates_evaluated=2, candidates_with_embeddings=2, jobs_available=10)
        track_pool(metrics, candidates_evaluated=1, candidates_with_embeddings=1, jobs_available=8)

        assert metrics.total_candidates_evaluated == 3
        assert metrics.candidates_with_embeddings == 3
        assert metrics.total_jobs_available == 10

    def test_recorded_errors_are_capped(self):
        metrics = create_empty_metrics("run-1")
        for i in range(MAX_RECORDED_ERRORS + 5):
            record_error(metrics, f"error {i}")

        assert metrics.error_count == MAX_RECORDED_ERRORS + 5
        assert len(metrics.errors) == MAX_RECORDED_ERRORS


class TestFinalize:

    def test_stamps_duration_and_costs(self):
        metrics = create_empty_metrics("run-1")
        track_matches(metrics, [make_match(job_id="j1"), make_match(job_id="j2")])
        track_applications(metrics, [ApplicationSubmissionResult.submitted(make_match(), "app-1")], [])

        finalize_metrics(metrics, total_cost_usd=0.5, now=metrics.start_time + timedelta(seconds=2))

        assert metrics.finalized
        assert metrics.duration_ms == 2000
        assert metrics.cost_per_application == pytest.approx(0.5)
        assert metrics.cost_per_match == pytest.approx(0.25)

    def test_no_cost_leaves_unit_costs_empty(self):
        metrics = finalize_metrics(create_empty_metrics("run-1"))
        assert metrics.cost_per_match is None
        assert metrics.cost_per_application is None

    def test_finalized_metrics_are_frozen(self):
        metrics = finalize_metrics(create_empty_metrics("run-1"))

        with pytest.raises(MetricsFinalizedError):
            track_matches(metrics, [make_match()])
        with pytest.raises(MetricsFinalizedError):
            record_error(metrics, "late")
        with pytest.raises(MetricsFinalizedError):
            finalize_metrics(metrics)

    def test_to_dict(self):
        metrics = create_empty_metrics("run-1", config={"page_size": 50})
        data = finalize_metrics(metrics).to_dict()

        assert data["run_id"] == "run-1"
        assert data["end_time"] is not None
        assert data["errors"] is None
        assert data["config"] == {"page_size": 50}


def test_summarize_runs():
    report = summarize_runs(
        [
            {"duration_ms": 100, "applications_submitted": 4, "total_cost_usd": 1.0, "total_matches": 10},
            {"duration_ms": 300, "applications_submitted": 2, "total_cost_usd": None, "total_matches": 6},
        ]
    )
    summary = report["summary"]

    assert summary["total_runs"] == 2
    assert summary["average_duration_ms"] == 200.0
    assert summary["total_applications"] == 6
    assert summary["total_matches"] == 16
    assert summary["total_cost_usd"] == 1.0
    assert summary["duration_ms"]["max"] == 300.0
    assert summary["duration_ms"]["std_dev"] == pytest.approx(100.0)


def test_summarize_no_runs():
    summary = summarize_runs([])["summary"]
    assert summary["total_runs"] == 0
    assert summary["average_duration_ms"] == 0.0
    assert summary["duration_ms"]["count"] == 0


class TestMetricsTrackingService:

    async def test_save_requires_finalized(self, metrics_store):
        service = MetricsTrackingService(metrics_store)

        with pytest.raises(ValueError):
            await service.save_metrics(create_empty_metrics("run-1"))

    async def test_save_and_load(self, metrics_store):
        service = MetricsTrackingService(metrics_store)
        await service.save_metrics(finalize_metrics(create_empty_metrics("run-1")))

        summary = await service.get_metrics_summary("run-1")

        assert summary["run_id"] == "run-1"

    async def test_save_propagates_store_errors(self, metrics_store):
        metrics_store.save_metrics = AsyncMock(side_effect=ConnectionError("down"))
        service = MetricsTrackingService(metrics_store)

        with pytest.raises(ConnectionError):
            await service.save_metrics(finalize_metrics(create_empty_metrics("run-1")))

    async def test_summary_returns_none_on_error(self, metrics_store):
        metrics_store.load_metrics = AsyncMock(side_effect=ConnectionError("down"))

        assert await MetricsTrackingService(metrics_store).get_metrics_summary("run-1") is None

    async def test_comparison_report(self, metrics_store):
        service = MetricsTrackingService(metrics_store)
        for run_id in ("run-1", "run-2"):
            await service.save_metrics(finalize_metrics(create_empty_metrics(run_id)))

        report = await service.generate_comparison_report(["run-2", "run-1", "missing"])

        assert [r["run_id"] for r in report["runs"]] == ["run-2", "run-1"]
        assert report["summary"]["total_runs"] == 2
