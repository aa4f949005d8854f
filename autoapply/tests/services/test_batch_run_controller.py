"""Tests for the daily batch run controller."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from autoapply.libs.matching.models import BatchRun, RunStats, RunStatus, SkipReason
from autoapply.services.batch_run_controller import (
    STALE_RUN_SUMMARY,
    BatchRunController,
    RunState,
)
from autoapply.tests.factories import make_candidate, make_job, unit_vector

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
AXIS_X = unit_vector(4, 0)
AXIS_Y = unit_vector(4, 1)


@pytest.fixture
def controller_factory(embedding_store, preferences_store, application_store, run_store, metrics_store, match_cache):
    def build(**kwargs):
        return BatchRunController(
            embedding_store=embedding_store,
            preferences_store=preferences_store,
            application_store=application_store,
            run_store=run_store,
            metrics_store=metrics_store,
            match_cache=match_cache,
            **kwargs,
        )
    return build


class TestRunLifecycle:

    async def test_zero_candidates_completes(self, controller_factory, run_store):
        controller = controller_factory()

        result = await controller.run(now=NOW)

        assert result.success
        assert result.status == RunState.COMPLETED
        assert result.stats.to_dict() == {
            "candidates_evaluated": 0,
            "matches_found": 0,
            "applications_submitted": 0,
            "applications_skipped": 0,
            "candidates_failed": 0,
        }
        run = await run_store.get_run(result.run_id)
        assert run.status == RunStatus.COMPLETED
        assert run.completed_at is not None

    async def test_end_to_end(self, controller_factory, embedding_store, preferences_store, run_store, metrics_store):
        embedding_store.add_job(make_job("job-1"), AXIS_X)
        embedding_store.add_job(make_job("job-2"), AXIS_Y)
        embedding_store.add_candidate(make_candidate("cand-1"), AXIS_X)
        embedding_store.add_candidate(make_candidate("cand-2"), AXIS_Y)
        embedding_store.add_candidate(make_candidate("cand-off"), AXIS_X)
        preferences_store.set("cand-off", auto_apply_enabled=False)

        result = await controller_factory().run(now=NOW)

        assert result.success
        assert result.stats.candidates_evaluated == 2
        assert result.stats.matches_found == 2
        assert result.stats.applications_submitted == 2
        assert {(r.candidate_id, r.job_posting_id) for r in result.results} == {
            ("cand-1", "job-1"),
            ("cand-2", "job-2"),
        }
        stored = await run_store.get_run(result.run_id)
        assert stored.stats.applications_submitted == 2
        saved = await metrics_store.load_metrics(result.run_id)
        assert saved["total_matches"] == 2
        assert saved["applications_submitted"] == 2

    async def test_second_run_skips_duplicates(self, controller_factory, embedding_store):
        embedding_store.add_job(make_job("job-1"), AXIS_X)
        embedding_store.add_candidate(make_candidate("cand-1"), AXIS_X)

        first = await controller_factory().run(now=NOW)
        second = await controller_factory().run(now=NOW)

        assert first.stats.applications_submitted == 1
        assert second.stats.applications_submitted == 0
        assert [r.reason for r in second.results] == [SkipReason.ALREADY_APPLIED]

    async def test_controller_runs_once(self, controller_factory):
        controller = controller_factory()
        await controller.run(now=NOW)

        with pytest.raises(RuntimeError):
            await controller.run(now=NOW)

    async def test_paging(self, controller_factory, embedding_store):
        embedding_store.add_job(make_job("job-1"), AXIS_X)
        for i in range(5):
            embedding_store.add_candidate(make_candidate(f"cand-{i}"), AXIS_X)
        offsets = []
        list_page = embedding_store.list_auto_apply_candidates_with_embeddings

        async def recording(limit, offset=0):
            offsets.append(offset)
            return await list_page(limit=limit, offset=offset)

        embedding_store.list_auto_apply_candidates_with_embeddings = recording

        result = await controller_factory(page_size=2, concurrency=2).run(now=NOW)

        assert result.stats.candidates_evaluated == 5
        assert offsets == [0, 2, 4]

    async def test_caches_matches_when_enabled(self, controller_factory, embedding_store, match_cache):
        embedding_store.add_job(make_job("job-1"), AXIS_X)
        embedding_store.add_candidate(make_candidate("cand-1"), AXIS_X)

        await controller_factory(cache_matches=True).run(now=NOW)

        assert ("cand-1", "job-1") in match_cache.matches

    async def test_does_not_cache_by_default(self, controller_factory, embedding_store, match_cache):
        embedding_store.add_job(make_job("job-1"), AXIS_X)
        embedding_store.add_candidate(make_candidate("cand-1"), AXIS_X)

        await controller_factory().run(now=NOW)

        assert match_cache.matches == {}

    async def test_reports_outcome(self, controller_factory):
        with patch("autoapply.services.batch_run_controller.report_run_outcome") as report:
            await controller_factory().run(now=NOW)

        assert report.call_args.args[0] == "completed"


class TestFailureHandling:

    async def test_candidate_failure_is_isolated(self, controller_factory, embedding_store):
        embedding_store.add_job(make_job("job-1"), AXIS_X)
        embedding_store.add_candidate(make_candidate("cand-bad"), [float("nan")] * 4)
        embedding_store.add_candidate(make_candidate("cand-good"), AXIS_X)

        result = await controller_factory().run(now=NOW)

        assert result.success
        assert result.stats.candidates_evaluated == 2
        assert result.stats.candidates_failed == 1
        assert result.stats.applications_submitted == 1
        assert result.metrics.error_count == 1

    async def test_run_allocation_failure(self, controller_factory, run_store, embedding_store):
        run_store.create_run = AsyncMock(side_effect=ConnectionError("db down"))
        embedding_store.list_auto_apply_candidates_with_embeddings = AsyncMock()

        result = await controller_factory().run(now=NOW)

        assert not result.success
        assert result.status == RunState.FAILED
        assert result.run_id is None
        assert "db down" in result.error
        embedding_store.list_auto_apply_candidates_with_embeddings.assert_not_awaited()

    async def test_candidate_pool_failure_fails_run(self, controller_factory, embedding_store, run_store):
        embedding_store.list_auto_apply_candidates_with_embeddings = AsyncMock(side_effect=TimeoutError("slow"))
        completed = []
        complete_run = run_store.complete_run

        async def recording(run_id, stats, error=None):
            completed.append(run_id)
            await complete_run(run_id, stats, error)

        run_store.complete_run = recording

        result = await controller_factory().run(now=NOW)

        assert result.status == RunState.FAILED
        assert result.error.startswith("Failed to fetch candidates")
        assert completed == [result.run_id]
        stored = await run_store.get_run(result.run_id)
        assert stored.status == RunStatus.FAILED
        assert stored.error_summary == result.error

    async def test_job_pool_failure_fails_each_candidate(self, controller_factory, embedding_store):
        embedding_store.add_candidate(make_candidate("cand-1"), AXIS_X)
        embedding_store.add_candidate(make_candidate("cand-2"), AXIS_X)
        embedding_store.list_open_jobs_with_embeddings = AsyncMock(side_effect=ConnectionError("jobs down"))

        result = await controller_factory().run(now=NOW)

        assert result.success
        assert result.stats.candidates_failed == 2
        assert result.stats.candidates_evaluated == 2

    async def test_finalize_failure_marks_failed(self, controller_factory, run_store):
        run_store.complete_run = AsyncMock(side_effect=ConnectionError("lost"))

        result = await controller_factory().run(now=NOW)

        assert result.status == RunState.FAILED
        assert "lost" in result.error

    async def test_run_reaped_while_running_keeps_stored_outcome(self, controller_factory, embedding_store, run_store):
        embedding_store.add_job(make_job("job-1"), AXIS_X)
        embedding_store.add_candidate(make_candidate("cand-1"), AXIS_X)
        complete_run = run_store.complete_run

        async def reaped_first(run_id, stats, error=None):
            # Another batch reaps this run before it finishes
            await complete_run(run_id, RunStats(), error=STALE_RUN_SUMMARY)
            await complete_run(run_id, stats, error)

        run_store.complete_run = reaped_first

        result = await controller_factory().run(now=NOW)

        assert result.status == RunState.FAILED
        assert "already failed" in result.error
        stored = await run_store.get_run(result.run_id)
        assert stored.status == RunStatus.FAILED
        assert stored.error_summary == STALE_RUN_SUMMARY
        assert stored.stats.candidates_evaluated == 0

    async def test_reaper_skips_run_finished_meanwhile(self, controller_factory, run_store):
        run_store.runs["old"] = BatchRun(run_id="old", started_at=NOW - timedelta(hours=4))
        list_stale_runs = run_store.list_stale_runs

        async def finishes_after_listing(older_than):
            stale = await list_stale_runs(older_than)
            run_store.runs["old"].status = RunStatus.COMPLETED
            return stale

        run_store.list_stale_runs = finishes_after_listing

        reaped = await controller_factory().reap_stale_runs(now=NOW)

        assert reaped == []
        assert run_store.runs["old"].status == RunStatus.COMPLETED

    async def test_metrics_save_failure_does_not_fail_run(self, controller_factory, metrics_store):
        metrics_store.save_metrics = AsyncMock(side_effect=ConnectionError("metrics down"))

        result = await controller_factory().run(now=NOW)

        assert result.success


class TestStaleRunReaper:

    async def test_reaps_old_in_progress_runs(self, controller_factory, run_store):
        run_store.runs["old"] = BatchRun(run_id="old", started_at=NOW - timedelta(hours=4))
        run_store.runs["recent"] = BatchRun(run_id="recent", started_at=NOW - timedelta(minutes=30))

        reaped = await controller_factory().reap_stale_runs(now=NOW)

        assert reaped == ["old"]
        assert run_store.runs["old"].status == RunStatus.FAILED
        assert run_store.runs["old"].error_summary == STALE_RUN_SUMMARY
        assert run_store.runs["recent"].status == RunStatus.IN_PROGRESS

    async def test_run_reaps_first(self, controller_factory, run_store):
        run_store.runs["old"] = BatchRun(run_id="old", started_at=NOW - timedelta(days=1))

        result = await controller_factory().run(now=NOW)

        assert result.success
        assert run_store.runs["old"].status == RunStatus.FAILED

    async def test_reaper_failure_does_not_block_run(self, controller_factory, run_store):
        run_store.list_stale_runs = AsyncMock(side_effect=ConnectionError("db"))

        result = await controller_factory().run(now=NOW)

        assert result.success


def test_summary_text():
    from autoapply.services.batch_run_controller import BatchRunResult

    result = BatchRunResult(
        success=True,
        status=RunState.COMPLETED,
        run_id="run-1",
        stats=RunStats(candidates_evaluated=3, matches_found=4, applications_submitted=2, applications_skipped=2),
        duration_ms=120,
    )
    text = result.summary_text()
    assert "Run ID: run-1" in text
    assert "- Candidates Evaluated: 3" in text
    assert "- Applications Submitted: 2" in text
