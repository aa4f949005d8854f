"""
Daily batch run controller.

Owns the lifecycle of one auto-apply run: allocates the run record, pages
through opted-in candidates, matches and submits per candidate with bounded
concurrency, and finalizes the run record exactly once.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from autoapply.core.config import settings
from autoapply.core.interfaces import (
    ApplicationStore,
    EmbeddingStore,
    MatchCache,
    MetricsStore,
    PreferencesStore,
    RunStore,
)
from autoapply.libs.matching.exceptions import (
    RunAllocationError,
    RunAlreadyFinalizedError,
    UpstreamUnavailableError,
)
from autoapply.libs.matching.models import (
    ApplicationSubmissionResult,
    CandidateProfile,
    JobPosting,
    Match,
    RunStats,
    utcnow,
)
from autoapply.libs.matching.orchestrator import MatchOrchestrator
from autoapply.libs.matching.vector_math import validate_vector
from autoapply.log.logging import logger, run_context
from autoapply.metrics.algorithm import report_run_outcome
from autoapply.services.auto_apply_service import AutoApplyService
from autoapply.services.metrics_tracking_service import (
    MatchingMetrics,
    MetricsTrackingService,
    create_empty_metrics,
    finalize_metrics,
    record_error,
    track_applications,
    track_matches,
    track_pool,
)

STALE_RUN_SUMMARY = "Stale run reaped"

JobPool = List[Tuple[JobPosting, Sequence[float]]]


class RunState(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BatchRunResult:
    """Outcome of one batch run as returned to the caller."""

    success: bool
    status: RunState
    run_id: Optional[str]
    stats: RunStats
    duration_ms: int
    error: Optional[str] = None
    matches: List[Match] = field(default_factory=list)
    results: List[ApplicationSubmissionResult] = field(default_factory=list)
    metrics: Optional[MatchingMetrics] = None

    def summary_text(self) -> str:
        errors = f"{self.stats.candidates_failed} candidate errors" if self.stats.candidates_failed else "no candidate errors"
        lines = [
            "Matching Run Summary",
            "====================",
            f"Run ID: {self.run_id or 'n/a'}",
            f"Status: {self.status.value} ({errors})",
            f"Duration: {self.duration_ms} ms",
            "",
            "Results:",
            f"- Candidates Evaluated: {self.stats.candidates_evaluated}",
            f"- Matches Found: {self.stats.matches_found}",
            f"- Applications Submitted: {self.stats.applications_submitted}",
            f"- Applications Skipped: {self.stats.applications_skipped}",
        ]
        if self.error:
            lines.append(f"Error: {self.error}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "run_id": self.run_id,
            "stats": self.stats.to_dict(),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "matches": [m.to_dict() for m in self.matches],
            "results": [r.to_dict() for r in self.results],
        }


class BatchRunController:
    """
    Drives a single daily run.

    A controller instance runs once; create a new one for the next run.
    """

    def __init__(
        self,
        embedding_store: EmbeddingStore,
        preferences_store: PreferencesStore,
        application_store: ApplicationStore,
        run_store: RunStore,
        metrics_store: Optional[MetricsStore] = None,
        match_cache: Optional[MatchCache] = None,
        orchestrator: Optional[MatchOrchestrator] = None,
        auto_apply_service: Optional[AutoApplyService] = None,
        page_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        cache_matches: Optional[bool] = None,
    ):
        self.embedding_store = embedding_store
        self.run_store = run_store
        self.metrics_service = MetricsTrackingService(metrics_store) if metrics_store else None
        self.match_cache = match_cache
        self.cache_matches = settings.cache_matches if cache_matches is None else cache_matches
        self.orchestrator = orchestrator or MatchOrchestrator(embedding_store)
        self.auto_apply_service = auto_apply_service or AutoApplyService(preferences_store, application_store)
        self.page_size = page_size or settings.candidate_page_size
        self.concurrency = max(1, concurrency or settings.candidate_concurrency)
        self._state = RunState.INITIALIZING

    @property
    def state(self) -> RunState:
        return self._state

    async def reap_stale_runs(self, now: Optional[datetime] = None) -> List[str]:
        """
        Fail in-progress runs older than ``settings.stale_run_after_minutes``.

        Returns:
            Ids of the runs that were reaped
        """
        cutoff = (now or utcnow()) - timedelta(minutes=settings.stale_run_after_minutes)
        stale_runs = await self.run_store.list_stale_runs(cutoff)
        reaped: List[str] = []
        for run in stale_runs:
            try:
                await self.run_store.complete_run(run.run_id, run.stats, error=STALE_RUN_SUMMARY)
                reaped.append(run.run_id)
            except RunAlreadyFinalizedError:
                logger.info("Stale run finished before it was reaped", run_id=run.run_id)
            except Exception as e:
                logger.error("Failed to reap stale run", run_id=run.run_id, error=str(e))
        if reaped:
            logger.warning("Reaped stale runs", run_ids=reaped, cutoff=cutoff.isoformat())
        return reaped

    async def run(self, now: Optional[datetime] = None, reap_stale: bool = True) -> BatchRunResult:
        """
        Execute the run from allocation to finalization.

        Per-candidate failures are counted and logged; only failures outside
        the candidate loop mark the run as failed.
        """
        if self._state != RunState.INITIALIZING:
            raise RuntimeError(f"Run already started (state={self._state.value})")

        started = time.perf_counter()
        stats = RunStats()

        if reap_stale:
            try:
                await self.reap_stale_runs(now=now)
            except Exception as e:
                logger.error("Stale run reaper failed", error=str(e))

        try:
            run_id = await self.run_store.create_run()
        except Exception as e:
            error = RunAllocationError(f"Failed to create run record: {e}")
            logger.error("Run allocation failed", error=str(error))
            self._state = RunState.FAILED
            report_run_outcome(self._state.value, time.perf_counter() - started, stats.to_dict())
            return BatchRunResult(
                success=False,
                status=self._state,
                run_id=None,
                stats=stats,
                duration_ms=_elapsed_ms(started),
                error=str(error),
            )

        self._state = RunState.RUNNING
        logger.info("Batch run started", run_id=run_id, page_size=self.page_size, concurrency=self.concurrency)

        metrics = create_empty_metrics(
            run_id,
            config={
                "similarity_threshold": self.orchestrator.similarity_threshold,
                "top_n_jobs": self.orchestrator.top_n_jobs,
                "page_size": self.page_size,
                "concurrency": self.concurrency,
            },
        )
        matches: List[Match] = []
        results: List[ApplicationSubmissionResult] = []
        error: Optional[str] = None

        try:
            with run_context(run_id=run_id):
                await self._process_all_candidates(stats, metrics, matches, results, now)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.exception("Batch run failed", run_id=run_id, error=error)

        self._state = RunState.FAILED if error else RunState.COMPLETED
        try:
            await self.run_store.complete_run(run_id, stats, error)
        except RunAlreadyFinalizedError as e:
            # Typically reaped as stale by a later batch; the stored outcome stands
            logger.warning(
                "Run record already finalized, counters not written",
                run_id=run_id,
                stored_status=e.status,
                **stats.to_dict(),
            )
            self._state = RunState.FAILED
            error = error or str(e)
        except Exception as e:
            # The record stays in_progress and is picked up by the stale run reaper
            logger.exception("Failed to finalize run record", run_id=run_id, error=str(e))
            self._state = RunState.FAILED
            error = error or f"Failed to finalize run: {e}"

        await self._finish_metrics(metrics, error)
        duration_ms = _elapsed_ms(started)
        report_run_outcome(self._state.value, duration_ms / 1000, stats.to_dict())

        log = logger.success if self._state == RunState.COMPLETED else logger.error
        log(
            "Batch run finished",
            run_id=run_id,
            status=self._state.value,
            duration_ms=duration_ms,
            **stats.to_dict(),
        )

        return BatchRunResult(
            success=self._state == RunState.COMPLETED,
            status=self._state,
            run_id=run_id,
            stats=stats,
            duration_ms=duration_ms,
            error=error,
            matches=matches,
            results=results,
            metrics=metrics,
        )

    async def _process_all_candidates(
        self,
        stats: RunStats,
        metrics: MatchingMetrics,
        matches: List[Match],
        results: List[ApplicationSubmissionResult],
        now: Optional[datetime],
    ) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)
        offset = 0

        while True:
            try:
                page = await self.embedding_store.list_auto_apply_candidates_with_embeddings(
                    limit=self.page_size, offset=offset
                )
            except Exception as e:
                raise UpstreamUnavailableError(f"Failed to fetch candidates: {e}") from e

            if not page:
                break

            search_started = time.perf_counter()
            job_pool: Union[JobPool, Exception]
            try:
                job_pool = await self.orchestrator.load_job_pool()
            except UpstreamUnavailableError as e:
                # Every candidate of this page fails on its own; the run goes on
                logger.error("Job pool unavailable for candidate page", offset=offset, error=str(e))
                job_pool = e

            track_pool(
                metrics,
                candidates_evaluated=len(page),
                candidates_with_embeddings=sum(1 for _, vector in page if vector is not None),
                jobs_available=0 if isinstance(job_pool, Exception) else len(job_pool),
                jobs_with_embeddings=0 if isinstance(job_pool, Exception) else len(job_pool),
                vector_search_latency_ms=_elapsed_ms(search_started),
            )

            await asyncio.gather(
                *(
                    self._process_candidate(
                        candidate, vector, job_pool, semaphore, stats, metrics, matches, results, now
                    )
                    for candidate, vector in page
                )
            )

            if len(page) < self.page_size:
                break
            offset += self.page_size

    async def _process_candidate(
        self,
        candidate: CandidateProfile,
        vector: Optional[Sequence[float]],
        job_pool: Union[JobPool, Exception],
        semaphore: asyncio.Semaphore,
        stats: RunStats,
        metrics: MatchingMetrics,
        matches: List[Match],
        results: List[ApplicationSubmissionResult],
        now: Optional[datetime],
    ) -> None:
        async with semaphore:
            try:
                if isinstance(job_pool, Exception):
                    raise UpstreamUnavailableError(str(job_pool))
                candidate_vector = validate_vector(vector)

                scoring_started = time.perf_counter()
                candidate_matches = await self.orchestrator.find_matching_jobs(
                    candidate, candidate_vector, job_pool
                )
                scoring_ms = _elapsed_ms(scoring_started)

                submit_started = time.perf_counter()
                submitted, skipped = await self.auto_apply_service.apply_for_candidate(
                    candidate.id, candidate_matches, now=now
                )
                submit_ms = _elapsed_ms(submit_started)
            except Exception as e:
                stats.candidates_evaluated += 1
                stats.candidates_failed += 1
                record_error(metrics, f"Candidate {candidate.id}: {e}")
                logger.warning(
                    "Candidate processing failed",
                    candidate_id=candidate.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return

            stats.candidates_evaluated += 1
            stats.matches_found += len(candidate_matches)
            stats.applications_submitted += len(submitted)
            stats.applications_skipped += len(skipped)
            track_matches(metrics, candidate_matches, scoring_latency_ms=scoring_ms)
            track_applications(metrics, submitted, skipped, submission_latency_ms=submit_ms)
            matches.extend(candidate_matches)
            results.extend(submitted)
            results.extend(skipped)

            if self.cache_matches and self.match_cache is not None and candidate_matches:
                try:
                    await self.match_cache.cache_matches(candidate_matches)
                except Exception as e:
                    logger.warning("Failed to cache matches", candidate_id=candidate.id, error=str(e))

    async def _finish_metrics(self, metrics: MatchingMetrics, error: Optional[str]) -> None:
        if error:
            record_error(metrics, error)
        finalize_metrics(metrics)
        if self.metrics_service is None:
            return
        try:
            await self.metrics_service.save_metrics(metrics)
        except Exception as e:
            logger.error("Run metrics were not saved", run_id=metrics.run_id, error=str(e))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
