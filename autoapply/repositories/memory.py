"""
In-memory store implementations.

Used by the dry-run batch and as test fixtures. They follow the PostgreSQL
adapters' contract, including the unique (candidate, job) constraint and the
atomic daily quota on ``insert_application``.
"""

import asyncio
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

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
    DailyQuotaExceededError,
    DuplicateApplicationError,
    RunAlreadyFinalizedError,
)
from autoapply.libs.matching.models import (
    BatchRun,
    CandidateProfile,
    JobPosting,
    Match,
    RunStats,
    RunStatus,
    utcnow,
)
from autoapply.schemas.preferences import CandidatePreferences

Clock = Callable[[], datetime]


class InMemoryEmbeddingStore(EmbeddingStore):

    def __init__(
        self,
        candidates: Sequence[Tuple[CandidateProfile, Optional[Sequence[float]]]] = (),
        jobs: Sequence[Tuple[JobPosting, Optional[Sequence[float]]]] = (),
        preferences: Optional["InMemoryPreferencesStore"] = None,
    ):
        self.candidates: Dict[str, Tuple[CandidateProfile, Optional[Sequence[float]]]] = {}
        self.jobs: Dict[str, Tuple[JobPosting, Optional[Sequence[float]]]] = {}
        self.preferences = preferences
        for candidate, vector in candidates:
            self.add_candidate(candidate, vector)
        for job, vector in jobs:
            self.add_job(job, vector)

    def add_candidate(self, candidate: CandidateProfile, vector: Optional[Sequence[float]]) -> None:
        self.candidates[candidate.id] = (candidate, vector)

    def add_job(self, job: JobPosting, vector: Optional[Sequence[float]]) -> None:
        self.jobs[job.id] = (job, vector)

    async def get_candidate_embedding(self, candidate_id: str) -> Optional[Sequence[float]]:
        entry = self.candidates.get(candidate_id)
        return entry[1] if entry else None

    async def get_job_embedding(self, job_posting_id: str) -> Optional[Sequence[float]]:
        entry = self.jobs.get(job_posting_id)
        return entry[1] if entry else None

    async def list_open_jobs_with_embeddings(self) -> List[Tuple[JobPosting, Sequence[float]]]:
        return [
            (job, vector)
            for job_id, (job, vector) in sorted(self.jobs.items())
            if job.is_open and vector is not None
        ]

    def _opted_in(self, candidate_id: str) -> bool:
        if self.preferences is None:
            return settings.default_auto_apply_enabled
        return self.preferences.is_enabled(candidate_id)

    async def list_auto_apply_candidates_with_embeddings(
        self, limit: int, offset: int = 0
    ) -> List[Tuple[CandidateProfile, Sequence[float]]]:
        eligible = [
            (candidate, vector)
            for candidate_id, (candidate, vector) in sorted(self.candidates.items())
            if vector is not None and self._opted_in(candidate_id)
        ]
        return eligible[offset:offset + limit]

    async def list_candidates_with_embeddings(self, limit: int) -> List[Tuple[CandidateProfile, Sequence[float]]]:
        return [
            (candidate, vector)
            for _, (candidate, vector) in sorted(self.candidates.items())
            if vector is not None
        ][:limit]


class InMemoryPreferencesStore(PreferencesStore):

    def __init__(self, records: Optional[Dict[str, Dict[str, Any]]] = None):
        self.records: Dict[str, Dict[str, Any]] = dict(records or {})

    def set(self, candidate_id: str, **values: Any) -> None:
        self.records[candidate_id] = {**self.records.get(candidate_id, {}), **values}

    def is_enabled(self, candidate_id: str) -> bool:
        enabled = self.records.get(candidate_id, {}).get("auto_apply_enabled")
        return settings.default_auto_apply_enabled if enabled is None else bool(enabled)

    async def get_candidate_preferences(self, candidate_id: str) -> CandidatePreferences:
        return CandidatePreferences.from_record(candidate_id, self.records.get(candidate_id))


@dataclass
class StoredApplication:
    id: str
    candidate_id: str
    job_posting_id: str
    match_score: int
    match_reasons: List[str]
    auto_applied: bool = True
    created_at: datetime = field(default_factory=utcnow)


class InMemoryApplicationStore(ApplicationStore):
    """
    Applications keyed by (candidate, job).

    A lock makes the count and insert of ``insert_application`` atomic, as
    the advisory lock does in PostgreSQL.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.applications: Dict[Tuple[str, str], StoredApplication] = {}
        self.clock = clock or utcnow
        self._lock = asyncio.Lock()

    def add_existing(
        self,
        candidate_id: str,
        job_posting_id: str,
        created_at: Optional[datetime] = None,
        auto_applied: bool = True,
    ) -> StoredApplication:
        application = StoredApplication(
            id=str(uuid.uuid4()),
            candidate_id=candidate_id,
            job_posting_id=job_posting_id,
            match_score=0,
            match_reasons=[],
            auto_applied=auto_applied,
            created_at=created_at or self.clock(),
        )
        self.applications[(candidate_id, job_posting_id)] = application
        return application

    def _count_since(self, candidate_id: str, since: datetime) -> int:
        return sum(
            1
            for app in self.applications.values()
            if app.candidate_id == candidate_id and app.auto_applied and app.created_at >= since
        )

    async def has_previous_application(self, candidate_id: str, job_posting_id: str) -> bool:
        return (candidate_id, job_posting_id) in self.applications

    async def count_today_auto_applications(self, candidate_id: str, since: datetime) -> int:
        return self._count_since(candidate_id, since)

    async def insert_application(
        self,
        match: Match,
        daily_limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> str:
        async with self._lock:
            if match.key in self.applications:
                raise DuplicateApplicationError(match.candidate_id, match.job_posting_id)
            if daily_limit is not None:
                if since is None:
                    raise ValueError("since is required when daily_limit is given")
                if self._count_since(match.candidate_id, since) >= daily_limit:
                    raise DailyQuotaExceededError(match.candidate_id, daily_limit)
            application = StoredApplication(
                id=str(uuid.uuid4()),
                candidate_id=match.candidate_id,
                job_posting_id=match.job_posting_id,
                match_score=match.match_score,
                match_reasons=match.match_reasons,
                created_at=self.clock(),
            )
            self.applications[match.key] = application
            return application.id


class InMemoryRunStore(RunStore):

    def __init__(self, clock: Optional[Clock] = None):
        self.runs: Dict[str, BatchRun] = {}
        self.clock = clock or utcnow

    async def create_run(self) -> str:
        run = BatchRun(run_id=str(uuid.uuid4()), started_at=self.clock())
        self.runs[run.run_id] = run
        return run.run_id

    async def complete_run(self, run_id: str, stats: RunStats, error: Optional[str] = None) -> None:
        run = self.runs.get(run_id)
        if run is None:
            raise LookupError(f"Run {run_id} not found")
        if run.status != RunStatus.IN_PROGRESS:
            raise RunAlreadyFinalizedError(run_id, run.status.value)
        run.stats = copy.copy(stats)
        run.status = RunStatus.FAILED if error else RunStatus.COMPLETED
        run.error_summary = error
        run.completed_at = self.clock()

    async def get_run(self, run_id: str) -> Optional[BatchRun]:
        return self.runs.get(run_id)

    async def list_stale_runs(self, older_than: datetime) -> List[BatchRun]:
        return sorted(
            (
                run
                for run in self.runs.values()
                if run.status == RunStatus.IN_PROGRESS and run.started_at < older_than
            ),
            key=lambda run: run.started_at,
        )


class InMemoryMetricsStore(MetricsStore):

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}

    async def save_metrics(self, metrics: Any) -> None:
        self.records[metrics.run_id] = metrics.to_dict()

    async def load_metrics(self, run_id: str) -> Optional[Dict[str, Any]]:
        record = self.records.get(run_id)
        return dict(record) if record else None

    async def load_many(self, run_ids: List[str]) -> List[Dict[str, Any]]:
        return [dict(self.records[run_id]) for run_id in run_ids if run_id in self.records]


class InMemoryMatchCache(MatchCache):

    def __init__(self):
        self.matches: Dict[Tuple[str, str], Match] = {}

    async def cache_matches(self, matches: Sequence[Match]) -> int:
        for match in matches:
            self.matches[match.key] = match
        return len(matches)
