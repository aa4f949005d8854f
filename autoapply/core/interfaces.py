"""
Core interfaces for the auto-apply pipeline.

This module defines the abstract store boundaries the matching and batch
components depend on. Concrete PostgreSQL and in-memory implementations live
in ``autoapply.repositories``.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from autoapply.libs.matching.models import (
    BatchRun,
    CandidateProfile,
    JobPosting,
    Match,
    RunStats,
)
from autoapply.schemas.preferences import CandidatePreferences

Vector = Sequence[float]


class EmbeddingStore(ABC):
    """Read access to candidates, jobs and their embeddings."""

    @abstractmethod
    async def get_candidate_embedding(self, candidate_id: str) -> Optional[Vector]:
        """Return the candidate's embedding, or None if it has none."""
        pass

    @abstractmethod
    async def get_job_embedding(self, job_posting_id: str) -> Optional[Vector]:
        """Return the job's embedding, or None if it has none."""
        pass

    @abstractmethod
    async def list_open_jobs_with_embeddings(self) -> List[Tuple[JobPosting, Vector]]:
        """Return every open job that has an embedding."""
        pass

    @abstractmethod
    async def list_auto_apply_candidates_with_embeddings(
        self, limit: int, offset: int = 0
    ) -> List[Tuple[CandidateProfile, Vector]]:
        """Return one page of candidates who opted in and have an embedding."""
        pass

    @abstractmethod
    async def list_candidates_with_embeddings(self, limit: int) -> List[Tuple[CandidateProfile, Vector]]:
        """Return candidates with an embedding regardless of opt-in."""
        pass


class PreferencesStore(ABC):

    @abstractmethod
    async def get_candidate_preferences(self, candidate_id: str) -> CandidatePreferences:
        """Return preferences, with defaults applied when no row exists."""
        pass


class ApplicationStore(ABC):

    @abstractmethod
    async def has_previous_application(self, candidate_id: str, job_posting_id: str) -> bool:
        pass

    @abstractmethod
    async def count_today_auto_applications(self, candidate_id: str, since: datetime) -> int:
        """Count auto-applications created at or after ``since``."""
        pass

    @abstractmethod
    async def insert_application(
        self,
        match: Match,
        daily_limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> str:
        """
        Insert an auto-application and return its id.

        Raises:
            DuplicateApplicationError: the pair already has an application
            DailyQuotaExceededError: ``daily_limit`` applications already exist since ``since``
        """
        pass


class RunStore(ABC):

    @abstractmethod
    async def create_run(self) -> str:
        """Create an in-progress run record and return its id."""
        pass

    @abstractmethod
    async def complete_run(self, run_id: str, stats: RunStats, error: Optional[str] = None) -> None:
        """
        Move an in-progress run to completed, or failed when ``error`` is given.

        Raises:
            LookupError: if no run with ``run_id`` exists
            RunAlreadyFinalizedError: if the run already reached a terminal status
        """
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[BatchRun]:
        pass

    @abstractmethod
    async def list_stale_runs(self, older_than: datetime) -> List[BatchRun]:
        """Return in-progress runs started before ``older_than``."""
        pass


class MetricsStore(ABC):

    @abstractmethod
    async def save_metrics(self, metrics: Any) -> None:
        pass

    @abstractmethod
    async def load_metrics(self, run_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def load_many(self, run_ids: List[str]) -> List[Dict[str, Any]]:
        pass


class MatchCache(ABC):

    @abstractmethod
    async def cache_matches(self, matches: List[Match]) -> int:
        """Upsert matches keyed by (candidate_id, job_posting_id); return the count written."""
        pass
