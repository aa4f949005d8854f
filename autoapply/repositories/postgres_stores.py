"""
PostgreSQL store adapters.

psycopg async queries over the pooled connections from ``db_utils``, with
embeddings read through pgvector. Reads retry on connection errors; writes
do not.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg
from psycopg.types.json import Jsonb
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from autoapply.core.config import settings
from autoapply.core.interfaces import (
    ApplicationStore,
    EmbeddingStore,
    MatchCache,
    PreferencesStore,
)
from autoapply.libs.matching.exceptions import (
    DailyQuotaExceededError,
    DuplicateApplicationError,
    UpstreamUnavailableError,
)
from autoapply.libs.matching.models import CandidateProfile, JobPosting, Match
from autoapply.log.logging import logger
from autoapply.metrics.core import MetricNames, increment_counter
from autoapply.schemas.preferences import CandidatePreferences
from autoapply.utils.db_utils import get_db_connection, get_db_cursor

read_retry = retry(
    retry=retry_if_exception_type(psycopg.OperationalError),
    stop=stop_after_attempt(settings.store_retry_attempts),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    reraise=True,
)

_CANDIDATE_COLUMNS = """
    cp.id::text AS id,
    cp.skills,
    cp.work_experience,
    cp.education,
    cp.preferred_categories,
    ce.embeddings AS embedding
"""

_JOB_COLUMNS = """
    jp.id::text AS id,
    jp.title,
    jp.requirements,
    jp.categories,
    jp.status,
    je.embeddings AS embedding
"""


def _vector(value: Any) -> Optional[List[float]]:
    if value is None:
        return None
    return [float(x) for x in value]


def _candidate_pair(row: Dict[str, Any]) -> Tuple[CandidateProfile, Optional[List[float]]]:
    vector = _vector(row.pop("embedding", None))
    return CandidateProfile.from_dict(row), vector


def _job_pair(row: Dict[str, Any]) -> Tuple[JobPosting, Optional[List[float]]]:
    vector = _vector(row.pop("embedding", None))
    return JobPosting.from_dict(row), vector


class PostgresEmbeddingStore(EmbeddingStore):
    """Candidates, jobs and their pgvector embeddings."""

    @read_retry
    async def get_candidate_embedding(self, candidate_id: str) -> Optional[List[float]]:
        async with get_db_cursor() as cursor:
            await cursor.execute(
                "SELECT embeddings FROM candidate_embeddings WHERE candidate_id = %s",
                (candidate_id,),
            )
            row = await cursor.fetchone()
        return _vector(row["embeddings"]) if row else None

    @read_retry
    async def get_job_embedding(self, job_posting_id: str) -> Optional[List[float]]:
        async with get_db_cursor() as cursor:
            await cursor.execute(
                "SELECT embeddings FROM job_posting_embeddings WHERE job_posting_id = %s",
                (job_posting_id,),
            )
            row = await cursor.fetchone()
        return _vector(row["embeddings"]) if row else None

    @read_retry
    async def list_open_jobs_with_embeddings(self) -> List[Tuple[JobPosting, List[float]]]:
        async with get_db_cursor() as cursor:
            await cursor.execute(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM job_postings jp
                JOIN job_posting_embeddings je ON je.job_posting_id = jp.id
                WHERE jp.status = 'open'
                ORDER BY jp.id
                """
            )
            rows = await cursor.fetchall()
        logger.debug("Loaded open jobs with embeddings", count=len(rows))
        return [_job_pair(dict(row)) for row in rows]

    @read_retry
    async def list_auto_apply_candidates_with_embeddings(
        self, limit: int, offset: int = 0
    ) -> List[Tuple[CandidateProfile, List[float]]]:
        async with get_db_cursor() as cursor:
            await cursor.execute(
                f"""
                SELECT {_CANDIDATE_COLUMNS}
                FROM candidate_profiles cp
                JOIN candidate_embeddings ce ON ce.candidate_id = cp.id
                LEFT JOIN candidate_preferences pref ON pref.candidate_id = cp.id
                WHERE COALESCE(pref.auto_apply_enabled, %(default_enabled)s)
                ORDER BY cp.id
                LIMIT %(limit)s OFFSET %(offset)s
                """,
                {
                    "default_enabled": settings.default_auto_apply_enabled,
                    "limit": limit,
                    "offset": offset,
                },
            )
            rows = await cursor.fetchall()
        return [_candidate_pair(dict(row)) for row in rows]

    @read_retry
    async def list_candidates_with_embeddings(self, limit: int) -> List[Tuple[CandidateProfile, List[float]]]:
        async with get_db_cursor() as cursor:
            await cursor.execute(
                f"""
                SELECT {_CANDIDATE_COLUMNS}
                FROM candidate_profiles cp
                JOIN candidate_embeddings ce ON ce.candidate_id = cp.id
                ORDER BY cp.id
                LIMIT %s
                """,
                (limit,),
            )
            rows = await cursor.fetchall()
        return [_candidate_pair(dict(row)) for row in rows]


class PostgresPreferencesStore(PreferencesStore):

    @read_retry
    async def _fetch(self, candidate_id: str) -> Optional[Dict[str, Any]]:
        async with get_db_cursor() as cursor:
            await cursor.execute(
                """
                SELECT auto_apply_enabled, auto_apply_min_score, max_applications_per_day
                FROM candidate_preferences
                WHERE candidate_id = %s
                """,
                (candidate_id,),
            )
            return await cursor.fetchone()

    async def get_candidate_preferences(self, candidate_id: str) -> CandidatePreferences:
        try:
            row = await self._fetch(candidate_id)
        except psycopg.Error as e:
            raise UpstreamUnavailableError(f"Failed to read preferences for {candidate_id}: {e}") from e
        if row and row.get("auto_apply_min_score") is not None:
            row = {**row, "auto_apply_min_score": int(row["auto_apply_min_score"])}
        return CandidatePreferences.from_record(candidate_id, row)


class PostgresApplicationStore(ApplicationStore):
    """
    Application rows, with the daily auto-apply quota enforced in SQL.

    ``insert_application`` serialises inserts per candidate with a
    transaction-scoped advisory lock, so concurrent runs cannot exceed the
    limit between count and insert.
    """

    @read_retry
    async def has_previous_application(self, candidate_id: str, job_posting_id: str) -> bool:
        async with get_db_cursor() as cursor:
            await cursor.execute(
                "SELECT 1 FROM applications WHERE candidate_id = %s AND job_posting_id = %s LIMIT 1",
                (candidate_id, job_posting_id),
            )
            return await cursor.fetchone() is not None

    @read_retry
    async def count_today_auto_applications(self, candidate_id: str, since: datetime) -> int:
        async with get_db_cursor() as cursor:
            await cursor.execute(
                """
                SELECT count(*) AS total FROM applications
                WHERE candidate_id = %s AND auto_applied AND created_at >= %s
                """,
                (candidate_id, since),
            )
            row = await cursor.fetchone()
        return int(row["total"]) if row else 0

    async def insert_application(
        self,
        match: Match,
        daily_limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> str:
        params = {
            "candidate_id": match.candidate_id,
            "job_posting_id": match.job_posting_id,
            "match_score": match.match_score,
            "match_reasons": match.match_reasons,
            "daily_limit": daily_limit,
            "since": since,
        }
        quota_clause = ""
        if daily_limit is not None:
            if since is None:
                raise ValueError("since is required when daily_limit is given")
            quota_clause = """
                WHERE (
                    SELECT count(*) FROM applications
                    WHERE candidate_id = %(candidate_id)s AND auto_applied AND created_at >= %(since)s
                ) < %(daily_limit)s
            """

        try:
            async with get_db_connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cursor:
                        await cursor.execute(
                            "SELECT pg_advisory_xact_lock(hashtext(%s))",
                            (f"auto_apply:{match.candidate_id}",),
                        )
                        await cursor.execute(
                            f"""
                            INSERT INTO applications
                                (candidate_id, job_posting_id, auto_applied, match_score,
                                 match_reasons, hiring_status)
                            SELECT %(candidate_id)s, %(job_posting_id)s, true, %(match_score)s,
                                   %(match_reasons)s, 'potential_fit'
                            {quota_clause}
                            RETURNING id::text AS id
                            """,
                            params,
                        )
                        row = await cursor.fetchone()
        except psycopg.errors.UniqueViolation as e:
            increment_counter(MetricNames.STORE_DUPLICATE_REJECTED)
            raise DuplicateApplicationError(match.candidate_id, match.job_posting_id) from e

        if row is None:
            increment_counter(MetricNames.STORE_QUOTA_REJECTED)
            raise DailyQuotaExceededError(match.candidate_id, daily_limit)
        return row["id"]


class PostgresMatchCache(MatchCache):
    """Upserts scored matches into ``candidate_job_matches``."""

    async def cache_matches(self, matches: Sequence[Match]) -> int:
        if not matches:
            return 0
        rows = [
            (
                m.candidate_id,
                m.job_posting_id,
                m.match_score,
                m.match_reasons,
                m.embedding_similarity,
                m.evaluated_at,
                Jsonb([r.to_dict() for r in m.reasons]),
            )
            for m in matches
        ]
        async with get_db_connection() as conn:
            async with conn.cursor() as cursor:
                await cursor.executemany(
                    """
                    INSERT INTO candidate_job_matches
                        (candidate_id, job_posting_id, match_score, match_reasons,
                         embedding_similarity, evaluated_at, reason_details)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (candidate_id, job_posting_id) DO UPDATE SET
                        match_score = EXCLUDED.match_score,
                        match_reasons = EXCLUDED.match_reasons,
                        embedding_similarity = EXCLUDED.embedding_similarity,
                        evaluated_at = EXCLUDED.evaluated_at,
                        reason_details = EXCLUDED.reason_details
                    """,
                    rows,
                )
        logger.debug("Cached matches", count=len(rows))
        return len(rows)
