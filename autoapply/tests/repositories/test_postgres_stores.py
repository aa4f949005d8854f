"""Tests for the PostgreSQL store adapters with mocked psycopg connections."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from autoapply.libs.matching.exceptions import (
    DailyQuotaExceededError,
    DuplicateApplicationError,
    UpstreamUnavailableError,
)
from autoapply.repositories.postgres_stores import (
    PostgresApplicationStore,
    PostgresEmbeddingStore,
    PostgresMatchCache,
    PostgresPreferencesStore,
)
from autoapply.tests.factories import make_match

SINCE = datetime(2026, 3, 10, tzinfo=timezone.utc)


def cursor_context(fetchone=None, fetchall=None):
    mock_cursor = AsyncMock(spec=psycopg.AsyncCursor)
    mock_cursor.fetchone = AsyncMock(return_value=fetchone)
    mock_cursor.fetchall = AsyncMock(return_value=fetchall or [])
    mock_ctx = AsyncMock()
    mock_ctx.__aenter__.return_value = mock_cursor
    mock_ctx.__aexit__.return_value = None
    return mock_ctx, mock_cursor


def connection_context(mock_cursor):
    cursor_ctx = AsyncMock()
    cursor_ctx.__aenter__.return_value = mock_cursor
    cursor_ctx.__aexit__.return_value = None
    transaction_ctx = AsyncMock()
    transaction_ctx.__aenter__.return_value = None
    transaction_ctx.__aexit__.return_value = None

    conn = MagicMock()
    conn.cursor.return_value = cursor_ctx
    conn.transaction.return_value = transaction_ctx

    conn_ctx = AsyncMock()
    conn_ctx.__aenter__.return_value = conn
    conn_ctx.__aexit__.return_value = None
    return conn_ctx


class TestEmbeddingStore:

    @patch("autoapply.repositories.postgres_stores.get_db_cursor")
    async def test_auto_apply_candidates_query(self, mock_get_db_cursor):
        row = {
            "id": "cand-1",
            "skills": ["Python"],
            "work_experience": [],
            "education": [],
            "preferred_categories": ["backend"],
            "embedding": [0.1, 0.2],
        }
        mock_ctx, mock_cursor = cursor_context(fetchall=[row])
        mock_get_db_cursor.return_value = mock_ctx

        pairs = await PostgresEmbeddingStore().list_auto_apply_candidates_with_embeddings(limit=10, offset=20)

        assert pairs[0][0].id == "cand-1"
        assert pairs[0][1] == [0.1, 0.2]
        query, params = mock_cursor.execute.call_args.args
        assert "COALESCE(pref.auto_apply_enabled" in query
        assert "ORDER BY cp.id" in query
        assert params["limit"] == 10
        assert params["offset"] == 20
        assert params["default_enabled"] is True

    @patch("autoapply.repositories.postgres_stores.get_db_cursor")
    async def test_open_jobs(self, mock_get_db_cursor):
        row = {
            "id": "job-1",
            "title": "Dev",
            "requirements": [{"name": "Python", "priority": "must_have"}],
            "categories": ["backend"],
            "status": "open",
            "embedding": [1.0, 0.0],
        }
        mock_ctx, mock_cursor = cursor_context(fetchall=[row])
        mock_get_db_cursor.return_value = mock_ctx

        pairs = await PostgresEmbeddingStore().list_open_jobs_with_embeddings()

        job, vector = pairs[0]
        assert job.is_open
        assert vector == [1.0, 0.0]
        assert "jp.status = 'open'" in mock_cursor.execute.call_args.args[0]

    @patch("autoapply.repositories.postgres_stores.get_db_cursor")
    async def test_missing_embedding(self, mock_get_db_cursor):
        mock_ctx, _ = cursor_context(fetchone=None)
        mock_get_db_cursor.return_value = mock_ctx

        assert await PostgresEmbeddingStore().get_candidate_embedding("cand-1") is None


class TestPreferencesStore:

    @patch("autoapply.repositories.postgres_stores.get_db_cursor")
    async def test_row_is_read(self, mock_get_db_cursor):
        mock_ctx, _ = cursor_context(
            fetchone={"auto_apply_enabled": False, "auto_apply_min_score": 80.0, "max_applications_per_day": None}
        )
        mock_get_db_cursor.return_value = mock_ctx

        prefs = await PostgresPreferencesStore().get_candidate_preferences("cand-1")

        assert prefs.auto_apply_enabled is False
        assert prefs.auto_apply_min_score == 80
        assert prefs.max_applications_per_day == 5

    @patch("autoapply.repositories.postgres_stores.get_db_cursor")
    async def test_missing_row_uses_defaults(self, mock_get_db_cursor):
        mock_ctx, _ = cursor_context(fetchone=None)
        mock_get_db_cursor.return_value = mock_ctx

        prefs = await PostgresPreferencesStore().get_candidate_preferences("cand-1")

        assert prefs.auto_apply_enabled is True
        assert prefs.auto_apply_min_score == 70

    @patch("autoapply.repositories.postgres_stores.get_db_cursor")
    async def test_database_error(self, mock_get_db_cursor):
        mock_get_db_cursor.side_effect = psycopg.ProgrammingError("bad query")

        with pytest.raises(UpstreamUnavailableError):
            await PostgresPreferencesStore().get_candidate_preferences("cand-1")


class TestApplicationStore:

    @patch("autoapply.repositories.postgres_stores.get_db_cursor")
    async def test_count_today(self, mock_get_db_cursor):
        mock_ctx, mock_cursor = cursor_context(fetchone={"total": 3})
        mock_get_db_cursor.return_value = mock_ctx

        assert await PostgresApplicationStore().count_today_auto_applications("cand-1", SINCE) == 3
        assert mock_cursor.execute.call_args.args[1] == ("cand-1", SINCE)

    @patch("autoapply.repositories.postgres_stores.get_db_connection")
    async def test_insert_with_quota(self, mock_get_db_connection):
        _, mock_cursor = cursor_context(fetchone={"id": "app-1"})
        mock_get_db_connection.return_value = connection_context(mock_cursor)

        application_id = await PostgresApplicationStore().insert_application(
            make_match(), daily_limit=5, since=SINCE
        )

        assert application_id == "app-1"
        lock_call, insert_call = mock_cursor.execute.call_args_list
        assert "pg_advisory_xact_lock" in lock_call.args[0]
        assert lock_call.args[1] == ("auto_apply:cand-1",)
        query, params = insert_call.args
        assert "< %(daily_limit)s" in query
        assert params["daily_limit"] == 5
        assert params["since"] == SINCE

    @patch("autoapply.repositories.postgres_stores.get_db_connection")
    async def test_insert_without_quota(self, mock_get_db_connection):
        _, mock_cursor = cursor_context(fetchone={"id": "app-1"})
        mock_get_db_connection.return_value = connection_context(mock_cursor)

        await PostgresApplicationStore().insert_application(make_match())

        assert "daily_limit" not in mock_cursor.execute.call_args.args[0]

    @patch("autoapply.repositories.postgres_stores.increment_counter")
    @patch("autoapply.repositories.postgres_stores.get_db_connection")
    async def test_quota_refusal(self, mock_get_db_connection, mock_increment):
        _, mock_cursor = cursor_context(fetchone=None)
        mock_get_db_connection.return_value = connection_context(mock_cursor)

        with pytest.raises(DailyQuotaExceededError):
            await PostgresApplicationStore().insert_application(make_match(), daily_limit=2, since=SINCE)
        mock_increment.assert_called_once()

    @patch("autoapply.repositories.postgres_stores.increment_counter")
    @patch("autoapply.repositories.postgres_stores.get_db_connection")
    async def test_unique_violation(self, mock_get_db_connection, mock_increment):
        _, mock_cursor = cursor_context()
        mock_cursor.execute = AsyncMock(side_effect=[None, psycopg.errors.UniqueViolation("duplicate key")])
        mock_get_db_connection.return_value = connection_context(mock_cursor)

        with pytest.raises(DuplicateApplicationError):
            await PostgresApplicationStore().insert_application(make_match(), daily_limit=2, since=SINCE)
        mock_increment.assert_called_once()

    async def test_limit_requires_since(self):
        with pytest.raises(ValueError):
            await PostgresApplicationStore().insert_application(make_match(), daily_limit=2)


class TestMatchCache:

    @patch("autoapply.repositories.postgres_stores.get_db_connection")
    async def test_upsert(self, mock_get_db_connection):
        _, mock_cursor = cursor_context()
        mock_get_db_connection.return_value = connection_context(mock_cursor)

        count = await PostgresMatchCache().cache_matches([make_match(job_id="job-1"), make_match(job_id="job-2")])

        assert count == 2
        query, rows = mock_cursor.executemany.call_args.args
        assert "ON CONFLICT (candidate_id, job_posting_id) DO UPDATE" in query
        assert [r[1] for r in rows] == ["job-1", "job-2"]

    async def test_empty(self):
        assert await PostgresMatchCache().cache_matches([]) == 0
