"""
Database schema script for the auto-apply service.

Creates the pgvector extension, the matching tables read and written by the
PostgreSQL stores, and the run ledger and metrics tables.

Usage:
    python -m autoapply.scripts.create_tables
"""
import asyncio
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from autoapply.core.config import settings
from autoapply.core.database import Base, dispose_engine, get_engine
from autoapply.log.logging import logger
import autoapply.models.tracking  # noqa: F401  registers the ORM tables on Base

EXTENSIONS = [
    'CREATE EXTENSION IF NOT EXISTS "pgcrypto"',
    "CREATE EXTENSION IF NOT EXISTS vector",
]

# Matching tables are owned by the profile services; created here only when missing
MATCHING_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS candidate_profiles (
        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        skills text[] NOT NULL DEFAULT '{}',
        work_experience jsonb NOT NULL DEFAULT '[]'::jsonb,
        education jsonb NOT NULL DEFAULT '[]'::jsonb,
        preferred_categories text[] NOT NULL DEFAULT '{}',
        created_at timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_postings (
        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        title text NOT NULL,
        requirements jsonb NOT NULL DEFAULT '[]'::jsonb,
        categories text[] NOT NULL DEFAULT '{}',
        status text NOT NULL DEFAULT 'open',
        created_at timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS candidate_embeddings (
        candidate_id uuid PRIMARY KEY REFERENCES candidate_profiles(id) ON DELETE CASCADE,
        embeddings vector({dimension}) NOT NULL,
        updated_at timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_posting_embeddings (
        job_posting_id uuid PRIMARY KEY REFERENCES job_postings(id) ON DELETE CASCADE,
        embeddings vector({dimension}) NOT NULL,
        updated_at timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS candidate_preferences (
        candidate_id uuid PRIMARY KEY REFERENCES candidate_profiles(id) ON DELETE CASCADE,
        auto_apply_enabled boolean,
        auto_apply_min_score numeric CHECK (auto_apply_min_score BETWEEN 0 AND 100),
        max_applications_per_day integer CHECK (max_applications_per_day >= 0),
        updated_at timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS applications (
        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        candidate_id uuid NOT NULL REFERENCES candidate_profiles(id) ON DELETE CASCADE,
        job_posting_id uuid NOT NULL REFERENCES job_postings(id) ON DELETE CASCADE,
        auto_applied boolean NOT NULL DEFAULT false,
        match_score numeric,
        match_reasons text[],
        hiring_status text,
        created_at timestamptz NOT NULL DEFAULT now(),
        CONSTRAINT uq_applications_candidate_job UNIQUE (candidate_id, job_posting_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS candidate_job_matches (
        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        candidate_id uuid NOT NULL REFERENCES candidate_profiles(id) ON DELETE CASCADE,
        job_posting_id uuid NOT NULL REFERENCES job_postings(id) ON DELETE CASCADE,
        match_score numeric NOT NULL,
        match_reasons text[],
        reason_details jsonb,
        embedding_similarity numeric NOT NULL,
        evaluated_at timestamptz NOT NULL DEFAULT now(),
        CONSTRAINT uq_candidate_job_matches UNIQUE (candidate_id, job_posting_id)
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_applications_auto_daily ON applications (candidate_id, created_at) WHERE auto_applied",
    "CREATE INDEX IF NOT EXISTS idx_job_postings_status ON job_postings (status)",
    "CREATE INDEX IF NOT EXISTS idx_candidate_job_matches_score ON candidate_job_matches (candidate_id, match_score DESC)",
]


async def create_extensions():
    """Create required PostgreSQL extensions."""
    try:
        async with get_engine().begin() as conn:
            for statement in EXTENSIONS:
                await conn.execute(text(statement))
        logger.info("Extensions created or already exist")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create extensions: {str(e)}")
        raise


async def create_tables(dimension: Optional[int] = None):
    """Create matching tables, then the ORM-managed run and metrics tables."""
    dimension = dimension or settings.embedding_dimension
    try:
        async with get_engine().begin() as conn:
            for statement in MATCHING_TABLES:
                await conn.execute(text(statement.replace("{dimension}", str(dimension))))
            for statement in INDEXES:
                await conn.execute(text(statement))
            await conn.run_sync(Base.metadata.create_all)
        logger.success("Auto-apply tables created successfully", dimension=dimension)
    except SQLAlchemyError as e:
        logger.error(f"Failed to create tables: {str(e)}")
        raise


async def main():
    try:
        await create_extensions()
        await create_tables()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
