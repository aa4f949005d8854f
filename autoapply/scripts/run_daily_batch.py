"""
Run one daily auto-apply batch.

Usage:
    python -m autoapply.scripts.run_daily_batch [--dry-run] [--page-size N]

With ``--dry-run`` the batch runs against in-memory stores seeded from the
synthetic evaluation dataset, so nothing touches the database.
"""
import argparse
import asyncio
import sys
from typing import List, Optional

from autoapply.core.config import settings
from autoapply.core.database import dispose_engine
from autoapply.log.logging import logger
from autoapply.ml.evaluation.dataset import DatasetConfig, generate_dataset
from autoapply.repositories.memory import (
    InMemoryApplicationStore,
    InMemoryEmbeddingStore,
    InMemoryMatchCache,
    InMemoryMetricsStore,
    InMemoryPreferencesStore,
    InMemoryRunStore,
)
from autoapply.services.batch_run_controller import BatchRunController, BatchRunResult
from autoapply.utils.db_utils import close_all_connection_pools


def build_dry_run_controller(page_size: Optional[int], candidates: int, jobs: int, seed: int) -> BatchRunController:
    dataset = generate_dataset(DatasetConfig(candidate_count=candidates, job_count=jobs, seed=seed))
    preferences = InMemoryPreferencesStore()
    embeddings = InMemoryEmbeddingStore(dataset.candidate_pairs(), dataset.job_pairs(), preferences=preferences)
    return BatchRunController(
        embedding_store=embeddings,
        preferences_store=preferences,
        application_store=InMemoryApplicationStore(),
        run_store=InMemoryRunStore(),
        metrics_store=InMemoryMetricsStore(),
        match_cache=InMemoryMatchCache(),
        page_size=page_size,
    )


def build_postgres_controller(page_size: Optional[int]) -> BatchRunController:
    from autoapply.repositories.metrics_repository import MetricsRepository
    from autoapply.repositories.postgres_stores import (
        PostgresApplicationStore,
        PostgresEmbeddingStore,
        PostgresMatchCache,
        PostgresPreferencesStore,
    )
    from autoapply.repositories.run_repository import RunRepository

    return BatchRunController(
        embedding_store=PostgresEmbeddingStore(),
        preferences_store=PostgresPreferencesStore(),
        application_store=PostgresApplicationStore(),
        run_store=RunRepository(),
        metrics_store=MetricsRepository(),
        match_cache=PostgresMatchCache(),
        page_size=page_size,
    )


async def run(args: argparse.Namespace) -> BatchRunResult:
    if args.dry_run:
        controller = build_dry_run_controller(args.page_size, args.candidates, args.jobs, args.seed)
        return await controller.run()

    controller = build_postgres_controller(args.page_size)
    try:
        return await controller.run()
    finally:
        await close_all_connection_pools()
        await dispose_engine()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the daily auto-apply batch")
    parser.add_argument("--dry-run", action="store_true", help="Use in-memory stores seeded with synthetic data")
    parser.add_argument("--page-size", type=int, default=None, help=f"Candidates per page (default {settings.candidate_page_size})")
    parser.add_argument("--candidates", type=int, default=50, help="Synthetic candidates for --dry-run")
    parser.add_argument("--jobs", type=int, default=200, help="Synthetic jobs for --dry-run")
    parser.add_argument("--seed", type=int, default=42, help="Dataset seed for --dry-run")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.page_size is not None and args.page_size <= 0:
        logger.error("Page size must be positive", page_size=args.page_size)
        return 2

    result = asyncio.run(run(args))
    print(result.summary_text())
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
