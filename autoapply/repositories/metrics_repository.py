"""
Repository implementation for run metrics.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from autoapply.core.database import get_session_factory
from autoapply.core.interfaces import MetricsStore
from autoapply.log.logging import logger
from autoapply.models.tracking import RunMetricsRecord


class MetricsRepository(MetricsStore):
    """Stores one metrics snapshot per run; saving again replaces it."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def save_metrics(self, metrics: Any) -> None:
        payload = metrics.to_dict()
        record = RunMetricsRecord(
            run_id=metrics.run_id,
            start_time=metrics.start_time,
            end_time=metrics.end_time,
            duration_ms=metrics.duration_ms,
            total_matches=metrics.total_matches,
            applications_submitted=metrics.applications_submitted,
            avg_match_score=metrics.average_match_score,
            total_cost_usd=metrics.total_cost_usd,
            payload=payload,
        )
        async with self.session_factory() as session:
            try:
                await session.merge(record)
                await session.commit()
            except Exception as e:
                logger.error(
                    "Failed to save metrics record",
                    run_id=metrics.run_id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                await session.rollback()
                raise

    async def load_metrics(self, run_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            record = await session.get(RunMetricsRecord, run_id)
            return dict(record.payload) if record else None

    async def load_many(self, run_ids: List[str]) -> List[Dict[str, Any]]:
        """Return stored payloads in the order of ``run_ids``, skipping unknown ids."""
        if not run_ids:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(RunMetricsRecord).where(RunMetricsRecord.run_id.in_(run_ids))
            )
            by_id = {record.run_id: dict(record.payload) for record in result.scalars().all()}
        return [by_id[run_id] for run_id in run_ids if run_id in by_id]
