"""
Repository implementation for the batch run ledger.

Each operation opens its own session from the factory so the controller can
finalize a run even after a failed page left an earlier session unusable.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from autoapply.core.database import get_session_factory
from autoapply.core.interfaces import RunStore
from autoapply.libs.matching.exceptions import RunAlreadyFinalizedError
from autoapply.libs.matching.models import BatchRun, RunStats, RunStatus, utcnow
from autoapply.log.logging import logger
from autoapply.metrics.core import MetricNames, async_timer
from autoapply.models.tracking import BatchRunRecord


class RunRepository(RunStore):
    """SQLAlchemy-backed run store."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @async_timer(MetricNames.STORE_OPERATION_DURATION, {"operation": "create_run"})
    async def create_run(self) -> str:
        async with self.session_factory() as session:
            try:
                record = BatchRunRecord(status=RunStatus.IN_PROGRESS.value, started_at=utcnow())
                session.add(record)
                await session.commit()
                await session.refresh(record)
            except Exception as e:
                logger.error(
                    "Failed to create run record",
                    error=str(e),
                    error_type=type(e).__name__
                )
                await session.rollback()
                raise
        logger.info("Created run record", run_id=str(record.id))
        return str(record.id)

    @async_timer(MetricNames.STORE_OPERATION_DURATION, {"operation": "complete_run"})
    async def complete_run(self, run_id: str, stats: RunStats, error: Optional[str] = None) -> None:
        """
        Write final counters and move the run to a terminal status.

        The row is locked for the transaction so a concurrent reaper and the
        owning run cannot both finalize it.

        Raises:
            LookupError: if no run with ``run_id`` exists
            RunAlreadyFinalizedError: if the run is no longer in progress
        """
        async with self.session_factory() as session:
            try:
                record = await session.get(BatchRunRecord, UUID(run_id), with_for_update=True)
                if record is None:
                    raise LookupError(f"Run {run_id} not found")
                if record.status != RunStatus.IN_PROGRESS.value:
                    raise RunAlreadyFinalizedError(run_id, record.status)
                record.apply_stats(stats)
                record.status = (RunStatus.FAILED if error else RunStatus.COMPLETED).value
                record.error_summary = error
                record.completed_at = utcnow()
                await session.commit()
            except Exception as e:
                logger.error(
                    "Failed to complete run record",
                    run_id=run_id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                await session.rollback()
                raise

    async def get_run(self, run_id: str) -> Optional[BatchRun]:
        async with self.session_factory() as session:
            record = await session.get(BatchRunRecord, UUID(run_id))
            return record.to_domain() if record else None

    async def list_stale_runs(self, older_than: datetime) -> List[BatchRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(BatchRunRecord)
                .where(BatchRunRecord.status == RunStatus.IN_PROGRESS.value)
                .where(BatchRunRecord.started_at < older_than)
                .order_by(BatchRunRecord.started_at)
            )
            return [record.to_domain() for record in result.scalars().all()]
