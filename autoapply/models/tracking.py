"""
Batch run tracking models.

SQLAlchemy models for the run ledger and the per-run metrics snapshot.
"""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from autoapply.core.database import Base
from autoapply.libs.matching.models import BatchRun, RunStats, RunStatus


class BatchRunRecord(Base):
    """One row per daily batch run."""

    __tablename__ = "auto_application_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4, nullable=False)
    status = Column(String(20), nullable=False, default=RunStatus.IN_PROGRESS.value, index=True)
    started_at: datetime = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at: datetime = Column(DateTime(timezone=True), nullable=True)
    candidates_evaluated = Column(Integer, nullable=False, default=0)
    matches_found = Column(Integer, nullable=False, default=0)
    applications_submitted = Column(Integer, nullable=False, default=0)
    applications_skipped = Column(Integer, nullable=False, default=0)
    candidates_failed = Column(Integer, nullable=False, default=0)
    error_summary = Column(Text, nullable=True)

    def apply_stats(self, stats: RunStats) -> None:
        self.candidates_evaluated = stats.candidates_evaluated
        self.matches_found = stats.matches_found
        self.applications_submitted = stats.applications_submitted
        self.applications_skipped = stats.applications_skipped
        self.candidates_failed = stats.candidates_failed

    def to_domain(self) -> BatchRun:
        return BatchRun(
            run_id=str(self.id),
            status=RunStatus(self.status),
            started_at=self.started_at,
            completed_at=self.completed_at,
            stats=RunStats(
                candidates_evaluated=self.candidates_evaluated or 0,
                matches_found=self.matches_found or 0,
                applications_submitted=self.applications_submitted or 0,
                applications_skipped=self.applications_skipped or 0,
                candidates_failed=self.candidates_failed or 0,
            ),
            error_summary=self.error_summary,
        )


class RunMetricsRecord(Base):
    """Finalized metrics of one run, keyed by run id."""

    __tablename__ = "matching_metrics"

    run_id = Column(String, primary_key=True, nullable=False)
    start_time: datetime = Column(DateTime(timezone=True), nullable=False)
    end_time: datetime = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    total_matches = Column(Integer, nullable=False, default=0)
    applications_submitted = Column(Integer, nullable=False, default=0)
    avg_match_score = Column(Float, nullable=True)
    total_cost_usd = Column(Float, nullable=True)
    payload = Column(JSONB, nullable=False)
    created_at: datetime = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
