"""
Custom exceptions for the matching module.

This module defines the error taxonomy used by scoring, gating, submission and
batch run orchestration.
"""


class AutoApplyError(Exception):
    """Base exception for matching and auto-apply errors."""
    pass


class DimensionMismatchError(AutoApplyError, ValueError):
    """Exception raised when two vectors have different lengths."""
    pass


class ProfileValidationError(AutoApplyError):
    """Exception raised for malformed profile, preference or vector data."""
    pass


class DuplicateApplicationError(AutoApplyError):
    """Exception raised when the application store rejects a duplicate insert."""

    def __init__(self, candidate_id: str, job_posting_id: str):
        self.candidate_id = candidate_id
        self.job_posting_id = job_posting_id
        super().__init__(
            f"Application already exists for candidate {candidate_id} and job {job_posting_id}"
        )


class DailyQuotaExceededError(AutoApplyError):
    """Exception raised when the store refuses an insert over the daily limit."""

    def __init__(self, candidate_id: str, daily_limit: int):
        self.candidate_id = candidate_id
        self.daily_limit = daily_limit
        super().__init__(
            f"Daily application limit of {daily_limit} reached for candidate {candidate_id}"
        )


class UpstreamUnavailableError(AutoApplyError):
    """Exception raised when an embedding, job or preference read fails."""
    pass


class RunAllocationError(AutoApplyError):
    """Exception raised when a batch run record cannot be created."""
    pass


class MetricsFinalizedError(AutoApplyError):
    """Exception raised when folding into metrics that were already finalized."""
    pass


class RunAlreadyFinalizedError(AutoApplyError):
    """Exception raised when completing a run that is no longer in progress."""

    def __init__(self, run_id: str, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(f"Run {run_id} is already {status}")
