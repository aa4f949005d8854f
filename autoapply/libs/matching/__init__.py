"""
Matching module.

Vector similarity and hybrid rule-based scoring. The eligibility gate and the
orchestrator depend on the store interfaces and are imported from their own
modules.
"""

from autoapply.libs.matching.models import (
    ApplicationSubmissionResult,
    BatchRun,
    CandidateProfile,
    JobPosting,
    Match,
    MatchReason,
    ReasonKind,
    RunStats,
    RunStatus,
    SkipReason,
)
from autoapply.libs.matching.exceptions import (
    AutoApplyError,
    DailyQuotaExceededError,
    DimensionMismatchError,
    DuplicateApplicationError,
    MetricsFinalizedError,
    ProfileValidationError,
    RunAllocationError,
    UpstreamUnavailableError,
)
from autoapply.libs.matching.vector_math import cosine_similarity, validate_vector
from autoapply.libs.matching.hybrid_scorer import HybridScorer, ScoreBreakdown, hybrid_scorer

__all__ = [
    'ApplicationSubmissionResult',
    'BatchRun',
    'CandidateProfile',
    'JobPosting',
    'Match',
    'MatchReason',
    'ReasonKind',
    'RunStats',
    'RunStatus',
    'SkipReason',
    'AutoApplyError',
    'DailyQuotaExceededError',
    'DimensionMismatchError',
    'DuplicateApplicationError',
    'MetricsFinalizedError',
    'ProfileValidationError',
    'RunAllocationError',
    'UpstreamUnavailableError',
    'cosine_similarity',
    'validate_vector',
    'HybridScorer',
    'ScoreBreakdown',
    'hybrid_scorer',
]
