"""
Models for matching and auto-apply functionality.

This module contains the data models used by scoring, gating, submission and
batch run bookkeeping.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from autoapply.libs.matching.exceptions import ProfileValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values, unlike the builtin round()."""
    return int(math.floor(value + 0.5))


def round_display(value: float) -> int:
    """
    Round the exact binary value of ``value`` half up, the way percentages are
    shown in reason text. Differs from ``round_half_up`` only when the float
    sits just below a .5 boundary.
    """
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class RequirementPriority(str, Enum):
    MUST_HAVE = "must_have"
    NICE_TO_HAVE = "nice_to_have"
    PREFERABLE = "preferable"


class JobStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class RunStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Requirement:
    """A single job requirement with its priority tag."""

    name: str
    priority: RequirementPriority = RequirementPriority.PREFERABLE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Requirement":
        try:
            return cls(name=str(data["name"]), priority=RequirementPriority(data.get("priority", "preferable")))
        except (KeyError, ValueError) as e:
            raise ProfileValidationError(f"Invalid job requirement: {data!r}") from e


@dataclass
class WorkExperience:
    title: str
    company: str = ""
    duration_years: Optional[float] = None
    technologies: List[str] = field(default_factory=list)


@dataclass
class Education:
    institution: str
    degree: Optional[str] = None
    field_of_study: Optional[str] = None


@dataclass
class CandidateProfile:
    """Candidate data consumed by the scorer. Read-only to this package."""

    id: str
    skills: List[str] = field(default_factory=list)
    work_experience: List[WorkExperience] = field(default_factory=list)
    education: List[Education] = field(default_factory=list)
    preferred_categories: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateProfile":
        """Build a profile from a store row with JSON sub-documents."""
        try:
            return cls(
                id=str(data["id"]),
                skills=list(data.get("skills") or []),
                work_experience=[
                    WorkExperience(
                        title=entry.get("title", ""),
                        company=entry.get("company", ""),
                        duration_years=entry.get("duration_years"),
                        technologies=_split_technologies(entry.get("technologies")),
                    )
                    for entry in (data.get("work_experience") or [])
                ],
                education=[
                    Education(
                        institution=entry.get("institution", ""),
                        degree=entry.get("degree"),
                        field_of_study=entry.get("field_of_study"),
                    )
                    for entry in (data.get("education") or [])
                ],
                preferred_categories=list(data.get("preferred_categories") or []),
                embedding=data.get("embedding"),
            )
        except (KeyError, AttributeError, TypeError) as e:
            raise ProfileValidationError(f"Malformed candidate profile: {e}") from e


def _split_technologies(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


@dataclass
class JobPosting:
    """Job posting data consumed by the scorer. Read-only to this package."""

    id: str
    title: str
    requirements: List[Requirement] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    status: JobStatus = JobStatus.OPEN
    embedding: Optional[List[float]] = None

    @property
    def is_open(self) -> bool:
        return self.status == JobStatus.OPEN

    def requirement_names(self, priority: RequirementPriority) -> List[str]:
        return [r.name for r in self.requirements if r.priority == priority]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobPosting":
        """Build a posting from a store row with JSON requirements."""
        try:
            return cls(
                id=str(data["id"]),
                title=data.get("title", ""),
                requirements=[Requirement.from_dict(r) for r in (data.get("requirements") or [])],
                categories=list(data.get("categories") or []),
                status=JobStatus(data.get("status", "open")),
                embedding=data.get("embedding"),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise ProfileValidationError(f"Malformed job posting: {e}") from e


class ReasonKind(str, Enum):
    MISSING_SKILLS = "missing_skills"
    ALL_SKILLS_PRESENT = "all_skills_present"
    NICE_TO_HAVE = "nice_to_have"
    NO_EXPERIENCE = "no_experience"
    EXPERIENCE = "experience"
    NO_EDUCATION = "no_education"
    EDUCATION_PRESENT = "education_present"
    CATEGORY_OVERLAP = "category_overlap"
    SEMANTIC = "semantic"


@dataclass(frozen=True)
class MatchReason:
    """
    One entry of a match explanation.

    ``count`` and ``points`` carry the numbers for the reason kind; ``points``
    is negative for penalties. Text is produced only by ``render``.
    """

    kind: ReasonKind
    count: int = 0
    points: int = 0
    similarity: Optional[float] = None

    def render(self) -> str:
        if self.kind == ReasonKind.MISSING_SKILLS:
            return f"Missing {self.count} required skills (-{abs(self.points)})"
        if self.kind == ReasonKind.ALL_SKILLS_PRESENT:
            return "All required skills present"
        if self.kind == ReasonKind.NICE_TO_HAVE:
            return f"{self.count} nice-to-have skills matched (+{self.points})"
        if self.kind == ReasonKind.NO_EXPERIENCE:
            return f"No work experience (-{abs(self.points)})"
        if self.kind == ReasonKind.EXPERIENCE:
            return f"Experience: {self.count} entries"
        if self.kind == ReasonKind.NO_EDUCATION:
            return f"No education listed (-{abs(self.points)})"
        if self.kind == ReasonKind.EDUCATION_PRESENT:
            return "Education present"
        if self.kind == ReasonKind.CATEGORY_OVERLAP:
            return f"{self.count} category matches (+{self.points})"
        percent = round_display((self.similarity or 0.0) * 100)
        return f"Semantic match: {percent}% (+{self.points})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "count": self.count,
            "points": self.points,
            "similarity": self.similarity,
        }


@dataclass(frozen=True)
class Match:
    """A scored candidate/job pair. Immutable once built."""

    candidate_id: str
    job_posting_id: str
    embedding_similarity: float
    match_score: int
    reasons: Tuple[MatchReason, ...] = ()
    evaluated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        similarity = self.embedding_similarity
        if similarity is None or not isinstance(similarity, (int, float)) or not math.isfinite(similarity):
            raise ProfileValidationError(
                f"Invalid embedding similarity {similarity!r} for "
                f"candidate {self.candidate_id} and job {self.job_posting_id}"
            )
        object.__setattr__(self, "embedding_similarity", float(similarity))
        object.__setattr__(self, "match_score", max(0, min(100, int(self.match_score))))
        object.__setattr__(self, "reasons", tuple(self.reasons))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.candidate_id, self.job_posting_id)

    @property
    def match_reasons(self) -> List[str]:
        return [reason.render() for reason in self.reasons]

    def to_dict(self) -> Dict[str, Any]:
        """Convert Match to dictionary format."""
        return {
            "candidate_id": self.candidate_id,
            "job_posting_id": self.job_posting_id,
            "embedding_similarity": self.embedding_similarity,
            "match_score": self.match_score,
            "match_reasons": self.match_reasons,
            "evaluated_at": self.evaluated_at.isoformat(),
        }


class SkipReason:
    """Closed set of skip reasons reported on ApplicationSubmissionResult."""

    AUTO_APPLY_DISABLED = "Auto-apply disabled"
    DAILY_LIMIT_REACHED = "Daily limit reached"
    ALREADY_APPLIED = "Already applied"

    @staticmethod
    def below_threshold(score: int, threshold: int) -> str:
        return f"Score below threshold ({score} < {threshold})"

    @staticmethod
    def is_below_threshold(reason: Optional[str]) -> bool:
        return bool(reason) and reason.startswith("Score below threshold")


@dataclass(frozen=True)
class ApplicationSubmissionResult:
    """Outcome of one gate + submission decision."""

    success: bool
    candidate_id: str
    job_posting_id: str
    match_score: int
    application_id: Optional[str] = None
    reason: Optional[str] = None
    submitted_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.success and (self.application_id is None or self.reason is not None):
            raise ValueError("A successful submission carries an application id and no reason")
        if not self.success and (self.application_id is not None or not self.reason):
            raise ValueError("A skipped submission carries a reason and no application id")

    @classmethod
    def submitted(cls, match: Match, application_id: str) -> "ApplicationSubmissionResult":
        return cls(
            success=True,
            candidate_id=match.candidate_id,
            job_posting_id=match.job_posting_id,
            match_score=match.match_score,
            application_id=str(application_id),
        )

    @classmethod
    def skipped(cls, match: Match, reason: str) -> "ApplicationSubmissionResult":
        return cls(
            success=False,
            candidate_id=match.candidate_id,
            job_posting_id=match.job_posting_id,
            match_score=match.match_score,
            reason=reason or "Unknown error",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "candidate_id": self.candidate_id,
            "job_posting_id": self.job_posting_id,
            "match_score": self.match_score,
            "application_id": self.application_id,
            "reason": self.reason,
            "submitted_at": self.submitted_at.isoformat(),
        }


@dataclass
class RunStats:
    """Counters accumulated while a batch run is in progress."""

    candidates_evaluated: int = 0
    matches_found: int = 0
    applications_submitted: int = 0
    applications_skipped: int = 0
    candidates_failed: int = 0

    def add(self, other: "RunStats") -> None:
        self.candidates_evaluated += other.candidates_evaluated
        self.matches_found += other.matches_found
        self.applications_submitted += other.applications_submitted
        self.applications_skipped += other.applications_skipped
        self.candidates_failed += other.candidates_failed

    def to_dict(self) -> Dict[str, int]:
        return {
            "candidates_evaluated": self.candidates_evaluated,
            "matches_found": self.matches_found,
            "applications_submitted": self.applications_submitted,
            "applications_skipped": self.applications_skipped,
            "candidates_failed": self.candidates_failed,
        }


@dataclass
class BatchRun:
    """Persistent record of one daily run."""

    run_id: str
    status: RunStatus = RunStatus.IN_PROGRESS
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    stats: RunStats = field(default_factory=RunStats)
    error_summary: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            **self.stats.to_dict(),
            "error_summary": self.error_summary,
        }
