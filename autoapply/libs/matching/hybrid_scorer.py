"""
Hybrid match scoring.

Blends one embedding similarity with rule-based adjustments computed from the
candidate and job records, and records why each adjustment was made.
"""

from dataclasses import dataclass
from typing import List, Tuple

from autoapply.libs.matching.models import (
    CandidateProfile,
    JobPosting,
    MatchReason,
    ReasonKind,
    RequirementPriority,
    round_half_up,
)

BASE_SCORE = 100
MISSING_SKILL_PENALTY = 3
MAX_MISSING_SKILLS_PENALTY = 20
NICE_TO_HAVE_BONUS = 2
NO_EXPERIENCE_PENALTY = 15
NO_EDUCATION_PENALTY = 10
CATEGORY_BONUS = 3
SEMANTIC_WEIGHT = 15


@dataclass(frozen=True)
class ScoreBreakdown:
    score: int
    reasons: Tuple[MatchReason, ...]

    @property
    def rendered_reasons(self) -> List[str]:
        return [reason.render() for reason in self.reasons]


class HybridScorer:
    """Deterministic rule + semantic scorer producing a 0-100 integer."""

    def score(self, candidate: CandidateProfile, job: JobPosting, similarity: float) -> ScoreBreakdown:
        """
        Score one candidate/job pair.

        Reasons are emitted in a fixed order: required skills, nice-to-have
        skills, experience, education, categories, semantic similarity.
        """
        reasons: List[MatchReason] = []
        score = BASE_SCORE

        candidate_skills = {skill.lower() for skill in candidate.skills}
        must_have = [name.lower() for name in job.requirement_names(RequirementPriority.MUST_HAVE)]
        nice_to_have = [name.lower() for name in job.requirement_names(RequirementPriority.NICE_TO_HAVE)]

        if must_have:
            missing = sum(1 for skill in must_have if skill not in candidate_skills)
            if missing > 0:
                penalty = min(MAX_MISSING_SKILLS_PENALTY, missing * MISSING_SKILL_PENALTY)
                score -= penalty
                reasons.append(MatchReason(ReasonKind.MISSING_SKILLS, count=missing, points=-penalty))
            else:
                reasons.append(MatchReason(ReasonKind.ALL_SKILLS_PRESENT))

        matched_nice = sum(1 for skill in nice_to_have if skill in candidate_skills)
        if matched_nice > 0:
            bonus = matched_nice * NICE_TO_HAVE_BONUS
            score += bonus
            reasons.append(MatchReason(ReasonKind.NICE_TO_HAVE, count=matched_nice, points=bonus))

        experience_entries = len(candidate.work_experience)
        if experience_entries > 0:
            reasons.append(MatchReason(ReasonKind.EXPERIENCE, count=experience_entries))
        else:
            score -= NO_EXPERIENCE_PENALTY
            reasons.append(MatchReason(ReasonKind.NO_EXPERIENCE, points=-NO_EXPERIENCE_PENALTY))

        if candidate.education:
            reasons.append(MatchReason(ReasonKind.EDUCATION_PRESENT))
        else:
            score -= NO_EDUCATION_PENALTY
            reasons.append(MatchReason(ReasonKind.NO_EDUCATION, points=-NO_EDUCATION_PENALTY))

        job_categories = {c.lower() for c in job.categories}
        candidate_categories = {c.lower() for c in candidate.preferred_categories}
        overlap = len(job_categories & candidate_categories)
        if overlap > 0:
            bonus = overlap * CATEGORY_BONUS
            score += bonus
            reasons.append(MatchReason(ReasonKind.CATEGORY_OVERLAP, count=overlap, points=bonus))

        semantic_bonus = round_half_up(similarity * SEMANTIC_WEIGHT)
        score += semantic_bonus
        reasons.append(MatchReason(ReasonKind.SEMANTIC, points=semantic_bonus, similarity=similarity))

        return ScoreBreakdown(score=max(0, min(100, score)), reasons=tuple(reasons))


# Module-level scorer shared by the orchestrator and the evaluation harness
hybrid_scorer = HybridScorer()
