"""
Eligibility rules applied before an autonomous submission.

The gate holds no state between candidates: the caller reads preferences and
today's application count once per candidate, opens a budget from them and
then asks the gate about each match in ranked order.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from autoapply.libs.matching.models import Match, SkipReason
from autoapply.schemas.preferences import CandidatePreferences


@dataclass
class CandidateBudget:
    """Daily submission budget for one candidate within one run."""

    remaining: int
    submitted: int = 0
    blocked_reason: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.submitted >= self.remaining

    def consume(self) -> None:
        self.submitted += 1

    def close(self, reason: str) -> None:
        """Block every further match, e.g. after the store refused a quota."""
        self.blocked_reason = reason


class EligibilityGate:
    """Candidate-level and per-match auto-apply rules."""

    def open_budget(self, preferences: CandidatePreferences, today_count: int) -> CandidateBudget:
        """
        Evaluate the candidate-level gate.

        A disabled opt-in or a spent daily allowance yields a blocked budget,
        which makes ``precheck`` skip every match with that reason.
        """
        remaining = preferences.max_applications_per_day - today_count
        if not preferences.auto_apply_enabled:
            return CandidateBudget(remaining=max(0, remaining), blocked_reason=SkipReason.AUTO_APPLY_DISABLED)
        if remaining <= 0:
            return CandidateBudget(remaining=0, blocked_reason=SkipReason.DAILY_LIMIT_REACHED)
        return CandidateBudget(remaining=remaining)

    def precheck(
        self,
        match: Match,
        preferences: CandidatePreferences,
        budget: CandidateBudget,
    ) -> Optional[str]:
        """
        Return the skip reason for a match, or None when it may proceed to the
        duplicate check and submission.
        """
        if budget.blocked_reason:
            return budget.blocked_reason
        if budget.exhausted:
            return SkipReason.DAILY_LIMIT_REACHED
        if match.match_score < preferences.auto_apply_min_score:
            return SkipReason.below_threshold(match.match_score, preferences.auto_apply_min_score)
        return None

    @staticmethod
    def submission_order(matches: Iterable[Match]) -> List[Match]:
        """Highest score first; ties by similarity desc then job id asc."""
        return sorted(
            matches,
            key=lambda m: (-m.match_score, -m.embedding_similarity, m.job_posting_id),
        )


eligibility_gate = EligibilityGate()
