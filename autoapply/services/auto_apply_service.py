"""
Auto-apply submission service.

Runs the eligibility gate over a candidate's ranked matches and submits the
eligible ones through the application store.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from autoapply.core.config import settings
from autoapply.core.interfaces import ApplicationStore, PreferencesStore
from autoapply.libs.matching.eligibility_gate import CandidateBudget, EligibilityGate, eligibility_gate
from autoapply.libs.matching.exceptions import DailyQuotaExceededError, DuplicateApplicationError
from autoapply.libs.matching.models import ApplicationSubmissionResult, Match, SkipReason
from autoapply.log.logging import logger
from autoapply.metrics.algorithm import report_submission_outcome
from autoapply.schemas.preferences import CandidatePreferences
from autoapply.utils.time_utils import start_of_today

SubmissionOutcome = Tuple[List[ApplicationSubmissionResult], List[ApplicationSubmissionResult]]


class AutoApplyService:
    """Gates and submits auto-applications for candidates."""

    def __init__(
        self,
        preferences_store: PreferencesStore,
        application_store: ApplicationStore,
        gate: Optional[EligibilityGate] = None,
        submission_delay_ms: Optional[int] = None,
    ):
        self.preferences_store = preferences_store
        self.application_store = application_store
        self.gate = gate or eligibility_gate
        self.submission_delay_ms = (
            settings.submission_delay_ms if submission_delay_ms is None else submission_delay_ms
        )

    async def apply_for_candidate(
        self,
        candidate_id: str,
        matches: Sequence[Match],
        now: Optional[datetime] = None,
    ) -> SubmissionOutcome:
        """
        Process one candidate's matches.

        Preferences and today's application count are read once, before the
        first decision. Matches are considered best first.

        Args:
            candidate_id: Candidate the matches belong to
            matches: Matches for that candidate, in any order
            now: Reference time for the daily window, defaults to now

        Returns:
            Tuple of (submitted, skipped) results

        Raises:
            Store errors from the preference or history reads
        """
        if not matches:
            return [], []

        since = start_of_today(now=now)
        preferences = await self.preferences_store.get_candidate_preferences(candidate_id)
        today_count = 0
        if preferences.auto_apply_enabled:
            today_count = await self.application_store.count_today_auto_applications(candidate_id, since)

        budget = self.gate.open_budget(preferences, today_count)
        if budget.blocked_reason:
            logger.info(
                "Candidate blocked from auto-apply",
                candidate_id=candidate_id,
                reason=budget.blocked_reason,
                today_count=today_count,
            )

        submitted: List[ApplicationSubmissionResult] = []
        skipped: List[ApplicationSubmissionResult] = []
        attempts = 0

        for match in self.gate.submission_order(matches):
            reason = self.gate.precheck(match, preferences, budget)
            if reason is not None:
                result = ApplicationSubmissionResult.skipped(match, reason)
            else:
                if attempts > 0 and self.submission_delay_ms > 0:
                    await asyncio.sleep(self.submission_delay_ms / 1000)
                attempts += 1
                result = await self._submit(match, preferences, budget, since)

            report_submission_outcome(result.success, result.reason)
            (submitted if result.success else skipped).append(result)

        logger.info(
            "Processed auto-apply matches",
            candidate_id=candidate_id,
            submitted=len(submitted),
            skipped=len(skipped),
            remaining_budget=budget.remaining - budget.submitted,
        )
        return submitted, skipped

    async def _submit(
        self,
        match: Match,
        preferences: CandidatePreferences,
        budget: CandidateBudget,
        since: datetime,
    ) -> ApplicationSubmissionResult:
        try:
            if await self.application_store.has_previous_application(match.candidate_id, match.job_posting_id):
                return ApplicationSubmissionResult.skipped(match, SkipReason.ALREADY_APPLIED)

            application_id = await self.application_store.insert_application(
                match,
                daily_limit=preferences.max_applications_per_day,
                since=since,
            )
        except DuplicateApplicationError:
            logger.info(
                "Duplicate application rejected by store",
                candidate_id=match.candidate_id,
                job_posting_id=match.job_posting_id,
            )
            return ApplicationSubmissionResult.skipped(match, SkipReason.ALREADY_APPLIED)
        except DailyQuotaExceededError:
            logger.warning(
                "Daily quota enforced by store, closing candidate budget",
                candidate_id=match.candidate_id,
                job_posting_id=match.job_posting_id,
            )
            budget.close(SkipReason.DAILY_LIMIT_REACHED)
            return ApplicationSubmissionResult.skipped(match, SkipReason.DAILY_LIMIT_REACHED)
        except Exception as e:
            logger.error(
                "Application submission failed",
                candidate_id=match.candidate_id,
                job_posting_id=match.job_posting_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ApplicationSubmissionResult.skipped(match, str(e) or type(e).__name__)

        budget.consume()
        logger.success(
            "Auto-application submitted",
            candidate_id=match.candidate_id,
            job_posting_id=match.job_posting_id,
            application_id=application_id,
            match_score=match.match_score,
        )
        return ApplicationSubmissionResult.submitted(match, application_id)

    async def process_matches(self, matches: Sequence[Match], now: Optional[datetime] = None) -> SubmissionOutcome:
        """
        Process a mixed list of matches, grouped per candidate.

        A candidate whose preference or history read fails has every match
        skipped with the error message; other candidates are unaffected.
        """
        by_candidate: Dict[str, List[Match]] = OrderedDict()
        for match in matches:
            by_candidate.setdefault(match.candidate_id, []).append(match)

        submitted: List[ApplicationSubmissionResult] = []
        skipped: List[ApplicationSubmissionResult] = []

        for candidate_id, candidate_matches in by_candidate.items():
            try:
                ok, skip = await self.apply_for_candidate(candidate_id, candidate_matches, now=now)
            except Exception as e:
                logger.exception(
                    "Failed to process candidate matches",
                    candidate_id=candidate_id,
                    error=str(e),
                )
                skip = [ApplicationSubmissionResult.skipped(m, str(e) or type(e).__name__) for m in candidate_matches]
                ok = []
            submitted.extend(ok)
            skipped.extend(skip)

        return submitted, skipped
