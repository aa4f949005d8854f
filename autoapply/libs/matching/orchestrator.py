"""
Match orchestration.

Retrieves the comparison pool from the embedding store, filters it by cosine
similarity, scores the survivors with the hybrid scorer and returns a ranked,
truncated list of matches. No submission happens here.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from autoapply.core.config import settings
from autoapply.core.interfaces import EmbeddingStore
from autoapply.libs.matching.exceptions import (
    DimensionMismatchError,
    UpstreamUnavailableError,
)
from autoapply.libs.matching.hybrid_scorer import HybridScorer, hybrid_scorer
from autoapply.libs.matching.models import CandidateProfile, JobPosting, Match
from autoapply.libs.matching.vector_math import cosine_similarity
from autoapply.log.logging import logger
from autoapply.metrics.algorithm import (
    async_matching_algorithm_timer,
    report_match_score_distribution,
)

Vector = Sequence[float]


class MatchOrchestrator:
    """Finds and ranks matches in either direction."""

    def __init__(
        self,
        embedding_store: EmbeddingStore,
        scorer: Optional[HybridScorer] = None,
        similarity_threshold: Optional[float] = None,
        top_n_jobs: Optional[int] = None,
        top_n_candidates: Optional[int] = None,
    ):
        self.embedding_store = embedding_store
        self.scorer = scorer or hybrid_scorer
        self.similarity_threshold = (
            settings.similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self.top_n_jobs = settings.top_n_jobs if top_n_jobs is None else top_n_jobs
        self.top_n_candidates = settings.top_n_candidates if top_n_candidates is None else top_n_candidates

    async def load_job_pool(self) -> List[Tuple[JobPosting, Vector]]:
        """
        Read all open jobs with embeddings.

        Raises:
            UpstreamUnavailableError: if the store read fails
        """
        try:
            pool = await self.embedding_store.list_open_jobs_with_embeddings()
        except Exception as e:
            raise UpstreamUnavailableError(f"Failed to fetch job postings: {e}") from e
        return [(job, vector) for job, vector in pool if job.is_open and vector is not None]

    def _score_pairs(
        self,
        pairs: Iterable[Tuple[CandidateProfile, JobPosting, Vector, Vector]],
    ) -> List[Match]:
        matches: List[Match] = []
        for candidate, job, candidate_vector, job_vector in pairs:
            try:
                similarity = cosine_similarity(candidate_vector, job_vector)
            except DimensionMismatchError as e:
                logger.warning(
                    "Skipping pair with mismatched embedding dimensions",
                    candidate_id=candidate.id,
                    job_posting_id=job.id,
                    error=str(e),
                )
                continue
            if similarity < self.similarity_threshold:
                continue
            breakdown = self.scorer.score(candidate, job, similarity)
            matches.append(
                Match(
                    candidate_id=candidate.id,
                    job_posting_id=job.id,
                    embedding_similarity=similarity,
                    match_score=breakdown.score,
                    reasons=breakdown.reasons,
                )
            )
        return matches

    @async_matching_algorithm_timer("candidate_to_jobs")
    async def find_matching_jobs(
        self,
        candidate: CandidateProfile,
        candidate_vector: Vector,
        job_pool: Optional[List[Tuple[JobPosting, Vector]]] = None,
    ) -> List[Match]:
        """
        Rank open jobs for one candidate.

        Args:
            candidate: Candidate profile
            candidate_vector: Candidate embedding, already validated by the caller
            job_pool: Pre-fetched (job, vector) pairs; read from the store when omitted

        Returns:
            At most ``top_n_jobs`` matches ordered by score desc, similarity
            desc, job id asc
        """
        if job_pool is None:
            job_pool = await self.load_job_pool()

        matches = self._score_pairs(
            (candidate, job, candidate_vector, job_vector)
            for job, job_vector in job_pool
            if job.is_open and job_vector is not None
        )
        ranked = sorted(
            matches,
            key=lambda m: (-m.match_score, -m.embedding_similarity, m.job_posting_id),
        )[: self.top_n_jobs]

        logger.debug(
            "Ranked jobs for candidate",
            candidate_id=candidate.id,
            jobs_considered=len(job_pool),
            above_threshold=len(matches),
            returned=len(ranked),
        )
        report_match_score_distribution(
            [m.match_score for m in ranked], {"direction": "candidate_to_jobs"}
        )
        return ranked

    @async_matching_algorithm_timer("job_to_candidates")
    async def find_matching_candidates(self, job: JobPosting, job_vector: Vector) -> List[Match]:
        """
        Rank candidates for one job posting, best first, at most
        ``top_n_candidates`` entries. Closed postings produce no matches.
        """
        if not job.is_open:
            logger.info("Skipping closed job posting", job_posting_id=job.id)
            return []

        try:
            pool = await self.embedding_store.list_candidates_with_embeddings(
                limit=settings.candidate_pool_limit
            )
        except Exception as e:
            raise UpstreamUnavailableError(f"Failed to fetch candidates: {e}") from e

        matches = self._score_pairs(
            (candidate, job, candidate_vector, job_vector)
            for candidate, candidate_vector in pool
            if candidate_vector is not None
        )
        ranked = sorted(
            matches,
            key=lambda m: (-m.match_score, -m.embedding_similarity, m.candidate_id),
        )[: self.top_n_candidates]

        logger.debug(
            "Ranked candidates for job",
            job_posting_id=job.id,
            candidates_considered=len(pool),
            above_threshold=len(matches),
            returned=len(ranked),
        )
        report_match_score_distribution(
            [m.match_score for m in ranked], {"direction": "job_to_candidates"}
        )
        return ranked
