"""
Strategy evaluator for the matching pipeline.

Runs the hybrid strategy and its baselines (semantic-only, keyword, random)
over a dataset, packages the IR metrics of each run into an
``EvaluationResult`` and compares strategies pairwise.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from autoapply.core.config import settings
from autoapply.libs.matching.hybrid_scorer import hybrid_scorer
from autoapply.libs.matching.models import Match, round_half_up, utcnow
from autoapply.libs.matching.vector_math import cosine_similarity_matrix
from autoapply.log.logging import logger
from autoapply.metrics.core import MetricNames, timer
from autoapply.ml.evaluation.dataset import DatasetConfig, SyntheticDataset, generate_dataset
from autoapply.ml.evaluation.metrics import (
    RELEVANCE_SCORE_THRESHOLD,
    compute_accuracy,
    compute_average_precision,
    compute_f1,
    compute_mrr,
    compute_ndcg,
    compute_precision,
    compute_recall,
)

SIMILARITY_RELEVANCE_THRESHOLD = 0.7
KEYWORD_MIN_SCORE = 50

DEFAULT_TARGETS: Dict[str, float] = {
    "precision": 0.80,
    "recall": 0.70,
    "ndcg": 0.75,
    "f1": 0.75,
}


@dataclass
class CostModel:
    per_embedding_usd: float = field(default_factory=lambda: settings.per_embedding_cost_usd)
    per_match_usd: float = field(default_factory=lambda: settings.per_match_cost_usd)

    def estimate(self, candidates: int, jobs: int, matches: int) -> float:
        return (candidates + jobs) * self.per_embedding_usd + matches * self.per_match_usd


@dataclass
class EvaluationResult:
    """Metrics of one strategy run."""

    strategy_name: str
    candidates: int
    jobs: int
    total_matches: int
    precision: float = 0.0
    recall: float = 0.0
    ndcg: float = 0.0
    mrr: float = 0.0
    map_score: float = 0.0
    accuracy: float = 0.0
    f1_score: float = 0.0
    high_matches: int = 0
    medium_matches: int = 0
    low_matches: int = 0
    processing_time_ms: float = 0.0
    cost_estimate: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def summary(self) -> str:
        return (
            f"{self.strategy_name} - {self.timestamp.isoformat()}\n"
            f"Precision: {self.precision * 100:.1f}% | Recall: {self.recall * 100:.1f}%\n"
            f"F1 Score: {self.f1_score:.3f} | NDCG: {self.ndcg:.3f}\n"
            f"Matches: {self.total_matches} | Processing: {self.processing_time_ms:.0f}ms\n"
            f"Cost: ${self.cost_estimate:.4f}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy_name": self.strategy_name,
            "timestamp": self.timestamp.isoformat(),
            "dataset_size": {
                "candidates": self.candidates,
                "jobs": self.jobs,
                "total_matches": self.total_matches,
            },
            "metrics": {
                "precision": self.precision,
                "recall": self.recall,
                "ndcg": self.ndcg,
                "mrr": self.mrr,
                "map": self.map_score,
                "accuracy": self.accuracy,
                "f1": self.f1_score,
            },
            "match_distribution": {
                "high": self.high_matches,
                "medium": self.medium_matches,
                "low": self.low_matches,
            },
            "processing_time_ms": self.processing_time_ms,
            "cost_estimate": self.cost_estimate,
            "summary": self.summary,
        }


@dataclass
class StrategyComparison:
    """
    Pairwise comparison of two evaluation results.

    Every delta is oriented so that a positive value favours ``a``.
    """

    a: EvaluationResult
    b: EvaluationResult
    winner: str
    winner_by: float
    precision_diff: float
    recall_diff: float
    f1_diff: float
    cost_diff: float
    speed_diff: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "a": self.a.strategy_name,
            "b": self.b.strategy_name,
            "winner": self.winner,
            "winner_by_pp": self.winner_by,
            "analysis": {
                "precision_diff": self.precision_diff,
                "recall_diff": self.recall_diff,
                "f1_diff": self.f1_diff,
                "cost_diff": self.cost_diff,
                "speed_diff": self.speed_diff,
            },
        }


def evaluate_strategy(
    name: str,
    matches: Sequence[Match],
    dataset_size: Tuple[int, int],
    processing_time_ms: float,
    golden: Optional[Iterable[Match]] = None,
    cost_model: Optional[CostModel] = None,
) -> EvaluationResult:
    """
    Compute every metric for one strategy run.

    Args:
        name: Strategy name
        matches: The strategy's matches, in ranked order
        dataset_size: (candidates, jobs) the strategy ran over
        processing_time_ms: Wall time the strategy took
        golden: Ground-truth matches for recall; the matches themselves when omitted
        cost_model: Cost constants, from settings when omitted
    """
    candidates, jobs = dataset_size
    cost_model = cost_model or CostModel()

    precision = compute_precision(matches)
    recall = compute_recall(matches, matches if golden is None else golden)
    accuracy = compute_accuracy(
        [
            (m.match_score >= RELEVANCE_SCORE_THRESHOLD, m.embedding_similarity >= SIMILARITY_RELEVANCE_THRESHOLD)
            for m in matches
        ]
    )

    return EvaluationResult(
        strategy_name=name,
        candidates=candidates,
        jobs=jobs,
        total_matches=len(matches),
        precision=precision,
        recall=recall,
        ndcg=compute_ndcg(matches),
        mrr=compute_mrr(matches),
        map_score=compute_average_precision(matches),
        accuracy=accuracy,
        f1_score=compute_f1(precision, recall),
        high_matches=sum(1 for m in matches if m.match_score >= 80),
        medium_matches=sum(1 for m in matches if 70 <= m.match_score < 80),
        low_matches=sum(1 for m in matches if m.match_score < 70),
        processing_time_ms=processing_time_ms,
        cost_estimate=cost_model.estimate(candidates, jobs, len(matches)),
    )


def compare_strategies(
    a: EvaluationResult,
    b: EvaluationResult,
    tie_band: Optional[float] = None,
) -> StrategyComparison:
    """
    Pick a winner by F1 margin; margins within ``tie_band`` are a tie.

    ``winner_by`` is the margin in percentage points.
    """
    tie_band = settings.strategy_tie_band if tie_band is None else tie_band
    f1_diff = a.f1_score - b.f1_score

    winner, winner_by = "tie", 0.0
    if f1_diff > tie_band:
        winner, winner_by = "a", f1_diff * 100
    elif f1_diff < -tie_band:
        winner, winner_by = "b", abs(f1_diff) * 100

    return StrategyComparison(
        a=a,
        b=b,
        winner=winner,
        winner_by=winner_by,
        precision_diff=a.precision - b.precision,
        recall_diff=a.recall - b.recall,
        f1_diff=f1_diff,
        cost_diff=b.cost_estimate - a.cost_estimate,
        speed_diff=b.processing_time_ms - a.processing_time_ms,
    )


###############################################################################
# Strategies
###############################################################################


def _ranked(matches: List[Match]) -> List[Match]:
    return sorted(matches, key=lambda m: (-m.match_score, -m.embedding_similarity, m.candidate_id, m.job_posting_id))


def hybrid_strategy(dataset: SyntheticDataset, similarity: np.ndarray, threshold: float, rng: np.random.Generator) -> List[Match]:
    matches = []
    for ci, cj in zip(*np.nonzero(similarity >= threshold)):
        candidate, job = dataset.candidates[ci], dataset.jobs[cj]
        if not job.is_open:
            continue
        sim = float(similarity[ci, cj])
        breakdown = hybrid_scorer.score(candidate, job, sim)
        matches.append(Match(candidate.id, job.id, sim, breakdown.score, breakdown.reasons))
    return _ranked(matches)


def semantic_strategy(dataset: SyntheticDataset, similarity: np.ndarray, threshold: float, rng: np.random.Generator) -> List[Match]:
    matches = []
    for ci, cj in zip(*np.nonzero(similarity >= threshold)):
        job = dataset.jobs[cj]
        if not job.is_open:
            continue
        sim = float(similarity[ci, cj])
        matches.append(Match(dataset.candidates[ci].id, job.id, sim, round_half_up(sim * 100)))
    return _ranked(matches)


def keyword_strategy(dataset: SyntheticDataset, similarity: np.ndarray, threshold: float, rng: np.random.Generator) -> List[Match]:
    """Share of the job's requirement names found in the candidate's skills."""
    matches = []
    for ci, candidate in enumerate(dataset.candidates):
        skills = {s.lower() for s in candidate.skills}
        for cj, job in enumerate(dataset.jobs):
            if not job.is_open or not job.requirements:
                continue
            hits = sum(1 for r in job.requirements if r.name.lower() in skills)
            if not hits:
                continue
            score = round_half_up(100 * hits / len(job.requirements))
            if score >= KEYWORD_MIN_SCORE:
                matches.append(Match(candidate.id, job.id, float(similarity[ci, cj]), score))
    return _ranked(matches)


def random_strategy(dataset: SyntheticDataset, similarity: np.ndarray, threshold: float, rng: np.random.Generator) -> List[Match]:
    matches = []
    open_jobs = dataset.open_job_indices
    per_candidate = min(len(open_jobs), max(1, len(open_jobs) // 10))
    for ci, candidate in enumerate(dataset.candidates):
        if not open_jobs:
            break
        for cj in rng.choice(open_jobs, size=per_candidate, replace=False):
            matches.append(
                Match(candidate.id, dataset.jobs[cj].id, float(similarity[ci, cj]), int(rng.integers(0, 101)))
            )
    return _ranked(matches)


Strategy = Callable[[SyntheticDataset, np.ndarray, float, np.random.Generator], List[Match]]

STRATEGIES: Dict[str, Strategy] = {
    "hybrid": hybrid_strategy,
    "semantic": semantic_strategy,
    "keyword": keyword_strategy,
    "random": random_strategy,
}


###############################################################################
# Full evaluation
###############################################################################


@dataclass
class EvaluationConfig:
    """Configuration for a full offline evaluation."""
    candidate_count: int = 100
    job_count: int = 500
    seed: int = 42
    similarity_threshold: float = field(default_factory=lambda: settings.similarity_threshold)
    baselines: Optional[List[str]] = None
    targets: Optional[Dict[str, float]] = None

    def __post_init__(self):
        self.baselines = self.baselines or ["keyword", "semantic", "random"]
        self.targets = self.targets or dict(DEFAULT_TARGETS)
        unknown = [name for name in self.baselines if name not in STRATEGIES or name == "hybrid"]
        if unknown:
            raise ValueError(f"Unknown baseline strategies: {', '.join(unknown)}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_count": self.candidate_count,
            "job_count": self.job_count,
            "seed": self.seed,
            "similarity_threshold": self.similarity_threshold,
            "baselines": list(self.baselines),
            "targets": dict(self.targets),
        }


@dataclass
class EvaluationReport:
    config: EvaluationConfig
    results: Dict[str, EvaluationResult]
    comparisons: Dict[str, StrategyComparison]
    relevant_pairs: int
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def hybrid(self) -> EvaluationResult:
        return self.results["hybrid"]

    @property
    def targets_met(self) -> Dict[str, bool]:
        values = {
            "precision": self.hybrid.precision,
            "recall": self.hybrid.recall,
            "ndcg": self.hybrid.ndcg,
            "f1": self.hybrid.f1_score,
        }
        return {name: values[name] >= target for name, target in self.config.targets.items() if name in values}

    @property
    def all_targets_met(self) -> bool:
        return all(self.targets_met.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "config": self.config.to_dict(),
            "relevant_pairs": self.relevant_pairs,
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "comparisons": {name: comparison.to_dict() for name, comparison in self.comparisons.items()},
            "summary": {
                "improvement_over": {
                    name: f"{comparison.f1_diff * 100:.1f}pp" for name, comparison in self.comparisons.items()
                },
                "meets_targets": self.targets_met,
            },
        }


@timer(MetricNames.EVALUATION_DURATION)
def run_full_evaluation(config: Optional[EvaluationConfig] = None) -> EvaluationReport:
    """
    Generate the synthetic dataset, run hybrid and every baseline, and
    compare hybrid against each baseline on the dataset's ground truth.
    """
    config = config or EvaluationConfig()
    logger.info("Starting full evaluation", **config.to_dict())

    dataset = generate_dataset(
        DatasetConfig(candidate_count=config.candidate_count, job_count=config.job_count, seed=config.seed)
    )
    similarity = cosine_similarity_matrix(dataset.candidate_embeddings, dataset.job_embeddings)
    golden_keys: Set[Tuple[str, str]] = dataset.relevant_pairs
    golden = [Match(c, j, 1.0, 100) for c, j in sorted(golden_keys)]
    rng = np.random.default_rng(config.seed)

    results: Dict[str, EvaluationResult] = {}
    for name in ["hybrid", *config.baselines]:
        started = time.perf_counter()
        matches = STRATEGIES[name](dataset, similarity, config.similarity_threshold, rng)
        elapsed_ms = (time.perf_counter() - started) * 1000
        results[name] = evaluate_strategy(
            name,
            matches,
            (len(dataset.candidates), len(dataset.jobs)),
            elapsed_ms,
            golden=golden,
        )
        logger.info(
            "Strategy evaluated",
            strategy=name,
            matches=len(matches),
            f1=round(results[name].f1_score, 4),
            elapsed_ms=round(elapsed_ms, 1),
        )

    comparisons = {
        name: compare_strategies(results["hybrid"], results[name]) for name in config.baselines
    }
    return EvaluationReport(
        config=config,
        results=results,
        comparisons=comparisons,
        relevant_pairs=len(golden_keys),
    )
