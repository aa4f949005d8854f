import pytest

from autoapply.libs.matching.models import Match
from autoapply.ml.evaluation.dataset import DatasetConfig, generate_dataset, is_good_fit
from autoapply.ml.evaluation.evaluator import (
    CostModel,
    EvaluationConfig,
    compare_strategies,
    evaluate_strategy,
    run_full_evaluation,
)
from autoapply.tests.factories import make_candidate, make_job, make_match

SMALL = DatasetConfig(candidate_count=12, job_count=40, dimension=64, seed=7)


class TestDataset:

    def test_reproducible(self):
        first = generate_dataset(SMALL)
        second = generate_dataset(SMALL)

        assert [c.skills for c in first.candidates] == [c.skills for c in second.candidates]
        assert (first.job_embeddings == second.job_embeddings).all()
        assert first.relevant_pairs == second.relevant_pairs

    def test_shapes(self):
        dataset = generate_dataset(SMALL)

        assert dataset.candidate_embeddings.shape == (12, 64)
        assert dataset.job_embeddings.shape == (40, 64)
        assert len(dataset.candidate_pairs()) == 12

    def test_relevant_pairs_are_open_same_topic(self):
        dataset = generate_dataset(SMALL)
        jobs = {job.id: (job, topic) for job, topic in zip(dataset.jobs, dataset.job_topics)}
        topics = {c.id: topic for c, topic in zip(dataset.candidates, dataset.candidate_topics)}

        for candidate_id, job_id in dataset.relevant_pairs:
            job, topic = jobs[job_id]
            assert job.is_open
            assert topics[candidate_id] == topic

    def test_good_fit_needs_experience(self):
        job = make_job(must_have=("Python", "SQL"))
        assert is_good_fit(make_candidate(skills=("Python",)), job, same_topic=True)
        assert not is_good_fit(make_candidate(skills=("Python",), experience=0), job, same_topic=True)
        assert not is_good_fit(make_candidate(), job, same_topic=False)


class TestEvaluateStrategy:

    def test_metrics_and_cost(self):
        matches = [make_match(job_id="job-1", score=90, similarity=0.9), make_match(job_id="job-2", score=60, similarity=0.75)]
        golden = [make_match(job_id="job-1"), make_match(job_id="job-3")]

        result = evaluate_strategy(
            "hybrid", matches, (2, 3), 12.5, golden=golden, cost_model=CostModel(per_embedding_usd=0.1, per_match_usd=1.0)
        )

        assert result.precision == 0.5
        assert result.recall == 0.5
        assert result.f1_score == pytest.approx(0.5)
        assert result.accuracy == 0.5
        assert result.high_matches == 1
        assert result.low_matches == 1
        assert result.cost_estimate == pytest.approx(2.5)
        assert result.to_dict()["strategy_name"] == "hybrid"

    def test_no_matches(self):
        result = evaluate_strategy("semantic", [], (1, 1), 0.0, golden=[Match("c", "j", 1.0, 100)])
        assert result.precision == 0.0
        assert result.recall == 0.0
        assert result.f1_score == 0.0


class TestCompare:

    def _result(self, name, f1):
        result = evaluate_strategy(name, [], (1, 1), 1.0)
        result.f1_score = f1
        return result

    def test_winner_by_margin(self):
        comparison = compare_strategies(self._result("hybrid", 0.8), self._result("semantic", 0.6), tie_band=0.01)
        assert comparison.winner == "a"
        assert comparison.winner_by == pytest.approx(20.0)

    def test_tie_within_band(self):
        comparison = compare_strategies(self._result("hybrid", 0.705), self._result("semantic", 0.7), tie_band=0.01)
        assert comparison.winner == "tie"
        assert comparison.winner_by == 0.0

    def test_b_wins(self):
        comparison = compare_strategies(self._result("hybrid", 0.5), self._result("semantic", 0.7), tie_band=0.01)
        assert comparison.winner == "b"


class TestFullEvaluation:

    def test_unknown_baseline(self):
        with pytest.raises(ValueError):
            EvaluationConfig(baselines=["telepathy"])

    def test_small_run(self):
        report = run_full_evaluation(EvaluationConfig(candidate_count=10, job_count=30, seed=3))

        assert set(report.results) == {"hybrid", "keyword", "semantic", "random"}
        assert set(report.comparisons) == {"keyword", "semantic", "random"}
        for result in report.results.values():
            assert 0.0 <= result.precision <= 1.0
            assert 0.0 <= result.recall <= 1.0
            assert 0.0 <= result.ndcg <= 1.0 + 1e-9
        data = report.to_dict()
        assert data["config"]["candidate_count"] == 10
        assert set(data["summary"]["meets_targets"]) == {"precision", "recall", "ndcg", "f1"}
        assert isinstance(report.all_targets_met, bool)

    def test_reproducible(self):
        config = dict(candidate_count=8, job_count=20, seed=5, baselines=["semantic"])
        first = run_full_evaluation(EvaluationConfig(**config))
        second = run_full_evaluation(EvaluationConfig(**config))

        assert first.hybrid.total_matches == second.hybrid.total_matches
        assert first.hybrid.f1_score == second.hybrid.f1_score
