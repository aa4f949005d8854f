"""Tests for the hybrid scorer."""

import pytest

from autoapply.libs.matching.hybrid_scorer import HybridScorer
from autoapply.libs.matching.models import ReasonKind
from autoapply.tests.factories import make_candidate, make_job


@pytest.fixture
def scorer():
    return HybridScorer()


class TestHybridScorer:

    def test_worked_example_clamps_to_100(self, scorer):
        candidate = make_candidate(skills=["Python", "React"], experience=1, education=1, categories=["backend"])
        job = make_job(must_have=["Python", "SQL"], nice_to_have=["Docker"], categories=["backend"])

        result = scorer.score(candidate, job, 0.8)

        assert result.score == 100
        assert result.rendered_reasons == [
            "Missing 1 required skills (-3)",
            "Experience: 1 entries",
            "Education present",
            "1 category matches (+3)",
            "Semantic match: 80% (+12)",
        ]

    def test_all_penalties(self, scorer):
        candidate = make_candidate(skills=[], experience=0, education=0, categories=[])
        job = make_job(must_have=["Go", "Rust", "C", "Java", "Scala", "Kotlin", "Swift", "Zig"], nice_to_have=[])

        result = scorer.score(candidate, job, 0.0)

        # 100 - 20 (capped) - 15 - 10 + 0
        assert result.score == 55
        kinds = [r.kind for r in result.reasons]
        assert kinds == [
            ReasonKind.MISSING_SKILLS,
            ReasonKind.NO_EXPERIENCE,
            ReasonKind.NO_EDUCATION,
            ReasonKind.SEMANTIC,
        ]
        assert result.reasons[0].count == 8
        assert result.reasons[0].points == -20

    def test_all_skills_present_and_nice_to_have(self, scorer):
        candidate = make_candidate(skills=["python", "SQL", "docker"], experience=0, education=0, categories=[])
        job = make_job(must_have=["Python", "SQL"], nice_to_have=["Docker"], categories=["data"])

        result = scorer.score(candidate, job, 0.0)

        assert result.score == 100 + 2 - 15 - 10
        assert result.rendered_reasons[0] == "All required skills present"
        assert result.rendered_reasons[1] == "1 nice-to-have skills matched (+2)"

    def test_no_must_haves_emits_no_skill_reason(self, scorer):
        candidate = make_candidate()
        job = make_job(must_have=[], nice_to_have=[])

        result = scorer.score(candidate, job, 0.5)

        kinds = {r.kind for r in result.reasons}
        assert ReasonKind.MISSING_SKILLS not in kinds
        assert ReasonKind.ALL_SKILLS_PRESENT not in kinds

    def test_semantic_bonus_rounds_half_up(self, scorer):
        candidate = make_candidate(skills=[], experience=0, education=0, categories=[])
        job = make_job(must_have=[], nice_to_have=[], categories=[])

        # 0.1 * 15 = 1.5 rounds to 2
        result = scorer.score(candidate, job, 0.1)

        assert result.reasons[-1].points == 2
        assert result.score == 100 - 15 - 10 + 2

    def test_negative_similarity_lowers_score(self, scorer):
        candidate = make_candidate(skills=[], experience=0, education=0, categories=[])
        job = make_job(must_have=[], nice_to_have=[], categories=[])

        result = scorer.score(candidate, job, -1.0)

        assert result.score == 100 - 15 - 10 - 15

    @pytest.mark.parametrize("similarity", [-1.0, -0.3, 0.0, 0.5, 0.99, 1.0])
    def test_score_bounds(self, scorer, similarity):
        candidate = make_candidate(skills=[], experience=0, education=0, categories=[])
        job = make_job(must_have=["A", "B", "C", "D", "E", "F", "G"], categories=["x"])

        assert 0 <= scorer.score(candidate, job, similarity).score <= 100

    def test_deterministic(self, scorer):
        candidate = make_candidate()
        job = make_job()

        first = scorer.score(candidate, job, 0.77)
        second = scorer.score(candidate, job, 0.77)

        assert first == second
