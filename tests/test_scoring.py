import pytest

from ocean_validation.analyzers import DisagreementAnalyzer
from ocean_validation.config import AnalyzerConfig, QualityConfig
from ocean_validation.models import AgreementResult, Disagreement, Severity
from ocean_validation.scoring import QualityScorer, improvement_rate, is_oscillating


@pytest.fixture
def scorer():
    return QualityScorer(QualityConfig())


def _disagreement(severity: Severity) -> Disagreement:
    return Disagreement(
        facet="openness",
        a1_score=90.0,
        b1_score=50.0,
        difference=40.0,
        severity=severity,
        trait="openness",
    )


def test_perfect_round_scores_exactly_one(scorer):
    agreement = AgreementResult(agreement_score=1.0, disagreement_rate=0.0, confidence=1.0)

    metrics = scorer.score(agreement)

    assert metrics.quality_score == 1.0
    assert metrics.overall_confidence == 100.0
    assert scorer.meets_threshold(metrics, 100.0)


def test_weighted_components(scorer):
    agreement = AgreementResult(
        agreement_score=0.8,
        disagreement_rate=0.2,
        confidence=0.55,
        issues=["Systematic over-estimation detected"],
        disagreements=[_disagreement(Severity.HIGH)],
    )

    metrics = scorer.score(agreement, iteration=1)

    assert metrics.issue_score == pytest.approx(0.9)
    assert metrics.severity_score == 0.0
    assert metrics.quality_score == pytest.approx(0.4 * 0.8 + 0.3 * 0.55 + 0.2 * 0.9)
    assert metrics.iteration_count == 1
    assert metrics.high_severity_disagreements == 1
    assert not scorer.meets_threshold(metrics, 85.0)


def test_issue_score_floors_at_zero(scorer):
    assert scorer.issue_score(10) == 0.0
    assert scorer.issue_score(25) == 0.0
    assert scorer.issue_score(3) == pytest.approx(0.7)


def test_severity_score_without_disagreements_is_one():
    assert QualityScorer.severity_score(0, 0) == 1.0
    assert QualityScorer.severity_score(1, 4) == pytest.approx(0.75)


def test_identical_scores_reach_quality_above_point_nine(scorer, payloads):
    analyzer = DisagreementAnalyzer(AnalyzerConfig())
    agreement = analyzer.analyze(payloads.generator_output(), payloads.validator_output())

    metrics = scorer.score(agreement)

    # confidence is mean(1, 1, 0.5, 0.5) with default consistency
    assert metrics.quality_score == pytest.approx(0.4 + 0.3 * 0.75 + 0.2 + 0.1)
    assert metrics.quality_score >= 0.9


def test_quality_bucket_uses_configured_thresholds(scorer):
    agreement = AgreementResult(agreement_score=0.5, disagreement_rate=0.5, confidence=0.5)
    metrics = scorer.score(agreement)

    # 0.2 + 0.15 + 0.2 + 0.1
    assert metrics.quality_score == pytest.approx(0.65)
    assert metrics.quality_bucket(QualityConfig().score_thresholds) == "questionable"


def test_improvement_rate_is_floored_at_zero():
    assert improvement_rate([]) == 0.0
    assert improvement_rate([0.5]) == 0.0
    assert improvement_rate([0.5, 0.6]) == pytest.approx(0.1)
    assert improvement_rate([0.6, 0.5]) == 0.0


@pytest.mark.parametrize(
    "history, expected",
    [
        ([0.5, 0.6, 0.5, 0.6], True),
        ([0.7, 0.5, 0.6, 0.5, 0.6], True),
        ([0.5, 0.6, 0.7, 0.8], False),
        ([0.5, 0.5, 0.5, 0.5], False),
        ([0.5, 0.6, 0.5], False),
        ([0.3, 0.6, 0.5, 0.8], False),
    ],
)
def test_is_oscillating(history, expected):
    assert is_oscillating(history, window=4, tolerance=0.05) is expected
