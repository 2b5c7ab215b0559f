import pytest

from ocean_validation.analyzers import BiasDetector, DisagreementAnalyzer, classify_severity
from ocean_validation.config import AnalyzerConfig
from ocean_validation.models import DisagreementLevel, Severity


@pytest.fixture
def analyzer():
    return DisagreementAnalyzer(AnalyzerConfig())


@pytest.mark.parametrize(
    "difference, expected",
    [
        (0.0, Severity.LOW),
        (10.0, Severity.LOW),
        (10.5, Severity.MEDIUM),
        (20.0, Severity.MEDIUM),
        (21.0, Severity.HIGH),
        (-21.0, Severity.HIGH),
        (-15.0, Severity.MEDIUM),
    ],
)
def test_severity_boundaries(difference, expected):
    assert classify_severity(difference) == expected


def test_identical_scores_agree_fully(analyzer, payloads):
    a1 = payloads.generator_output()
    b1 = payloads.validator_output()

    result = analyzer.analyze(a1, b1)

    assert result.agreement_score == 1.0
    assert result.disagreement_rate == 0.0
    assert result.disagreements == []
    assert result.issues == []
    assert result.recommendations == []


def test_single_facet_gap_of_21_is_one_high_disagreement(analyzer, payloads):
    a1 = payloads.generator_output(
        scores=payloads.scores(facets={"imagination": {"trait": "openness", "score": 71.0}})
    )
    b1 = payloads.validator_output(
        scores=payloads.scores(facets={"imagination": {"trait": "openness", "score": 50.0}})
    )

    result = analyzer.analyze(a1, b1)

    assert len(result.disagreements) == 1
    disagreement = result.disagreements[0]
    assert disagreement.severity == Severity.HIGH
    assert disagreement.facet == "imagination"
    assert disagreement.trait == "openness"
    assert disagreement.level == DisagreementLevel.FACET
    assert disagreement.difference == pytest.approx(21.0)
    assert disagreement.node_id == "ocean_openness"
    assert "Flag for human review: high-disagreement facets present" in result.recommendations


def test_agreement_weights_dimensions_and_facets(analyzer, payloads):
    a1 = payloads.generator_output(
        scores=payloads.scores(facets={"order": {"trait": "conscientiousness", "score": 60.0}})
    )
    b1 = payloads.validator_output(
        scores=payloads.scores(facets={"order": {"trait": "conscientiousness", "score": 50.0}})
    )

    result = analyzer.analyze(a1, b1)

    # dimensions agree fully, the only facet agrees at 1 - 10/20
    assert result.agreement_score == pytest.approx(0.6 * 1.0 + 0.4 * 0.5)
    assert result.facet_agreement == {"conscientiousness:order": pytest.approx(0.5)}
    # a gap of exactly 10 is not a disagreement
    assert result.disagreements == []


def test_dimension_only_agreement_without_facets(analyzer, payloads):
    a1 = payloads.generator_output(scores=payloads.scores(openness=80.0))
    b1 = payloads.validator_output(scores=payloads.scores(openness=70.0))

    result = analyzer.analyze(a1, b1)

    assert result.agreement_score == pytest.approx((0.5 + 4 * 1.0) / 5)
    assert result.dimension_agreement["openness"] == pytest.approx(0.5)


def test_dimension_gap_is_recorded_at_dimension_level(analyzer, payloads):
    a1 = payloads.generator_output(scores=payloads.scores(neuroticism=40.0))
    b1 = payloads.validator_output(scores=payloads.scores(neuroticism=55.0))

    result = analyzer.analyze(a1, b1, iteration=2)

    assert len(result.disagreements) == 1
    disagreement = result.disagreements[0]
    assert disagreement.level == DisagreementLevel.DIMENSION
    assert disagreement.severity == Severity.MEDIUM
    assert disagreement.difference == pytest.approx(-15.0)
    assert disagreement.iteration == 2


def test_facet_missing_from_one_pass_is_not_comparable(analyzer, payloads):
    a1 = payloads.generator_output(
        scores=payloads.scores(
            facets={
                "warmth": {"trait": "extraversion", "score": 90.0},
                "trust": {"trait": "agreeableness", "score": 70.0},
            }
        )
    )
    b1 = payloads.validator_output(
        scores=payloads.scores(facets={"trust": {"trait": "agreeableness", "score": 70.0}})
    )

    result = analyzer.analyze(a1, b1)

    assert result.not_comparable == ["warmth"]
    assert "agreeableness:trust" in result.facet_agreement
    assert all(d.facet != "warmth" for d in result.disagreements)


def test_facet_with_conflicting_trait_is_not_comparable(analyzer, payloads):
    a1 = payloads.generator_output(
        scores=payloads.scores(facets={"modesty": {"trait": "agreeableness", "score": 90.0}})
    )
    b1 = payloads.validator_output(
        scores=payloads.scores(facets={"modesty": {"trait": "neuroticism", "score": 40.0}})
    )

    result = analyzer.analyze(a1, b1)

    assert result.not_comparable == ["modesty"]
    assert result.disagreements == []


def test_validation_confidence_is_unweighted_mean(analyzer, payloads):
    a1 = payloads.generator_output(confidence=80.0, processing_time=1000.0)
    b1 = payloads.validator_output(confidence=60.0, processing_time=1000.0, consistency_score=0.9)

    confidence = analyzer.validation_confidence(a1, b1)

    assert confidence == pytest.approx((0.8 + 0.6 + 0.5 + 0.9) / 4)


def test_validation_confidence_defaults_missing_consistency(analyzer, payloads):
    a1 = payloads.generator_output(confidence=100.0, processing_time=3000.0)
    b1 = payloads.validator_output(confidence=100.0, processing_time=1000.0)

    # ratio capped at 2 gives factor 1.0; consistency defaults to 0.5
    assert analyzer.validation_confidence(a1, b1) == pytest.approx((1.0 + 1.0 + 1.0 + 0.5) / 4)


@pytest.mark.parametrize(
    "generator_ms, validator_ms, expected",
    [(1000.0, 1000.0, 0.5), (500.0, 1000.0, 0.25), (5000.0, 1000.0, 1.0), (0.0, 0.0, 0.5)],
)
def test_processing_time_factor(generator_ms, validator_ms, expected):
    assert DisagreementAnalyzer.processing_time_factor(generator_ms, validator_ms) == expected


def test_systematic_overestimation_is_flagged(analyzer, payloads):
    a1 = payloads.generator_output(scores=payloads.scores(value=70.0))
    b1 = payloads.validator_output(scores=payloads.scores(value=62.0))

    result = analyzer.analyze(a1, b1)

    assert any("Systematic over-estimation" in issue for issue in result.issues)
    assert result.mean_difference == pytest.approx(8.0)
    assert "Bias detected - review training data distribution" in result.recommendations


def test_central_tendency_uses_generator_pattern_analysis(analyzer, payloads):
    a1 = payloads.generator_output(pattern_analysis={"central_tendency": 0.85})
    b1 = payloads.validator_output(pattern_analysis={"central_tendency": 0.1})

    result = analyzer.analyze(a1, b1)

    assert len(result.issues) == 1
    assert "Central tendency bias" in result.issues[0]


def test_extreme_response_bias_per_pass(payloads):
    detector = BiasDetector(AnalyzerConfig())
    a1 = payloads.generator_output(scores=payloads.scores(value=95.0))
    b1 = payloads.validator_output(scores=payloads.scores(value=95.0))

    issues = detector.detect(a1, b1)

    assert len(issues) == 2
    assert all("Extreme response bias" in issue for issue in issues)


def test_validator_issues_are_carried_through(analyzer, payloads):
    a1 = payloads.generator_output()
    b1 = payloads.validator_output(issues=["Item 12 response looks inconsistent"])

    result = analyzer.analyze(a1, b1)

    assert result.issues == ["Item 12 response looks inconsistent"]


def test_many_disagreements_recommend_recalibration(analyzer, payloads):
    facets_a = {f"f{i}": {"trait": "openness", "score": 80.0} for i in range(6)}
    facets_b = {f"f{i}": {"trait": "openness", "score": 65.0} for i in range(6)}
    a1 = payloads.generator_output(scores=payloads.scores(facets=facets_a))
    b1 = payloads.validator_output(scores=payloads.scores(facets=facets_b))

    result = analyzer.analyze(a1, b1)

    assert len(result.disagreements) == 6
    assert "Multiple disagreements detected - recalibrate scoring models" in result.recommendations
    assert "Flag for human review: high-disagreement facets present" not in result.recommendations


def test_scores_stay_in_unit_interval_for_extreme_inputs(analyzer, payloads):
    a1 = payloads.generator_output(scores=payloads.scores(value=0.0), confidence=0.0)
    b1 = payloads.validator_output(scores=payloads.scores(value=100.0), confidence=0.0)

    result = analyzer.analyze(a1, b1)

    assert result.agreement_score == 0.0
    assert result.disagreement_rate == 1.0
    assert 0.0 <= result.confidence <= 1.0
