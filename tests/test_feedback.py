import pytest

from ocean_validation.config import FeedbackConfig
from ocean_validation.feedback import FeedbackGenerator, categorize_issue
from ocean_validation.models import (
    Disagreement,
    DisagreementLevel,
    EvaluationStage,
    FeedbackCategory,
    NodeType,
    Severity,
    ValidationNode,
)


@pytest.fixture
def generator():
    return FeedbackGenerator(FeedbackConfig())


def _node(node_id: str, confidence: float, node_type: NodeType = NodeType.SCORING) -> ValidationNode:
    return ValidationNode(
        node_id=node_id,
        node_type=node_type,
        stage=EvaluationStage.VALIDATOR,
        confidence=confidence,
        iteration=0,
    )


def _disagreement(trait, facet, difference, severity, level=DisagreementLevel.FACET):
    return Disagreement(
        facet=facet,
        a1_score=50.0 + difference,
        b1_score=50.0,
        difference=difference,
        severity=severity,
        trait=trait,
        level=level,
    )


def test_medium_facet_disagreement_becomes_accuracy_item(generator):
    nodes = {"ocean_openness": _node("ocean_openness", 70.0)}
    items = generator.generate(
        [_disagreement("openness", "imagination", 15.0, Severity.MEDIUM)],
        None,
        nodes,
        confidence_threshold=85.0,
        iteration=1,
    )

    assert len(items) == 1
    item = items[0]
    assert item.node_id == "ocean_openness"
    assert item.category == FeedbackCategory.ACCURACY
    assert item.severity == Severity.MEDIUM
    assert item.priority == 5
    assert item.applied is False
    assert item.confidence_before == 70.0
    assert item.iteration == 1
    assert "imagination" in item.description


def test_high_dimension_disagreement_with_large_gap_is_top_priority(generator):
    nodes = {"ocean_neuroticism": _node("ocean_neuroticism", 50.0)}
    items = generator.generate(
        [_disagreement("neuroticism", "neuroticism", -25.0, Severity.HIGH, DisagreementLevel.DIMENSION)],
        None,
        nodes,
        confidence_threshold=85.0,
        iteration=1,
    )

    # 5 x 1.5 x 1.5 x 1.0 clamps to 10
    assert items[0].priority == 10
    assert items[0].category == FeedbackCategory.CONSISTENCY


def test_low_severity_is_below_minimum(generator):
    items = generator.generate(
        [_disagreement("openness", "ideas", 5.0, Severity.LOW)],
        None,
        {},
        confidence_threshold=85.0,
        iteration=1,
    )

    assert items == []


def test_node_assessment_issue_is_categorized_and_prioritised(generator, payloads):
    validator = payloads.validator_output(
        node_assessments={
            "insight_1": {
                "confidence": 40.0,
                "issues": ["Vague wording in the summary"],
                "suggestions": ["Cite the specific facet scores"],
            }
        }
    )
    nodes = {"insight_1": _node("insight_1", 40.0, NodeType.INSIGHT)}

    items = generator.generate([], validator, nodes, confidence_threshold=95.0, iteration=1)

    assert len(items) == 1
    item = items[0]
    assert item.category == FeedbackCategory.CLARITY
    assert item.severity == Severity.HIGH
    # 5 x 1.5 x 1.5 x 0.8
    assert item.priority == 9
    assert "Cite the specific facet scores" in item.description


def test_items_sorted_by_priority_and_targets_are_distinct(generator):
    nodes = {
        "ocean_openness": _node("ocean_openness", 80.0),
        "ocean_agreeableness": _node("ocean_agreeableness", 30.0),
    }
    items = generator.generate(
        [
            _disagreement("openness", "ideas", 12.0, Severity.MEDIUM),
            _disagreement("agreeableness", "trust", 30.0, Severity.HIGH),
            _disagreement("openness", "fantasy", 22.0, Severity.HIGH),
        ],
        None,
        nodes,
        confidence_threshold=85.0,
        iteration=1,
    )

    priorities = [item.priority for item in items]
    assert priorities == sorted(priorities, reverse=True)
    assert items[0].node_id == "ocean_agreeableness"
    assert FeedbackGenerator.target_nodes(items) == ["ocean_agreeableness", "ocean_openness"]


def test_mark_applied_only_when_confidence_rose(generator):
    before = {
        "ocean_openness": _node("ocean_openness", 40.0),
        "ocean_extraversion": _node("ocean_extraversion", 60.0),
    }
    items = generator.generate(
        [
            _disagreement("openness", "ideas", 15.0, Severity.MEDIUM),
            _disagreement("extraversion", "warmth", 15.0, Severity.MEDIUM),
        ],
        None,
        before,
        confidence_threshold=85.0,
        iteration=1,
    )
    after = {
        "ocean_openness": _node("ocean_openness", 72.0),
        "ocean_extraversion": _node("ocean_extraversion", 55.0),
    }

    applied = FeedbackGenerator.mark_applied(items, after, iteration=1)

    by_node = {item.node_id: item for item in items}
    assert applied == 1
    assert by_node["ocean_openness"].applied is True
    assert by_node["ocean_openness"].confidence_improvement == pytest.approx(32.0)
    assert by_node["ocean_extraversion"].applied is False
    assert by_node["ocean_extraversion"].confidence_after == 55.0


@pytest.mark.parametrize(
    "issue, category",
    [
        ("Possible gender stereotype in wording", FeedbackCategory.BIAS),
        ("Contradicts the facet profile", FeedbackCategory.CONSISTENCY),
        ("Too much jargon", FeedbackCategory.CLARITY),
        ("Raises a privacy concern", FeedbackCategory.COMPLIANCE),
        ("Score not supported by item responses", FeedbackCategory.ACCURACY),
    ],
)
def test_categorize_issue(issue, category):
    assert categorize_issue(issue) == category
