"""
Feedback generation for improvement cycles.

Turns disagreements and validator node issues into prioritised,
human-readable remediation items, and marks them applied once a later
validator pass shows the targeted node improved.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, TYPE_CHECKING

from ocean_validation.models import (
    Disagreement,
    DisagreementLevel,
    FeedbackCategory,
    FeedbackItem,
    NodeType,
    Severity,
    ValidationNode,
)
from ocean_validation.schemas import ValidatorOutput

if TYPE_CHECKING:
    from ocean_validation.config import FeedbackConfig

logger = logging.getLogger(__name__)

BASE_PRIORITY = 5.0

ROOT_CAUSES: Dict[FeedbackCategory, str] = {
    FeedbackCategory.ACCURACY: "Check the item evidence behind this score before re-scoring.",
    FeedbackCategory.BIAS: "Remove assumptions or loaded language that skew the result.",
    FeedbackCategory.CLARITY: "Simplify the wording and structure of this section.",
    FeedbackCategory.CONSISTENCY: "Align this trait with its facet scores and the rest of the profile.",
    FeedbackCategory.COMPLIANCE: "Bring the content in line with professional reporting standards.",
}

# Checked in order; first match wins
CATEGORY_KEYWORDS = [
    (FeedbackCategory.BIAS, ("bias", "stereotyp", "unfair", "loaded")),
    (FeedbackCategory.COMPLIANCE, ("complian", "regulat", "legal", "ethic", "privacy")),
    (FeedbackCategory.CLARITY, ("clear", "clarity", "vague", "jargon", "readab", "confusing")),
    (FeedbackCategory.CONSISTENCY, ("consisten", "contradict", "mismatch", "conflict")),
]


def categorize_issue(issue: str) -> FeedbackCategory:
    """Map free-text validator issue to a feedback category."""
    text = issue.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in text for k in keywords):
            return category
    return FeedbackCategory.ACCURACY


class FeedbackGenerator:
    """
    Produce remediation items for flagged nodes.

    Example:
        >>> generator = FeedbackGenerator(config.feedback)
        >>> items = generator.generate(disagreements, validator_output, nodes, 85.0, 1)
        >>> targets = generator.target_nodes(items)
    """

    def __init__(self, config: FeedbackConfig) -> None:
        self.config = config
        self.minimum_severity = Severity(config.minimum_severity)

    def generate(
        self,
        disagreements: List[Disagreement],
        validator: Optional[ValidatorOutput],
        nodes: Dict[str, ValidationNode],
        confidence_threshold: float,
        iteration: int,
    ) -> List[FeedbackItem]:
        """
        Build feedback for one improvement cycle.

        Args:
            disagreements: Disagreements from the latest analysis
            validator: Latest validator output (for node assessment issues)
            nodes: Latest validator-stage node per node id
            confidence_threshold: Workflow confidence threshold (0-100)
            iteration: Improvement cycle being started

        Returns:
            Feedback items sorted by descending priority
        """
        items: List[FeedbackItem] = []

        for disagreement in disagreements:
            if disagreement.severity.priority < self.minimum_severity.priority:
                continue
            node = nodes.get(disagreement.node_id)
            items.append(
                self._from_disagreement(disagreement, node, confidence_threshold, iteration)
            )

        if validator is not None:
            for node_id, assessment in validator.node_assessments.items():
                node = nodes.get(node_id)
                confidence = node.confidence if node is not None else assessment.confidence
                severity = self._issue_severity(confidence, confidence_threshold)
                if severity.priority < self.minimum_severity.priority:
                    continue
                for index, issue in enumerate(assessment.issues):
                    suggestion = (
                        assessment.suggestions[index]
                        if index < len(assessment.suggestions)
                        else None
                    )
                    items.append(
                        self._from_issue(
                            node_id,
                            node.node_type if node is not None else NodeType.SCORING,
                            issue,
                            suggestion,
                            severity,
                            confidence,
                            confidence_threshold,
                            iteration,
                        )
                    )

        items.sort(key=lambda item: (-item.priority, -item.severity.priority, item.node_id))

        if items:
            logger.info(
                f"Iteration {iteration}: {len(items)} feedback items "
                f"for {len(self.target_nodes(items))} nodes"
            )
        return items

    @staticmethod
    def target_nodes(items: Iterable[FeedbackItem]) -> List[str]:
        """Distinct node ids referenced by the items, in first-seen order."""
        seen: Dict[str, None] = {}
        for item in items:
            seen.setdefault(item.node_id, None)
        return list(seen)

    @staticmethod
    def mark_applied(
        items: Iterable[FeedbackItem],
        nodes: Dict[str, ValidationNode],
        iteration: int,
    ) -> int:
        """
        Record post-revalidation confidence for this cycle's items.

        An item is applied only when its node's confidence rose.

        Returns:
            Number of items marked applied
        """
        applied = 0
        for item in items:
            if item.iteration != iteration:
                continue
            node = nodes.get(item.node_id)
            if node is None:
                continue
            item.confidence_after = node.confidence
            if node.confidence > item.confidence_before:
                item.applied = True
                applied += 1
        return applied

    def _issue_severity(self, confidence: float, threshold: float) -> Severity:
        if threshold - confidence > self.config.high_gap:
            return Severity.HIGH
        return Severity.MEDIUM

    def _priority(
        self,
        severity: Severity,
        node_type: NodeType,
        confidence: float,
        threshold: float,
    ) -> int:
        priority = BASE_PRIORITY * severity.multiplier
        if threshold - confidence > self.config.high_gap:
            priority *= 1.5
        priority *= node_type.importance / 10.0
        return int(round(min(10.0, max(1.0, priority))))

    def _from_disagreement(
        self,
        disagreement: Disagreement,
        node: Optional[ValidationNode],
        threshold: float,
        iteration: int,
    ) -> FeedbackItem:
        confidence = node.confidence if node is not None else 0.0
        category = (
            FeedbackCategory.CONSISTENCY
            if disagreement.level == DisagreementLevel.DIMENSION
            else FeedbackCategory.ACCURACY
        )
        if disagreement.level == DisagreementLevel.DIMENSION:
            subject = f"{disagreement.trait} trait score"
        else:
            subject = f"{disagreement.trait} facet '{disagreement.facet}'"

        description = (
            f"Re-score {subject}: generator {disagreement.a1_score:.1f} vs validator "
            f"{disagreement.b1_score:.1f} (difference {disagreement.difference:+.1f}, "
            f"{disagreement.severity.value} severity). {ROOT_CAUSES[category]}"
        )

        return FeedbackItem(
            node_id=disagreement.node_id,
            category=category,
            severity=disagreement.severity,
            description=description,
            confidence_before=confidence,
            iteration=iteration,
            priority=self._priority(disagreement.severity, NodeType.SCORING, confidence, threshold),
        )

    def _from_issue(
        self,
        node_id: str,
        node_type: NodeType,
        issue: str,
        suggestion: Optional[str],
        severity: Severity,
        confidence: float,
        threshold: float,
        iteration: int,
    ) -> FeedbackItem:
        category = categorize_issue(issue)
        fix = suggestion or ROOT_CAUSES[category]
        return FeedbackItem(
            node_id=node_id,
            category=category,
            severity=severity,
            description=f"{issue.rstrip('.')}. {fix}",
            confidence_before=confidence,
            iteration=iteration,
            priority=self._priority(severity, node_type, confidence, threshold),
        )
