"""
Quality Score Aggregation for the dual-evaluator workflow.

Combines the agreement analysis into one composite quality score.

Score computation:
- agreement, confidence, issue count and disagreement severity are each
  mapped to 0-1
- the four components are weighted and summed
- final score is 0.0 (worst) to 1.0 (best); the orchestrator compares
  score x 100 against the confidence threshold
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, TYPE_CHECKING

from ocean_validation.models import AgreementResult, QualityMetrics

if TYPE_CHECKING:
    from ocean_validation.config import QualityConfig


class QualityScorer:
    """
    Rate an AgreementResult.

    Example:
        >>> scorer = QualityScorer(config.quality)
        >>> metrics = scorer.score(agreement)
        >>> print(f"Quality score: {metrics.quality_score:.2f}")
    """

    def __init__(self, config: QualityConfig) -> None:
        self.config = config

        w = config.weights
        self.weights = {
            "agreement": w.agreement,
            "confidence": w.confidence,
            "issues": w.issues,
            "severity": w.severity,
        }

    def score(
        self,
        agreement: AgreementResult,
        iteration: int = 0,
        node_confidences: Optional[Dict[str, float]] = None,
    ) -> QualityMetrics:
        """
        Compute quality metrics for one evaluation round.

        Args:
            agreement: Output of the disagreement analyzer
            iteration: Improvement cycles completed so far
            node_confidences: Latest validator confidence per node

        Returns:
            QualityMetrics with ``quality_score`` in [0, 1]
        """
        issue_count = len(agreement.issues)
        issue_score = self.issue_score(issue_count)
        severity_score = self.severity_score(
            agreement.high_severity_count, len(agreement.disagreements)
        )

        quality = (
            self.weights["agreement"] * _clamp(agreement.agreement_score)
            + self.weights["confidence"] * _clamp(agreement.confidence)
            + self.weights["issues"] * issue_score
            + self.weights["severity"] * severity_score
        )

        return QualityMetrics(
            agreement_score=agreement.agreement_score,
            confidence=agreement.confidence,
            issue_score=issue_score,
            severity_score=severity_score,
            # Rounded so a perfect round is exactly 1.0 despite float summation
            quality_score=_clamp(round(quality, 10)),
            issue_count=issue_count,
            total_disagreements=len(agreement.disagreements),
            high_severity_disagreements=agreement.high_severity_count,
            disagreement_rate=agreement.disagreement_rate,
            iteration_count=iteration,
            node_confidences=dict(node_confidences or {}),
        )

    def issue_score(self, issue_count: int) -> float:
        """max(0, 1 - issues / normalizer)."""
        return max(0.0, 1.0 - issue_count / self.config.issue_normalizer)

    @staticmethod
    def severity_score(high_count: int, total: int) -> float:
        """1 - share of high-severity disagreements; 1 when there are none."""
        if total == 0:
            return 1.0
        return 1.0 - high_count / total

    def meets_threshold(self, metrics: QualityMetrics, confidence_threshold: float) -> bool:
        return metrics.overall_confidence >= confidence_threshold


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


# =============================================================================
# Convergence
# =============================================================================


def improvement_rate(history: Sequence[float]) -> float:
    """Gain of the latest quality score over the previous one, floored at 0."""
    if len(history) < 2:
        return 0.0
    return max(0.0, history[-1] - history[-2])


def is_oscillating(history: Sequence[float], window: int, tolerance: float) -> bool:
    """
    Whether the last ``window`` quality scores alternate up and down.

    Every score must sit within ``tolerance`` of the score two passes
    earlier, and consecutive moves must change direction.
    """
    if window < 4 or len(history) < window:
        return False

    recent = list(history[-window:])
    if any(abs(recent[i] - recent[i + 2]) >= tolerance for i in range(window - 2)):
        return False

    moves = [b - a for a, b in zip(recent, recent[1:])]
    if any(m == 0 for m in moves):
        return False
    return all((a > 0) != (b > 0) for a, b in zip(moves, moves[1:]))
