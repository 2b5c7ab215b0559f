"""
Disagreement analysis between the generator (A1) and validator (B1) passes.

Compares two OCEAN score sets at trait and facet level.

Computed outputs:
- Per-trait and per-facet agreement (linear in the score gap)
- Weighted agreement score and disagreement rate
- Disagreements classified low / medium / high by the absolute gap
- Bias issues from ``BiasDetector``
- Validation confidence from model confidence, timing and consistency
- Deterministic recommendations

Facets reported by only one pass are listed as not comparable rather
than filled with a default score.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple, TYPE_CHECKING

import numpy as np

from ocean_validation.analyzers.bias import BiasDetector
from ocean_validation.models import (
    AgreementResult,
    Disagreement,
    DisagreementLevel,
    Severity,
)
from ocean_validation.schemas import TRAITS, GeneratorOutput, ScorePayload, ValidatorOutput

if TYPE_CHECKING:
    from ocean_validation.config import AnalyzerConfig

logger = logging.getLogger(__name__)


def classify_severity(
    difference: float,
    disagreement_threshold: float = 10.0,
    high_threshold: float = 20.0,
) -> Severity:
    """
    Classify a score gap.

    high iff |difference| > high_threshold, medium iff
    disagreement_threshold < |difference| <= high_threshold, else low.
    """
    gap = abs(difference)
    if gap > high_threshold:
        return Severity.HIGH
    if gap > disagreement_threshold:
        return Severity.MEDIUM
    return Severity.LOW


class DisagreementAnalyzer:
    """
    Compare generator and validator outputs.

    Stateless: every call to ``analyze`` depends only on its inputs
    and the analyzer configuration.

    Example:
        >>> analyzer = DisagreementAnalyzer(config.analyzer)
        >>> result = analyzer.analyze(generator_output, validator_output)
        >>> print(f"Agreement: {result.agreement_score:.2f}")
    """

    def __init__(self, config: AnalyzerConfig) -> None:
        self.config = config
        self.bias_detector = BiasDetector(config)

    def analyze(
        self,
        generator: GeneratorOutput,
        validator: ValidatorOutput,
        iteration: int = 0,
    ) -> AgreementResult:
        """
        Run the full comparison.

        Args:
            generator: Latest generator output
            validator: Latest validator output
            iteration: Improvement cycle the disagreements belong to

        Returns:
            AgreementResult on a 0-1 scale
        """
        dimension_diffs, facet_diffs, not_comparable = self.compare_scores(
            generator.scores, validator.scores
        )

        dimension_agreement = {
            trait: self._agreement(diff) for trait, diff in dimension_diffs.items()
        }
        facet_agreement = {
            f"{trait}:{facet}": self._agreement(diff)
            for (trait, facet), diff in facet_diffs.items()
        }

        agreement_score = self.agreement_score(
            list(dimension_agreement.values()), list(facet_agreement.values())
        )

        disagreements = self._collect_disagreements(
            generator.scores, validator.scores, dimension_diffs, facet_diffs, iteration
        )

        bias_issues = self.bias_detector.detect(generator, validator)
        issues = list(bias_issues) + list(validator.issues)

        confidence = self.validation_confidence(generator, validator)

        result = AgreementResult(
            agreement_score=agreement_score,
            disagreement_rate=1.0 - agreement_score,
            confidence=confidence,
            issues=issues,
            disagreements=disagreements,
            recommendations=self.recommendations(disagreements, bias_issues),
            dimension_agreement=dimension_agreement,
            facet_agreement=facet_agreement,
            not_comparable=not_comparable,
            mean_difference=BiasDetector.mean_difference(generator.scores, validator.scores),
        )

        logger.debug(
            f"Agreement {result.agreement_score:.3f}, "
            f"{len(disagreements)} disagreements, {len(issues)} issues"
        )
        return result

    def compare_scores(
        self, a1: ScorePayload, b1: ScorePayload
    ) -> Tuple[Dict[str, float], Dict[Tuple[str, str], float], List[str]]:
        """
        Signed differences (a1 - b1) per trait and per shared facet.

        Returns:
            (dimension differences, facet differences keyed by (trait, facet),
            names of facets present in only one pass)
        """
        dimension_diffs = {t.value: a1.dimension(t) - b1.dimension(t) for t in TRAITS}

        facet_diffs: Dict[Tuple[str, str], float] = {}
        not_comparable: List[str] = []

        for name in sorted(set(a1.facets) | set(b1.facets)):
            fa = a1.facets.get(name)
            fb = b1.facets.get(name)
            if fa is None or fb is None:
                not_comparable.append(name)
                continue
            if fa.trait != fb.trait:
                # Same facet name attributed to different traits cannot be compared
                not_comparable.append(name)
                continue
            facet_diffs[(fa.trait.value, name)] = fa.score - fb.score

        if not_comparable:
            logger.info(f"Facets not comparable across passes: {not_comparable}")

        return dimension_diffs, facet_diffs, not_comparable

    def agreement_score(
        self, dimension_scores: List[float], facet_scores: List[float]
    ) -> float:
        """Weighted mean of dimension and facet agreement; dimension-only without facets."""
        dim_agreement = float(np.mean(dimension_scores)) if dimension_scores else 1.0
        if not facet_scores:
            return dim_agreement
        facet_agreement = float(np.mean(facet_scores))
        return (
            self.config.dimension_weight * dim_agreement
            + self.config.facet_weight * facet_agreement
        )

    def validation_confidence(
        self, generator: GeneratorOutput, validator: ValidatorOutput
    ) -> float:
        """
        Unweighted mean of four factors on a 0-1 scale.

        Factors: generator confidence, validator confidence, processing
        time ratio factor, validator consistency score.
        """
        consistency = validator.consistency_score
        if consistency is None:
            consistency = self.config.default_consistency_score

        factors = [
            generator.confidence / 100.0,
            validator.confidence / 100.0,
            self.processing_time_factor(generator.processing_time, validator.processing_time),
            consistency,
        ]
        return float(np.mean(factors))

    @staticmethod
    def processing_time_factor(generator_ms: float, validator_ms: float) -> float:
        """min(generator / validator, 2) / 2, so equal times give 0.5."""
        if validator_ms <= 0:
            return 1.0 if generator_ms > 0 else 0.5
        return min(generator_ms / validator_ms, 2.0) / 2.0

    def recommendations(
        self, disagreements: List[Disagreement], bias_issues: List[str]
    ) -> List[str]:
        """Derive recommendations from disagreement counts and bias flags."""
        recommendations: List[str] = []

        if any(d.severity == Severity.HIGH for d in disagreements):
            recommendations.append("Flag for human review: high-disagreement facets present")

        if len(disagreements) > self.config.recalibration_count:
            recommendations.append("Multiple disagreements detected - recalibrate scoring models")

        if bias_issues:
            recommendations.append("Bias detected - review training data distribution")

        return recommendations

    def _agreement(self, difference: float) -> float:
        return 1.0 - min(abs(difference) / self.config.agreement_scale, 1.0)

    def _classify(self, difference: float) -> Severity:
        return classify_severity(
            difference,
            self.config.disagreement_threshold,
            self.config.high_severity_threshold,
        )

    def _collect_disagreements(
        self,
        a1: ScorePayload,
        b1: ScorePayload,
        dimension_diffs: Dict[str, float],
        facet_diffs: Dict[Tuple[str, str], float],
        iteration: int,
    ) -> List[Disagreement]:
        disagreements: List[Disagreement] = []
        threshold = self.config.disagreement_threshold

        for trait in TRAITS:
            diff = dimension_diffs[trait.value]
            if abs(diff) > threshold:
                disagreements.append(
                    Disagreement(
                        facet=trait.value,
                        a1_score=a1.dimension(trait),
                        b1_score=b1.dimension(trait),
                        difference=diff,
                        severity=self._classify(diff),
                        trait=trait.value,
                        level=DisagreementLevel.DIMENSION,
                        iteration=iteration,
                    )
                )

        for (trait, facet), diff in facet_diffs.items():
            if abs(diff) > threshold:
                disagreements.append(
                    Disagreement(
                        facet=facet,
                        a1_score=a1.facets[facet].score,
                        b1_score=b1.facets[facet].score,
                        difference=diff,
                        severity=self._classify(diff),
                        trait=trait,
                        level=DisagreementLevel.FACET,
                        iteration=iteration,
                    )
                )

        return disagreements
