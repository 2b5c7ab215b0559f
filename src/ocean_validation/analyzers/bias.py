"""
Systematic bias detection across the two scoring passes.

Checks performed:
- Systematic over/under-estimation (mean signed trait difference)
- Central tendency bias (self-reported response-pattern statistic)
- Extreme response bias (share of scores outside the mid range)

Bias findings are response-level issues, not errors.
"""

from __future__ import annotations

import logging
from typing import List, Optional, TYPE_CHECKING

import numpy as np

from ocean_validation.schemas import (
    TRAITS,
    GeneratorOutput,
    PatternAnalysis,
    ScorePayload,
    ValidatorOutput,
)

if TYPE_CHECKING:
    from ocean_validation.config import AnalyzerConfig

logger = logging.getLogger(__name__)


class BiasDetector:
    """
    Detect bias patterns in a generator/validator pair.

    Example:
        >>> detector = BiasDetector(config.analyzer)
        >>> issues = detector.detect(generator_output, validator_output)
    """

    def __init__(self, config: AnalyzerConfig) -> None:
        self.config = config

    def detect(self, generator: GeneratorOutput, validator: ValidatorOutput) -> List[str]:
        """Return human-readable bias issues, empty when none were found."""
        issues: List[str] = []

        mean_diff = self.mean_difference(generator.scores, validator.scores)
        if abs(mean_diff) > self.config.systematic_bias_threshold:
            direction = "over" if mean_diff > 0 else "under"
            issues.append(
                f"Systematic {direction}-estimation detected "
                f"(mean trait difference {mean_diff:+.1f})"
            )

        pattern = self._pattern_analysis(generator, validator)
        if pattern is not None and pattern.central_tendency is not None:
            if pattern.central_tendency > self.config.central_tendency_threshold:
                issues.append(
                    f"Central tendency bias detected in generator responses "
                    f"({pattern.central_tendency:.2f})"
                )

        for label, payload in (("generator", generator.scores), ("validator", validator.scores)):
            ratio = self.extreme_ratio(payload)
            if ratio > self.config.extreme_ratio:
                issues.append(
                    f"Extreme response bias detected in {label} scores "
                    f"({ratio:.0%} outside {self.config.extreme_low:g}-{self.config.extreme_high:g})"
                )

        if issues:
            logger.debug(f"Bias issues: {issues}")

        return issues

    @staticmethod
    def mean_difference(a1: ScorePayload, b1: ScorePayload) -> float:
        """Mean signed difference (generator - validator) across the five traits."""
        diffs = [a1.dimension(t) - b1.dimension(t) for t in TRAITS]
        return float(np.mean(diffs))

    def extreme_ratio(self, payload: ScorePayload) -> float:
        """Share of a payload's scores outside the [extreme_low, extreme_high] range."""
        values = np.array(payload.all_scores(), dtype=float)
        if values.size == 0:
            return 0.0
        extreme = (values < self.config.extreme_low) | (values > self.config.extreme_high)
        return float(extreme.sum() / values.size)

    @staticmethod
    def _pattern_analysis(
        generator: GeneratorOutput, validator: ValidatorOutput
    ) -> Optional[PatternAnalysis]:
        """Generator's self-report, falling back to the validator's pattern analysis."""
        if generator.pattern_analysis is not None:
            return generator.pattern_analysis
        return validator.pattern_analysis
