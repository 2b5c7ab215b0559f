"""
Analyzers for the dual-evaluator workflow.

This package contains the comparison logic run after every validator pass:
- disagreement: trait/facet agreement, severity classification, confidence
- bias: systematic, central-tendency and extreme-response bias detection
"""

from ocean_validation.analyzers.bias import BiasDetector
from ocean_validation.analyzers.disagreement import DisagreementAnalyzer, classify_severity

__all__ = [
    "BiasDetector",
    "DisagreementAnalyzer",
    "classify_severity",
]
