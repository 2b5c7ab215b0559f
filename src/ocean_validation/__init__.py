"""
OCEAN Dual Validation
=====================

A dual-evaluator validation workflow for OCEAN (Big Five) personality
assessment scoring.

This package provides:
- A generator (A1) / validator (B1) workflow state machine
- Trait and facet disagreement analysis with bias detection
- Composite quality scoring against a confidence threshold
- Node-scoped improvement cycles driven by prioritised feedback
- Usage, cost and latency metrics

Example usage::

    from ocean_validation import WorkflowOrchestrator, load_config

    config = load_config("config/config.yml")
    with WorkflowOrchestrator(config, generator, validator) as orchestrator:
        workflow_id = orchestrator.start("response-123")
        status = orchestrator.wait(workflow_id)

Or via CLI::

    ocean-validation run response-123 --generator a1.yml --validator b1.yml

"""

__version__ = "1.0.0"
__author__ = "OCEAN Validation Team"

from ocean_validation.config import ValidationConfig, load_config
from ocean_validation.errors import (
    AccessError,
    CollaboratorError,
    CollaboratorTimeoutError,
    InputError,
    MalformedResultError,
    NotFoundError,
    OceanValidationError,
)
from ocean_validation.orchestrator import WorkflowOrchestrator
from ocean_validation.analyzers import DisagreementAnalyzer
from ocean_validation.scoring import QualityScorer
from ocean_validation.feedback import FeedbackGenerator
from ocean_validation.metrics import MetricsAggregator
from ocean_validation.collaborators import ScoreGenerator, ScoreValidator
from ocean_validation.models import (
    AgreementResult,
    ConvergenceReason,
    Disagreement,
    FeedbackItem,
    QualityMetrics,
    ValidationNode,
    WorkflowOptions,
    WorkflowRecord,
    WorkflowStatus,
)
from ocean_validation.storage import FileWorkflowStore, InMemoryWorkflowStore, WorkflowStore

__all__ = [
    # Version
    "__version__",
    # Configuration
    "ValidationConfig",
    "load_config",
    # Workflow
    "WorkflowOrchestrator",
    "ScoreGenerator",
    "ScoreValidator",
    # Components
    "DisagreementAnalyzer",
    "QualityScorer",
    "FeedbackGenerator",
    "MetricsAggregator",
    # Models
    "AgreementResult",
    "ConvergenceReason",
    "Disagreement",
    "FeedbackItem",
    "QualityMetrics",
    "ValidationNode",
    "WorkflowOptions",
    "WorkflowRecord",
    "WorkflowStatus",
    # Storage
    "WorkflowStore",
    "InMemoryWorkflowStore",
    "FileWorkflowStore",
    # Errors
    "OceanValidationError",
    "InputError",
    "AccessError",
    "NotFoundError",
    "CollaboratorError",
    "CollaboratorTimeoutError",
    "MalformedResultError",
]
