"""
Data models for the dual-evaluator validation workflow.

This module defines the workflow-side data structures:
- Status, node type, severity and feedback category enumerations
- Validation nodes, disagreements and feedback items
- Agreement and quality results
- The workflow record with its state machine and status projection
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ocean_validation.errors import InputError, InvalidTransitionError
from ocean_validation.schemas import GeneratorOutput, ValidatorOutput


def utc_now() -> str:
    """Current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Enumerations
# =============================================================================


class WorkflowStatus(Enum):
    """Workflow lifecycle states."""

    PENDING = "pending"
    GENERATING = "generating"
    VALIDATING = "validating"
    IMPROVING = "improving"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


# Forward-only transitions; improving <-> validating is the improvement loop.
ALLOWED_TRANSITIONS: Dict[WorkflowStatus, Tuple[WorkflowStatus, ...]] = {
    WorkflowStatus.PENDING: (WorkflowStatus.GENERATING, WorkflowStatus.FAILED),
    WorkflowStatus.GENERATING: (WorkflowStatus.VALIDATING, WorkflowStatus.FAILED),
    WorkflowStatus.VALIDATING: (
        WorkflowStatus.IMPROVING,
        WorkflowStatus.FINALIZING,
        WorkflowStatus.FAILED,
    ),
    WorkflowStatus.IMPROVING: (WorkflowStatus.VALIDATING, WorkflowStatus.FAILED),
    WorkflowStatus.FINALIZING: (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED),
    WorkflowStatus.COMPLETED: (),
    WorkflowStatus.FAILED: (),
}


class ConvergenceReason(Enum):
    """Why a workflow stopped iterating and finalized."""

    THRESHOLD_MET = "threshold_met"
    MAX_ITERATIONS = "max_iterations"
    NO_ACTIONABLE_FEEDBACK = "no_actionable_feedback"
    MINIMAL_IMPROVEMENT = "minimal_improvement"
    OSCILLATION = "oscillation"


class NodeType(Enum):
    """Kinds of output node evaluated by the validator."""

    SCORING = "scoring"
    INSIGHT = "insight"
    RECOMMENDATION = "recommendation"
    CONTEXT = "context"

    @property
    def importance(self) -> int:
        """Relative weight (1-10) used when prioritising feedback."""
        return {
            NodeType.SCORING: 10,
            NodeType.INSIGHT: 8,
            NodeType.RECOMMENDATION: 9,
            NodeType.CONTEXT: 5,
        }[self]


class EvaluationStage(Enum):
    """Which pass produced a validation node."""

    GENERATOR = "generator"
    VALIDATOR = "validator"


class Severity(Enum):
    """Disagreement and feedback severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def priority(self) -> int:
        """Get numeric priority (higher = more severe)."""
        return {"low": 1, "medium": 2, "high": 3}[self.value]

    @property
    def multiplier(self) -> float:
        return {"low": 0.5, "medium": 1.0, "high": 1.5}[self.value]


class FeedbackCategory(Enum):
    """Remediation categories for feedback items."""

    ACCURACY = "accuracy"
    CLARITY = "clarity"
    BIAS = "bias"
    CONSISTENCY = "consistency"
    COMPLIANCE = "compliance"


class ReportStyle(Enum):
    """Report style passed through to the generator unchanged."""

    STANDARD = "standard"
    EXECUTIVE = "executive"
    COACHING = "coaching"


class DisagreementLevel(Enum):
    """Whether a disagreement concerns a whole trait or one facet."""

    DIMENSION = "dimension"
    FACET = "facet"


# =============================================================================
# Data Classes: Options
# =============================================================================


@dataclass(frozen=True)
class WorkflowOptions:
    """
    Per-workflow options for ``start``.

    Attributes:
        confidence_threshold: Target overall confidence (0-100)
        max_iterations: Improvement cycle budget (>= 1)
        report_style: Passed to the generator unchanged
    """

    confidence_threshold: float = 85.0
    max_iterations: int = 3
    report_style: ReportStyle = ReportStyle.STANDARD

    def __post_init__(self) -> None:
        if isinstance(self.confidence_threshold, bool) or not isinstance(
            self.confidence_threshold, (int, float)
        ):
            raise InputError("confidence_threshold must be a number", "confidence_threshold")
        if not 0.0 <= self.confidence_threshold <= 100.0:
            raise InputError(
                f"confidence_threshold must be between 0 and 100, got {self.confidence_threshold}",
                "confidence_threshold",
            )
        if isinstance(self.max_iterations, bool) or not isinstance(self.max_iterations, int):
            raise InputError("max_iterations must be an integer", "max_iterations")
        if self.max_iterations < 1:
            raise InputError(
                f"max_iterations must be at least 1, got {self.max_iterations}",
                "max_iterations",
            )
        if not isinstance(self.report_style, ReportStyle):
            try:
                object.__setattr__(self, "report_style", ReportStyle(self.report_style))
            except ValueError:
                valid = [s.value for s in ReportStyle]
                raise InputError(
                    f"report_style must be one of {valid}, got {self.report_style!r}",
                    "report_style",
                ) from None

    @classmethod
    def from_mapping(
        cls,
        options: Optional[Dict[str, Any]],
        defaults: Optional["WorkflowOptions"] = None,
    ) -> "WorkflowOptions":
        """Build options from a caller-supplied dict, filling gaps from defaults."""
        base = defaults or cls()
        options = options or {}

        unknown = set(options) - {"confidence_threshold", "max_iterations", "report_style"}
        if unknown:
            raise InputError(f"Unknown workflow options: {sorted(unknown)}", "options")

        return cls(
            confidence_threshold=options.get("confidence_threshold", base.confidence_threshold),
            max_iterations=options.get("max_iterations", base.max_iterations),
            report_style=options.get("report_style", base.report_style),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_threshold": self.confidence_threshold,
            "max_iterations": self.max_iterations,
            "report_style": self.report_style.value,
        }


# =============================================================================
# Data Classes: Nodes, Disagreements, Feedback
# =============================================================================


@dataclass(frozen=True)
class ValidationNode:
    """
    One component's evaluation at a point in time.

    Nodes are never edited; each generator/validator call produces new
    nodes so the record keeps an audit trail across iterations.
    """

    node_id: str
    node_type: NodeType
    stage: EvaluationStage
    confidence: float
    iteration: int
    issues: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type.value,
            "stage": self.stage.value,
            "confidence": round(self.confidence, 4),
            "iteration": self.iteration,
            "issues": list(self.issues),
            "suggestions": list(self.suggestions),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationNode":
        return cls(
            node_id=data["node_id"],
            node_type=NodeType(data["node_type"]),
            stage=EvaluationStage(data["stage"]),
            confidence=float(data["confidence"]),
            iteration=int(data["iteration"]),
            issues=tuple(data.get("issues", [])),
            suggestions=tuple(data.get("suggestions", [])),
            created_at=data.get("created_at", ""),
        )


@dataclass(frozen=True)
class Disagreement:
    """
    Score gap on one facet or dimension between the two passes.

    ``difference`` is generator minus validator.
    """

    facet: str
    a1_score: float
    b1_score: float
    difference: float
    severity: Severity
    trait: str
    level: DisagreementLevel = DisagreementLevel.FACET
    iteration: int = 0

    @property
    def node_id(self) -> str:
        """Scoring node this disagreement is attributed to."""
        return f"ocean_{self.trait}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facet": self.facet,
            "trait": self.trait,
            "level": self.level.value,
            "a1_score": self.a1_score,
            "b1_score": self.b1_score,
            "difference": round(self.difference, 4),
            "severity": self.severity.value,
            "iteration": self.iteration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Disagreement":
        return cls(
            facet=data["facet"],
            a1_score=float(data["a1_score"]),
            b1_score=float(data["b1_score"]),
            difference=float(data["difference"]),
            severity=Severity(data["severity"]),
            trait=data["trait"],
            level=DisagreementLevel(data.get("level", "facet")),
            iteration=int(data.get("iteration", 0)),
        )


@dataclass
class FeedbackItem:
    """
    One remediation action tied to a disagreement or node issue.

    ``applied`` flips to True only after a later validator pass shows the
    targeted node's confidence rose.
    """

    node_id: str
    category: FeedbackCategory
    severity: Severity
    description: str
    confidence_before: float
    iteration: int
    priority: int = 5
    applied: bool = False
    confidence_after: Optional[float] = None
    feedback_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def confidence_improvement(self) -> Optional[float]:
        if self.confidence_after is None:
            return None
        return self.confidence_after - self.confidence_before

    def to_dict(self) -> Dict[str, Any]:
        improvement = self.confidence_improvement
        return {
            "feedback_id": self.feedback_id,
            "node_id": self.node_id,
            "category": self.category.value,
            "severity": self.severity.value,
            "priority": self.priority,
            "description": self.description,
            "iteration": self.iteration,
            "applied": self.applied,
            "confidence_before": round(self.confidence_before, 4),
            "confidence_after": (
                round(self.confidence_after, 4) if self.confidence_after is not None else None
            ),
            "confidence_improvement": round(improvement, 4) if improvement is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackItem":
        after = data.get("confidence_after")
        return cls(
            node_id=data["node_id"],
            category=FeedbackCategory(data["category"]),
            severity=Severity(data["severity"]),
            description=data["description"],
            confidence_before=float(data["confidence_before"]),
            iteration=int(data["iteration"]),
            priority=int(data.get("priority", 5)),
            applied=bool(data.get("applied", False)),
            confidence_after=float(after) if after is not None else None,
            feedback_id=data.get("feedback_id") or uuid.uuid4().hex[:12],
        )


# =============================================================================
# Data Classes: Results
# =============================================================================


@dataclass
class AgreementResult:
    """
    Output of comparing the generator and validator score sets.

    ``agreement_score``, ``disagreement_rate`` and ``confidence`` are on a
    0-1 scale.
    """

    agreement_score: float
    disagreement_rate: float
    confidence: float
    issues: List[str] = field(default_factory=list)
    disagreements: List[Disagreement] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    dimension_agreement: Dict[str, float] = field(default_factory=dict)
    facet_agreement: Dict[str, float] = field(default_factory=dict)
    not_comparable: List[str] = field(default_factory=list)
    mean_difference: float = 0.0

    @property
    def high_severity_count(self) -> int:
        return sum(1 for d in self.disagreements if d.severity == Severity.HIGH)

    def trait_agreement(self, trait: str) -> float:
        """
        Agreement for one trait including its facets.

        Mean of the trait's dimension agreement and its facet agreements.
        """
        values = [self.dimension_agreement.get(trait, 1.0)]
        prefix = f"{trait}:"
        values.extend(v for k, v in self.facet_agreement.items() if k.startswith(prefix))
        return sum(values) / len(values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agreement_score": round(self.agreement_score, 4),
            "disagreement_rate": round(self.disagreement_rate, 4),
            "confidence": round(self.confidence, 4),
            "mean_difference": round(self.mean_difference, 4),
            "issues": self.issues,
            "disagreements": [d.to_dict() for d in self.disagreements],
            "recommendations": self.recommendations,
            "dimension_agreement": {k: round(v, 4) for k, v in self.dimension_agreement.items()},
            "facet_agreement": {k: round(v, 4) for k, v in self.facet_agreement.items()},
            "not_comparable": self.not_comparable,
        }


@dataclass
class QualityMetrics:
    """Combined quality rating for one evaluation round."""

    agreement_score: float
    confidence: float
    issue_score: float
    severity_score: float
    quality_score: float
    issue_count: int = 0
    total_disagreements: int = 0
    high_severity_disagreements: int = 0
    disagreement_rate: float = 0.0
    iteration_count: int = 0
    processing_time: Optional[float] = None
    node_confidences: Dict[str, float] = field(default_factory=dict)

    @property
    def overall_confidence(self) -> float:
        """Quality score on the 0-100 confidence scale."""
        return self.quality_score * 100.0

    def quality_bucket(self, thresholds: Any = None) -> str:
        """Get quality bucket based on score."""
        excellent, good, acceptable, questionable = (0.95, 0.85, 0.70, 0.50)
        if thresholds is not None:
            excellent = thresholds.excellent
            good = thresholds.good
            acceptable = thresholds.acceptable
            questionable = thresholds.questionable

        if self.quality_score >= excellent:
            return "excellent"
        elif self.quality_score >= good:
            return "good"
        elif self.quality_score >= acceptable:
            return "acceptable"
        elif self.quality_score >= questionable:
            return "questionable"
        else:
            return "poor"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quality_score": round(self.quality_score, 4),
            "overall_confidence": round(self.overall_confidence, 2),
            "quality_bucket": self.quality_bucket(),
            "agreement_score": round(self.agreement_score, 4),
            "confidence": round(self.confidence, 4),
            "issue_score": round(self.issue_score, 4),
            "severity_score": round(self.severity_score, 4),
            "issue_count": self.issue_count,
            "total_disagreements": self.total_disagreements,
            "high_severity_disagreements": self.high_severity_disagreements,
            "disagreement_rate": round(self.disagreement_rate, 4),
            "iteration_count": self.iteration_count,
            "processing_time": self.processing_time,
            "node_confidences": {k: round(v, 4) for k, v in self.node_confidences.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityMetrics":
        return cls(
            agreement_score=float(data["agreement_score"]),
            confidence=float(data["confidence"]),
            issue_score=float(data["issue_score"]),
            severity_score=float(data["severity_score"]),
            quality_score=float(data["quality_score"]),
            issue_count=int(data.get("issue_count", 0)),
            total_disagreements=int(data.get("total_disagreements", 0)),
            high_severity_disagreements=int(data.get("high_severity_disagreements", 0)),
            disagreement_rate=float(data.get("disagreement_rate", 0.0)),
            iteration_count=int(data.get("iteration_count", 0)),
            processing_time=data.get("processing_time"),
            node_confidences=dict(data.get("node_confidences", {})),
        )


# =============================================================================
# Workflow Record
# =============================================================================

TOTAL_STEPS = 4
STEP_NAMES = ["generating", "validating", "improving", "finalizing"]


@dataclass
class WorkflowRecord:
    """
    Durable state of one workflow, keyed by assessment response.

    The record owns its nodes, disagreements and feedback; callers see
    them through ``to_status`` projections only.
    """

    response_id: str
    options: WorkflowOptions = field(default_factory=WorkflowOptions)
    context: Dict[str, Any] = field(default_factory=dict)
    workflow_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: WorkflowStatus = WorkflowStatus.PENDING
    iteration: int = 0

    a1_result: Optional[GeneratorOutput] = None
    b1_result: Optional[ValidatorOutput] = None
    agreement: Optional[AgreementResult] = None
    quality_metrics: Optional[QualityMetrics] = None
    final_confidence: Optional[float] = None
    convergence_reason: Optional[ConvergenceReason] = None

    # Quality score of every analysis pass, oldest first
    quality_history: List[float] = field(default_factory=list)

    nodes: List[ValidationNode] = field(default_factory=list)
    disagreements: List[Disagreement] = field(default_factory=list)
    feedback: List[FeedbackItem] = field(default_factory=list)

    error: Optional[Dict[str, Any]] = None
    status_history: List[Tuple[str, str]] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    completed_at: Optional[str] = None
    processing_time: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def max_iterations(self) -> int:
        return self.options.max_iterations

    @property
    def confidence_threshold(self) -> float:
        return self.options.confidence_threshold

    def transition_to(self, target: WorkflowStatus) -> None:
        """Move to ``target``, enforcing the forward-only state machine."""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.workflow_id, self.status.value, target.value)
        self.status = target
        self.updated_at = utc_now()
        self.status_history.append((target.value, self.updated_at))

    def begin_improvement_cycle(self) -> int:
        """Increment the iteration counter within the configured budget."""
        if self.iteration >= self.max_iterations:
            raise InvalidTransitionError(
                self.workflow_id, f"iteration {self.iteration}", f"iteration {self.iteration + 1}"
            )
        self.iteration += 1
        return self.iteration

    def latest_nodes(self, stage: Optional[EvaluationStage] = None) -> Dict[str, ValidationNode]:
        """Most recent node per node id, optionally for one stage."""
        latest: Dict[str, ValidationNode] = {}
        for node in self.nodes:
            if stage is None or node.stage == stage:
                latest[node.node_id] = node
        return latest

    def progress(self) -> Dict[str, Any]:
        """Progress summary over the four workflow steps."""
        completed_steps = 0
        if self.a1_result is not None:
            completed_steps += 1
        if self.b1_result is not None:
            completed_steps += 1
        if self.iteration > 0:
            completed_steps += 1
        if self.status == WorkflowStatus.FINALIZING:
            completed_steps = max(completed_steps, TOTAL_STEPS - 1)
        if self.status == WorkflowStatus.COMPLETED:
            completed_steps = TOTAL_STEPS

        if self.status in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED):
            current_step = self.status.value
        elif self.status == WorkflowStatus.PENDING:
            current_step = "initializing"
        else:
            current_step = self.status.value

        return {
            "percentage": round(completed_steps / TOTAL_STEPS * 100),
            "current_step": current_step,
            "completed_steps": completed_steps,
            "total_steps": TOTAL_STEPS,
        }

    def to_status(self) -> Dict[str, Any]:
        """Read-only status projection returned to callers."""
        results = None
        if self.status == WorkflowStatus.COMPLETED:
            results = {
                "final_confidence": self.final_confidence,
                "iterations": self.iteration,
                "quality_history": list(self.quality_history),
                "processing_time": self.processing_time,
                "final_scores": (
                    self.a1_result.scores.model_dump(mode="json") if self.a1_result else None
                ),
                "validator_scores": (
                    self.b1_result.scores.model_dump(mode="json") if self.b1_result else None
                ),
                "quality_metrics": (
                    self.quality_metrics.to_dict() if self.quality_metrics else None
                ),
                "recommendations": list(self.agreement.recommendations) if self.agreement else [],
                "issues": list(self.agreement.issues) if self.agreement else [],
            }

        return {
            "workflow_id": self.workflow_id,
            "response_id": self.response_id,
            "status": self.status.value,
            "iteration": self.iteration,
            "options": self.options.to_dict(),
            "progress": self.progress(),
            "convergence_reason": (
                self.convergence_reason.value if self.convergence_reason else None
            ),
            "results": results,
            "error": self.error,
            "validation_nodes": [n.to_dict() for n in self.nodes],
            "disagreements": [d.to_dict() for d in self.disagreements],
            "feedback": [f.to_dict() for f in self.feedback],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full serialization for the workflow store."""
        return {
            "workflow_id": self.workflow_id,
            "response_id": self.response_id,
            "options": self.options.to_dict(),
            "context": self.context,
            "status": self.status.value,
            "iteration": self.iteration,
            "a1_result": self.a1_result.model_dump(mode="json") if self.a1_result else None,
            "b1_result": self.b1_result.model_dump(mode="json") if self.b1_result else None,
            "agreement": self.agreement.to_dict() if self.agreement else None,
            "quality_metrics": self.quality_metrics.to_dict() if self.quality_metrics else None,
            "final_confidence": self.final_confidence,
            "convergence_reason": (
                self.convergence_reason.value if self.convergence_reason else None
            ),
            "quality_history": list(self.quality_history),
            "nodes": [n.to_dict() for n in self.nodes],
            "disagreements": [d.to_dict() for d in self.disagreements],
            "feedback": [f.to_dict() for f in self.feedback],
            "error": self.error,
            "status_history": [list(h) for h in self.status_history],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "processing_time": self.processing_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowRecord":
        agreement = None
        if data.get("agreement"):
            a = data["agreement"]
            agreement = AgreementResult(
                agreement_score=a["agreement_score"],
                disagreement_rate=a["disagreement_rate"],
                confidence=a["confidence"],
                issues=list(a.get("issues", [])),
                disagreements=[Disagreement.from_dict(d) for d in a.get("disagreements", [])],
                recommendations=list(a.get("recommendations", [])),
                dimension_agreement=dict(a.get("dimension_agreement", {})),
                facet_agreement=dict(a.get("facet_agreement", {})),
                not_comparable=list(a.get("not_comparable", [])),
                mean_difference=a.get("mean_difference", 0.0),
            )

        return cls(
            workflow_id=data["workflow_id"],
            response_id=data["response_id"],
            options=WorkflowOptions.from_mapping(data.get("options")),
            context=dict(data.get("context") or {}),
            status=WorkflowStatus(data["status"]),
            iteration=int(data.get("iteration", 0)),
            a1_result=(
                GeneratorOutput.model_validate(data["a1_result"]) if data.get("a1_result") else None
            ),
            b1_result=(
                ValidatorOutput.model_validate(data["b1_result"]) if data.get("b1_result") else None
            ),
            agreement=agreement,
            quality_metrics=(
                QualityMetrics.from_dict(data["quality_metrics"])
                if data.get("quality_metrics")
                else None
            ),
            final_confidence=data.get("final_confidence"),
            convergence_reason=(
                ConvergenceReason(data["convergence_reason"])
                if data.get("convergence_reason")
                else None
            ),
            quality_history=[float(q) for q in data.get("quality_history", [])],
            nodes=[ValidationNode.from_dict(n) for n in data.get("nodes", [])],
            disagreements=[Disagreement.from_dict(d) for d in data.get("disagreements", [])],
            feedback=[FeedbackItem.from_dict(f) for f in data.get("feedback", [])],
            error=data.get("error"),
            status_history=[tuple(h) for h in data.get("status_history", [])],
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            completed_at=data.get("completed_at"),
            processing_time=data.get("processing_time"),
        )
