"""
Workflow metrics aggregation.

Collects per-workflow usage (calls, tokens, cost, latency) and outcome
(confidence, disagreement rate, iterations) and rolls them up into batch
statistics with high-disagreement alerts.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

import numpy as np

from ocean_validation.models import EvaluationStage, WorkflowRecord, WorkflowStatus, utc_now

if TYPE_CHECKING:
    from ocean_validation.config import CostConfig, MetricsConfig

logger = logging.getLogger(__name__)


@dataclass
class WorkflowMetrics:
    """Usage and outcome for one workflow."""

    workflow_id: str
    response_id: str
    generator_calls: int = 0
    validator_calls: int = 0
    generator_tokens: int = 0
    validator_tokens: int = 0
    cost_usd: float = 0.0
    processing_time_ms: float = 0.0
    final_confidence: Optional[float] = None
    disagreement_rate: Optional[float] = None
    iterations: int = 0
    status: str = WorkflowStatus.PENDING.value
    within_sla: bool = False
    high_confidence: bool = False
    cost_efficient: bool = False
    recorded_at: str = field(default_factory=utc_now)

    @property
    def total_tokens(self) -> int:
        return self.generator_tokens + self.validator_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "response_id": self.response_id,
            "status": self.status,
            "generator_calls": self.generator_calls,
            "validator_calls": self.validator_calls,
            "generator_tokens": self.generator_tokens,
            "validator_tokens": self.validator_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.cost_usd, 6),
            "processing_time_ms": round(self.processing_time_ms, 2),
            "final_confidence": self.final_confidence,
            "disagreement_rate": (
                round(self.disagreement_rate, 4) if self.disagreement_rate is not None else None
            ),
            "iterations": self.iterations,
            "within_sla": self.within_sla,
            "high_confidence": self.high_confidence,
            "cost_efficient": self.cost_efficient,
            "recorded_at": self.recorded_at,
        }


class MetricsAggregator:
    """
    Thread-safe collector of workflow metrics.

    Example:
        >>> metrics = MetricsAggregator(config.metrics, config.costs)
        >>> metrics.record_call(workflow_id, EvaluationStage.GENERATOR, 1200, 850.0)
        >>> metrics.record_workflow(record)
        >>> print(metrics.summary()["completion_rate"])
    """

    def __init__(self, config: MetricsConfig, costs: CostConfig) -> None:
        self.config = config
        self.costs = costs
        self._calls: Dict[str, Dict[str, float]] = {}
        self._workflows: Dict[str, WorkflowMetrics] = {}
        self._alerts: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def call_cost(self, stage: EvaluationStage, tokens: int) -> float:
        """USD cost of one collaborator call."""
        rate = (
            self.costs.generator_per_1k_tokens
            if stage == EvaluationStage.GENERATOR
            else self.costs.validator_per_1k_tokens
        )
        return tokens / 1000.0 * rate

    def record_call(
        self,
        workflow_id: str,
        stage: EvaluationStage,
        tokens: int,
        processing_time_ms: float,
    ) -> None:
        """Accumulate one generator or validator call."""
        with self._lock:
            usage = self._calls.setdefault(
                workflow_id,
                {
                    "generator_calls": 0,
                    "validator_calls": 0,
                    "generator_tokens": 0,
                    "validator_tokens": 0,
                    "cost_usd": 0.0,
                },
            )
            usage[f"{stage.value}_calls"] += 1
            usage[f"{stage.value}_tokens"] += tokens
            usage["cost_usd"] += self.call_cost(stage, tokens)

    def record_workflow(self, record: WorkflowRecord) -> WorkflowMetrics:
        """Close out a workflow that reached a terminal state."""
        processing_ms = (record.processing_time or 0.0) * 1000.0
        disagreement_rate = record.agreement.disagreement_rate if record.agreement else None
        confidence = record.final_confidence

        with self._lock:
            usage = self._calls.pop(record.workflow_id, {})
            metrics = WorkflowMetrics(
                workflow_id=record.workflow_id,
                response_id=record.response_id,
                generator_calls=int(usage.get("generator_calls", 0)),
                validator_calls=int(usage.get("validator_calls", 0)),
                generator_tokens=int(usage.get("generator_tokens", 0)),
                validator_tokens=int(usage.get("validator_tokens", 0)),
                cost_usd=float(usage.get("cost_usd", 0.0)),
                processing_time_ms=processing_ms,
                final_confidence=confidence,
                disagreement_rate=disagreement_rate,
                iterations=record.iteration,
                status=record.status.value,
            )
            metrics.within_sla = processing_ms < self.config.sla_ms
            metrics.high_confidence = (
                confidence is not None and confidence / 100.0 >= self.config.high_confidence
            )
            metrics.cost_efficient = metrics.cost_usd < self.config.cost_efficient_usd
            self._workflows[record.workflow_id] = metrics

            if (
                disagreement_rate is not None
                and disagreement_rate > self.config.disagreement_alert_rate
            ):
                alert = {
                    "workflow_id": record.workflow_id,
                    "response_id": record.response_id,
                    "disagreement_rate": round(disagreement_rate, 4),
                    "recorded_at": metrics.recorded_at,
                }
                self._alerts.append(alert)
                logger.warning(
                    f"High disagreement rate {disagreement_rate:.1%} "
                    f"for response {record.response_id} (workflow {record.workflow_id})"
                )

        return metrics

    def get(self, workflow_id: str) -> Optional[WorkflowMetrics]:
        with self._lock:
            return self._workflows.get(workflow_id)

    @property
    def alerts(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._alerts)

    def summary(self) -> Dict[str, Any]:
        """Batch statistics over all recorded workflows."""
        with self._lock:
            workflows = list(self._workflows.values())
            alerts = list(self._alerts)

        if not workflows:
            return {
                "count": 0,
                "completed": 0,
                "failed": 0,
                "completion_rate": 0.0,
                "alerts": alerts,
            }

        completed = [w for w in workflows if w.status == WorkflowStatus.COMPLETED.value]
        failed = [w for w in workflows if w.status == WorkflowStatus.FAILED.value]
        times = np.array([w.processing_time_ms for w in workflows])
        confidences = [w.final_confidence for w in completed if w.final_confidence is not None]
        rates = [w.disagreement_rate for w in workflows if w.disagreement_rate is not None]

        return {
            "count": len(workflows),
            "completed": len(completed),
            "failed": len(failed),
            "completion_rate": round(len(completed) / len(workflows), 4),
            "mean_confidence": round(float(np.mean(confidences)), 2) if confidences else None,
            "mean_disagreement_rate": round(float(np.mean(rates)), 4) if rates else None,
            "mean_iterations": round(float(np.mean([w.iterations for w in workflows])), 2),
            "total_tokens": sum(w.total_tokens for w in workflows),
            "total_cost_usd": round(sum(w.cost_usd for w in workflows), 6),
            "processing_time_ms": {
                "mean": round(float(np.mean(times)), 2),
                "p50": round(float(np.percentile(times, 50)), 2),
                "p95": round(float(np.percentile(times, 95)), 2),
                "max": round(float(np.max(times)), 2),
            },
            "within_sla_rate": round(sum(w.within_sla for w in workflows) / len(workflows), 4),
            "high_confidence_rate": round(
                sum(w.high_confidence for w in workflows) / len(workflows), 4
            ),
            "alerts": alerts,
        }

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            workflows = [w.to_dict() for w in self._workflows.values()]
        return {
            "generated_at": utc_now(),
            "summary": self.summary(),
            "workflows": workflows,
        }

    def save(self, path: Union[str, Path]) -> None:
        """Write metrics to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved metrics for {len(self._workflows)} workflows to {path}")
