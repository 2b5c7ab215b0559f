"""
Dual-Evaluator Workflow Orchestrator.

Main entry point that drives one workflow per assessment response
through the generator/validator loop.

Workflow stages:
1. Generate: full generator (A1) pass
2. Validate: independent validator (B1) pass over the generator output
3. Analyze: disagreement analysis and quality scoring
4. Decide: finalize (threshold met, iteration limit, minimal improvement,
   oscillation or nothing to fix), or run a node-scoped improvement cycle
   (feedback -> targeted re-generation -> targeted re-validation) and
   analyze again
5. Finalize: freeze final confidence and processing time

Each workflow runs on a worker thread; every collaborator call runs on
its own daemon thread under a timeout. A collaborator failure ends the
workflow in the ``failed`` state and is never retried.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from ocean_validation.analyzers import DisagreementAnalyzer
from ocean_validation.collaborators import (
    GenerationRequest,
    ScoreGenerator,
    ScoreValidator,
    ValidationRequest,
)
from ocean_validation.config import ValidationConfig
from ocean_validation.errors import (
    AccessError,
    CollaboratorError,
    CollaboratorTimeoutError,
    InputError,
    MalformedResultError,
    OceanValidationError,
)
from ocean_validation.feedback import FeedbackGenerator
from ocean_validation.metrics import MetricsAggregator
from ocean_validation.models import (
    AgreementResult,
    ConvergenceReason,
    EvaluationStage,
    NodeType,
    QualityMetrics,
    ValidationNode,
    WorkflowOptions,
    WorkflowRecord,
    WorkflowStatus,
    utc_now,
)
from ocean_validation.schemas import TRAITS, GeneratorOutput, Trait, ValidatorOutput
from ocean_validation.scoring import QualityScorer, improvement_rate, is_oscillating
from ocean_validation.storage import WorkflowStore, create_store

logger = logging.getLogger(__name__)

Authorizer = Callable[[str, Optional[str]], bool]
ResultModel = TypeVar("ResultModel", bound=BaseModel)


class WorkflowOrchestrator:
    """
    Coordinates generator, validator, analysis and feedback for each
    assessment response.

    Example:
        >>> from ocean_validation import WorkflowOrchestrator, load_config
        >>>
        >>> config = load_config("config/config.yml")
        >>> with WorkflowOrchestrator(config, generator, validator) as orchestrator:
        ...     workflow_id = orchestrator.start("response-123")
        ...     status = orchestrator.wait(workflow_id, timeout=300)
        >>>
        >>> print(status["results"]["final_confidence"])
    """

    def __init__(
        self,
        config: ValidationConfig,
        generator: ScoreGenerator,
        validator: ScoreValidator,
        store: Optional[WorkflowStore] = None,
        metrics: Optional[MetricsAggregator] = None,
        authorizer: Optional[Authorizer] = None,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            config: Validation configuration
            generator: A1 scoring collaborator
            validator: B1 scoring collaborator
            store: Workflow store (built from ``config.storage`` if omitted)
            metrics: Metrics aggregator (created if omitted)
            authorizer: ``(response_id, tenant_id) -> bool`` access check
        """
        self.config = config
        self.generator = generator
        self.validator = validator
        self.store = store or create_store(config.storage.backend, config.get_storage_dir())
        self.metrics = metrics or MetricsAggregator(config.metrics, config.costs)
        self.authorizer = authorizer

        # Initialize components
        self.analyzer = DisagreementAnalyzer(config.analyzer)
        self.scorer = QualityScorer(config.quality)
        self.feedback_generator = FeedbackGenerator(config.feedback)

        workflow = config.workflow
        self.default_options = WorkflowOptions(
            confidence_threshold=workflow.confidence_threshold,
            max_iterations=workflow.max_iterations,
            report_style=workflow.report_style,
        )
        self.collaborator_timeout = workflow.collaborator_timeout

        self.min_improvement_rate = workflow.min_improvement_rate
        self.oscillation_window = workflow.oscillation_window
        self.oscillation_tolerance = workflow.oscillation_tolerance

        self._workflow_pool = ThreadPoolExecutor(
            max_workers=workflow.max_workers, thread_name_prefix="ocean-workflow"
        )
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    # =========================================================================
    # Public API
    # =========================================================================

    def start(
        self,
        response_id: str,
        context: Optional[Dict[str, Any]] = None,
        options: Optional[Union[WorkflowOptions, Dict[str, Any]]] = None,
        tenant_id: Optional[str] = None,
    ) -> str:
        """
        Start (or join) the validation workflow for a response.

        Returns immediately; the workflow runs in the background.

        Args:
            response_id: Assessment response to score
            context: Opaque context passed to both collaborators
            options: ``confidence_threshold``, ``max_iterations``, ``report_style``
            tenant_id: Caller's tenant, checked by the authorizer

        Returns:
            Id of the new workflow, or of the response's active workflow

        Raises:
            InputError: missing response id or invalid options
            AccessError: caller may not process this response
            RuntimeError: the orchestrator has been shut down
        """
        if self._closed:
            raise RuntimeError("cannot start workflows after shutdown")
        if not isinstance(response_id, str) or not response_id.strip():
            raise InputError("response_id is required", "response_id")
        if context is not None and not isinstance(context, dict):
            raise InputError("context must be a mapping", "context")

        if isinstance(options, WorkflowOptions):
            workflow_options = options
        else:
            workflow_options = WorkflowOptions.from_mapping(options, self.default_options)

        if self.authorizer is not None and not self.authorizer(response_id, tenant_id):
            raise AccessError(response_id, tenant_id)

        candidate = WorkflowRecord(
            response_id=response_id,
            options=workflow_options,
            context=dict(context or {}),
        )
        record = self.store.create_if_absent(candidate)
        if record.workflow_id != candidate.workflow_id:
            return record.workflow_id

        logger.info(
            f"Started workflow {candidate.workflow_id} for response {response_id} "
            f"(threshold {workflow_options.confidence_threshold}, "
            f"max iterations {workflow_options.max_iterations})"
        )
        with self._lock:
            try:
                future = self._workflow_pool.submit(self._drive, candidate)
            except RuntimeError as e:
                # Shut down between the check above and the insert
                self._fail(
                    candidate,
                    {"kind": type(e).__name__, "message": str(e), "details": {}},
                    time.perf_counter(),
                )
                raise
            self._futures[candidate.workflow_id] = future
        return candidate.workflow_id

    def get_status(self, workflow_id: str) -> Dict[str, Any]:
        """
        Current status projection of a workflow.

        Raises:
            NotFoundError: if the workflow is unknown
        """
        return self.store.load(workflow_id).to_status()

    def wait(self, workflow_id: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Block until a workflow started here is terminal, then return its status.

        Raises:
            NotFoundError: if the workflow is unknown
            concurrent.futures.TimeoutError: if ``timeout`` elapses first
        """
        with self._lock:
            future = self._futures.get(workflow_id)
        if future is not None:
            future.result(timeout=timeout)
            with self._lock:
                self._futures.pop(workflow_id, None)
        return self.get_status(workflow_id)

    def run(
        self,
        response_id: str,
        context: Optional[Dict[str, Any]] = None,
        options: Optional[Union[WorkflowOptions, Dict[str, Any]]] = None,
        tenant_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Start a workflow and wait for its terminal status."""
        workflow_id = self.start(response_id, context, options, tenant_id)
        return self.wait(workflow_id, timeout=timeout)

    def purge_response(self, response_id: str) -> int:
        """Remove all workflows of a deleted response."""
        return self.store.delete_for_response(response_id)

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting workflows; optionally wait for running ones.

        Collaborator calls abandoned after a timeout are not waited for.
        """
        with self._lock:
            self._closed = True
        self._workflow_pool.shutdown(wait=wait)

    def __enter__(self) -> "WorkflowOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    # =========================================================================
    # Workflow Loop
    # =========================================================================

    def _drive(self, record: WorkflowRecord) -> None:
        started = time.perf_counter()
        try:
            self._run_loop(record, started)
        except OceanValidationError as e:
            logger.error(f"Workflow {record.workflow_id} failed: {e.message}")
            self._fail(record, e.to_dict(), started)
        except Exception as e:
            logger.exception(f"Workflow {record.workflow_id} failed unexpectedly")
            self._fail(
                record,
                {"kind": type(e).__name__, "message": str(e), "details": {}},
                started,
            )

    def _run_loop(self, record: WorkflowRecord, started: float) -> None:
        options = record.options
        threshold = options.confidence_threshold

        # [1] Generate
        self._transition(record, WorkflowStatus.GENERATING)
        generated = self._generate(
            record,
            GenerationRequest(
                response_id=record.response_id,
                context=record.context,
                report_style=options.report_style.value,
            ),
        )
        record.a1_result = generated
        self._record_generator_nodes(record, generated, generated.node_ids())

        # [2] Validate
        self._transition(record, WorkflowStatus.VALIDATING)
        record.b1_result = self._validate(
            record,
            ValidationRequest(
                response_id=record.response_id,
                context=record.context,
                generator_output=generated,
            ),
        )
        validated_nodes = self._validator_node_ids(record.a1_result, record.b1_result)

        while True:
            # [3] Analyze
            agreement = self.analyzer.analyze(record.a1_result, record.b1_result, record.iteration)
            self._record_validator_nodes(record, agreement, validated_nodes)
            latest = record.latest_nodes(EvaluationStage.VALIDATOR)
            quality = self.scorer.score(
                agreement,
                iteration=record.iteration,
                node_confidences={node_id: n.confidence for node_id, n in latest.items()},
            )
            record.agreement = agreement
            record.quality_metrics = quality
            record.quality_history.append(quality.quality_score)
            record.disagreements.extend(agreement.disagreements)

            if record.iteration > 0:
                applied = FeedbackGenerator.mark_applied(record.feedback, latest, record.iteration)
                logger.info(
                    f"Workflow {record.workflow_id}: iteration {record.iteration} "
                    f"applied {applied} feedback items"
                )
            self.store.save(record)

            logger.info(
                f"Workflow {record.workflow_id}: iteration {record.iteration} "
                f"quality {quality.quality_score:.3f} "
                f"({quality.overall_confidence:.1f} vs threshold {threshold})"
            )

            # [4] Decide
            reason = self._convergence_reason(record, quality, threshold)
            if reason is not None:
                break

            feedback = self.feedback_generator.generate(
                agreement.disagreements,
                record.b1_result,
                latest,
                threshold,
                record.iteration + 1,
            )
            targets = FeedbackGenerator.target_nodes(feedback)
            if not targets:
                reason = ConvergenceReason.NO_ACTIONABLE_FEEDBACK
                break

            # Improvement cycle over flagged nodes only
            record.begin_improvement_cycle()
            record.feedback.extend(feedback)
            self._transition(record, WorkflowStatus.IMPROVING)

            regenerated = self._generate(
                record,
                GenerationRequest(
                    response_id=record.response_id,
                    context=record.context,
                    report_style=options.report_style.value,
                    iteration=record.iteration,
                    target_nodes=targets,
                    feedback=feedback,
                ),
            )
            record.a1_result = merge_generator_output(record.a1_result, regenerated, targets)
            self._record_generator_nodes(record, regenerated, targets)

            self._transition(record, WorkflowStatus.VALIDATING)
            revalidated = self._validate(
                record,
                ValidationRequest(
                    response_id=record.response_id,
                    context=record.context,
                    generator_output=record.a1_result,
                    iteration=record.iteration,
                    target_nodes=targets,
                ),
            )
            record.b1_result = merge_validator_output(record.b1_result, revalidated, targets)
            validated_nodes = targets

        # [5] Finalize
        logger.info(f"Workflow {record.workflow_id}: finalizing ({reason.value})")
        record.convergence_reason = reason
        self._transition(record, WorkflowStatus.FINALIZING)
        record.final_confidence = round(quality.overall_confidence, 2)
        record.processing_time = round(time.perf_counter() - started, 4)
        quality.processing_time = record.processing_time
        record.completed_at = utc_now()
        self._transition(record, WorkflowStatus.COMPLETED)
        self.metrics.record_workflow(record)

        logger.info(
            f"Workflow {record.workflow_id} completed: confidence {record.final_confidence} "
            f"after {record.iteration} improvement cycles in {record.processing_time:.2f}s"
        )

    def _convergence_reason(
        self, record: WorkflowRecord, quality: QualityMetrics, threshold: float
    ) -> Optional[ConvergenceReason]:
        """Reason to stop after this analysis pass, or None to keep improving."""
        if self.scorer.meets_threshold(quality, threshold):
            return ConvergenceReason.THRESHOLD_MET
        if record.iteration >= record.max_iterations:
            return ConvergenceReason.MAX_ITERATIONS
        if record.iteration == 0:
            return None

        history = record.quality_history
        rate = improvement_rate(history)
        if rate < self.min_improvement_rate:
            logger.info(
                f"Workflow {record.workflow_id}: minimal improvement "
                f"({rate:.4f} < {self.min_improvement_rate})"
            )
            return ConvergenceReason.MINIMAL_IMPROVEMENT
        if is_oscillating(history, self.oscillation_window, self.oscillation_tolerance):
            logger.warning(
                f"Workflow {record.workflow_id}: quality oscillating "
                f"{[round(q, 3) for q in history[-self.oscillation_window:]]}"
            )
            return ConvergenceReason.OSCILLATION
        return None

    def _fail(self, record: WorkflowRecord, error: Dict[str, Any], started: float) -> None:
        record.error = error
        record.processing_time = round(time.perf_counter() - started, 4)
        record.completed_at = utc_now()
        if not record.is_terminal:
            record.transition_to(WorkflowStatus.FAILED)
        self.store.save(record)
        self.metrics.record_workflow(record)

    def _transition(self, record: WorkflowRecord, status: WorkflowStatus) -> None:
        previous = record.status
        record.transition_to(status)
        self.store.save(record)
        logger.info(f"Workflow {record.workflow_id}: {previous.value} -> {status.value}")

    # =========================================================================
    # Collaborator Calls
    # =========================================================================

    def _generate(self, record: WorkflowRecord, request: GenerationRequest) -> GeneratorOutput:
        stage = EvaluationStage.GENERATOR
        result = self._invoke(stage, self.generator.generate, request)
        output = _parse_result(stage, GeneratorOutput, result)
        self.metrics.record_call(record.workflow_id, stage, output.tokens_used, output.processing_time)
        return output

    def _validate(self, record: WorkflowRecord, request: ValidationRequest) -> ValidatorOutput:
        stage = EvaluationStage.VALIDATOR
        result = self._invoke(stage, self.validator.validate, request)
        output = _parse_result(stage, ValidatorOutput, result)
        self.metrics.record_call(record.workflow_id, stage, output.tokens_used, output.processing_time)
        return output

    def _invoke(self, stage: EvaluationStage, call: Callable[[Any], Any], request: Any) -> Any:
        """
        Run one collaborator call on its own daemon thread under the timeout.

        A call that times out is abandoned; its thread holds no shared
        capacity, so later calls start immediately.
        """
        future: Future = Future()

        def target() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(call(request))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=target, name=f"ocean-{stage.value}-call", daemon=True).start()
        try:
            return future.result(timeout=self.collaborator_timeout)
        except FuturesTimeoutError:
            logger.warning(
                f"{stage.value} call abandoned after {self.collaborator_timeout}s timeout"
            )
            raise CollaboratorTimeoutError(stage.value, self.collaborator_timeout) from None
        except OceanValidationError:
            raise
        except Exception as e:
            raise CollaboratorError(stage.value, str(e) or type(e).__name__, e) from e

    # =========================================================================
    # Nodes
    # =========================================================================

    def _record_generator_nodes(
        self, record: WorkflowRecord, output: GeneratorOutput, node_ids: List[str]
    ) -> None:
        produced = set(output.node_ids())
        for node_id in node_ids:
            if node_id not in produced:
                continue
            record.nodes.append(
                ValidationNode(
                    node_id=node_id,
                    node_type=_node_type(node_id, output),
                    stage=EvaluationStage.GENERATOR,
                    confidence=output.confidence,
                    iteration=record.iteration,
                )
            )

    @staticmethod
    def _validator_node_ids(generator: GeneratorOutput, validator: ValidatorOutput) -> List[str]:
        node_ids = generator.node_ids()
        node_ids.extend(n for n in validator.node_assessments if n not in node_ids)
        return node_ids

    def _record_validator_nodes(
        self, record: WorkflowRecord, agreement: AgreementResult, node_ids: List[str]
    ) -> None:
        validator = record.b1_result
        for node_id in node_ids:
            assessment = validator.node_assessments.get(node_id)
            trait = Trait.from_node_id(node_id)

            if assessment is not None:
                confidence = assessment.confidence
            elif trait is not None:
                confidence = validator.confidence * agreement.trait_agreement(trait.value)
            else:
                confidence = validator.confidence

            issues = list(assessment.issues) if assessment is not None else []
            if trait is not None:
                issues.extend(
                    f"{d.level.value} '{d.facet}' differs by {d.difference:+.1f} "
                    f"({d.severity.value})"
                    for d in agreement.disagreements
                    if d.trait == trait.value
                )

            record.nodes.append(
                ValidationNode(
                    node_id=node_id,
                    node_type=_node_type(node_id, record.a1_result),
                    stage=EvaluationStage.VALIDATOR,
                    confidence=confidence,
                    iteration=record.iteration,
                    issues=tuple(issues),
                    suggestions=tuple(assessment.suggestions) if assessment is not None else (),
                )
            )


# =============================================================================
# Helpers
# =============================================================================


def _node_type(node_id: str, generator: Optional[GeneratorOutput]) -> NodeType:
    if Trait.from_node_id(node_id) is not None:
        return NodeType.SCORING
    if generator is not None and node_id in generator.nodes:
        return NodeType(generator.nodes[node_id].node_type)
    return NodeType.CONTEXT


def _parse_result(
    stage: EvaluationStage, model: Type[ResultModel], result: Any
) -> ResultModel:
    if isinstance(result, model):
        return result
    try:
        return model.model_validate(result)
    except ValidationError as e:
        raise MalformedResultError(
            stage.value, f"malformed result ({e.error_count()} validation errors)", e
        ) from e


def _targeted_traits(targets: List[str]) -> List[Trait]:
    return [t for t in TRAITS if t.node_id in targets]


def merge_generator_output(
    previous: GeneratorOutput, update: GeneratorOutput, targets: List[str]
) -> GeneratorOutput:
    """
    Fold a node-scoped generator re-run into the previous full output.

    Scores and content nodes are taken from ``update`` only for targeted
    nodes; confidence and usage come from the new call.
    """
    nodes = dict(previous.nodes)
    nodes.update({k: v for k, v in update.nodes.items() if k in targets})
    return update.model_copy(
        update={
            "scores": previous.scores.merged_with(update.scores, _targeted_traits(targets)),
            "nodes": nodes,
        }
    )


def merge_validator_output(
    previous: ValidatorOutput, update: ValidatorOutput, targets: List[str]
) -> ValidatorOutput:
    """
    Fold a node-scoped validator re-run into the previous full output.

    A targeted node the re-run no longer assesses loses its old assessment.
    """
    assessments = {k: v for k, v in previous.node_assessments.items() if k not in targets}
    assessments.update({k: v for k, v in update.node_assessments.items() if k in targets})
    return update.model_copy(
        update={
            "scores": previous.scores.merged_with(update.scores, _targeted_traits(targets)),
            "node_assessments": assessments,
        }
    )
