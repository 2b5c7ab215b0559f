"""
Error classes for the dual-evaluator validation workflow.

Provides structured exception handling for:
- Input errors (rejected before any workflow state is created)
- Access errors (caller may not process the response)
- Collaborator errors (generator/validator failures, timeouts, malformed output)
- Lookup errors (unknown workflow)
- Store integrity and state machine violations
"""

from typing import Any, Dict, Optional


class OceanValidationError(Exception):
    """
    Base exception for all validation workflow errors.

    Every error carries a human-readable message and a details dict so
    that it can be stored on a failed workflow or returned to a caller
    as ``{kind, message}``.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        """Short error kind used in client-facing payloads."""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Client Errors
# =============================================================================


class InputError(OceanValidationError, ValueError):
    """Missing or invalid response id or workflow options."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, {"field": field} if field else None)


class AccessError(OceanValidationError):
    """Caller lacks rights to the assessment response."""

    def __init__(self, response_id: str, tenant_id: Optional[str] = None):
        self.response_id = response_id
        self.tenant_id = tenant_id
        super().__init__(
            f"Access denied to assessment response {response_id}",
            {"response_id": response_id, "tenant_id": tenant_id},
        )


class NotFoundError(OceanValidationError, KeyError):
    """Unknown workflow id."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}", {"workflow_id": workflow_id})

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.message


# =============================================================================
# Collaborator Errors
# =============================================================================


class CollaboratorError(OceanValidationError):
    """
    Generator or validator call failed.

    Terminates the workflow as failed; never retried by the orchestrator.
    """

    def __init__(
        self,
        stage: str,
        reason: str,
        original_error: Optional[BaseException] = None,
    ):
        self.stage = stage
        self.reason = reason
        self.original_error = original_error

        details: Dict[str, Any] = {"stage": stage, "reason": reason}
        if original_error is not None:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(f"{stage} call failed: {reason}", details)


class CollaboratorTimeoutError(CollaboratorError):
    """Generator or validator call exceeded its timeout."""

    def __init__(self, stage: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(stage, f"timed out after {timeout_seconds:g}s")
        self.details["timeout_seconds"] = timeout_seconds


class MalformedResultError(CollaboratorError):
    """Collaborator returned a payload that does not match the score schema."""


# =============================================================================
# Store / State Errors
# =============================================================================


class IntegrityError(OceanValidationError):
    """
    A second active workflow was requested for the same response.

    ``start`` handles this by returning ``existing_workflow_id``.
    """

    def __init__(self, response_id: str, existing_workflow_id: str):
        self.response_id = response_id
        self.existing_workflow_id = existing_workflow_id
        super().__init__(
            f"Response {response_id} already has active workflow {existing_workflow_id}",
            {"response_id": response_id, "existing_workflow_id": existing_workflow_id},
        )


class InvalidTransitionError(OceanValidationError):
    """Attempted a backward or otherwise illegal status transition."""

    def __init__(self, workflow_id: str, current: str, target: str):
        self.workflow_id = workflow_id
        self.current = current
        self.target = target
        super().__init__(
            f"Workflow {workflow_id}: illegal transition {current} -> {target}",
            {"workflow_id": workflow_id, "current": current, "target": target},
        )
