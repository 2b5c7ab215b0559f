"""
Generator and validator collaborator interfaces.

The scoring models themselves live outside this package. The orchestrator
talks to them through ``ScoreGenerator`` and ``ScoreValidator``; results
may be returned as schema objects or plain dicts and are validated on
receipt.

Also provides scripted, file-backed implementations used by the CLI and
for replaying recorded model outputs.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

from ocean_validation.models import FeedbackItem
from ocean_validation.schemas import GeneratorOutput, ValidatorOutput

logger = logging.getLogger(__name__)

GeneratorResult = Union[GeneratorOutput, Dict[str, Any]]
ValidatorResult = Union[ValidatorOutput, Dict[str, Any]]


@dataclass
class GenerationRequest:
    """
    Input to one generator call.

    ``target_nodes`` is None for the initial full pass and lists the
    flagged node ids during an improvement cycle.
    """

    response_id: str
    context: Dict[str, Any]
    report_style: str
    iteration: int = 0
    target_nodes: Optional[List[str]] = None
    feedback: List[FeedbackItem] = field(default_factory=list)


@dataclass
class ValidationRequest:
    """Input to one validator call."""

    response_id: str
    context: Dict[str, Any]
    generator_output: GeneratorOutput
    iteration: int = 0
    target_nodes: Optional[List[str]] = None


class ScoreGenerator(ABC):
    """A1 pass: produce OCEAN scores, confidence and usage for a response."""

    name = "generator"

    @abstractmethod
    def generate(self, request: GenerationRequest) -> GeneratorResult:
        """
        Score a response, or re-score only ``request.target_nodes``.

        Raises:
            Any exception; the orchestrator reports it as a collaborator failure
        """


class ScoreValidator(ABC):
    """B1 pass: independently re-score and assess the generator output."""

    name = "validator"

    @abstractmethod
    def validate(self, request: ValidationRequest) -> ValidatorResult:
        """
        Produce an independent score set with confidence and issues.

        Raises:
            Any exception; the orchestrator reports it as a collaborator failure
        """


# =============================================================================
# Scripted Implementations
# =============================================================================


def load_payloads(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Load one or more recorded outputs from a YAML or JSON file.

    The file holds either a single mapping or a list of mappings; a
    mapping with an ``outputs`` key is also accepted.
    """
    path = Path(path)
    with open(path, "r") as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    if isinstance(data, dict) and "outputs" in data:
        data = data["outputs"]
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(d, dict) for d in data):
        return data

    raise ValueError(f"{path} does not contain a payload mapping or a list of mappings")


class _Script:
    """Thread-safe cursor over recorded outputs; the last one repeats."""

    def __init__(self, outputs: Sequence[Any]) -> None:
        if not outputs:
            raise ValueError("at least one scripted output is required")
        self._outputs = list(outputs)
        self._index = 0
        self._lock = threading.Lock()

    def next(self) -> Any:
        with self._lock:
            output = self._outputs[min(self._index, len(self._outputs) - 1)]
            self._index += 1
            return output


class ScriptedGenerator(ScoreGenerator):
    """
    Generator that replays recorded outputs in order.

    Example:
        >>> generator = ScriptedGenerator.from_file("fixtures/a1.yml")
    """

    name = "scripted-generator"

    def __init__(self, outputs: Sequence[GeneratorResult]) -> None:
        self._script = _Script(outputs)
        self.requests: List[GenerationRequest] = []

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ScriptedGenerator":
        return cls(load_payloads(path))

    def generate(self, request: GenerationRequest) -> GeneratorResult:
        self.requests.append(request)
        logger.debug(
            f"Scripted generation for {request.response_id} "
            f"(iteration {request.iteration}, targets {request.target_nodes})"
        )
        return self._script.next()


class ScriptedValidator(ScoreValidator):
    """Validator that replays recorded outputs in order."""

    name = "scripted-validator"

    def __init__(self, outputs: Sequence[ValidatorResult]) -> None:
        self._script = _Script(outputs)
        self.requests: List[ValidationRequest] = []

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ScriptedValidator":
        return cls(load_payloads(path))

    def validate(self, request: ValidationRequest) -> ValidatorResult:
        self.requests.append(request)
        logger.debug(
            f"Scripted validation for {request.response_id} "
            f"(iteration {request.iteration}, targets {request.target_nodes})"
        )
        return self._script.next()
