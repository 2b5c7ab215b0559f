import threading
import time
from typing import Any, Dict, List, Optional

import pytest

from ocean_validation.collaborators import (
    GenerationRequest,
    ScoreGenerator,
    ScoreValidator,
    ScriptedGenerator,
    ScriptedValidator,
    ValidationRequest,
)
from ocean_validation.config import ValidationConfig
from ocean_validation.orchestrator import WorkflowOrchestrator
from ocean_validation.schemas import TRAITS, GeneratorOutput, ValidatorOutput
from ocean_validation.storage import InMemoryWorkflowStore


class Payloads:
    """Builders for collaborator payloads."""

    @staticmethod
    def scores(value: float = 70.0, facets: Optional[Dict[str, Any]] = None, **traits: float):
        dimensions = {t.value: value for t in TRAITS}
        dimensions.update(traits)
        return {"dimensions": dimensions, "facets": facets or {}}

    @staticmethod
    def generator(
        scores: Optional[Dict[str, Any]] = None,
        confidence: float = 100.0,
        tokens_used: int = 1000,
        processing_time: float = 1000.0,
        **extra: Any,
    ) -> Dict[str, Any]:
        payload = {
            "scores": scores or Payloads.scores(),
            "confidence": confidence,
            "tokens_used": tokens_used,
            "processing_time": processing_time,
        }
        payload.update(extra)
        return payload

    @staticmethod
    def validator(
        scores: Optional[Dict[str, Any]] = None,
        confidence: float = 100.0,
        tokens_used: int = 1000,
        processing_time: float = 1000.0,
        **extra: Any,
    ) -> Dict[str, Any]:
        payload = {
            "scores": scores or Payloads.scores(),
            "confidence": confidence,
            "tokens_used": tokens_used,
            "processing_time": processing_time,
        }
        payload.update(extra)
        return payload

    @staticmethod
    def generator_output(**kwargs: Any) -> GeneratorOutput:
        return GeneratorOutput.model_validate(Payloads.generator(**kwargs))

    @staticmethod
    def validator_output(**kwargs: Any) -> ValidatorOutput:
        return ValidatorOutput.model_validate(Payloads.validator(**kwargs))


class SlowGenerator(ScoreGenerator):
    def __init__(self, delay: float, output: Dict[str, Any]) -> None:
        self.delay = delay
        self.output = output

    def generate(self, request: GenerationRequest) -> Dict[str, Any]:
        time.sleep(self.delay)
        return self.output


class FailingGenerator(ScoreGenerator):
    def generate(self, request: GenerationRequest) -> Dict[str, Any]:
        raise ConnectionError("generator unreachable")


class FailingValidator(ScoreValidator):
    def __init__(self) -> None:
        self.calls = 0

    def validate(self, request: ValidationRequest) -> Dict[str, Any]:
        self.calls += 1
        raise ConnectionError("validator unreachable")


class BlockingGenerator(ScoreGenerator):
    """Holds every call until ``release`` is set."""

    def __init__(self, output: Dict[str, Any]) -> None:
        self.output = output
        self.release = threading.Event()
        self.calls = 0

    def generate(self, request: GenerationRequest) -> Dict[str, Any]:
        self.calls += 1
        self.release.wait(timeout=5.0)
        return self.output


@pytest.fixture
def payloads():
    return Payloads


@pytest.fixture
def config():
    return ValidationConfig(workflow={"collaborator_timeout": 2.0, "max_workers": 2})


@pytest.fixture
def store():
    return InMemoryWorkflowStore()


@pytest.fixture
def make_orchestrator(config, store):
    created: List[WorkflowOrchestrator] = []

    def factory(generator, validator, **kwargs) -> WorkflowOrchestrator:
        if isinstance(generator, list):
            generator = ScriptedGenerator(generator)
        if isinstance(validator, list):
            validator = ScriptedValidator(validator)
        kwargs.setdefault("store", store)
        orchestrator = WorkflowOrchestrator(kwargs.pop("config", config), generator, validator, **kwargs)
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        orchestrator.shutdown()


@pytest.fixture
def slow_generator_cls():
    return SlowGenerator


@pytest.fixture
def failing_generator():
    return FailingGenerator()


@pytest.fixture
def failing_validator():
    return FailingValidator()


@pytest.fixture
def blocking_generator_cls():
    return BlockingGenerator
