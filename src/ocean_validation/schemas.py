"""
Versioned payload schemas for the generator and validator collaborators.

Score payloads are validated explicitly instead of being shape-matched:
all five trait scores are required, every facet names the trait it
belongs to, and scores must lie on the 0-100 scale. A payload that
fails validation is reported as malformed by the orchestrator.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = "1.0"
SUPPORTED_SCHEMA_VERSIONS = {"1.0"}


class Trait(str, Enum):
    """The five OCEAN personality dimensions."""

    OPENNESS = "openness"
    CONSCIENTIOUSNESS = "conscientiousness"
    EXTRAVERSION = "extraversion"
    AGREEABLENESS = "agreeableness"
    NEUROTICISM = "neuroticism"

    @property
    def node_id(self) -> str:
        """Id of the scoring node that covers this trait and its facets."""
        return f"ocean_{self.value}"

    @classmethod
    def from_node_id(cls, node_id: str) -> Optional["Trait"]:
        if not node_id.startswith("ocean_"):
            return None
        try:
            return cls(node_id[len("ocean_"):])
        except ValueError:
            return None


TRAITS: List[Trait] = list(Trait)


class FacetScore(BaseModel):
    """Score for one sub-dimension of a trait."""

    model_config = ConfigDict(frozen=True)

    trait: Trait
    score: float = Field(ge=0.0, le=100.0)


class ScorePayload(BaseModel):
    """
    OCEAN score set produced by one scoring pass.

    Attributes:
        schema_version: Payload schema version
        dimensions: Score per trait, all five required
        facets: Optional facet scores keyed by facet name
    """

    model_config = ConfigDict(frozen=True)

    schema_version: str = SCHEMA_VERSION
    dimensions: Dict[Trait, float]
    facets: Dict[str, FacetScore] = Field(default_factory=dict)

    @field_validator("schema_version")
    @classmethod
    def check_version(cls, v: str) -> str:
        if v not in SUPPORTED_SCHEMA_VERSIONS:
            raise ValueError(f"unsupported score schema version: {v}")
        return v

    @field_validator("dimensions")
    @classmethod
    def check_dimensions(cls, v: Dict[Trait, float]) -> Dict[Trait, float]:
        missing = [t.value for t in TRAITS if t not in v]
        if missing:
            raise ValueError(f"missing trait scores: {', '.join(missing)}")
        for trait, score in v.items():
            if not 0.0 <= score <= 100.0:
                raise ValueError(f"{trait.value} score {score} outside 0-100")
        return v

    def dimension(self, trait: Trait) -> float:
        return self.dimensions[trait]

    def facets_for(self, trait: Trait) -> Dict[str, FacetScore]:
        """Facets belonging to one trait."""
        return {name: f for name, f in self.facets.items() if f.trait == trait}

    def all_scores(self) -> List[float]:
        """Every numeric score in the payload (dimensions then facets)."""
        return [self.dimensions[t] for t in TRAITS] + [f.score for f in self.facets.values()]

    def merged_with(self, other: "ScorePayload", traits: List[Trait]) -> "ScorePayload":
        """
        Replace the given traits (and their facets) with values from ``other``.

        Used to fold a node-scoped re-run back into the full score set.
        """
        if not traits:
            return self

        dimensions = dict(self.dimensions)
        facets = {name: f for name, f in self.facets.items() if f.trait not in traits}
        for trait in traits:
            dimensions[trait] = other.dimensions[trait]
            facets.update(other.facets_for(trait))

        return ScorePayload(
            schema_version=self.schema_version,
            dimensions=dimensions,
            facets=facets,
        )


class PatternAnalysis(BaseModel):
    """Self-reported response-pattern statistics."""

    model_config = ConfigDict(extra="allow")

    central_tendency: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class ContentNode(BaseModel):
    """Non-scoring output node (insight, recommendation, context)."""

    node_type: str
    content: Any = None

    @field_validator("node_type")
    @classmethod
    def check_node_type(cls, v: str) -> str:
        if v not in {"insight", "recommendation", "context"}:
            raise ValueError(f"invalid content node type: {v}")
        return v


class NodeAssessment(BaseModel):
    """Validator verdict on one node."""

    confidence: float = Field(ge=0.0, le=100.0)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class GeneratorOutput(BaseModel):
    """
    Result of one generator (A1) call.

    ``processing_time`` is in milliseconds.
    """

    scores: ScorePayload
    confidence: float = Field(ge=0.0, le=100.0)
    tokens_used: int = Field(default=0, ge=0)
    processing_time: float = Field(default=0.0, ge=0.0)
    model_version: Optional[str] = None
    pattern_analysis: Optional[PatternAnalysis] = None
    nodes: Dict[str, ContentNode] = Field(default_factory=dict)

    def node_ids(self) -> List[str]:
        """Scoring nodes first, then content nodes in reported order."""
        return [t.node_id for t in TRAITS] + list(self.nodes.keys())


class ValidatorOutput(BaseModel):
    """
    Result of one validator (B1) call.

    ``consistency_score`` is on a 0-1 scale; confidences on 0-100.
    """

    scores: ScorePayload
    confidence: float = Field(ge=0.0, le=100.0)
    tokens_used: int = Field(default=0, ge=0)
    processing_time: float = Field(default=0.0, ge=0.0)
    consistency_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    pattern_analysis: Optional[PatternAnalysis] = None
    issues: List[str] = Field(default_factory=list)
    node_assessments: Dict[str, NodeAssessment] = Field(default_factory=dict)
    model_version: Optional[str] = None
