"""
Configuration management for the OCEAN dual-evaluator validation workflow.

This module provides:
- Pydantic models for type-safe configuration
- YAML configuration loading
- Environment variable overrides
- Configuration validation

Configuration is loaded from YAML files and can be overridden via
(highest precedence first):
1. Environment variables (OCEAN_<SECTION>__<KEY>)
2. Programmatic dotted-key overrides
3. Local config file (config/config.local.yml)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


# =============================================================================
# Configuration Models
# =============================================================================


class ProjectConfig(BaseModel):
    """Project metadata configuration."""

    name: str = "OCEAN Dual Validation"
    version: str = "1.0.0"
    description: str = "Dual-evaluator validation workflow for OCEAN assessment scoring"


class WorkflowConfig(BaseModel):
    """Default options for a single workflow run."""

    confidence_threshold: float = 85.0
    max_iterations: int = 3
    report_style: str = "standard"
    collaborator_timeout: float = 60.0
    max_workers: int = 4

    # Convergence: stop once an improvement cycle raises the quality score
    # by less than this (0 disables the rule)
    min_improvement_rate: float = 0.02

    # Oscillation: quality scores of the last ``oscillation_window`` passes
    # alternating within ``oscillation_tolerance``
    oscillation_window: int = 4
    oscillation_tolerance: float = 0.05

    @field_validator("confidence_threshold")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        """Threshold is expressed on the 0-100 confidence scale."""
        if not 0.0 <= v <= 100.0:
            raise ValueError("confidence_threshold must be between 0 and 100")
        return v

    @field_validator("max_iterations", "max_workers")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("oscillation_window")
    @classmethod
    def check_window(cls, v: int) -> int:
        if v < 4:
            raise ValueError("oscillation_window must be at least 4")
        return v

    @field_validator("min_improvement_rate", "oscillation_tolerance")
    @classmethod
    def check_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v


class AnalyzerConfig(BaseModel):
    """Disagreement analysis configuration."""

    dimension_weight: float = 0.6
    facet_weight: float = 0.4

    # Score gap at which a dimension/facet contributes zero agreement
    agreement_scale: float = 20.0

    # Severity thresholds on |difference|
    disagreement_threshold: float = 10.0
    high_severity_threshold: float = 20.0

    # Bias detection
    systematic_bias_threshold: float = 5.0
    central_tendency_threshold: float = 0.7
    extreme_low: float = 20.0
    extreme_high: float = 80.0
    extreme_ratio: float = 0.6

    # Recommendations
    recalibration_count: int = 5

    # Used when the validator does not report a consistency score
    default_consistency_score: float = 0.5

    @model_validator(mode="after")
    def check_weights(self) -> "AnalyzerConfig":
        """Dimension and facet weights must form a convex combination."""
        if abs(self.dimension_weight + self.facet_weight - 1.0) > 1e-6:
            raise ValueError("dimension_weight and facet_weight must sum to 1.0")
        if self.high_severity_threshold < self.disagreement_threshold:
            raise ValueError("high_severity_threshold must not be below disagreement_threshold")
        return self


class QualityConfig(BaseModel):
    """Quality scoring configuration."""

    class Weights(BaseModel):
        agreement: float = 0.4
        confidence: float = 0.3
        issues: float = 0.2
        severity: float = 0.1

    class ScoreThresholds(BaseModel):
        excellent: float = 0.95
        good: float = 0.85
        acceptable: float = 0.70
        questionable: float = 0.50

    weights: Weights = Field(default_factory=Weights)
    score_thresholds: ScoreThresholds = Field(default_factory=ScoreThresholds)
    issue_normalizer: float = 10.0


class FeedbackConfig(BaseModel):
    """Feedback generation configuration."""

    # Findings below this severity are not turned into feedback items
    minimum_severity: str = "medium"

    # Confidence gap (threshold - node confidence) that escalates a node issue to high
    high_gap: float = 20.0

    @field_validator("minimum_severity")
    @classmethod
    def check_severity(cls, v: str) -> str:
        valid = {"low", "medium", "high"}
        if v not in valid:
            raise ValueError(f"minimum_severity must be one of {valid}")
        return v


class CostConfig(BaseModel):
    """Per-1k-token cost rates for the two scoring passes (USD)."""

    generator_per_1k_tokens: float = 0.002
    validator_per_1k_tokens: float = 0.001


class MetricsConfig(BaseModel):
    """Metrics aggregation thresholds."""

    sla_ms: float = 5000.0
    high_confidence: float = 0.85
    cost_efficient_usd: float = 0.01
    disagreement_alert_rate: float = 0.15


class StorageConfig(BaseModel):
    """Workflow store configuration."""

    backend: str = "memory"
    directory: Path = Path(".ocean_validation/workflows")

    @field_validator("backend")
    @classmethod
    def check_backend(cls, v: str) -> str:
        if v not in {"memory", "file"}:
            raise ValueError("backend must be 'memory' or 'file'")
        return v

    @field_validator("directory", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        return Path(v) if isinstance(v, str) else v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    rich_console: bool = True


# =============================================================================
# Main Configuration Class
# =============================================================================


class ValidationConfig(BaseSettings):
    """
    Main configuration class for the validation workflow.

    Loads configuration from YAML files with environment variable overrides.
    Environment variables use the prefix OCEAN_ and nested keys are separated
    by double underscores (e.g., OCEAN_WORKFLOW__MAX_ITERATIONS).
    """

    model_config = SettingsConfigDict(
        env_prefix="OCEAN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    analyzer: AnalyzerConfig = Field(default_factory=AnalyzerConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    costs: CostConfig = Field(default_factory=CostConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over values loaded from YAML and passed as kwargs
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    # Runtime attributes (not from config file)
    _project_root: Optional[Path] = None
    _config_path: Optional[Path] = None

    @property
    def project_root(self) -> Path:
        """Get the project root directory."""
        if self._project_root is not None:
            return self._project_root
        return Path.cwd()

    @project_root.setter
    def project_root(self, value: Path) -> None:
        """Set the project root directory."""
        self._project_root = value

    def get_storage_dir(self) -> Path:
        """Get the workflow store directory resolved against project root."""
        directory = self.storage.directory
        return directory if directory.is_absolute() else self.project_root / directory


# =============================================================================
# Configuration Loading
# =============================================================================


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    project_root: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ValidationConfig:
    """
    Load configuration from YAML file with optional overrides.

    Args:
        config_path: Path to config YAML file. If None, looks for config/config.yml
        project_root: Project root directory. If None, uses current directory
        overrides: Dictionary of config overrides (dotted keys supported)

    Returns:
        Loaded and validated ValidationConfig instance

    Example:
        >>> config = load_config("config/config.yml")
        >>> config = load_config(overrides={"workflow.max_iterations": 5})
    """
    root = Path(project_root) if project_root is not None else Path.cwd()

    if config_path is not None:
        cfg_path = Path(config_path)
        if not cfg_path.is_absolute():
            cfg_path = root / cfg_path
    else:
        candidates = [
            root / "config" / "config.yml",
            root / "config" / "config.yaml",
            root / "config.yml",
            root / "config.yaml",
        ]
        cfg_path = None
        for candidate in candidates:
            if candidate.exists():
                cfg_path = candidate
                break

        if cfg_path is None:
            # No config file found, use defaults (with overrides if provided)
            config_data = _apply_overrides({}, overrides) if overrides else {}
            config = ValidationConfig(**config_data)
            config._project_root = root
            return config

    config_data: Dict[str, Any] = {}
    if cfg_path.exists():
        with open(cfg_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    local_cfg_path = cfg_path.parent / "config.local.yml"
    if local_cfg_path.exists():
        with open(local_cfg_path, "r") as f:
            local_data = yaml.safe_load(f) or {}
            config_data = _deep_merge(config_data, local_data)

    if overrides:
        config_data = _apply_overrides(config_data, overrides)

    config = ValidationConfig(**config_data)
    config._project_root = root
    config._config_path = cfg_path

    return config


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_overrides(config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Apply dotted-key overrides to config dictionary."""
    result = config.copy()

    for key, value in overrides.items():
        parts = key.split(".")
        current = result

        for part in parts[:-1]:
            if part not in current or not isinstance(current[part], dict):
                current[part] = {}
            else:
                current[part] = dict(current[part])
            current = current[part]

        current[parts[-1]] = value

    return result


def _convert_paths_to_strings(obj: Any) -> Any:
    """Recursively convert Path objects to strings for YAML serialization."""
    if isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: _convert_paths_to_strings(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_convert_paths_to_strings(v) for v in obj]
    elif isinstance(obj, tuple):
        return tuple(_convert_paths_to_strings(v) for v in obj)
    return obj


def save_config(config: ValidationConfig, path: Union[str, Path]) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: ValidationConfig instance to save
        path: Output path for YAML file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump()
    data = _convert_paths_to_strings(data)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
