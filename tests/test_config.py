from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from ocean_validation.config import ValidationConfig, load_config, save_config


def test_defaults(tmp_path):
    config = load_config(project_root=tmp_path)

    assert config.workflow.confidence_threshold == 85.0
    assert config.workflow.max_iterations == 3
    assert config.analyzer.dimension_weight == 0.6
    assert config.quality.weights.agreement == 0.4
    assert config.costs.generator_per_1k_tokens == 0.002
    assert config.metrics.disagreement_alert_rate == 0.15
    assert config.get_storage_dir() == tmp_path / ".ocean_validation" / "workflows"


def test_yaml_local_file_and_overrides(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.yml").write_text(
        yaml.safe_dump({"workflow": {"max_iterations": 5, "confidence_threshold": 90}})
    )
    (config_dir / "config.local.yml").write_text(yaml.safe_dump({"workflow": {"max_iterations": 2}}))

    config = load_config(project_root=tmp_path, overrides={"feedback.minimum_severity": "high"})

    assert config.workflow.max_iterations == 2
    assert config.workflow.confidence_threshold == 90.0
    assert config.feedback.minimum_severity == "high"


def test_environment_override(monkeypatch):
    monkeypatch.setenv("OCEAN_WORKFLOW__MAX_ITERATIONS", "7")

    assert ValidationConfig().workflow.max_iterations == 7


def test_environment_wins_over_yaml_values(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.yml").write_text(
        yaml.safe_dump({"workflow": {"max_iterations": 5, "confidence_threshold": 90}})
    )
    monkeypatch.setenv("OCEAN_WORKFLOW__MAX_ITERATIONS", "7")

    config = load_config(project_root=tmp_path)

    assert config.workflow.max_iterations == 7
    assert config.workflow.confidence_threshold == 90.0


def test_convergence_defaults():
    workflow = ValidationConfig().workflow

    assert workflow.min_improvement_rate == 0.02
    assert workflow.oscillation_window == 4
    assert workflow.oscillation_tolerance == 0.05


@pytest.mark.parametrize(
    "data",
    [
        {"workflow": {"confidence_threshold": 120}},
        {"workflow": {"max_iterations": 0}},
        {"analyzer": {"dimension_weight": 0.7, "facet_weight": 0.4}},
        {"feedback": {"minimum_severity": "critical"}},
        {"storage": {"backend": "redis"}},
        {"workflow": {"oscillation_window": 2}},
        {"workflow": {"min_improvement_rate": -0.1}},
    ],
)
def test_invalid_values_rejected(data):
    with pytest.raises(ValidationError):
        ValidationConfig(**data)


def test_save_config_round_trip(tmp_path):
    path = tmp_path / "saved" / "config.yml"
    original = ValidationConfig(workflow={"max_iterations": 4}, storage={"directory": "data/wf"})

    save_config(original, path)
    reloaded = load_config(path, project_root=tmp_path)

    assert reloaded.workflow.max_iterations == 4
    assert reloaded.storage.directory == Path("data/wf")
