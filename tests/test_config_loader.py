"""Tests for config loader functionality."""

import os
import pytest
import tempfile
import yaml

from videoassess.libs.config_loader import (
    get_config,
    load_all_configs,
    load_configs,
    load_default_configs,
    merge_configs,
)


def write_yaml(directory, name, data):
    path = os.path.join(directory, name)
    with open(path, 'w') as f:
        yaml.dump(data, f)
    return path


def test_load_single_config():
    """Test loading a single config file."""
    config_data = {
        "grading": {"peer_count": 3},
        "logging": {"level": "DEBUG"}
    }

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(config_data, f)
        temp_path = f.name

    try:
        result = load_configs(temp_path)
        assert result == config_data
    finally:
        os.unlink(temp_path)


def test_load_multiple_configs_merge():
    """Later files override nested keys and add new ones."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path1 = write_yaml(tmpdir, "a.yaml", {
            "grading": {"weights": {"teacher": 80, "peer": 20}, "peer_count": 2},
        })
        path2 = write_yaml(tmpdir, "b.yaml", {
            "grading": {"weights": {"peer": 10, "self": 10}},
            "logging": {"level": "DEBUG"},
        })

        result = load_configs(path1, path2)

    assert result == {
        "grading": {"weights": {"teacher": 80, "peer": 10, "self": 10}, "peer_count": 2},
        "logging": {"level": "DEBUG"},
    }


def test_merge_configs_leaves_inputs_untouched():
    orig = {"grading": {"fairness_bonus": {"enabled": False}}}
    new = {"grading": {"fairness_bonus": {"enabled": True}}}

    merged = merge_configs(orig, new)

    assert merged["grading"]["fairness_bonus"]["enabled"] is True
    assert orig["grading"]["fairness_bonus"]["enabled"] is False


def test_merge_replaces_lists():
    """Lists such as bonus scales are replaced, not concatenated."""
    merged = merge_configs({"scale": [1, 2, 3]}, {"scale": [4]})
    assert merged == {"scale": [4]}


def test_load_missing_file():
    """Test that missing files are skipped with warning."""
    config_data = {"app": {"name": "test-app"}}

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(config_data, f)
        temp_path = f.name

    try:
        result = load_configs(temp_path, "nonexistent.yaml")
        assert result == config_data
    finally:
        os.unlink(temp_path)


def test_no_configs_loaded():
    """Test that ValueError is raised when no configs are loaded."""
    with pytest.raises(ValueError, match="No configs loaded"):
        load_configs("nonexistent1.yaml", "nonexistent2.yaml")


def test_invalid_yaml_type():
    """Test that TypeError is raised for non-dict YAML."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write("just a string, not a dict")
        temp_path = f.name

    try:
        with pytest.raises(TypeError, match="must be a dict"):
            load_configs(temp_path)
    finally:
        os.unlink(temp_path)


def test_get_config():
    """Test getting config values by dot-separated key."""
    config = {
        "grading": {
            "peer_count": 2,
            "fairness_bonus": {
                "enabled": True,
                "max_percent": 10
            }
        },
        "logging": {"level": "INFO"}
    }

    assert get_config("grading.peer_count", config) == 2
    assert get_config("grading.fairness_bonus.enabled", config) is True
    assert get_config("grading.fairness_bonus.max_percent", config) == 10
    assert get_config("logging.level", config) == "INFO"

    with pytest.raises(KeyError):
        get_config("nonexistent.key", config)

    with pytest.raises(KeyError):
        get_config("grading.fairness_bonus.nonexistent", config)

    with pytest.raises(KeyError):
        get_config("grading.peer_count.deeper", config)


def test_load_all_configs_from_env_dir(monkeypatch):
    """Files in the config directory load alphabetically, extra paths last."""
    with tempfile.TemporaryDirectory() as tmpdir:
        write_yaml(tmpdir, "default.yaml", {"grading": {"peer_count": 2, "max_grade": 100}})
        write_yaml(tmpdir, "local.yaml", {"grading": {"peer_count": 4}})
        extra = write_yaml(tmpdir, "override.txt", {"grading": {"max_grade": 50}})
        monkeypatch.setenv("VIDEOASSESS_CONFIG_DIR", tmpdir)

        config = load_all_configs([extra])

    assert config == {"grading": {"peer_count": 4, "max_grade": 50}}


def test_load_all_configs_missing_dir(monkeypatch):
    monkeypatch.setenv("VIDEOASSESS_CONFIG_DIR", "/nonexistent/videoassess-config")
    with pytest.raises(ValueError, match="Config directory not found"):
        load_all_configs()


def test_load_default_configs_integration():
    """The shipped default.yaml carries a grading section."""
    project_root = os.path.dirname(os.path.dirname(__file__))
    default_config_path = os.path.join(project_root, "config", "default.yaml")

    if os.path.exists(default_config_path):
        config = load_default_configs()
        assert isinstance(config, dict)
        assert get_config("grading.weights.teacher", config) == 80
        assert len(get_config("grading.fairness_bonus.scale", config)) == 6
        assert get_config("logging.level", config) == "INFO"
