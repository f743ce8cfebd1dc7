"""
Tests for the YAML configuration cascade.

Run with: pytest tests/test_config_tools.py -v
"""

import pytest
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from tdd_workflow_server.config_tools import (
    _get_global_config_path,
    _get_project_config_path,
    _deep_merge,
    _load_yaml,
    _validate_config,
    config_get_effective,
    config_get_paths,
    DEFAULT_CONFIG,
    PLATFORM_DIRS,
)


@pytest.fixture
def home(tmp_path):
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    with patch("tdd_workflow_server.config_tools.Path.home", return_value=home_dir):
        yield home_dir


@pytest.fixture
def project(tmp_path):
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    return project_dir


def write_config(base: Path, text: str, platform_dir: str = ".claude") -> Path:
    path = base / platform_dir / "tdd-workflow.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestConfigPaths:
    """Config files are looked up across platform directories."""

    def test_global_prefers_claude(self, home):
        write_config(home, "max_attempts: 4", ".claude")
        write_config(home, "max_attempts: 5", ".copilot")
        assert ".claude" in str(_get_global_config_path())

    def test_global_falls_back_to_gemini(self, home):
        write_config(home, "max_attempts: 4", ".gemini")
        assert ".gemini" in str(_get_global_config_path())

    def test_project_defaults_to_claude(self, project):
        result = _get_project_config_path(str(project))
        assert result == project / ".claude" / "tdd-workflow.yaml"
        assert not result.exists()

    def test_platform_order(self):
        assert PLATFORM_DIRS == [".claude", ".copilot", ".gemini"]


class TestConfigCascade:
    """Defaults, then global, then project."""

    def test_defaults_only(self, home, project):
        result = config_get_effective(str(project))

        assert result["config"] == DEFAULT_CONFIG
        assert result["sources"] == []
        assert result["warnings"] == []
        assert result["has_global"] is False
        assert result["has_project"] is False

    def test_project_overrides_global(self, home, project):
        write_config(home, "max_attempts: 4\nbranch_prefix: feature/\n")
        write_config(project, "max_attempts: 6\n", ".copilot")

        result = config_get_effective(str(project))

        assert result["config"]["max_attempts"] == 6
        assert result["config"]["branch_prefix"] == "feature/"
        assert len(result["sources"]) == 2
        assert result["has_global"] and result["has_project"]

    def test_nested_merge_keeps_siblings(self, home, project):
        write_config(project, "logging:\n  level: DEBUG\n")

        config = config_get_effective(str(project))["config"]

        assert config["logging"]["level"] == "DEBUG"
        assert config["abort"]["policy"] == "archive"

    def test_defaults_not_mutated(self, home, project):
        write_config(project, "abort:\n  policy: delete\n")
        config_get_effective(str(project))
        assert DEFAULT_CONFIG["abort"]["policy"] == "archive"

    def test_unknown_key_warns(self, home, project):
        write_config(project, "max_attempt: 4\n")
        warnings = config_get_effective(str(project))["warnings"]
        assert "Unknown config key: 'max_attempt'" in warnings

    def test_invalid_max_attempts_falls_back(self, home, project):
        write_config(project, "max_attempts: 0\n")
        result = config_get_effective(str(project))

        assert result["config"]["max_attempts"] == 3
        assert any("max_attempts" in w for w in result["warnings"])

    def test_invalid_abort_policy_falls_back(self, home, project):
        write_config(project, "abort:\n  policy: shred\n")
        result = config_get_effective(str(project))

        assert result["config"]["abort"]["policy"] == "archive"
        assert any("abort.policy" in w for w in result["warnings"])

    def test_scalar_section_falls_back(self, home, project):
        write_config(project, "abort: delete\nlogging: DEBUG\n")
        result = config_get_effective(str(project))

        assert result["config"]["abort"] == {"policy": "archive"}
        assert result["config"]["logging"] == {"level": "INFO"}
        assert any("'abort'" in w for w in result["warnings"])

    @pytest.mark.parametrize("text, key", [
        ("lock_timeout: soon\n", "lock_timeout"),
        ("lock_timeout: true\n", "lock_timeout"),
        ("state_file: 42\n", "state_file"),
        ("history_file: ''\n", "history_file"),
        ("branch_prefix: [tdd]\n", "branch_prefix"),
        ("default_tag: null\n", "default_tag"),
    ])
    def test_wrong_type_falls_back(self, home, project, text, key):
        write_config(project, text)
        result = config_get_effective(str(project))

        assert result["config"][key] == DEFAULT_CONFIG[key]
        assert any(f"Invalid value for '{key}'" in w for w in result["warnings"])

    def test_log_level_normalized(self, home, project):
        write_config(project, "logging:\n  level: debug\n")
        assert config_get_effective(str(project))["config"]["logging"]["level"] == "DEBUG"

    def test_invalid_log_level_falls_back(self, home, project):
        write_config(project, "logging:\n  level: verbose\n")
        result = config_get_effective(str(project))

        assert result["config"]["logging"]["level"] == "INFO"
        assert any("logging.level" in w for w in result["warnings"])

    def test_unparseable_yaml_ignored(self, home, project):
        write_config(project, "max_attempts: [unclosed\n")
        result = config_get_effective(str(project))

        assert result["has_project"] is False
        assert result["config"]["max_attempts"] == 3

    def test_resolved_paths(self, home, project):
        write_config(project, "state_file: state/tdd.json\n")
        paths = config_get_paths(str(project))

        assert paths["state_file"] == project / "state" / "tdd.json"
        assert paths["history_file"] == project / ".tasks" / "workflow-history.jsonl"


class TestHelpers:

    def test_deep_merge(self):
        merged = _deep_merge({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"b": 5}})
        assert merged == {"a": {"b": 5, "c": 2}, "d": 3}

    def test_validate_type_mismatch(self):
        warnings = _validate_config({"lock_timeout": "soon"}, DEFAULT_CONFIG)
        assert warnings == ["Invalid type for 'lock_timeout': expected int, got str"]

    def test_validate_accepts_float_for_int(self):
        assert _validate_config({"lock_timeout": 2.5}, DEFAULT_CONFIG) == []

    def test_load_yaml_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        assert _load_yaml(path) is None

    def test_load_yaml_missing(self, tmp_path):
        assert _load_yaml(tmp_path / "missing.yaml") is None
