"""
Tests for engine settings: defaults, the project file and environment overrides.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from kgflow.config import EngineSettings, build_settings, env_overrides, load_project_file


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings()
        assert settings.graph_dir == Path("graph")
        assert settings.durable_dir == Path(".kgflow")
        assert settings.step_timeout_s == 30.0
        assert settings.workflow_timeout_s == 300.0
        assert settings.worker_count == 4
        assert settings.now is None
        assert settings.receipt_signing_key is None
        assert settings.git_dir is None

    def test_log_level_is_normalized(self):
        assert EngineSettings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            EngineSettings(log_level="chatty")

    def test_bounds(self):
        with pytest.raises(ValidationError):
            EngineSettings(step_timeout_s=0)
        with pytest.raises(ValidationError):
            EngineSettings(worker_count=0)

    def test_signing_key_is_secret(self):
        settings = EngineSettings(receipt_signing_key="hunter2")
        assert "hunter2" not in repr(settings)
        assert settings.receipt_signing_key.get_secret_value() == "hunter2"

    def test_uri_roots_include_graph(self, tmp_path):
        settings = EngineSettings(graph_dir=tmp_path, uri_roots={"data://": tmp_path / "data"})
        assert settings.resolved_uri_roots() == {"graph://": tmp_path, "data://": tmp_path / "data"}

    def test_unknown_keys_ignored(self):
        assert EngineSettings(colour="blue").worker_count == 4


class TestProjectFile:
    def test_missing_file(self, tmp_path):
        assert load_project_file(tmp_path / "kgflow.yaml") == {}

    def test_nested_under_kgflow_key(self, tmp_path):
        path = tmp_path / "kgflow.yaml"
        path.write_text("kgflow:\n  worker_count: 2\n  graph_dir: kg\n")
        assert load_project_file(path) == {"worker_count": 2, "graph_dir": "kg"}

    def test_flat_file(self, tmp_path):
        path = tmp_path / "kgflow.yaml"
        path.write_text("log_level: warning\n")
        assert load_project_file(path) == {"log_level": "warning"}

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "kgflow.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_project_file(path)


class TestEnvironment:
    def test_overrides(self):
        environ = {
            "KGFLOW_NOW": "2024-01-01T00:00:00Z",
            "KGFLOW_GRAPH_DIR": "/srv/graph",
            "KGFLOW_STRICT_TEMPLATES": "yes",
            "KGFLOW_WORKERS": "",
            "UNRELATED": "x",
        }
        assert env_overrides(environ) == {
            "now": "2024-01-01T00:00:00Z",
            "graph_dir": "/srv/graph",
            "strict_templates": True,
        }

    def test_environment_wins_over_file(self, tmp_path):
        (tmp_path / "kgflow.yaml").write_text("worker_count: 2\nstep_timeout_s: 10\n")
        settings = build_settings(tmp_path, {"KGFLOW_WORKERS": "8", "KGFLOW_RECEIPT_KEY": "k"})
        assert settings.worker_count == 8
        assert settings.step_timeout_s == 10.0
        assert settings.receipt_signing_key.get_secret_value() == "k"

    def test_git_dir_from_environment(self, tmp_path):
        settings = build_settings(tmp_path, {"KGFLOW_GIT_DIR": "/srv/repo"})
        assert settings.git_dir == Path("/srv/repo")

    def test_no_file_no_environment(self, tmp_path):
        assert build_settings(tmp_path, {}) == EngineSettings()
