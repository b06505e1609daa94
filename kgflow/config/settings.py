"""
Settings loading for kgflow.

Settings come from two layers, the later overriding the earlier:
1. An optional ``kgflow.yaml`` project file in the working directory
2. ``KGFLOW_*`` environment variables
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from .schemas import EngineSettings

logger = logging.getLogger(__name__)

PROJECT_FILE = "kgflow.yaml"

# Environment variable -> settings field
ENV_FIELDS: dict[str, str] = {
    "KGFLOW_GRAPH_DIR": "graph_dir",
    "KGFLOW_DURABLE_DIR": "durable_dir",
    "KGFLOW_GIT_DIR": "git_dir",
    "KGFLOW_LOG_LEVEL": "log_level",
    "KGFLOW_NOW": "now",
    "KGFLOW_STEP_TIMEOUT": "step_timeout_s",
    "KGFLOW_WORKFLOW_TIMEOUT": "workflow_timeout_s",
    "KGFLOW_LOCK_TTL_MS": "lock_ttl_ms",
    "KGFLOW_LOCK_DEADLINE_MS": "lock_deadline_ms",
    "KGFLOW_WORKERS": "worker_count",
    "KGFLOW_HOOK_INTERVAL": "hook_interval_s",
    "KGFLOW_STRICT_TEMPLATES": "strict_templates",
    "KGFLOW_RECEIPT_KEY": "receipt_signing_key",
}


def load_project_file(path: Path) -> dict[str, Any]:
    """
    Read settings from a YAML project file.

    Returns an empty mapping when the file does not exist. The file may
    nest settings under a top-level ``kgflow`` key.
    """
    if not path.exists():
        return {}

    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")

    if isinstance(data.get("kgflow"), dict):
        data = data["kgflow"]

    logger.debug(f"[config] Loaded project settings from {path}")
    return data


def env_overrides(environ: dict[str, str] | os._Environ[str] | None = None) -> dict[str, Any]:
    """Collect settings overrides from KGFLOW_* environment variables."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for var, field_name in ENV_FIELDS.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        if field_name == "strict_templates":
            overrides[field_name] = value.lower() in ("1", "true", "yes")
        else:
            overrides[field_name] = value
    return overrides


def build_settings(
    project_dir: Path | None = None,
    environ: dict[str, str] | None = None,
) -> EngineSettings:
    """Build settings from the project file and environment without caching."""
    project_dir = project_dir or Path.cwd()
    data = load_project_file(project_dir / PROJECT_FILE)
    data.update(env_overrides(environ))
    return EngineSettings(**data)


@lru_cache()
def get_settings() -> EngineSettings:
    """
    Get engine settings from the project file and environment.

    Uses lru_cache for singleton pattern.
    """
    return build_settings()
