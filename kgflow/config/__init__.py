"""
kgflow Configuration

Engine settings from a YAML project file and KGFLOW_* environment variables.
"""

from .schemas import EngineSettings
from .settings import build_settings, env_overrides, get_settings, load_project_file

__all__ = [
    "EngineSettings",
    "build_settings",
    "env_overrides",
    "get_settings",
    "load_project_file",
]
