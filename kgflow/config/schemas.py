"""
Configuration Schemas for kgflow.

Pydantic models for engine settings.

Security:
    The receipt signing key uses SecretStr to prevent accidental logging.
    Access the value with `.get_secret_value()`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EngineSettings(BaseModel):
    """
    Engine settings model.

    Built by ``get_settings()`` from the project file and ``KGFLOW_*``
    environment variables, or constructed directly in tests.
    """

    # Locations
    graph_dir: Path = Field(default=Path("graph"), description="Directory of Turtle files")
    durable_dir: Path = Field(default=Path(".kgflow"), description="Durable I/O root")
    git_dir: Path | None = Field(
        default=None,
        description="Git repository holding the durable refs and blobs (default: <durable_dir>/git)",
    )
    uri_roots: dict[str, Path] = Field(
        default_factory=dict,
        description="Extra URI prefix to filesystem root mappings (graph:// is implicit)",
    )

    # Logging
    log_level: str = "INFO"

    # Time override (ISO 8601) for deterministic runs
    now: str | None = None

    # Timeouts
    step_timeout_s: float = Field(default=30.0, gt=0)
    workflow_timeout_s: float = Field(default=300.0, gt=0)

    # Locks
    lock_ttl_ms: int = Field(default=60_000, ge=1)
    lock_deadline_ms: int = Field(default=30_000, ge=0)

    # Workers and hooks
    worker_count: int = Field(default=4, ge=1)
    hook_interval_s: float = Field(default=5.0, gt=0)
    stranded_grace_s: float = Field(default=300.0, ge=0)

    # Templates
    strict_templates: bool = False

    # Receipts
    receipt_signing_key: SecretStr | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    def resolved_uri_roots(self) -> dict[str, Path]:
        """URI roots including the implicit ``graph://`` mapping."""
        return {"graph://": self.graph_dir, **self.uri_roots}

    class Config:
        extra = "ignore"
