"""
Centralized settings for gridrun.

Manifesto:
    Every tunable of the dispatch coordinator (concurrency limit, routing
    inputs, poll cadence, remote project shape) is read once from
    ``GRIDRUN_*`` environment variables (or a ``.env`` file) into one
    validated, cached ``GridSettings`` object. Modules never parse the
    environment themselves.

Routing inputs:
    ``GRIDRUN_USE_GRID=1``          this process orchestrates remote dispatch
    ``GRIDRUN_INVOCATION_ID=...``   this process is a remote worker for one
                                    invocation identifier
    neither                         run everything locally

Tags:
    gridrun, configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gridrun.core.logging import get_logger
from gridrun.routing.router import RouterMode

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 1


class GridSettings(BaseSettings):
    """gridrun configuration.

    All fields can be set via ``GRIDRUN_*`` environment variables (e.g.
    ``GRIDRUN_CONCURRENCY=8``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="GRIDRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Routing ──────────────────────────────────────────────────
    use_grid: bool = Field(default=False, description="Dispatch units of work remotely")
    invocation_id: str | None = Field(
        default=None, description="Target invocation identifier for a remote worker",
    )

    # ── Admission control ────────────────────────────────────────
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    anti_herding_max_seconds: float = Field(default=0.5, ge=0)

    # ── Remote jobs ──────────────────────────────────────────────
    max_duration_minutes: int = Field(default=20, ge=5, le=480)
    poll_initial_delay_seconds: float = Field(default=90.0, ge=0)
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    status_batch_size: int = Field(default=100, ge=1, le=100)

    # ── Logs ─────────────────────────────────────────────────────
    max_log_pages: int = Field(default=5, ge=1, description="Log pages fetched per failed job")
    log_page_size: int = Field(default=1000, ge=1, le=10000)

    # ── AWS ──────────────────────────────────────────────────────
    region: str | None = Field(default=None)
    bucket: str | None = Field(default=None, description="S3 bucket for archives and cache")
    service_role_arn: str | None = Field(default=None, description="CodeBuild service role")
    log_group: str | None = Field(default=None, description="CloudWatch log group for builds")

    # ── Remote project ───────────────────────────────────────────
    test_host: str = Field(default="localhost")
    image: str = Field(default="aws/codebuild/amazonlinux2-x86_64-standard:5.0")
    compute_type: str = Field(default="BUILD_GENERAL1_SMALL")
    environment_type: str = Field(default="LINUX_CONTAINER")
    python_version: str = Field(default="3.12")
    passthrough_env: list[str] = Field(default_factory=lambda: ["BROWSER"])
    compose_file: str | None = Field(default="docker-compose.yml")

    # ── Workspace archive ────────────────────────────────────────
    workspace: Path = Field(default_factory=Path.cwd)
    archive_prefix: str = Field(default="test/source/")
    archive_include: list[str] = Field(
        default_factory=lambda: [
            "src",
            "tests",
            "conftest.py",
            "pyproject.toml",
            "setup.cfg",
            "docker-compose.yml",
        ],
    )
    archive_expiry_days: int = Field(default=3, ge=1)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="json, console or auto")

    # ── Computed ─────────────────────────────────────────────────
    config_warnings: list[str] = Field(default_factory=list, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _coerce_concurrency(cls, data: Any) -> Any:
        """Fall back to one concurrent job when the limit is unusable."""
        if not isinstance(data, dict) or "concurrency" not in data:
            return data
        data = dict(data)
        raw = data["concurrency"]
        try:
            value = int(raw)
        except (TypeError, ValueError):
            value = None
        if value is None or value < 1:
            message = (
                f"invalid GRIDRUN_CONCURRENCY [{raw}], "
                f"using {DEFAULT_CONCURRENCY}"
            )
            logger.warning("settings.invalid_concurrency", raw=str(raw), fallback=DEFAULT_CONCURRENCY)
            data["concurrency"] = DEFAULT_CONCURRENCY
            data["config_warnings"] = [*data.get("config_warnings", []), message]
        else:
            data["concurrency"] = value
        return data

    # ── Derived properties ───────────────────────────────────────

    @property
    def routing_mode(self) -> RouterMode:
        """Routing mode selected by ``use_grid`` / ``invocation_id``."""
        if self.use_grid:
            return RouterMode.GRID_CALLER
        if self.invocation_id:
            return RouterMode.GRID_WORKER
        return RouterMode.LOCAL

    @property
    def json_logs(self) -> bool | None:
        """``log_format`` as the ``json_format`` argument of configure_logging."""
        return {"json": True, "console": False}.get(self.log_format.lower())

    def missing_remote_settings(self) -> list[str]:
        """Names of the AWS settings a caller process needs but lacks."""
        required = {
            "GRIDRUN_BUCKET": self.bucket,
            "GRIDRUN_SERVICE_ROLE_ARN": self.service_role_arn,
            "GRIDRUN_LOG_GROUP": self.log_group,
        }
        return [name for name, value in required.items() if not value]

    def forwarded_env(self) -> dict[str, str]:
        """Values of ``passthrough_env`` present in this process."""
        return {
            name: os.environ[name]
            for name in self.passthrough_env
            if name in os.environ
        }


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, GridSettings] = {}


def get_settings(*, _force_reload: bool = False) -> GridSettings:
    """Load, validate, and cache the process-wide :class:`GridSettings`."""
    cache_key = str(Path.cwd())
    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    settings = GridSettings()
    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "DEFAULT_CONCURRENCY",
    "GridSettings",
    "clear_settings_cache",
    "get_settings",
]
