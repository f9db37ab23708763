"""
Shared pytest fixtures and configuration for gridrun tests.

This module provides:
- Environment isolation (no GRIDRUN_* variable or cached settings leaks
  between tests)
- Fast settings (no poll delay, no anti-herding sleep)
- In-memory collaborators and a coordinator factory
- ``wait_until`` for tests that observe background tasks
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable, Generator
from pathlib import Path
from typing import Any

import pytest

# Ensure gridrun package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from gridrun.core.settings import GridSettings, clear_settings_cache
from gridrun.execution.coordinator import GridCoordinator
from gridrun.runtimes import InMemoryArchiveStore, StubJobProvider, StubLogSource
from gridrun.runtimes._types import Environment, JobRequest, ProjectRef

pytest_plugins = ["pytester"]

PROJECT = "localhost-tests-abc1234"


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Strip GRIDRUN_* variables and clear the settings cache around each test."""
    for name in list(os.environ):
        if name.startswith("GRIDRUN_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Settings / collaborators
# =============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> GridSettings:
    """Settings with every AWS field set and no artificial delays."""
    return GridSettings(
        _env_file=None,
        bucket="test-bucket",
        service_role_arn="arn:aws:iam::123456789012:role/codebuild-tests",
        log_group="/gridrun/tests",
        poll_initial_delay_seconds=0,
        poll_interval_seconds=0.01,
        anti_herding_max_seconds=0,
        workspace=tmp_path,
    )


@pytest.fixture
def environment() -> Environment:
    return Environment(
        project=ProjectRef(name=PROJECT, arn=f"arn:stub:project/{PROJECT}"),
        source_location=f"test-bucket/test/source/{PROJECT}-1.zip",
        revision="abc1234",
        archive_key=f"test/source/{PROJECT}-1.zip",
    )


@pytest.fixture
def job_request() -> Callable[..., JobRequest]:
    """Factory for JobRequests against the stub project."""

    def _make(work_selector: str = "tests/test_a.py::test_x", invocation_id: str = "inv") -> JobRequest:
        return JobRequest(
            project=ProjectRef(name=PROJECT),
            source_location="test-bucket/src.zip",
            work_selector=work_selector,
            invocation_id=invocation_id,
            max_duration_minutes=20,
            buildspec="version: 0.2\n",
        )

    return _make


@pytest.fixture
def make_coordinator(
    settings: GridSettings, environment: Environment,
) -> Callable[..., tuple[GridCoordinator, StubJobProvider]]:
    """Factory building a coordinator over in-memory collaborators.

    Keyword arguments matching ``GridSettings`` fields override settings;
    the rest go to ``StubJobProvider``. Bootstrap resolves to ``environment``
    unless ``initializer`` is given.
    """

    def _make(
        *,
        initializer: Callable[[], Awaitable[Environment]] | None = None,
        log_source: StubLogSource | None = None,
        **overrides: Any,
    ) -> tuple[GridCoordinator, StubJobProvider]:
        setting_overrides = {k: v for k, v in overrides.items() if k in GridSettings.model_fields}
        provider_kwargs = {k: v for k, v in overrides.items() if k not in setting_overrides}

        async def _ready() -> Environment:
            return environment

        provider = StubJobProvider(**provider_kwargs)
        coordinator = GridCoordinator(
            settings.model_copy(update=setting_overrides),
            provider=provider,
            store=InMemoryArchiveStore(),
            log_source=log_source or StubLogSource(),
            initializer=initializer or _ready,
        )
        return coordinator, provider

    return _make


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll ``predicate`` on the running loop until true or timeout."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached before timeout")
            await asyncio.sleep(0.005)

    return _wait
