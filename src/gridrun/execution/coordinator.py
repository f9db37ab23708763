"""GridCoordinator — the remote job dispatch coordinator.

Owns one instance of each moving part and their lifecycle. Nothing is a
process-wide global: a test process can build as many coordinators as it
likes, each with its own collaborators.

Architecture:

    .. code-block:: text

        GridCoordinator
        ├── AsyncSemaphore(settings.concurrency)
        ├── EnvironmentBootstrap(EnvironmentProvisioner | initializer)
        ├── PendingJobs
        ├── CompletionPoller(provider, pending, semaphore)
        ├── Dispatcher(provider, bootstrap, semaphore, pending, poller)
        └── collaborators: JobProvider, ArchiveStore, LogSource

Usage:

    .. code-block:: python

        async with GridCoordinator.from_settings(settings) as coordinator:
            outcome = await coordinator.run("tests/test_api.py::test_login", inv_id)
            if not outcome.succeeded:
                print(await coordinator.fetch_logs(outcome))

Tags:
    gridrun, execution, coordinator, lifecycle, dependency-injection
"""

from __future__ import annotations

import asyncio
from typing import Any

from botocore.exceptions import BotoCoreError

from gridrun.core.errors import ConfigError, SubmissionError
from gridrun.core.logging import get_logger
from gridrun.core.settings import GridSettings, get_settings
from gridrun.execution.bootstrap import (
    EnvironmentBootstrap,
    EnvironmentProvisioner,
    EnvironmentState,
    Initializer,
)
from gridrun.execution.dispatcher import Dispatcher
from gridrun.execution.pending import PendingJobs
from gridrun.execution.poller import CompletionPoller, PollSummary
from gridrun.execution.semaphore import AsyncSemaphore
from gridrun.runtimes._types import (
    ArchiveStore,
    Environment,
    JobHandle,
    JobOutcome,
    JobProvider,
    LogSource,
)
from gridrun.runtimes.codebuild import CodeBuildProvider
from gridrun.runtimes.logs import CloudWatchLogSource
from gridrun.runtimes.storage import S3ArchiveStore

logger = get_logger(__name__)


class GridCoordinator:
    """Explicitly constructed, explicitly closed dispatch coordinator."""

    def __init__(
        self,
        settings: GridSettings,
        *,
        provider: JobProvider,
        store: ArchiveStore,
        log_source: LogSource,
        initializer: Initializer | None = None,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.store = store
        self.log_source = log_source

        self.semaphore = AsyncSemaphore(settings.concurrency)
        self.pending = PendingJobs()
        self.bootstrap = EnvironmentBootstrap(
            initializer or EnvironmentProvisioner(settings, provider, store),
        )
        self.poller = CompletionPoller(
            provider=provider,
            pending=self.pending,
            semaphore=self.semaphore,
            initial_delay=settings.poll_initial_delay_seconds,
            interval=settings.poll_interval_seconds,
            batch_size=settings.status_batch_size,
        )
        self.dispatcher = Dispatcher(
            settings=settings,
            provider=provider,
            bootstrap=self.bootstrap,
            semaphore=self.semaphore,
            pending=self.pending,
            poller=self.poller,
        )
        self._closed = False

    @classmethod
    def from_settings(cls, settings: GridSettings | None = None) -> GridCoordinator:
        """Wire the AWS adapters (CodeBuild, S3, CloudWatch Logs).

        Raises:
            ConfigError: bucket, service role or log group missing, or the
                AWS clients cannot be created (e.g. no region configured).
        """
        settings = settings or get_settings()
        missing = settings.missing_remote_settings()
        if missing:
            raise ConfigError(
                f"Remote dispatch needs {', '.join(missing)}",
                context={"missing": missing},
            )
        assert settings.bucket is not None and settings.log_group is not None
        try:
            provider = CodeBuildProvider(region=settings.region)
            store = S3ArchiveStore(
                settings.bucket,
                region=settings.region,
                expiry_days=settings.archive_expiry_days,
            )
            log_source = CloudWatchLogSource(
                log_group=settings.log_group,
                max_pages=settings.max_log_pages,
                page_size=settings.log_page_size,
                region=settings.region,
            )
        except BotoCoreError as exc:
            raise ConfigError(f"Cannot create AWS clients: {exc}", cause=exc) from exc
        return cls(settings, provider=provider, store=store, log_source=log_source)

    # --- State ------------------------------------------------------------

    @property
    def state(self) -> EnvironmentState:
        return self.bootstrap.state

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Operations -------------------------------------------------------

    async def ensure_ready(self) -> Environment:
        return await self.bootstrap.ensure_ready()

    async def submit(self, work_selector: str, invocation_id: str) -> asyncio.Future[JobOutcome]:
        return await self.dispatcher.submit(work_selector, invocation_id)

    async def run(self, work_selector: str, invocation_id: str) -> JobOutcome:
        return await self.dispatcher.run(work_selector, invocation_id)

    async def poll_once(self) -> PollSummary:
        return await self.poller.poll_once()

    async def fetch_logs(self, target: JobOutcome | JobHandle) -> str:
        """Build-phase log of a finished job."""
        handle = target.handle if isinstance(target, JobOutcome) else target
        return await self.log_source.fetch_logs(handle)

    async def close(self) -> None:
        """Stop polling, fail outstanding futures, close every client."""
        if self._closed:
            return
        self._closed = True
        self.dispatcher.close()
        await self.poller.stop()
        failed = await self.pending.fail_all(SubmissionError("coordinator closed"))

        for name, client in (
            ("provider", self.provider),
            ("store", self.store),
            ("log_source", self.log_source),
        ):
            try:
                await client.close()
            except Exception as exc:
                logger.warning("coordinator.close_failed", client=name, error=str(exc))

        logger.info(
            "coordinator.closed",
            failed_pending=failed,
            submitted=self.dispatcher.submitted,
            state=self.state.value,
        )

    async def __aenter__(self) -> GridCoordinator:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
