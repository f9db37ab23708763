"""Once-only remote environment bootstrap.

Before the first job can run, the workspace must be archived and uploaded and
the remote project must exist. ``EnvironmentBootstrap`` makes that happen
exactly once per coordinator, however many dispatch requests arrive at the
same time:

    .. code-block:: text

        ensure_ready()  ensure_ready()  ensure_ready()
              │               │               │
              ▼               │               │
        claim (CAS under      │               │
        threading.Lock) ──────┼── lost ───────┤
              │               │               │
        create task ──▶ initializer()         │
              │               │               │
              └──── await shield(task) ◀──────┘
                          │
                 Environment | BootstrapError (same for all)

A failed bootstrap is permanent: the state stays ``FAILED`` and every later
call raises the stored ``BootstrapError`` without retrying.

``EnvironmentProvisioner`` is the production initializer.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path

from gridrun.core.errors import BootstrapError
from gridrun.core.logging import get_logger
from gridrun.core.settings import GridSettings
from gridrun.packaging.archive import build_workspace_archive
from gridrun.packaging.revision import latest_revision, project_name
from gridrun.runtimes._types import ArchiveStore, Environment, JobProvider, ProjectSpec
from gridrun.runtimes.buildspec import render_buildspec

logger = get_logger(__name__)

Initializer = Callable[[], Awaitable[Environment]]


class EnvironmentState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class EnvironmentBootstrap:
    """Runs ``initializer`` once and shares its outcome with every caller."""

    def __init__(self, initializer: Initializer) -> None:
        self._initializer = initializer
        self._state = EnvironmentState.UNINITIALIZED
        self._claim_lock = threading.Lock()
        self._task: asyncio.Task[Environment] | None = None
        self._environment: Environment | None = None
        self._error: BootstrapError | None = None
        self.attempts = 0

    @property
    def state(self) -> EnvironmentState:
        return self._state

    @property
    def failed(self) -> bool:
        return self._state is EnvironmentState.FAILED

    @property
    def error(self) -> BootstrapError | None:
        return self._error

    @property
    def environment(self) -> Environment | None:
        return self._environment

    def _claim(self) -> bool:
        """Atomically move UNINITIALIZED → INITIALIZING; True for the winner."""
        with self._claim_lock:
            if self._state is not EnvironmentState.UNINITIALIZED:
                return False
            self._state = EnvironmentState.INITIALIZING
            return True

    async def ensure_ready(self) -> Environment:
        """Return the ready environment, initializing it on first use.

        Raises:
            BootstrapError: initialization failed (now or earlier).
        """
        if self._state is EnvironmentState.READY and self._environment is not None:
            return self._environment
        if self._state is EnvironmentState.FAILED and self._error is not None:
            raise self._error

        if self._claim():
            self._task = asyncio.get_running_loop().create_task(
                self._initialize(), name="gridrun-bootstrap",
            )
        assert self._task is not None
        return await asyncio.shield(self._task)

    async def _initialize(self) -> Environment:
        self.attempts += 1
        try:
            logger.info("bootstrap.started")
            environment = await self._initializer()
        except asyncio.CancelledError:
            self._fail(BootstrapError("Environment bootstrap was cancelled"))
            raise
        except BootstrapError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            error = BootstrapError(f"Environment bootstrap failed: {exc}", cause=exc)
            self._fail(error)
            raise error from exc

        self._environment = environment
        self._state = EnvironmentState.READY
        logger.info(
            "bootstrap.ready",
            project=environment.project.name,
            revision=environment.revision,
            source_location=environment.source_location,
        )
        return environment

    def _fail(self, error: BootstrapError) -> None:
        self._error = error
        self._state = EnvironmentState.FAILED
        logger.error("bootstrap.failed", **error.to_dict())


class EnvironmentProvisioner:
    """Archive, upload and provision: the default bootstrap initializer.

    Steps:
        1. resolve the source revision of the workspace (git)
        2. derive the project name ``{host}-tests-{revision}``
        3. zip the workspace and upload it through the ``ArchiveStore``
        4. find or create the remote project with the project-level buildspec
    """

    def __init__(
        self,
        settings: GridSettings,
        provider: JobProvider,
        store: ArchiveStore,
        *,
        resolve_revision: Callable[[Path], str] = latest_revision,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.store = store
        self._resolve_revision = resolve_revision

    async def __call__(self) -> Environment:
        settings = self.settings
        revision = await asyncio.to_thread(self._resolve_revision, settings.workspace)
        name = project_name(settings.test_host, revision)

        archive = await asyncio.to_thread(
            build_workspace_archive,
            settings.workspace,
            settings.archive_include,
            prefix=f"{name}-",
        )
        key = f"{settings.archive_prefix}{archive.name}"
        try:
            source_location = await self.store.put_archive(key, archive)
        finally:
            archive.unlink(missing_ok=True)

        spec = ProjectSpec(
            name=name,
            buildspec=render_buildspec(settings),
            image=settings.image,
            compute_type=settings.compute_type,
            environment_type=settings.environment_type,
            service_role_arn=settings.service_role_arn or "",
            cache_location=f"{settings.bucket}/test/cache" if settings.bucket else None,
            log_group=settings.log_group,
        )
        project = await self.provider.ensure_project(spec)
        return Environment(
            project=project,
            source_location=source_location,
            revision=revision,
            archive_key=key,
        )
