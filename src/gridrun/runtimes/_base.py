"""Base job provider with shared lifecycle logic, plus in-memory doubles.

Provides ``BaseJobProvider`` (logging + error wrapping around the
provider-specific ``_do_*`` hooks) and the in-memory ``StubJobProvider``,
``InMemoryArchiveStore`` and ``StubLogSource`` used by the test-suite.

Architecture:

    .. code-block:: text

        JobProvider (Protocol)
              │
              ▼
        BaseJobProvider (Abstract Base)
        ├── ensure_project() → logging + BootstrapError   → _do_ensure_project()
        ├── start_job()      → logging + SubmissionError  → _do_start_job()
        ├── batch_get_status() → size guard + StatusQueryError → _do_batch_get_status()
        └── close()          → non-fatal                  → _do_close()
              │
        ┌─────┴─────────────────────┐
        │                           │
        ▼                           ▼
    CodeBuildProvider          StubJobProvider
    (boto3)                    (in-memory for tests)

Usage:
    # In tests:
    provider = StubJobProvider()
    handle = await provider.start_job(request)
    provider.finish(handle.job_id, JobState.FAILED)
    [status] = await provider.batch_get_status([handle.job_id])
    assert status.terminal

Tags:
    gridrun, runtimes, base, abstract, provider-ABC, test-doubles

Doc-Types:
    api-reference
"""

from __future__ import annotations

import itertools
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from gridrun.core.errors import BootstrapError, GridError, StatusQueryError, SubmissionError
from gridrun.core.logging import get_logger
from gridrun.runtimes._types import (
    JobHandle,
    JobRequest,
    JobState,
    JobStatus,
    ProjectRef,
    ProjectSpec,
    _utcnow,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Base provider
# ---------------------------------------------------------------------------

class BaseJobProvider:
    """Base class for job providers with shared lifecycle logic.

    Subclasses MUST implement:
        _do_ensure_project, _do_start_job, _do_batch_get_status

    Subclasses MAY override:
        _do_close (default: nothing to close)
        max_status_batch (default: 100)

    .. code-block:: text

        start_job(request)
          ├── log: "provider.start_job"
          ├── _do_start_job(request)  ← subclass implements
          ├── log: "provider.job_started"
          └── on error: wrap in SubmissionError

        batch_get_status(ids)
          ├── len(ids) > max_status_batch → ValueError (caller bug)
          ├── _do_batch_get_status(ids)   ← subclass implements
          └── on error: wrap in StatusQueryError (retryable)
    """

    @property
    def runtime_name(self) -> str:
        """Unique name for this provider."""
        raise NotImplementedError

    @property
    def max_status_batch(self) -> int:
        """Largest id list accepted by one status query."""
        return 100

    async def ensure_project(self, spec: ProjectSpec) -> ProjectRef:
        """Find or create the remote project."""
        logger.info("provider.ensure_project", provider=self.runtime_name, project=spec.name)
        try:
            ref = await self._do_ensure_project(spec)
        except GridError:
            raise
        except Exception as exc:
            logger.error(
                "provider.ensure_project_failed",
                provider=self.runtime_name, project=spec.name, error=str(exc),
            )
            raise BootstrapError(
                f"Could not provision project {spec.name}: {exc}",
                cause=exc,
                context={"project": spec.name, "provider": self.runtime_name},
            ) from exc
        logger.info(
            "provider.project_ready",
            provider=self.runtime_name, project=ref.name, created=ref.created,
        )
        return ref

    async def start_job(self, request: JobRequest) -> JobHandle:
        """Start one job with logging and error wrapping."""
        logger.debug(
            "provider.start_job",
            provider=self.runtime_name,
            project=request.project.name,
            work_selector=request.work_selector,
        )
        try:
            handle = await self._do_start_job(request)
        except GridError:
            raise
        except Exception as exc:
            logger.error(
                "provider.start_job_failed",
                provider=self.runtime_name,
                work_selector=request.work_selector,
                error=str(exc),
            )
            raise SubmissionError(
                f"Submit failed for {request.work_selector}: {exc}",
                cause=exc,
                context={
                    "work_selector": request.work_selector,
                    "invocation_id": request.invocation_id,
                },
            ) from exc
        logger.info(
            "provider.job_started",
            provider=self.runtime_name, job_id=handle.job_id,
            work_selector=request.work_selector,
        )
        return handle

    async def batch_get_status(self, job_ids: Sequence[str]) -> list[JobStatus]:
        """Query the status of up to ``max_status_batch`` jobs."""
        if len(job_ids) > self.max_status_batch:
            raise ValueError(
                f"{len(job_ids)} job ids exceed the status batch limit "
                f"of {self.max_status_batch}"
            )
        if not job_ids:
            return []
        try:
            return await self._do_batch_get_status(list(job_ids))
        except GridError:
            raise
        except Exception as exc:
            raise StatusQueryError(
                f"Status query for {len(job_ids)} jobs failed: {exc}",
                cause=exc,
                context={"batch_size": len(job_ids)},
            ) from exc

    async def close(self) -> None:
        """Release provider connections. Idempotent, never raises."""
        try:
            await self._do_close()
        except Exception as exc:
            logger.warning("provider.close_failed", provider=self.runtime_name, error=str(exc))

    # --- Abstract methods for subclasses ---

    async def _do_ensure_project(self, spec: ProjectSpec) -> ProjectRef:
        raise NotImplementedError

    async def _do_start_job(self, request: JobRequest) -> JobHandle:
        raise NotImplementedError

    async def _do_batch_get_status(self, job_ids: list[str]) -> list[JobStatus]:
        raise NotImplementedError

    async def _do_close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Stub provider for testing
# ---------------------------------------------------------------------------

@dataclass
class _StubJob:
    """Internal state for a stubbed job."""

    request: JobRequest
    handle: JobHandle
    state: JobState = JobState.IN_PROGRESS
    status_queries: int = 0
    finished_at: datetime | None = None


class StubJobProvider(BaseJobProvider):
    """In-memory job provider for unit tests.

    Jobs stay ``IN_PROGRESS`` until :meth:`finish` is called or, with
    ``auto_complete_after=N``, until they have been seen by N status
    queries, after which they report ``auto_state``.

    Inject failures:
        provider.fail_submit = True        → start_job() raises SubmissionError
        provider.fail_status_batches = {0} → the first status query raises
        provider.fail_ensure_project = True

    Track usage:
        provider.started        → JobHandles in submission order
        provider.status_calls   → batch sizes of each status query
        provider.max_in_flight  → high-water mark of non-terminal jobs
    """

    def __init__(
        self,
        *,
        auto_complete_after: int | None = None,
        auto_state: JobState = JobState.SUCCEEDED,
        max_status_batch: int = 100,
    ) -> None:
        self.auto_complete_after = auto_complete_after
        self.auto_state = auto_state
        self._max_status_batch = max_status_batch
        self._ids = itertools.count(1)

        self.jobs: dict[str, _StubJob] = {}
        self.projects: dict[str, ProjectSpec] = {}
        self.started: list[JobHandle] = []
        self.status_calls: list[int] = []
        self.max_in_flight: int = 0
        self.closed: bool = False

        # Inject failures
        self.fail_submit: bool = False
        self.fail_ensure_project: bool = False
        self.fail_status_batches: set[int] = set()

    @property
    def runtime_name(self) -> str:
        return "stub"

    @property
    def max_status_batch(self) -> int:
        return self._max_status_batch

    @property
    def in_flight(self) -> int:
        return sum(1 for job in self.jobs.values() if not job.state.is_terminal)

    def finish(self, job_id: str, state: JobState = JobState.SUCCEEDED) -> None:
        """Move a job to a terminal state."""
        job = self.jobs[job_id]
        job.state = state
        job.finished_at = _utcnow()

    def finish_all(self, state: JobState = JobState.SUCCEEDED) -> None:
        for job_id, job in self.jobs.items():
            if not job.state.is_terminal:
                self.finish(job_id, state)

    async def _do_ensure_project(self, spec: ProjectSpec) -> ProjectRef:
        if self.fail_ensure_project:
            raise RuntimeError("Stub: ensure_project failure injected")
        created = spec.name not in self.projects
        self.projects[spec.name] = spec
        return ProjectRef(name=spec.name, arn=f"arn:stub:project/{spec.name}", created=created)

    async def _do_start_job(self, request: JobRequest) -> JobHandle:
        if self.fail_submit:
            raise RuntimeError("Stub: submit failure injected")
        job_id = f"{request.project.name}:stub-{next(self._ids):04d}"
        handle = JobHandle(
            job_id=job_id,
            project=request.project.name,
            work_selector=request.work_selector,
            invocation_id=request.invocation_id,
        )
        self.jobs[job_id] = _StubJob(request=request, handle=handle)
        self.started.append(handle)
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        return handle

    async def _do_batch_get_status(self, job_ids: list[str]) -> list[JobStatus]:
        call_index = len(self.status_calls)
        self.status_calls.append(len(job_ids))
        if call_index in self.fail_status_batches:
            raise RuntimeError(f"Stub: status failure injected for call {call_index}")

        statuses = []
        for job_id in job_ids:
            job = self.jobs.get(job_id)
            if job is None:
                continue
            job.status_queries += 1
            if (
                self.auto_complete_after is not None
                and not job.state.is_terminal
                and job.status_queries >= self.auto_complete_after
            ):
                self.finish(job_id, self.auto_state)
            statuses.append(JobStatus(
                job_id=job_id,
                state=job.state,
                terminal=job.state.is_terminal,
                log_stream=job.handle.log_stream,
            ))
        return statuses

    async def _do_close(self) -> None:
        self.closed = True


class InMemoryArchiveStore:
    """Archive store keeping uploads in a dict (for tests)."""

    def __init__(self, *, bucket: str = "stub-bucket") -> None:
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
        self.fail_put: bool = False
        self.closed: bool = False

    async def put_archive(self, key: str, path: Path) -> str:
        if self.fail_put:
            raise RuntimeError("Stub: upload failure injected")
        self.objects[key] = Path(path).read_bytes()
        return f"{self.bucket}/{key}"

    async def close(self) -> None:
        self.closed = True


@dataclass
class StubLogSource:
    """Log source returning canned text per job id (for tests)."""

    logs: dict[str, str] = field(default_factory=dict)
    default: str = ""
    fetched: list[str] = field(default_factory=list)
    closed: bool = False

    async def fetch_logs(self, handle: JobHandle) -> str:
        self.fetched.append(handle.job_id)
        return self.logs.get(handle.job_id, self.default)

    async def close(self) -> None:
        self.closed = True
