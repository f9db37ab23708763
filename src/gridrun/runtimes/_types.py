"""Job provider types and protocols.

This module defines the boundary between the dispatch coordinator and the
remote services it drives:

- JobProvider: Protocol for provisioning a project, starting jobs and
  batch-querying their status (AWS CodeBuild in production)
- ArchiveStore: Protocol for publishing the workspace archive (S3)
- LogSource: Protocol for reading a finished job's log (CloudWatch Logs)
- JobState / JobStatus / JobOutcome: observed job state
- JobRequest / JobHandle: one submission and its provider receipt
- ProjectSpec / ProjectRef / Environment: the provisioned remote project

Architecture:

    .. code-block:: text

        ┌───────────────────────────────────────────────────────────┐
        │                   _types.py Module Map                     │
        ├───────────────────────────────────────────────────────────┤
        │                                                            │
        │  ProjectSpec ──ensure_project──▶ ProjectRef                │
        │                                     │                      │
        │                                Environment                 │
        │                                     │                      │
        │  JobRequest ──start_job──▶ JobHandle                       │
        │                               │                            │
        │  batch_get_status([job_id]) ──▶ [JobStatus]                │
        │                               │                            │
        │                  terminal ──▶ JobOutcome(status, handle)   │
        │                                                            │
        └───────────────────────────────────────────────────────────┘

Design Notes:
    Providers are async to match the coordinator's event loop. The boto3
    clients behind the concrete adapters are synchronous and are driven
    through ``asyncio.to_thread``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable


def _utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Job state
# ---------------------------------------------------------------------------

class JobState(str, Enum):
    """Remote job states, named after CodeBuild build statuses."""

    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    FAULT = "FAULT"
    TIMED_OUT = "TIMED_OUT"
    STOPPED = "STOPPED"

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.IN_PROGRESS

    @classmethod
    def from_provider(cls, value: str | None) -> JobState:
        """Map a provider status string; unknown values count as in progress."""
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.IN_PROGRESS


@dataclass(frozen=True)
class JobStatus:
    """Status of one job as reported by a batch status query.

    ``terminal`` comes from the provider (CodeBuild's ``buildComplete``) and
    is what the poller trusts; ``state`` says how it ended.
    """

    job_id: str
    state: JobState
    terminal: bool
    log_stream: str | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.terminal and self.state is JobState.SUCCEEDED


# ---------------------------------------------------------------------------
# Project / environment
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProjectSpec:
    """Everything needed to create the remote project if it is missing."""

    name: str
    buildspec: str
    image: str
    compute_type: str
    environment_type: str
    service_role_arn: str
    cache_location: str | None = None
    log_group: str | None = None


@dataclass(frozen=True)
class ProjectRef:
    """A remote project that exists (found or freshly created)."""

    name: str
    arn: str | None = None
    created: bool = False


@dataclass(frozen=True)
class Environment:
    """A ready remote execution environment, produced once by bootstrap."""

    project: ProjectRef
    source_location: str
    revision: str
    archive_key: str | None = None


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class JobRequest:
    """One remote job to start."""

    project: ProjectRef
    source_location: str
    work_selector: str
    invocation_id: str
    max_duration_minutes: int
    buildspec: str
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobHandle:
    """Provider receipt for a started job."""

    job_id: str
    project: str
    work_selector: str
    invocation_id: str
    submitted_at: datetime = field(default_factory=_utcnow)

    @property
    def log_stream(self) -> str:
        """CodeBuild names the log stream after the build id suffix."""
        return self.job_id.rsplit(":", 1)[-1]


@dataclass(frozen=True)
class JobOutcome:
    """Terminal result delivered to the dispatcher's caller."""

    handle: JobHandle
    status: JobStatus
    resolved_at: datetime = field(default_factory=_utcnow)

    @property
    def job_id(self) -> str:
        return self.handle.job_id

    @property
    def state(self) -> JobState:
        return self.status.state

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded

    @property
    def duration_seconds(self) -> float:
        return (self.resolved_at - self.handle.submitted_at).total_seconds()


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class JobProvider(Protocol):
    """Remote build/job service."""

    @property
    def runtime_name(self) -> str: ...

    @property
    def max_status_batch(self) -> int: ...

    async def ensure_project(self, spec: ProjectSpec) -> ProjectRef: ...

    async def start_job(self, request: JobRequest) -> JobHandle: ...

    async def batch_get_status(self, job_ids: Sequence[str]) -> list[JobStatus]: ...

    async def close(self) -> None: ...


@runtime_checkable
class ArchiveStore(Protocol):
    """Durable object storage for the workspace archive."""

    async def put_archive(self, key: str, path: Path) -> str:
        """Upload ``path`` under ``key``; return the source location jobs fetch."""
        ...

    async def close(self) -> None: ...


@runtime_checkable
class LogSource(Protocol):
    """Log aggregation service holding job output."""

    async def fetch_logs(self, handle: JobHandle) -> str: ...

    async def close(self) -> None: ...
