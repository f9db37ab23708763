"""Registry of submitted jobs awaiting a terminal status.

The dispatcher is the only writer adding jobs; the completion poller is the
only writer resolving them. Both go through the registry's ``asyncio.Lock``,
so a poll cycle never sees a half-registered job and a job is never resolved
twice. Resolved jobs move to a read-only completed map that feeds the
aggregate counts the poller logs.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from gridrun.core.errors import BookkeepingViolation, GridError, SubmissionError
from gridrun.runtimes._types import JobHandle, JobOutcome, JobStatus, _utcnow


@dataclass
class PendingJob:
    """A submitted job and the future its caller awaits."""

    handle: JobHandle
    completion: asyncio.Future[JobOutcome]
    outcome: JobOutcome | None = None
    resolved_at: datetime | None = field(default=None)

    @property
    def job_id(self) -> str:
        return self.handle.job_id

    @property
    def invocation_id(self) -> str:
        return self.handle.invocation_id

    @property
    def work_selector(self) -> str:
        return self.handle.work_selector

    @property
    def submitted_at(self) -> datetime:
        return self.handle.submitted_at

    @property
    def resolved(self) -> bool:
        return self.resolved_at is not None


@dataclass(frozen=True)
class PendingCounts:
    total: int
    completed: int
    in_progress: int


class PendingJobs:
    """Live and completed jobs, keyed by provider job id."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self._live: dict[str, PendingJob] = {}
        self._completed: dict[str, PendingJob] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._live)

    def get(self, job_id: str) -> PendingJob | None:
        return self._live.get(job_id) or self._completed.get(job_id)

    @property
    def completed(self) -> dict[str, PendingJob]:
        return dict(self._completed)

    def counts(self) -> PendingCounts:
        completed = len(self._completed)
        in_progress = len(self._live)
        return PendingCounts(total=completed + in_progress, completed=completed, in_progress=in_progress)

    async def add(self, handle: JobHandle, completion: asyncio.Future[JobOutcome]) -> PendingJob:
        async with self.lock:
            if self._closed:
                raise SubmissionError(
                    "coordinator closed",
                    context={"job_id": handle.job_id, "invocation_id": handle.invocation_id},
                )
            if handle.job_id in self._live or handle.job_id in self._completed:
                raise BookkeepingViolation(
                    f"Job {handle.job_id} registered twice",
                    context={"job_id": handle.job_id},
                )
            job = PendingJob(handle=handle, completion=completion)
            self._live[handle.job_id] = job
            return job

    async def snapshot(self) -> list[str]:
        """Ids of all unresolved jobs, in submission order."""
        async with self.lock:
            return list(self._live)

    async def resolve_many(self, statuses: Iterable[JobStatus]) -> list[PendingJob]:
        """Resolve every job with a terminal status; return the newly resolved.

        Unknown or already resolved job ids are ignored.
        """
        resolved: list[PendingJob] = []
        async with self.lock:
            for status in statuses:
                if not status.terminal:
                    continue
                job = self._live.pop(status.job_id, None)
                if job is None:
                    continue
                outcome = JobOutcome(handle=job.handle, status=status)
                job.outcome = outcome
                job.resolved_at = outcome.resolved_at
                self._completed[job.job_id] = job
                if not job.completion.done():
                    job.completion.set_result(outcome)
                resolved.append(job)
        return resolved

    async def fail_all(self, error: GridError) -> int:
        """Fail every unresolved future with ``error``; return how many.

        The registry is closed afterwards: later ``add`` calls are refused.
        """
        async with self.lock:
            self._closed = True
            jobs = list(self._live.values())
            self._live.clear()
            for job in jobs:
                job.resolved_at = _utcnow()
                self._completed[job.job_id] = job
                if not job.completion.done():
                    job.completion.set_exception(error)
        return len(jobs)
