"""Completion poller — reconciles pending jobs with the provider.

A single recurring task per coordinator: sleep ``initial_delay``, then run a
cycle every ``interval`` until stopped at shutdown.

Each cycle:
    1. snapshot the unresolved job ids under the registry lock
    2. query them in batches of at most ``batch_size`` (capped by the
       provider's ``max_status_batch``)
    3. resolve every job reported terminal and release its admission token
    4. log total / completed / in_progress / completed_this_poll

A failing batch is logged and counted; its jobs stay pending for the next
cycle, and later batches of the same cycle still run. An exception escaping a
cycle is logged and the loop carries on.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass

from gridrun.core.errors import BookkeepingViolation
from gridrun.core.logging import get_logger
from gridrun.execution.pending import PendingJobs
from gridrun.execution.semaphore import AsyncSemaphore
from gridrun.runtimes._types import JobProvider

logger = get_logger(__name__)


@dataclass(frozen=True)
class PollSummary:
    """Aggregate counts of one poll cycle."""

    total: int = 0
    completed: int = 0
    in_progress: int = 0
    completed_this_poll: int = 0
    batches: int = 0
    failed_batches: int = 0


class CompletionPoller:
    def __init__(
        self,
        *,
        provider: JobProvider,
        pending: PendingJobs,
        semaphore: AsyncSemaphore,
        initial_delay: float = 90.0,
        interval: float = 10.0,
        batch_size: int = 100,
    ) -> None:
        self.provider = provider
        self.pending = pending
        self.semaphore = semaphore
        self.initial_delay = initial_delay
        self.interval = interval
        self.batch_size = max(1, min(batch_size, provider.max_status_batch))
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def started(self) -> bool:
        return self._task is not None

    def start(self) -> bool:
        """Start the polling task; True only for the call that started it.

        A stopped poller never restarts.
        """
        if self._task is not None or self._stopped:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="gridrun-poller")
        logger.debug("poller.started", initial_delay=self.initial_delay, interval=self.interval)
        return True

    async def stop(self) -> None:
        self._stopped = True
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        logger.debug("poller.stopped", cycles=self.cycles)

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("poller.cycle_failed")
            await asyncio.sleep(self.interval)

    async def poll_once(self) -> PollSummary:
        """Run one reconciliation cycle."""
        self.cycles += 1
        job_ids = await self.pending.snapshot()
        if not job_ids:
            counts = self.pending.counts()
            return PollSummary(total=counts.total, completed=counts.completed)

        batches = [
            job_ids[start:start + self.batch_size]
            for start in range(0, len(job_ids), self.batch_size)
        ]
        failed_batches = 0
        completed_this_poll = 0
        for index, batch in enumerate(batches):
            try:
                statuses = await self.provider.batch_get_status(batch)
            except Exception as exc:
                failed_batches += 1
                logger.warning(
                    "poller.batch_failed",
                    batch=index, size=len(batch), error=str(exc),
                )
                continue

            resolved = await self.pending.resolve_many(statuses)
            for job in resolved:
                completed_this_poll += 1
                logger.info(
                    "poller.job_completed",
                    job_id=job.job_id,
                    invocation_id=job.invocation_id,
                    state=job.outcome.state.value if job.outcome else None,
                )
                try:
                    await self.semaphore.release()
                except BookkeepingViolation:
                    logger.error("poller.token_release_failed", job_id=job.job_id)

        counts = self.pending.counts()
        summary = PollSummary(
            total=counts.total,
            completed=counts.completed,
            in_progress=counts.in_progress,
            completed_this_poll=completed_this_poll,
            batches=len(batches),
            failed_batches=failed_batches,
        )
        logger.info("poller.cycle", **asdict(summary))
        return summary
