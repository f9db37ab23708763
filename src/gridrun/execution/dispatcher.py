"""Dispatcher — submits one unit of work as a remote job.

``submit`` returns as soon as the job is accepted by the provider; the future
it returns is resolved out-of-band by the completion poller.

    .. code-block:: text

        submit(selector, invocation_id)
          ├── refuse if bootstrap FAILED / dispatcher closed
          ├── await bootstrap.ensure_ready()
          ├── await semaphore.acquire()          ← may suspend for minutes
          ├── anti-herding sleep (uniform 0..max)
          ├── JobRequest + per-job buildspec
          ├── provider.start_job()               ← failure releases the token
          ├── pending.add(handle, future)        ← refused once closed, token released
          └── poller.start()                     ← no-op after the first call
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable

from gridrun.core.errors import SubmissionError
from gridrun.core.logging import get_logger
from gridrun.core.settings import GridSettings
from gridrun.execution.bootstrap import EnvironmentBootstrap
from gridrun.execution.pending import PendingJobs
from gridrun.execution.poller import CompletionPoller
from gridrun.execution.semaphore import AsyncSemaphore
from gridrun.runtimes._types import Environment, JobOutcome, JobProvider, JobRequest
from gridrun.runtimes.buildspec import render_buildspec

logger = get_logger(__name__)


class Dispatcher:
    def __init__(
        self,
        *,
        settings: GridSettings,
        provider: JobProvider,
        bootstrap: EnvironmentBootstrap,
        semaphore: AsyncSemaphore,
        pending: PendingJobs,
        poller: CompletionPoller,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.bootstrap = bootstrap
        self.semaphore = semaphore
        self.pending = pending
        self.poller = poller
        self._jitter = jitter
        self._closed = False
        self.submitted = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def build_request(self, environment: Environment, work_selector: str, invocation_id: str) -> JobRequest:
        return JobRequest(
            project=environment.project,
            source_location=environment.source_location,
            work_selector=work_selector,
            invocation_id=invocation_id,
            max_duration_minutes=self.settings.max_duration_minutes,
            buildspec=render_buildspec(self.settings, work_selector, invocation_id),
            env={"GRIDRUN_INVOCATION_ID": invocation_id} if invocation_id else {},
        )

    async def submit(self, work_selector: str, invocation_id: str) -> asyncio.Future[JobOutcome]:
        """Start a remote job; return the future of its outcome.

        Raises:
            BootstrapError: the environment could not be (or was not) initialized.
            SubmissionError: the dispatcher is closed or the provider
                rejected the job.
        """
        if self.bootstrap.failed and self.bootstrap.error is not None:
            raise self.bootstrap.error
        if self._closed:
            raise SubmissionError(
                "coordinator closed",
                context={"work_selector": work_selector, "invocation_id": invocation_id},
            )

        environment = await self.bootstrap.ensure_ready()
        await self.semaphore.acquire()
        try:
            delay = self._jitter(0.0, self.settings.anti_herding_max_seconds)
            if delay > 0:
                await asyncio.sleep(delay)
            if self._closed:
                raise SubmissionError("coordinator closed", context={"work_selector": work_selector})
            request = self.build_request(environment, work_selector, invocation_id)
            handle = await self.provider.start_job(request)
            completion: asyncio.Future[JobOutcome] = asyncio.get_running_loop().create_future()
            try:
                await self.pending.add(handle, completion)
            except SubmissionError:
                logger.warning("dispatcher.job_abandoned", job_id=handle.job_id, work_selector=work_selector)
                raise
        except BaseException:
            await self.semaphore.release()
            raise

        self.submitted += 1
        self.poller.start()
        logger.info(
            "dispatcher.submitted",
            job_id=handle.job_id,
            work_selector=work_selector,
            invocation_id=invocation_id,
            outstanding=self.semaphore.outstanding,
        )
        return completion

    async def run(self, work_selector: str, invocation_id: str) -> JobOutcome:
        """Submit and wait for the terminal outcome."""
        completion = await self.submit(work_selector, invocation_id)
        return await completion

    def close(self) -> None:
        self._closed = True
