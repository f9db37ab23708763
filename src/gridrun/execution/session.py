"""Blocking facade over a coordinator running on its own event loop thread.

Test hooks and CLI commands are synchronous, and pytest may call them from
several threads. ``GridSession`` owns a daemon thread running one asyncio
event loop, builds the coordinator inside it, and exposes blocking calls that
marshal onto the loop with ``asyncio.run_coroutine_threadsafe``.

┌──────────────────────────────────────────────────────────────────────┐
│  GridSession                                                          │
│                                                                       │
│   caller thread(s)                 daemon thread "gridrun-loop"       │
│   ─────────────────                ───────────────────────────        │
│   dispatch(sel, id) ──submit──▶    loop.run_forever()                 │
│        │                             └── coordinator.run(sel, id)     │
│        ▼                                    ├── dispatcher.submit     │
│   future.result()  ◀──outcome───────────────┘   poller resolves       │
│                                                                       │
│   close() ──▶ coordinator.close() ──▶ loop.stop() ──▶ thread.join()   │
└──────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Coroutine
from concurrent.futures import Future
from typing import Any, TypeVar

from gridrun.core.logging import get_logger
from gridrun.core.settings import GridSettings
from gridrun.execution.coordinator import GridCoordinator
from gridrun.runtimes._types import Environment, JobHandle, JobOutcome

logger = get_logger(__name__)

T = TypeVar("T")


class GridSession:
    """Runs a ``GridCoordinator`` on a background loop for synchronous callers.

    Example:
        >>> with GridSession(settings=settings) as session:
        ...     outcome = session.dispatch("tests/test_api.py::test_login", inv_id)
    """

    def __init__(
        self,
        coordinator_factory: Callable[[], GridCoordinator] | None = None,
        *,
        settings: GridSettings | None = None,
        name: str = "gridrun-loop",
    ) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name=name)
        self._thread.start()
        self._closed = False

        factory = coordinator_factory or (lambda: GridCoordinator.from_settings(settings))
        try:
            self.coordinator: GridCoordinator = self._call(self._build(factory))
        except BaseException:
            self._stop_loop()
            raise
        logger.debug("session.started", thread=name)

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @staticmethod
    async def _build(factory: Callable[[], GridCoordinator]) -> GridCoordinator:
        return factory()

    def _schedule(self, coro: Coroutine[Any, Any, T]) -> Future[T]:
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def _call(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        return self._schedule(coro).result(timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def ensure_ready(self) -> Environment:
        return self._call(self.coordinator.ensure_ready())

    def submit(self, work_selector: str, invocation_id: str) -> Future[JobOutcome]:
        """Dispatch without blocking; the returned future holds the outcome."""
        return self._schedule(self.coordinator.run(work_selector, invocation_id))

    def dispatch(self, work_selector: str, invocation_id: str) -> JobOutcome:
        """Dispatch and block until the remote job reaches a terminal state."""
        return self.submit(work_selector, invocation_id).result()

    def fetch_logs(self, target: JobOutcome | JobHandle) -> str:
        return self._call(self.coordinator.fetch_logs(target))

    def close(self, timeout: float = 30.0) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._call(self.coordinator.close(), timeout)
        finally:
            self._stop_loop(timeout)
        logger.debug("session.closed")

    def _stop_loop(self, timeout: float = 5.0) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("session.loop_thread_alive")
        else:
            self._loop.close()

    def __enter__(self) -> GridSession:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
