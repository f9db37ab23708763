"""Remote job dispatch coordinator.

Architecture:

    .. code-block:: text

        gridrun.execution
        ├── semaphore.py    ← AsyncSemaphore (admission control)
        ├── bootstrap.py    ← EnvironmentBootstrap + EnvironmentProvisioner
        ├── pending.py      ← PendingJob registry
        ├── dispatcher.py   ← Dispatcher.submit / run
        ├── poller.py       ← CompletionPoller
        ├── coordinator.py  ← GridCoordinator (explicit lifecycle)
        └── session.py      ← GridSession (blocking facade, loop thread)
"""

from gridrun.execution.bootstrap import (
    EnvironmentBootstrap,
    EnvironmentProvisioner,
    EnvironmentState,
)
from gridrun.execution.coordinator import GridCoordinator
from gridrun.execution.dispatcher import Dispatcher
from gridrun.execution.pending import PendingCounts, PendingJob, PendingJobs
from gridrun.execution.poller import CompletionPoller, PollSummary
from gridrun.execution.semaphore import AsyncSemaphore
from gridrun.execution.session import GridSession

__all__ = [
    "AsyncSemaphore",
    "CompletionPoller",
    "Dispatcher",
    "EnvironmentBootstrap",
    "EnvironmentProvisioner",
    "EnvironmentState",
    "GridCoordinator",
    "GridSession",
    "PendingCounts",
    "PendingJob",
    "PendingJobs",
    "PollSummary",
]
