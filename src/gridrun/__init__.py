"""gridrun — dispatch test cases to ephemeral remote build environments.

Each unit of work (one test, one parameterization) runs as its own AWS
CodeBuild job. A coordinator bounds how many jobs are in flight, bootstraps
the remote project once, polls job status in batches and reports a failed
remote job with its build log.

Architecture:

    .. code-block:: text

        gridrun
        ├── core/           ← errors, structlog logging, pydantic settings
        ├── routing/        ← invocation identifiers, per-step router
        ├── execution/      ← semaphore, bootstrap, dispatcher, poller,
        │                     coordinator, session
        ├── runtimes/       ← provider protocols, CodeBuild / S3 / CloudWatch
        ├── packaging/      ← workspace archive, revision, project names
        ├── pytest_plugin   ← ``-p gridrun.pytest_plugin``
        └── cli/            ← ``gridrun`` command (typer)
"""

from gridrun.core.errors import (
    BOOTSTRAP_EXIT_CODE,
    BootstrapError,
    ConfigError,
    GridError,
    RemoteJobFailure,
    SubmissionError,
)
from gridrun.execution import AsyncSemaphore, GridCoordinator, GridSession
from gridrun.routing import Invocation, InvocationRouter, LifecycleStep, RouterMode

__version__ = "0.1.0"

__all__ = [
    "BOOTSTRAP_EXIT_CODE",
    "AsyncSemaphore",
    "BootstrapError",
    "ConfigError",
    "GridCoordinator",
    "GridError",
    "GridSession",
    "Invocation",
    "InvocationRouter",
    "LifecycleStep",
    "RemoteJobFailure",
    "RouterMode",
    "SubmissionError",
    "__version__",
]
