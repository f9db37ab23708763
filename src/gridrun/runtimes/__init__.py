"""Remote collaborators of the dispatch coordinator.

Architecture:

    .. code-block:: text

        gridrun.runtimes
        ├── _types.py     ← JobProvider / ArchiveStore / LogSource protocols + types
        ├── _base.py      ← BaseJobProvider + in-memory test doubles
        ├── codebuild.py  ← CodeBuildProvider (boto3)
        ├── storage.py    ← S3ArchiveStore (boto3)
        ├── logs.py       ← CloudWatchLogSource + build-phase log filter
        └── buildspec.py  ← buildspec templating (PyYAML)

The coordinator only depends on the protocols; the concrete adapters are
wired by ``GridCoordinator.from_settings``.

Tags:
    gridrun, runtimes, adapter-protocol, aws
"""

from gridrun.runtimes._base import (
    BaseJobProvider,
    InMemoryArchiveStore,
    StubJobProvider,
    StubLogSource,
)
from gridrun.runtimes._types import (
    ArchiveStore,
    Environment,
    JobHandle,
    JobOutcome,
    JobProvider,
    JobRequest,
    JobState,
    JobStatus,
    LogSource,
    ProjectRef,
    ProjectSpec,
)
from gridrun.runtimes.buildspec import render_buildspec
from gridrun.runtimes.codebuild import CodeBuildProvider
from gridrun.runtimes.logs import CloudWatchLogSource, extract_build_segment
from gridrun.runtimes.storage import S3ArchiveStore

__all__ = [
    # Types & Protocols
    "ArchiveStore",
    "Environment",
    "JobHandle",
    "JobOutcome",
    "JobProvider",
    "JobRequest",
    "JobState",
    "JobStatus",
    "LogSource",
    "ProjectRef",
    "ProjectSpec",
    # Base + doubles
    "BaseJobProvider",
    "InMemoryArchiveStore",
    "StubJobProvider",
    "StubLogSource",
    # AWS
    "CloudWatchLogSource",
    "CodeBuildProvider",
    "S3ArchiveStore",
    # Helpers
    "extract_build_segment",
    "render_buildspec",
]
