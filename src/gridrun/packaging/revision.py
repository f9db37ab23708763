"""Source revision and remote project naming.

The remote project is keyed by host identity and source revision so that
workers always build the exact tree the caller archived:

    ``{host}-tests-{revision}``, e.g. ``localhost-tests-3f2a9c1-with-local-changes``

CodeBuild project names only allow ``[A-Za-z0-9_-]``; anything else becomes
``_``.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path

from gridrun.core.errors import ConfigError
from gridrun.core.logging import get_logger

logger = get_logger(__name__)

DIRTY_SUFFIX = "-with-local-changes"
UNKNOWN_REVISION = "unversioned"
_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")
MAX_PROJECT_NAME = 255


def _git(root: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=root,
        capture_output=True,
        text=True,
        check=True,
        timeout=30,
    )
    return result.stdout.strip()


def latest_revision(root: Path) -> str:
    """Short HEAD commit of ``root``, suffixed when the tree has local changes.

    A workspace that is not a git checkout (or has no commits) yields
    ``"unversioned"``.
    """
    try:
        commit = _git(root, "rev-parse", "--short=7", "HEAD")
        dirty = bool(_git(root, "status", "--porcelain"))
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("revision.unavailable", root=str(root), error=str(exc))
        return UNKNOWN_REVISION
    revision = f"{commit}{DIRTY_SUFFIX}" if dirty else commit
    logger.debug("revision.resolved", revision=revision, dirty=dirty)
    return revision


def sanitize_name(value: str) -> str:
    return _INVALID_NAME_CHARS.sub("_", value)


def project_name(host: str, revision: str) -> str:
    """Remote project name for ``host`` at ``revision``."""
    if not host:
        raise ConfigError("test host must not be empty")
    name = sanitize_name(f"{host}-tests-{revision}")
    return name[:MAX_PROJECT_NAME]


__all__ = [
    "DIRTY_SUFFIX",
    "UNKNOWN_REVISION",
    "latest_revision",
    "project_name",
    "sanitize_name",
]
