"""Workspace archive — zip the source tree a remote job needs.

Only the configured include paths are archived (``GridSettings.archive_include``);
missing entries are skipped. Directories are walked recursively, skipping
caches and VCS metadata. The archive is written to a randomized file name
in the temp directory, prefixed with the project name so concurrent runs
never collide.
"""

from __future__ import annotations

import os
import secrets
import tempfile
import zipfile
from collections.abc import Iterable, Iterator
from pathlib import Path

from gridrun.core.errors import ArchiveError
from gridrun.core.logging import get_logger

logger = get_logger(__name__)

EXCLUDED_DIRS = frozenset({
    ".git",
    ".hg",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    ".tox",
    ".venv",
    "__pycache__",
    "node_modules",
})


def archive_file_name(prefix: str, suffix: str = ".zip", directory: Path | None = None) -> Path:
    """Random, collision-free archive path: ``{dir}/{prefix}{n}{suffix}``."""
    directory = Path(directory or tempfile.gettempdir())
    return directory / f"{Path(prefix).name}{secrets.randbelow(2**63)}{suffix}"


def _walk(path: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(path):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
        for filename in sorted(filenames):
            if filename.endswith((".pyc", ".pyo")):
                continue
            yield Path(dirpath) / filename


def build_workspace_archive(
    root: Path,
    include: Iterable[str],
    *,
    prefix: str = "workspace-",
    directory: Path | None = None,
) -> Path:
    """Zip the ``include`` entries of ``root``; return the archive path.

    Paths inside the archive are relative to ``root``.

    Raises:
        ArchiveError: nothing to archive, or the archive could not be written.
    """
    root = Path(root).resolve()
    target = archive_file_name(prefix, directory=directory)
    count = 0
    try:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for entry in include:
                source = root / entry
                if not source.exists():
                    logger.debug("archive.entry_missing", entry=entry)
                    continue
                files = _walk(source) if source.is_dir() else [source]
                for file in files:
                    archive.write(file, file.relative_to(root).as_posix())
                    count += 1
    except OSError as exc:
        target.unlink(missing_ok=True)
        raise ArchiveError(f"Could not build workspace archive: {exc}", cause=exc) from exc

    if count == 0:
        target.unlink(missing_ok=True)
        raise ArchiveError(
            f"Nothing to archive under {root}",
            context={"include": list(include)},
        )

    logger.info("archive.built", path=str(target), files=count, size=target.stat().st_size)
    return target
