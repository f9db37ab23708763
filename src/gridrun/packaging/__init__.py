"""Workspace packaging: source archive and revision-keyed project names."""

from gridrun.packaging.archive import archive_file_name, build_workspace_archive
from gridrun.packaging.revision import latest_revision, project_name, sanitize_name

__all__ = [
    "archive_file_name",
    "build_workspace_archive",
    "latest_revision",
    "project_name",
    "sanitize_name",
]
