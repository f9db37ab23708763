"""AWS CodeBuild job provider.

Each dispatched unit of work becomes one CodeBuild build of a per-revision
project (``{host}-tests-{revision}``). The project is created on first use
with a NO_SOURCE default; every build overrides the source with the uploaded
workspace archive and the buildspec with the per-job test command.

API mapping:

    ================  ==========================================
    JobProvider       CodeBuild
    ================  ==========================================
    ensure_project    BatchGetProjects → CreateProject if absent
    start_job         StartBuild (S3 source + buildspec override)
    batch_get_status  BatchGetBuilds (≤ 100 ids)
    ================  ==========================================

Credentials come from the standard boto3 chain. A missing service role or
credentials surfaces during bootstrap as a ``BootstrapError``.
"""

from __future__ import annotations

import asyncio
from typing import Any

import boto3
from botocore.config import Config

from gridrun.core.logging import get_logger
from gridrun.runtimes._base import BaseJobProvider
from gridrun.runtimes._types import (
    JobHandle,
    JobRequest,
    JobState,
    JobStatus,
    ProjectRef,
    ProjectSpec,
)

logger = get_logger(__name__)

CODEBUILD_STATUS_BATCH = 100


class CodeBuildProvider(BaseJobProvider):
    """Job provider backed by AWS CodeBuild."""

    def __init__(self, *, region: str | None = None, client: Any = None) -> None:
        self._client = client or boto3.client(
            "codebuild",
            region_name=region,
            config=Config(retries={"mode": "standard"}),
        )

    @property
    def runtime_name(self) -> str:
        return "codebuild"

    @property
    def max_status_batch(self) -> int:
        return CODEBUILD_STATUS_BATCH

    # --- Project ----------------------------------------------------------

    async def _do_ensure_project(self, spec: ProjectSpec) -> ProjectRef:
        response = await asyncio.to_thread(self._client.batch_get_projects, names=[spec.name])
        projects = response.get("projects", [])
        if projects:
            project = projects[0]
            return ProjectRef(name=project["name"], arn=project.get("arn"), created=False)

        response = await asyncio.to_thread(
            self._client.create_project, **create_project_request(spec),
        )
        project = response["project"]
        return ProjectRef(name=project["name"], arn=project.get("arn"), created=True)

    # --- Jobs -------------------------------------------------------------

    async def _do_start_job(self, request: JobRequest) -> JobHandle:
        response = await asyncio.to_thread(
            self._client.start_build, **start_build_request(request),
        )
        build = response["build"]
        return JobHandle(
            job_id=build["id"],
            project=request.project.name,
            work_selector=request.work_selector,
            invocation_id=request.invocation_id,
        )

    async def _do_batch_get_status(self, job_ids: list[str]) -> list[JobStatus]:
        response = await asyncio.to_thread(self._client.batch_get_builds, ids=job_ids)
        statuses = [build_status(build) for build in response.get("builds", [])]
        not_found = response.get("buildsNotFound", [])
        if not_found:
            logger.warning("codebuild.builds_not_found", job_ids=not_found)
        return statuses

    async def _do_close(self) -> None:
        await asyncio.to_thread(self._client.close)


# ---------------------------------------------------------------------------
# Request/response shapes
# ---------------------------------------------------------------------------

def create_project_request(spec: ProjectSpec) -> dict[str, Any]:
    """CreateProject parameters for a NO_SOURCE test project."""
    request: dict[str, Any] = {
        "name": spec.name,
        "source": {"type": "NO_SOURCE", "buildspec": spec.buildspec},
        "artifacts": {"type": "NO_ARTIFACTS"},
        "environment": {
            "type": spec.environment_type,
            "computeType": spec.compute_type,
            "image": spec.image,
            "privilegedMode": False,
        },
        "serviceRole": spec.service_role_arn,
        "logsConfig": {
            "cloudWatchLogs": {"status": "DISABLED"},
            "s3Logs": {"status": "DISABLED"},
        },
    }
    if spec.log_group:
        request["logsConfig"]["cloudWatchLogs"] = {
            "status": "ENABLED",
            "groupName": spec.log_group,
        }
    if spec.cache_location:
        request["cache"] = {
            "type": "S3",
            "location": spec.cache_location,
            "modes": ["LOCAL_SOURCE_CACHE"],
        }
    return request


def start_build_request(request: JobRequest) -> dict[str, Any]:
    """StartBuild parameters for one unit of work."""
    params: dict[str, Any] = {
        "projectName": request.project.name,
        "privilegedModeOverride": True,
        "timeoutInMinutesOverride": request.max_duration_minutes,
        "sourceTypeOverride": "S3",
        "sourceLocationOverride": request.source_location,
        "buildspecOverride": request.buildspec,
    }
    if request.env:
        params["environmentVariablesOverride"] = [
            {"name": name, "value": value, "type": "PLAINTEXT"}
            for name, value in request.env.items()
        ]
    return params


def build_status(build: dict[str, Any]) -> JobStatus:
    """Map a BatchGetBuilds entry to a JobStatus."""
    state = JobState.from_provider(build.get("buildStatus"))
    logs = build.get("logs") or {}
    return JobStatus(
        job_id=build["id"],
        state=state,
        terminal=bool(build.get("buildComplete", state.is_terminal)),
        log_stream=logs.get("streamName"),
        message=build.get("currentPhase"),
    )
