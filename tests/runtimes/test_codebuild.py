"""Tests for the CodeBuild provider (boto3 client mocked)."""

from unittest.mock import MagicMock

import pytest

from gridrun.core.errors import BootstrapError, StatusQueryError, SubmissionError
from gridrun.runtimes import CodeBuildProvider, JobState, ProjectSpec


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def provider(client):
    return CodeBuildProvider(client=client)


@pytest.fixture
def project_spec():
    return ProjectSpec(
        name="localhost-tests-abc1234",
        buildspec="version: 0.2\n",
        image="aws/codebuild/amazonlinux2-x86_64-standard:5.0",
        compute_type="BUILD_GENERAL1_SMALL",
        environment_type="LINUX_CONTAINER",
        service_role_arn="arn:aws:iam::123456789012:role/codebuild-tests",
        cache_location="test-bucket/test/cache",
        log_group="/gridrun/tests",
    )


class TestEnsureProject:
    @pytest.mark.asyncio
    async def test_existing_project_is_reused(self, provider, client, project_spec):
        client.batch_get_projects.return_value = {
            "projects": [{"name": project_spec.name, "arn": "arn:aws:codebuild:project/x"}],
        }

        ref = await provider.ensure_project(project_spec)

        assert ref.name == project_spec.name
        assert ref.created is False
        client.create_project.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_project_is_created(self, provider, client, project_spec):
        client.batch_get_projects.return_value = {"projects": [], "projectsNotFound": [project_spec.name]}
        client.create_project.return_value = {"project": {"name": project_spec.name, "arn": "arn:x"}}

        ref = await provider.ensure_project(project_spec)

        assert ref.created is True
        request = client.create_project.call_args.kwargs
        assert request["source"] == {"type": "NO_SOURCE", "buildspec": "version: 0.2\n"}
        assert request["serviceRole"] == project_spec.service_role_arn
        assert request["logsConfig"]["cloudWatchLogs"] == {
            "status": "ENABLED",
            "groupName": "/gridrun/tests",
        }
        assert request["cache"]["location"] == "test-bucket/test/cache"

    @pytest.mark.asyncio
    async def test_provisioning_error_is_bootstrap_error(self, provider, client, project_spec):
        client.batch_get_projects.side_effect = RuntimeError("AccessDeniedException")
        with pytest.raises(BootstrapError) as exc_info:
            await provider.ensure_project(project_spec)
        assert exc_info.value.context["project"] == project_spec.name


class TestStartJob:
    @pytest.mark.asyncio
    async def test_start_build_overrides_source_and_buildspec(self, provider, client, job_request):
        client.start_build.return_value = {"build": {"id": "localhost-tests-abc1234:5d0c8f1e"}}
        request = job_request("tests/test_a.py::test_x", "inv-1")

        handle = await provider.start_job(request)

        assert handle.job_id == "localhost-tests-abc1234:5d0c8f1e"
        assert handle.log_stream == "5d0c8f1e"
        params = client.start_build.call_args.kwargs
        assert params["projectName"] == "localhost-tests-abc1234"
        assert params["sourceTypeOverride"] == "S3"
        assert params["sourceLocationOverride"] == "test-bucket/src.zip"
        assert params["timeoutInMinutesOverride"] == 20
        assert params["buildspecOverride"] == "version: 0.2\n"
        assert "environmentVariablesOverride" not in params

    @pytest.mark.asyncio
    async def test_rejected_build_is_submission_error(self, provider, client, job_request):
        client.start_build.side_effect = RuntimeError("AccountLimitExceededException")
        with pytest.raises(SubmissionError) as exc_info:
            await provider.start_job(job_request("tests/test_a.py::test_x", "inv-1"))
        assert exc_info.value.context["invocation_id"] == "inv-1"


class TestBatchGetStatus:
    @pytest.mark.asyncio
    async def test_maps_build_status(self, provider, client):
        client.batch_get_builds.return_value = {
            "builds": [
                {
                    "id": "p:1",
                    "buildStatus": "SUCCEEDED",
                    "buildComplete": True,
                    "logs": {"streamName": "1"},
                },
                {"id": "p:2", "buildStatus": "IN_PROGRESS", "buildComplete": False},
                {"id": "p:3", "buildStatus": "TIMED_OUT", "buildComplete": True},
            ],
            "buildsNotFound": ["p:4"],
        }

        first, second, third = await provider.batch_get_status(["p:1", "p:2", "p:3", "p:4"])

        assert first.succeeded and first.log_stream == "1"
        assert second.state is JobState.IN_PROGRESS and not second.terminal
        assert third.state is JobState.TIMED_OUT and third.terminal and not third.succeeded

    @pytest.mark.asyncio
    async def test_batch_over_limit_is_rejected(self, provider):
        with pytest.raises(ValueError):
            await provider.batch_get_status([f"p:{i}" for i in range(101)])

    @pytest.mark.asyncio
    async def test_empty_batch_skips_the_call(self, provider, client):
        assert await provider.batch_get_status([]) == []
        client.batch_get_builds.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_error_is_retryable(self, provider, client):
        client.batch_get_builds.side_effect = RuntimeError("ThrottlingException")
        with pytest.raises(StatusQueryError) as exc_info:
            await provider.batch_get_status(["p:1"])
        assert exc_info.value.retryable

    def test_unknown_status_counts_as_in_progress(self):
        assert JobState.from_provider("QUEUED") is JobState.IN_PROGRESS
        assert JobState.from_provider(None) is JobState.IN_PROGRESS
        assert JobState.from_provider("fault") is JobState.FAULT
