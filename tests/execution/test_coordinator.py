"""End-to-end tests for GridCoordinator over in-memory collaborators."""

import asyncio
from unittest.mock import patch

import pytest

from gridrun.core.errors import BootstrapError, ConfigError, SubmissionError
from gridrun.core.settings import GridSettings
from gridrun.execution.bootstrap import EnvironmentState
from gridrun.execution.coordinator import GridCoordinator
from gridrun.runtimes import (
    CodeBuildProvider,
    InMemoryArchiveStore,
    JobState,
    StubJobProvider,
    StubLogSource,
)


def _selectors(count):
    return [(f"tests/test_site.py::test_{i}", f"tests.test_site.test_{i}()") for i in range(count)]


class _GatedProvider(StubJobProvider):
    """Holds every start_job call until ``gate`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def _do_start_job(self, request):
        self.entered.set()
        await self.gate.wait()
        return await super()._do_start_job(request)


@pytest.mark.integration
class TestConcurrencyLimit:
    @pytest.mark.asyncio
    async def test_limit_one_starts_jobs_serially(self, make_coordinator, wait_until):
        coordinator, provider = make_coordinator(concurrency=1, poll_initial_delay_seconds=3600)
        async with coordinator:
            tasks = [asyncio.create_task(coordinator.run(s, i)) for s, i in _selectors(3)]

            for expected in (1, 2, 3):
                await wait_until(lambda: len(provider.started) == expected)
                await asyncio.sleep(0.02)
                assert len(provider.started) == expected
                assert provider.in_flight == 1
                provider.finish(provider.started[-1].job_id)
                await coordinator.poll_once()

            outcomes = await asyncio.wait_for(asyncio.gather(*tasks), timeout=2)

        assert all(outcome.succeeded for outcome in outcomes)
        assert provider.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_limit_three_runs_all_in_flight(self, make_coordinator, wait_until):
        coordinator, provider = make_coordinator(concurrency=3, poll_initial_delay_seconds=3600)
        async with coordinator:
            tasks = [asyncio.create_task(coordinator.run(s, i)) for s, i in _selectors(3)]
            await wait_until(lambda: len(provider.started) == 3)
            assert provider.in_flight == 3

            provider.finish_all()
            await coordinator.poll_once()
            outcomes = await asyncio.wait_for(asyncio.gather(*tasks), timeout=2)

        assert provider.max_in_flight == 3
        assert [o.handle.work_selector for o in outcomes] == [s for s, _ in _selectors(3)]

    @pytest.mark.asyncio
    async def test_background_poller_resolves_jobs(self, make_coordinator):
        coordinator, provider = make_coordinator(concurrency=2, auto_complete_after=2)
        async with coordinator:
            outcomes = await asyncio.wait_for(
                asyncio.gather(*(coordinator.run(s, i) for s, i in _selectors(5))),
                timeout=5,
            )
        assert len(outcomes) == 5
        assert all(outcome.succeeded for outcome in outcomes)
        assert provider.max_in_flight <= 2


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_failed_job_logs_are_fetched(self, make_coordinator):
        log_source = StubLogSource(default="AssertionError: title mismatch\n")
        coordinator, provider = make_coordinator(
            auto_complete_after=1, auto_state=JobState.FAILED, log_source=log_source,
        )
        async with coordinator:
            outcome = await asyncio.wait_for(coordinator.run("tests/test_a.py::test_x", "inv"), timeout=2)
            logs = await coordinator.fetch_logs(outcome)

        assert not outcome.succeeded
        assert outcome.state is JobState.FAILED
        assert "title mismatch" in logs
        assert log_source.fetched == [outcome.job_id]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_fails_pending_and_closes_clients(self, make_coordinator):
        log_source = StubLogSource()
        coordinator, provider = make_coordinator(poll_initial_delay_seconds=3600, log_source=log_source)
        future = await coordinator.submit("tests/test_a.py::test_x", "inv")

        await coordinator.close()

        with pytest.raises(SubmissionError):
            future.result()
        assert provider.closed
        assert coordinator.store.closed
        assert log_source.closed
        assert not coordinator.poller.running
        assert coordinator.closed

    @pytest.mark.asyncio
    async def test_close_during_start_job_leaves_nothing_behind(self, settings, environment):
        provider = _GatedProvider()

        async def _ready():
            return environment

        coordinator = GridCoordinator(
            settings.model_copy(update={"poll_initial_delay_seconds": 0, "poll_interval_seconds": 0.01}),
            provider=provider,
            store=InMemoryArchiveStore(),
            log_source=StubLogSource(),
            initializer=_ready,
        )
        submission = asyncio.create_task(coordinator.submit("tests/test_a.py::test_x", "inv"))
        await provider.entered.wait()

        await coordinator.close()
        provider.gate.set()

        with pytest.raises(SubmissionError, match="coordinator closed"):
            await submission
        assert len(provider.started) == 1
        assert len(coordinator.pending) == 0
        assert coordinator.semaphore.outstanding == 0
        assert not coordinator.poller.running

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_coordinator):
        coordinator, _ = make_coordinator()
        await coordinator.close()
        await coordinator.close()
        assert coordinator.closed

    @pytest.mark.asyncio
    async def test_bootstrap_failure_fails_every_request(self, make_coordinator):
        async def broken():
            raise RuntimeError("AccessDenied")

        coordinator, provider = make_coordinator(initializer=broken)
        async with coordinator:
            results = await asyncio.gather(
                *(coordinator.run(s, i) for s, i in _selectors(4)), return_exceptions=True,
            )
            assert all(isinstance(result, BootstrapError) for result in results)
            assert coordinator.state is EnvironmentState.FAILED
        assert provider.started == []

    @pytest.mark.asyncio
    async def test_coordinators_are_independent(self, make_coordinator):
        first, first_provider = make_coordinator(concurrency=1, poll_initial_delay_seconds=3600)
        second, second_provider = make_coordinator(concurrency=1, poll_initial_delay_seconds=3600)
        async with first, second:
            await first.submit("tests/test_a.py::test_x", "inv")
            await second.submit("tests/test_a.py::test_x", "inv")
            assert first.semaphore.available == 0
            assert second.semaphore.available == 0
            assert len(first_provider.started) == len(second_provider.started) == 1


class TestFromSettings:
    def test_missing_remote_settings_is_config_error(self):
        settings = GridSettings(_env_file=None)
        with pytest.raises(ConfigError) as exc_info:
            GridCoordinator.from_settings(settings)
        assert exc_info.value.context["missing"] == [
            "GRIDRUN_BUCKET",
            "GRIDRUN_SERVICE_ROLE_ARN",
            "GRIDRUN_LOG_GROUP",
        ]

    def test_wires_aws_adapters(self, settings):
        with patch("gridrun.runtimes.codebuild.boto3"), \
             patch("gridrun.runtimes.storage.boto3"), \
             patch("gridrun.runtimes.logs.boto3"):
            coordinator = GridCoordinator.from_settings(settings)

        assert isinstance(coordinator.provider, CodeBuildProvider)
        assert coordinator.store.bucket == "test-bucket"
        assert coordinator.log_source.log_group == "/gridrun/tests"
        assert coordinator.semaphore.limit == settings.concurrency
        assert coordinator.state is EnvironmentState.UNINITIALIZED
