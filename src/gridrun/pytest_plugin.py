"""pytest integration.

Enable with ``pytest -p gridrun.pytest_plugin`` (or ``addopts`` in the
project's pytest configuration). The routing mode comes from the
environment, see ``GridSettings.routing_mode``:

``LOCAL``
    The plugin does nothing.

``GRID_CALLER`` (``GRIDRUN_USE_GRID=1``)
    After collection every test is dispatched at once through a
    ``GridSession``; admission control decides how many actually run. Each
    test is then reported from its remote outcome instead of being run
    locally, so no local fixture is ever set up. A failed remote job is
    reported as a failed test with the remote build log as its long repr.
    Bootstrap failure ends the session with ``BOOTSTRAP_EXIT_CODE``.

``GRID_WORKER`` (``GRIDRUN_INVOCATION_ID=...``)
    Every collected test whose invocation identifier is not the target is
    deselected, so fixtures only ever set up and tear down for the one
    parameterization this job owns.
"""

from __future__ import annotations

import inspect
import time
from concurrent.futures import Future
from typing import Any

import pytest

from gridrun.core.errors import (
    BOOTSTRAP_EXIT_CODE,
    BootstrapError,
    ConfigError,
    GridError,
    RemoteJobFailure,
)
from gridrun.core.logging import configure_logging, get_logger
from gridrun.core.settings import GridSettings, get_settings
from gridrun.execution.session import GridSession
from gridrun.routing.invocation import Invocation
from gridrun.routing.router import InvocationRouter, LifecycleStep, RouterDecision, RouterMode
from gridrun.runtimes._types import JobOutcome

logger = get_logger(__name__)


def work_selector(item: pytest.Item) -> str:
    """Node id shared by all parameterizations of the item's test."""
    return item.nodeid.split("[", 1)[0]


def item_invocation(item: pytest.Function) -> Invocation:
    """Invocation of a collected test function, parameters in declaration order."""
    module = item.module.__name__ if item.module is not None else item.path.stem
    scope = f"{module}.{item.cls.__qualname__}" if item.cls is not None else module
    name = getattr(item, "originalname", None) or item.name

    callspec = getattr(item, "callspec", None)
    params: dict[str, Any] = dict(callspec.params) if callspec is not None else {}
    function = item.function
    try:
        declared = list(inspect.signature(function).parameters)
    except (TypeError, ValueError):
        declared = []
    ordered = [n for n in declared if n in params] + [n for n in params if n not in declared]
    annotations = getattr(function, "__annotations__", {})
    return Invocation.of(scope, name, [(n, params[n]) for n in ordered], annotations)


class GridWorkerPlugin:
    """Keeps only the target invocation in the collected items."""

    def __init__(self, settings: GridSettings) -> None:
        self.router = InvocationRouter(RouterMode.GRID_WORKER, target=settings.invocation_id)

    @pytest.hookimpl(trylast=True)
    def pytest_collection_modifyitems(self, config: pytest.Config, items: list[pytest.Item]) -> None:
        keep: list[pytest.Item] = []
        drop: list[pytest.Item] = []
        for item in items:
            if not isinstance(item, pytest.Function):
                drop.append(item)
                continue
            try:
                invocation = item_invocation(item)
            except ConfigError as exc:
                raise pytest.UsageError(f"{item.nodeid}: {exc}") from exc
            decision = self.router.decide(LifecycleStep.UNIT, invocation)
            (keep if decision is RouterDecision.RUN_LOCALLY else drop).append(item)

        if drop:
            config.hook.pytest_deselected(items=drop)
            items[:] = keep
        logger.info("worker.selected", target=self.router.target, kept=len(keep), deselected=len(drop))
        if not keep:
            logger.warning("worker.target_not_collected", target=self.router.target)


class GridCallerPlugin:
    """Dispatches every collected test and reports the remote outcomes."""

    def __init__(self, settings: GridSettings) -> None:
        self.settings = settings
        self.session: GridSession | None = None
        self.router: InvocationRouter | None = None
        self.invocations: dict[str, Invocation] = {}
        self.futures: dict[str, Future[JobOutcome]] = {}

    def _open_session(self) -> GridSession:
        try:
            return GridSession(settings=self.settings)
        except ConfigError as exc:
            pytest.exit(f"gridrun: {exc}", returncode=pytest.ExitCode.USAGE_ERROR)

    def _await_dispatch(self, selector: str, invocation_id: str) -> JobOutcome:
        return self.futures[invocation_id].result()

    def _fetch_logs(self, outcome: JobOutcome) -> str:
        assert self.session is not None
        try:
            return self.session.fetch_logs(outcome)
        except Exception as exc:
            logger.warning("caller.fetch_logs_failed", job_id=outcome.job_id, error=str(exc))
            return ""

    def pytest_collection_finish(self, session: pytest.Session) -> None:
        if session.config.option.collectonly:
            return

        for item in session.items:
            if not isinstance(item, pytest.Function):
                continue
            try:
                self.invocations[item.nodeid] = item_invocation(item)
            except ConfigError as exc:
                raise pytest.UsageError(f"{item.nodeid}: {exc}") from exc
        if not self.invocations:
            return

        self.session = self._open_session()
        try:
            environment = self.session.ensure_ready()
        except BootstrapError as exc:
            pytest.exit(f"gridrun: {exc}", returncode=BOOTSTRAP_EXIT_CODE)
        logger.info(
            "caller.environment_ready",
            project=environment.project.name,
            tests=len(self.invocations),
            concurrency=self.settings.concurrency,
        )

        self.router = InvocationRouter(
            RouterMode.GRID_CALLER,
            dispatch=self._await_dispatch,
            fetch_logs=self._fetch_logs,
        )
        for item in session.items:
            invocation = self.invocations.get(item.nodeid)
            if invocation is None or invocation.identifier in self.futures:
                continue
            self.futures[invocation.identifier] = self.session.submit(
                work_selector(item), invocation.identifier,
            )

    @pytest.hookimpl(tryfirst=True)
    def pytest_runtest_protocol(self, item: pytest.Item, nextitem: pytest.Item | None) -> bool | None:
        invocation = self.invocations.get(item.nodeid)
        if invocation is None or self.router is None:
            return None

        ihook = item.ihook
        ihook.pytest_runtest_logstart(nodeid=item.nodeid, location=item.location)
        start = time.time()
        longrepr: str | None = None
        try:
            self.router.handle(
                LifecycleStep.UNIT, invocation, lambda: None, work_selector=work_selector(item),
            )
            outcome = "passed"
        except RemoteJobFailure as exc:
            outcome, longrepr = "failed", str(exc)
        except BootstrapError as exc:
            pytest.exit(f"gridrun: {exc}", returncode=BOOTSTRAP_EXIT_CODE)
        except GridError as exc:
            outcome, longrepr = "failed", f"{type(exc).__name__}: {exc}"
        stop = time.time()

        report = pytest.TestReport(
            nodeid=item.nodeid,
            location=item.location,
            keywords={name: 1 for name in item.keywords},
            outcome=outcome,
            longrepr=longrepr,
            when="call",
            duration=stop - start,
            start=start,
            stop=stop,
        )
        ihook.pytest_runtest_logreport(report=report)
        ihook.pytest_runtest_logfinish(nodeid=item.nodeid, location=item.location)
        return True

    def pytest_unconfigure(self, config: pytest.Config) -> None:
        if self.session is not None:
            self.session.close()


def pytest_configure(config: pytest.Config) -> None:
    settings = get_settings()
    for warning in settings.config_warnings:
        logger.warning("gridrun.config_warning", message=warning)

    mode = settings.routing_mode
    if mode is RouterMode.GRID_CALLER:
        configure_logging(level=settings.log_level, json_format=settings.json_logs)
        config.pluginmanager.register(GridCallerPlugin(settings), "gridrun-caller")
    elif mode is RouterMode.GRID_WORKER:
        config.pluginmanager.register(GridWorkerPlugin(settings), "gridrun-worker")
