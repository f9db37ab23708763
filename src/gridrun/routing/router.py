"""Invocation router — decides where each lifecycle step of a unit of work runs.

Every step (setup-all, setup-each, the unit itself, teardown-each,
teardown-all) passes through :meth:`InvocationRouter.handle`, which asks
:meth:`InvocationRouter.decide` what to do and then does it.

Modes:

    ===========  ============================================================
    Mode         Behavior
    ===========  ============================================================
    LOCAL        every step runs as requested
    GRID_CALLER  the unit is dispatched remotely and awaited; setup and
                 teardown are skipped since the remote job performs them
    GRID_WORKER  only the steps belonging to the target invocation run
    ===========  ============================================================

GRID_WORKER state machine (per scope):

    .. code-block:: text

        setup seen, target not yet run ──▶ REPLAY_AS_SETUP (buffered)
        UNIT == target                  ──▶ replay buffer once, RUN_LOCALLY
        UNIT != target                  ──▶ SKIP, drop buffered SETUP_EACH
        SETUP_EACH after target ran     ──▶ SKIP
        TEARDOWN_EACH right after target──▶ RUN_LOCALLY (once), else SKIP
        TEARDOWN_ALL, target ran        ──▶ RUN_LOCALLY (once), else SKIP

A worker assigned one parameterization therefore pays for setup and teardown
once, for that parameterization only, and runs nothing on behalf of its
siblings.

The pytest worker plugin only calls ``decide(UNIT)`` and deselects every
item that is not the target, so pytest never sets up fixtures for siblings
and its own fixture machinery never passes through :meth:`handle`. The
buffer and replay path above serves callers that drive each lifecycle step
through :meth:`handle` themselves.

Tags:
    gridrun, routing, state-machine, lifecycle
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from gridrun.core.errors import ConfigError, RemoteJobFailure
from gridrun.core.logging import LogContext, get_logger
from gridrun.routing.invocation import Invocation

if TYPE_CHECKING:
    from gridrun.runtimes._types import JobOutcome

logger = get_logger(__name__)


class RouterMode(str, Enum):
    LOCAL = "local"
    GRID_CALLER = "grid_caller"
    GRID_WORKER = "grid_worker"


class LifecycleStep(str, Enum):
    SETUP_ALL = "setup_all"
    SETUP_EACH = "setup_each"
    UNIT = "unit"
    TEARDOWN_EACH = "teardown_each"
    TEARDOWN_ALL = "teardown_all"

    @property
    def is_setup(self) -> bool:
        return self in (LifecycleStep.SETUP_ALL, LifecycleStep.SETUP_EACH)


class RouterDecision(str, Enum):
    RUN_LOCALLY = "run_locally"
    SKIP = "skip"
    DISPATCH_AND_WAIT = "dispatch_and_wait"
    REPLAY_AS_SETUP = "replay_as_setup"


DispatchFn = Callable[[str, str], "JobOutcome"]
FetchLogsFn = Callable[["JobOutcome"], str]


@dataclass
class StepResult:
    """What happened to one step."""

    decision: RouterDecision
    value: Any = None
    outcome: JobOutcome | None = None


@dataclass
class _BufferedStep:
    step: LifecycleStep
    invocation: Invocation
    action: Callable[[], Any]


@dataclass
class _ScopeState:
    buffer: list[_BufferedStep] = field(default_factory=list)
    replay: list[_BufferedStep] = field(default_factory=list)
    unit_ran: bool = False
    teardown_each_pending: bool = False
    teardown_all_ran: bool = False


class InvocationRouter:
    """Per-step routing for one process.

    Args:
        mode: routing mode of this process
        target: invocation identifier this worker is assigned (GRID_WORKER)
        dispatch: blocking ``(work_selector, invocation_id) -> JobOutcome``
            (GRID_CALLER)
        fetch_logs: blocking ``JobOutcome -> str`` used to attach the remote
            log to a failed outcome (GRID_CALLER)
    """

    def __init__(
        self,
        mode: RouterMode = RouterMode.LOCAL,
        *,
        target: str | None = None,
        dispatch: DispatchFn | None = None,
        fetch_logs: FetchLogsFn | None = None,
    ) -> None:
        if mode is RouterMode.GRID_WORKER and not target:
            raise ConfigError("GRID_WORKER mode requires a target invocation identifier")
        if mode is RouterMode.GRID_CALLER and dispatch is None:
            raise ConfigError("GRID_CALLER mode requires a dispatch callable")
        self.mode = mode
        self.target = target
        self._dispatch = dispatch
        self._fetch_logs = fetch_logs
        self._scopes: dict[str, _ScopeState] = {}
        self._lock = threading.RLock()

    # --- Decision ---------------------------------------------------------

    def decide(self, step: LifecycleStep, invocation: Invocation) -> RouterDecision:
        """Decide what to do with ``step`` and apply the state transition."""
        if self.mode is RouterMode.LOCAL:
            return RouterDecision.RUN_LOCALLY
        if self.mode is RouterMode.GRID_CALLER:
            if step is LifecycleStep.UNIT:
                return RouterDecision.DISPATCH_AND_WAIT
            return RouterDecision.SKIP
        with self._lock:
            return self._decide_worker(step, invocation)

    def _decide_worker(self, step: LifecycleStep, invocation: Invocation) -> RouterDecision:
        state = self._scopes.setdefault(invocation.scope, _ScopeState())
        matches = invocation.matches(self.target)

        if step is LifecycleStep.UNIT:
            if matches:
                state.replay = state.buffer
                state.buffer = []
                state.unit_ran = True
                state.teardown_each_pending = True
                return RouterDecision.RUN_LOCALLY
            state.buffer = [b for b in state.buffer if b.step is not LifecycleStep.SETUP_EACH]
            state.teardown_each_pending = False
            return RouterDecision.SKIP

        if matches:
            return RouterDecision.RUN_LOCALLY

        if step.is_setup:
            if state.unit_ran:
                return RouterDecision.SKIP
            return RouterDecision.REPLAY_AS_SETUP

        if step is LifecycleStep.TEARDOWN_EACH:
            if state.teardown_each_pending:
                state.teardown_each_pending = False
                return RouterDecision.RUN_LOCALLY
            return RouterDecision.SKIP

        # TEARDOWN_ALL
        state.buffer = []
        if state.unit_ran and not state.teardown_all_ran:
            state.teardown_all_ran = True
            return RouterDecision.RUN_LOCALLY
        return RouterDecision.SKIP

    # --- Execution --------------------------------------------------------

    def handle(
        self,
        step: LifecycleStep,
        invocation: Invocation,
        action: Callable[[], Any],
        work_selector: str | None = None,
    ) -> StepResult:
        """Route one step: run, skip, buffer or dispatch ``action``.

        Raises:
            RemoteJobFailure: the dispatched unit did not succeed remotely.
        """
        decision = self.decide(step, invocation)
        logger.debug(
            "router.decision",
            mode=self.mode.value,
            step=step.value,
            invocation_id=invocation.identifier,
            decision=decision.value,
        )

        if decision is RouterDecision.SKIP:
            return StepResult(decision)

        if decision is RouterDecision.REPLAY_AS_SETUP:
            with self._lock:
                state = self._scopes.setdefault(invocation.scope, _ScopeState())
                state.buffer.append(_BufferedStep(step, invocation, action))
            return StepResult(decision)

        if decision is RouterDecision.DISPATCH_AND_WAIT:
            return self._dispatch_and_wait(invocation, work_selector)

        if step is LifecycleStep.UNIT:
            self._replay(invocation.scope)
        return StepResult(decision, value=action())

    def _replay(self, scope: str) -> None:
        with self._lock:
            state = self._scopes.get(scope)
            pending = state.replay if state else []
            if state:
                state.replay = []
        for buffered in pending:
            logger.debug(
                "router.replay_setup",
                step=buffered.step.value,
                invocation_id=buffered.invocation.identifier,
            )
            buffered.action()

    def _dispatch_and_wait(self, invocation: Invocation, work_selector: str | None) -> StepResult:
        assert self._dispatch is not None
        selector = work_selector or invocation.qualified_name
        with LogContext(invocation_id=invocation.identifier):
            outcome = self._dispatch(selector, invocation.identifier)
            if outcome.succeeded:
                return StepResult(RouterDecision.DISPATCH_AND_WAIT, outcome=outcome)
            logs = self._fetch_logs(outcome) if self._fetch_logs else ""
            logger.info(
                "router.remote_failure",
                job_id=outcome.job_id,
                state=outcome.state.value,
            )
        raise RemoteJobFailure(
            f"Remote job {outcome.job_id} for {invocation.identifier} "
            f"finished {outcome.state.value}",
            outcome=outcome,
            logs=logs,
            context={"job_id": outcome.job_id, "invocation_id": invocation.identifier},
        )

    def reset(self) -> None:
        """Forget all per-scope state."""
        with self._lock:
            self._scopes.clear()


__all__ = [
    "InvocationRouter",
    "LifecycleStep",
    "RouterDecision",
    "RouterMode",
    "StepResult",
]
