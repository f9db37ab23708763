"""Per-step routing of units of work between local and remote execution."""

from gridrun.routing.invocation import Invocation, Parameter, invocation_id, value_text
from gridrun.routing.router import (
    InvocationRouter,
    LifecycleStep,
    RouterDecision,
    RouterMode,
    StepResult,
)

__all__ = [
    "Invocation",
    "InvocationRouter",
    "LifecycleStep",
    "Parameter",
    "RouterDecision",
    "RouterMode",
    "StepResult",
    "invocation_id",
    "value_text",
]
