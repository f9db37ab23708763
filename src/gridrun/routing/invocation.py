"""Invocation identifiers.

An invocation identifier distinguishes one unit of work, with its parameter
values, from its siblings. The remote worker receives the identifier of the
single invocation it must execute and compares it against every lifecycle
step it encounters.

Format::

    {scope}.{name}([{type}={text}],[{type}={text}],...)

    tests.test_search.test_title([str=google.com],[str=Google])

``type`` is the declared annotation of the parameter when there is one,
otherwise the runtime type name. ``text`` is ``str(value)``. Inside both,
``\\``, ``[``, ``]`` and ``,`` are escaped with a backslash so that values
containing separators cannot collide with a different parameter list.

A value whose text is the default ``object`` rendering (``<Foo object at
0x7f...>``) differs between processes, so it would never match on the remote
worker. Such values raise ``ParameterRepresentationError`` instead of being
dispatched.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from gridrun.core.errors import ParameterRepresentationError

MEMORY_ADDRESS_MARKER = " at 0x"

_ESCAPES = str.maketrans({"\\": "\\\\", "[": "\\[", "]": "\\]", ",": "\\,"})


def _escape(text: str) -> str:
    return text.translate(_ESCAPES)


def _type_name(annotation: Any, value: Any) -> str:
    if annotation is None or annotation is inspect.Parameter.empty:
        return type(value).__name__
    if isinstance(annotation, str):
        return annotation
    if isinstance(annotation, type):
        return annotation.__name__
    return str(annotation).replace("typing.", "")


def value_text(value: Any, *, name: str = "?") -> str:
    """Stable textual representation of ``value``.

    Raises:
        ParameterRepresentationError: the value only has ``object``'s
            address-based rendering.
    """
    cls = type(value)
    if cls.__str__ is object.__str__ and cls.__repr__ is object.__repr__:
        raise ParameterRepresentationError(
            f"Parameter '{name}' of type {cls.__qualname__} has no textual "
            f"representation; define __repr__ or __str__ on it",
            context={"parameter": name, "type": cls.__qualname__},
        )
    text = str(value)
    if MEMORY_ADDRESS_MARKER in text:
        raise ParameterRepresentationError(
            f"Parameter '{name}' renders as {text!r}, which embeds a memory "
            f"address and differs between processes",
            context={"parameter": name, "type": cls.__qualname__},
        )
    return text


@dataclass(frozen=True)
class Parameter:
    """One parameter of an invocation, already rendered."""

    name: str
    type_name: str
    text: str

    @classmethod
    def of(cls, name: str, value: Any, annotation: Any = None) -> Parameter:
        return cls(name=name, type_name=_type_name(annotation, value), text=value_text(value, name=name))

    def render(self) -> str:
        return f"[{_escape(self.type_name)}={_escape(self.text)}]"


@dataclass(frozen=True)
class Invocation:
    """A lifecycle step of one unit of work, with its parameter values.

    ``scope`` is the declaring scope (module, or module plus class), ``name``
    the step name. Equality and hashing follow the rendered identifier.
    """

    scope: str
    name: str
    parameters: tuple[Parameter, ...] = ()

    @property
    def qualified_name(self) -> str:
        return f"{self.scope}.{self.name}"

    @property
    def identifier(self) -> str:
        rendered = ",".join(parameter.render() for parameter in self.parameters)
        return f"{self.qualified_name}({rendered})"

    def matches(self, target: str | None) -> bool:
        return target is not None and self.identifier == target

    def __str__(self) -> str:
        return self.identifier

    @classmethod
    def of(
        cls,
        scope: str,
        name: str,
        values: Mapping[str, Any] | Iterable[tuple[str, Any]] = (),
        annotations: Mapping[str, Any] | None = None,
    ) -> Invocation:
        """Build an invocation from ``(name, value)`` pairs in declaration order."""
        items = values.items() if isinstance(values, Mapping) else values
        annotations = annotations or {}
        parameters = tuple(
            Parameter.of(param_name, value, annotations.get(param_name))
            for param_name, value in items
        )
        return cls(scope=scope, name=name, parameters=parameters)

    @classmethod
    def from_callable(
        cls,
        func: Callable[..., Any],
        *args: Any,
        scope: str | None = None,
        **kwargs: Any,
    ) -> Invocation:
        """Build the invocation of ``func(*args, **kwargs)``.

        Arguments are bound to the signature so the parameter order is the
        declaration order regardless of how the call was written. Defaults
        are applied; ``self``/``cls`` are not part of the identifier.
        """
        signature = inspect.signature(func)
        bound = signature.bind(*args, **kwargs)
        bound.apply_defaults()
        values = [
            (name, value)
            for name, value in bound.arguments.items()
            if name not in ("self", "cls")
        ]
        annotations = {
            name: parameter.annotation
            for name, parameter in signature.parameters.items()
        }
        qualname = func.__qualname__
        owner, _, name = qualname.rpartition(".")
        if scope is None:
            scope = f"{func.__module__}.{owner}" if owner else func.__module__
        return cls.of(scope, name, values, annotations)


def invocation_id(
    scope: str,
    name: str,
    values: Mapping[str, Any] | Iterable[tuple[str, Any]] = (),
    annotations: Mapping[str, Any] | None = None,
) -> str:
    """Identifier string for one invocation."""
    return Invocation.of(scope, name, values, annotations).identifier


__all__ = [
    "MEMORY_ADDRESS_MARKER",
    "Invocation",
    "Parameter",
    "invocation_id",
    "value_text",
]
