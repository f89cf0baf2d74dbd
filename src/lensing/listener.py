"""
Listener: a named consumer attached to a lens.

A listener wraps a transform with the calling convention it expects.
Positional listeners receive the fired values spread as arguments;
keyed listeners receive one mapping holding the call-site keywords.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Union

Payload = Union[tuple, Mapping[str, Any]]


class InvocationKind(Enum):
    """Calling convention of a listener transform."""

    POSITIONAL = "positional"
    KEYED = "keyed"

    @classmethod
    def from_kwargs(cls, kwargs: bool) -> "InvocationKind":
        return cls.KEYED if kwargs else cls.POSITIONAL


@dataclass
class Listener:
    """
    One listener record on one lens.

    Only `enabled` changes after creation. The same listener name attached
    to two lenses is two records, enabled and disabled independently.

    Attributes:
        name: Key used to enable, disable or delete this listener.
        transform: Callable invoked with the fired payload.
        enabled: Whether the edge currently fires.
        kind: Calling convention of `transform`.
    """

    name: str
    transform: Callable[..., Any]
    enabled: bool = True
    kind: InvocationKind = InvocationKind.POSITIONAL

    def __post_init__(self) -> None:
        if not callable(self.transform):
            raise TypeError(
                f"transform for listener '{self.name}' must be callable, "
                f"got {type(self.transform).__name__}"
            )
        self.name = str(self.name)
        self.kind = InvocationKind(self.kind)

    @classmethod
    def create(
        cls,
        name: str,
        transform: Callable[..., Any],
        enabled: bool = True,
        kwargs: bool = False,
    ) -> "Listener":
        """Build a listener from the boolean `kwargs` convention."""
        return cls(
            name=name,
            transform=transform,
            enabled=bool(enabled),
            kind=InvocationKind.from_kwargs(kwargs),
        )

    @property
    def kwargs(self) -> bool:
        """True if the transform expects a single keyed mapping."""
        return self.kind is InvocationKind.KEYED

    def accepts(self, payload: Payload) -> bool:
        """Check whether a payload has the shape this listener expects."""
        if self.kind is InvocationKind.KEYED:
            return isinstance(payload, Mapping)
        return isinstance(payload, tuple)

    def invoke(self, payload: Payload) -> Any:
        """
        Call the transform with the payload shaped for this listener.

        Keyed listeners get their own copy of the mapping, so changes they
        make are not seen by other listeners or by capture sessions.

        Args:
            payload: Positional tuple or keyed mapping, as fired.

        Returns:
            Whatever the transform returns.
        """
        if self.kind is InvocationKind.KEYED:
            return self.transform(dict(payload))
        return self.transform(*payload)
