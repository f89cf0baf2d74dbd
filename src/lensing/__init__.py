"""
lensing: non-invasive instrumentation for running code.

Instrumented code fires named lenses; listeners attached to those names
consume the values, and capture sessions record them for later queries.

    import lensing

    def descend(x, lr, steps):
        for _ in range(steps):
            x = x - lr * 2 * x
            lensing.fire("iterate", x)
        return x

    lensing.register("iterate", "printer", print)
    result, session = lensing.capture(descend, 1.0, 0.1, 3)
    session.query("iterate")   # ~[0.8, 0.64, 0.512]

Modules:
    listener: Listener records and their calling convention
    registry: Lens name -> listener routing table with kill switch
    dispatch: Dispatcher that fires lenses against a registry
    capture: Scoped capture sessions
    config: Dispatch configuration
    errors: Failure taxonomy

The module-level functions below act on a process-wide default
Dispatcher. Tests and embedders can swap it with set_default_dispatcher().
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from lensing.capture import CaptureSession, capture, capturing, current_session, query
from lensing.config import DispatchConfig
from lensing.dispatch import Dispatcher
from lensing.errors import (
    ArgumentShapeMismatch,
    LensError,
    ListenerInvocationFailure,
    NotFound,
)
from lensing.listener import InvocationKind, Listener
from lensing.registry import Registry

__version__ = "0.1.0"

_default = Dispatcher(config=DispatchConfig.from_env_or_default())


def get_default_dispatcher() -> Dispatcher:
    """Return the process-wide Dispatcher."""
    return _default


def set_default_dispatcher(dispatcher: Dispatcher) -> Dispatcher:
    """Replace the process-wide Dispatcher and return the previous one."""
    global _default
    previous, _default = _default, dispatcher
    return previous


def fire(lens_name: str, /, *args: Any, **kwargs: Any) -> int:
    """Fire a lens on the default dispatcher."""
    return _default.fire(lens_name, *args, **kwargs)


def register(
    lens_name: str,
    listener_name: str,
    transform: Callable[..., Any],
    enabled: bool = True,
    kwargs: bool = False,
) -> Listener:
    """Attach a listener to a lens on the default registry."""
    return _default.registry.register(lens_name, listener_name, transform, enabled=enabled, kwargs=kwargs)


def on(
    lens_name: str,
    name: Optional[str] = None,
    enabled: bool = True,
    kwargs: bool = False,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator form of register().

        @lensing.on("loss", kwargs=True)
        def track(values):
            history.append(values["loss"])

    The listener name defaults to the function's __name__. The function is
    returned unchanged.
    """

    def decorate(fn: Callable[..., Any]) -> Callable[..., Any]:
        register(lens_name, name or fn.__name__, fn, enabled=enabled, kwargs=kwargs)
        return fn

    return decorate


def enable_listener(lens_name: str, listener_name: str) -> None:
    _default.registry.enable_listener(lens_name, listener_name)


def disable_listener(lens_name: str, listener_name: str) -> None:
    _default.registry.disable_listener(lens_name, listener_name)


def delete_listener(lens_name: str, listener_name: str) -> Listener:
    return _default.registry.delete_listener(lens_name, listener_name)


def enable_all_listeners() -> None:
    _default.registry.enable_all_listeners()


def disable_all_listeners() -> None:
    _default.registry.disable_all_listeners()


def clear_all_listeners() -> None:
    _default.registry.clear_all_listeners()


__all__ = [
    # Dispatch
    "fire",
    "Dispatcher",
    "DispatchConfig",
    "get_default_dispatcher",
    "set_default_dispatcher",
    # Registry
    "register",
    "on",
    "enable_listener",
    "disable_listener",
    "delete_listener",
    "enable_all_listeners",
    "disable_all_listeners",
    "clear_all_listeners",
    "Registry",
    "Listener",
    "InvocationKind",
    # Capture
    "capture",
    "capturing",
    "query",
    "current_session",
    "CaptureSession",
    # Errors
    "LensError",
    "NotFound",
    "ArgumentShapeMismatch",
    "ListenerInvocationFailure",
]
