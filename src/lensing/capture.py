"""
Capture: record every lens firing during one call.

A capture session is pushed onto a per-context stack when it opens and
popped when it closes. Only the innermost open session records, so a
nested capture sees exactly what happens inside it and the enclosing
session resumes once it closes.

The stack lives in a ContextVar: each thread and each asyncio task sees
its own sessions and never records another's firings.

    result, session = capture(solve, problem)
    session.query("residual")        # [r0, r1, r2, ...]
    session.stack("iterate")         # ndarray, one row per firing
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np

from lensing.listener import Payload

logger = logging.getLogger(__name__)

_SESSIONS: contextvars.ContextVar[Tuple["CaptureSession", ...]] = contextvars.ContextVar(
    "lensing_capture_sessions", default=()
)


def _unwrap(payload: Payload) -> Any:
    """Single positional values come back bare; everything else as fired."""
    if isinstance(payload, tuple) and len(payload) == 1:
        return payload[0]
    return payload


class CaptureSession:
    """
    Ordered log of (lens name, payload) pairs from one captured call.

    Attributes:
        log: Every recorded firing in order of occurrence.
        result: Return value of the wrapped call, once sealed.
        error: Exception that escaped the wrapped call, if any.
        exclusive: Whether listener dispatch is suppressed while this
            session is innermost.
        sealed: True once the session has closed.
    """

    def __init__(self, exclusive: bool = False) -> None:
        self.log: List[Tuple[str, Payload]] = []
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self.exclusive = exclusive
        self.sealed = False

    def record(self, lens_name: str, payload: Payload) -> None:
        """Append a firing. Sealed sessions reject further records."""
        if self.sealed:
            raise RuntimeError("cannot record into a sealed capture session")
        self.log.append((lens_name, payload))

    def seal(self) -> None:
        self.sealed = True

    def query(self, lens_name: str) -> List[Any]:
        """
        Payloads recorded under one lens, in firing order.

        Positional firings of a single value yield that value; other
        positional firings yield their tuple and keyed firings their dict.
        An unknown lens yields an empty list.
        """
        return [_unwrap(payload) for lens, payload in self.log if lens == lens_name]

    def stack(self, lens_name: str, key: Optional[str] = None) -> np.ndarray:
        """
        Stack the payloads of one lens into an array.

        Args:
            lens_name: Lens to read.
            key: For keyed firings, the entry to extract from each mapping.

        Returns:
            Array of shape (n_firings, *payload_shape).

        Raises:
            ValueError: If the lens was never fired in this session.
            KeyError: If `key` is missing from one of the keyed payloads.
        """
        values = self.query(lens_name)
        if not values:
            raise ValueError(f"lens '{lens_name}' was not fired in this session")
        if key is not None:
            values = [value[key] for value in values]
        return np.stack([np.asarray(value) for value in values])

    def lens_names(self) -> List[str]:
        """Lens names in order of first firing."""
        return list(dict.fromkeys(lens for lens, _ in self.log))

    def to_dict(self) -> Dict[str, List[Any]]:
        """Map each lens name to its queried payloads."""
        return {lens: self.query(lens) for lens in self.lens_names()}

    def __getitem__(self, lens_name: str) -> List[Any]:
        return self.query(lens_name)

    def __contains__(self, lens_name: object) -> bool:
        return any(lens == lens_name for lens, _ in self.log)

    def __iter__(self) -> Iterator[Tuple[str, Payload]]:
        return iter(self.log)

    def __len__(self) -> int:
        return len(self.log)

    def __repr__(self) -> str:
        state = "sealed" if self.sealed else "open"
        return f"<CaptureSession firings={len(self.log)} lenses={len(self.lens_names())} {state}>"


def current_session() -> Optional[CaptureSession]:
    """
    Innermost open session in this context, or None.

    Tasks and copied contexts inherit the stack of the code that created
    them and may outlive those sessions; sealed sessions are skipped.
    """
    for session in reversed(_SESSIONS.get()):
        if not session.sealed:
            return session
    return None


@contextmanager
def capturing(exclusive: bool = False) -> Iterator[CaptureSession]:
    """
    Open a capture session for the body of a with-block.

    The session is sealed on exit, including when the body raises. The
    exception is stored on `session.error` and propagates.

    Args:
        exclusive: Suppress listener dispatch while this session is innermost.
    """
    session = CaptureSession(exclusive=exclusive)
    token = _SESSIONS.set(_SESSIONS.get() + (session,))
    try:
        yield session
    except BaseException as exc:
        session.error = exc
        raise
    finally:
        _SESSIONS.reset(token)
        session.seal()
        logger.debug("capture session sealed with %d firings", len(session.log))


def capture(
    fn: Callable[..., Any], /, *args: Any, exclusive: bool = False, **kwargs: Any
) -> Tuple[Any, CaptureSession]:
    """
    Call `fn(*args, **kwargs)` and record every lens fired while it runs.

    `exclusive` is consumed by capture itself. To pass an argument named
    `exclusive` to `fn`, bind it first, e.g. with functools.partial.

    Args:
        fn: Callable to run.
        *args: Positional arguments for `fn`.
        exclusive: Suppress listener dispatch during the call.
        **kwargs: Keyword arguments for `fn`.

    Returns:
        (return value of fn, sealed CaptureSession).

    Raises:
        Whatever `fn` raises. Use `capturing()` to keep the partial log.
    """
    with capturing(exclusive=exclusive) as session:
        session.result = fn(*args, **kwargs)
    return session.result, session


def query(session: CaptureSession, lens_name: str) -> List[Any]:
    """Payloads recorded under `lens_name` in `session`."""
    return session.query(lens_name)
