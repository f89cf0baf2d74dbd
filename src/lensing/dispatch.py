"""
Dispatcher: route each lens firing to capture and to listeners.

For every fire():
1. the innermost open capture session, if any, records the payload
2. an exclusive session stops there
3. enabled listeners on the lens run in registration order

A listener that raises is logged and remembered; the remaining listeners
and the instrumented program carry on. A call-site shape that an enabled
listener cannot accept is a setup bug and raises before anything runs.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, List, Optional

from lensing.capture import current_session
from lensing.config import DispatchConfig
from lensing.errors import ArgumentShapeMismatch, ListenerInvocationFailure
from lensing.listener import Listener, Payload
from lensing.registry import Registry, normalize_name

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Fires lenses against an injected Registry.

    Attributes:
        registry: Routing table consulted on every fire.
        config: Failure handling settings.
        failures: Most recent listener failures, oldest first.
    """

    def __init__(
        self,
        registry: Optional[Registry] = None,
        config: Optional[DispatchConfig] = None,
    ) -> None:
        self.registry = registry if registry is not None else Registry()
        self.config = config if config is not None else DispatchConfig()
        self.failures: Deque[ListenerInvocationFailure] = deque(maxlen=self.config.max_failures)

    def fire(self, lens_name: str, /, *args: Any, **kwargs: Any) -> int:
        """
        Fire a lens with positional values or with keyed values.

        Args:
            lens_name: Lens being fired.
            *args: Positional values (positional form).
            **kwargs: Keyed values, bundled into one dict (keyed form). Any
                key is allowed, including "lens_name".

        Returns:
            Number of listeners that ran without raising.

        Raises:
            ArgumentShapeMismatch: If both forms are mixed, or an enabled
                listener expects the other form.
            ListenerInvocationFailure: Only when `raise_listener_errors` is set.
        """
        if args and kwargs:
            raise ArgumentShapeMismatch(
                f"lens '{lens_name}' fired with both positional and keyed values"
            )
        lens = normalize_name(lens_name)
        payload: Payload = dict(kwargs) if kwargs else tuple(args)

        session = current_session()
        if session is not None:
            session.record(lens, payload)
            if session.exclusive:
                return 0

        listeners = self.registry.active_listeners(lens)
        if not listeners:
            return 0

        self._check_shape(lens, listeners, payload)
        return self._invoke_all(lens, listeners, payload)

    def _check_shape(self, lens: str, listeners: tuple, payload: Payload) -> None:
        mismatched = [listener.name for listener in listeners if not listener.accepts(payload)]
        if mismatched:
            shape = "keyed" if isinstance(payload, dict) else "positional"
            raise ArgumentShapeMismatch(
                f"lens '{lens}' fired with {shape} values but listener(s) "
                f"{', '.join(mismatched)} expect the other form"
            )

    def _invoke_all(self, lens: str, listeners: tuple, payload: Payload) -> int:
        invoked = 0
        first_failure: Optional[ListenerInvocationFailure] = None
        for listener in listeners:
            try:
                listener.invoke(payload)
            except Exception as exc:
                failure = self._report(lens, listener, exc)
                if first_failure is None:
                    first_failure = failure
                continue
            invoked += 1
        if first_failure is not None and self.config.raise_listener_errors:
            raise first_failure from first_failure.original
        return invoked

    def _report(self, lens: str, listener: Listener, exc: Exception) -> ListenerInvocationFailure:
        failure = ListenerInvocationFailure(lens, listener.name, exc)
        failure.__cause__ = exc
        self.failures.append(failure)
        logger.log(self.config.log_level_number, "%s", failure, exc_info=exc)
        return failure

    def clear_failures(self) -> List[ListenerInvocationFailure]:
        """Drain and return the recorded failures."""
        drained = list(self.failures)
        self.failures.clear()
        return drained

    def __repr__(self) -> str:
        return f"<Dispatcher {self.registry!r} failures={len(self.failures)}>"
