"""
Registry: lens name -> ordered set of listeners.

The registry is the process-wide routing table. It never stores a lens
object; a lens exists only as a key with at least one listener under it.

Enable state lives at two levels:
- each (lens, listener) edge carries its own flag
- a global kill switch silences every edge at once without touching them

Disabling everything and then re-enabling restores exactly the per-edge
state that was there before.
"""

from __future__ import annotations

import dataclasses
import difflib
import logging
import sys
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from lensing.errors import NotFound
from lensing.listener import Listener

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    """Normalise a lens or listener name."""
    key = str(name).strip()
    if not key:
        raise ValueError("lens and listener names must be non-empty")
    return sys.intern(key)


def _suggest(name: str, universe: Tuple[str, ...]) -> str:
    """Return a 'did you mean' hint, or an empty string."""
    candidates = difflib.get_close_matches(name, universe, n=3, cutoff=0.4)
    return f" Did you mean: {', '.join(candidates)}?" if candidates else ""


class Registry:
    """
    Thread-safe mapping from lens names to their listeners.

    Every public method takes the lock. Lookups used for dispatch return
    snapshots so transforms run outside the lock.
    """

    def __init__(self) -> None:
        self._lenses: Dict[str, Dict[str, Listener]] = {}
        self._all_enabled = True
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add(self, lens_name: str, listener: Listener) -> Listener:
        """
        Attach a listener to a lens, replacing any listener of the same name.

        A replaced listener keeps its position in dispatch order. The registry
        stores its own copy of the record, so adding one Listener to two
        lenses yields two independently enabled edges.

        Args:
            lens_name: Lens to attach to. Created on first registration.
            listener: Listener record. Left untouched.

        Returns:
            The stored listener.
        """
        lens = normalize_name(lens_name)
        name = normalize_name(listener.name)
        listener = dataclasses.replace(listener, name=name)
        with self._lock:
            edges = self._lenses.setdefault(lens, {})
            replaced = name in edges
            edges[name] = listener
        logger.debug(
            "%s listener %r on lens %r (%s)",
            "replaced" if replaced else "registered",
            name,
            lens,
            listener.kind.value,
        )
        return listener

    def register(
        self,
        lens_name: str,
        listener_name: str,
        transform: Callable[..., Any],
        enabled: bool = True,
        kwargs: bool = False,
    ) -> Listener:
        """Build a Listener from its parts and attach it to a lens."""
        listener = Listener.create(listener_name, transform, enabled=enabled, kwargs=kwargs)
        return self.add(lens_name, listener)

    def delete_listener(self, lens_name: str, listener_name: str) -> Listener:
        """
        Remove a listener from a lens.

        Raises:
            NotFound: If the lens has no listener by that name.
        """
        lens = normalize_name(lens_name)
        with self._lock:
            listener = self._edge(lens, listener_name)
            edges = self._lenses[lens]
            del edges[listener.name]
            if not edges:
                del self._lenses[lens]
        logger.debug("deleted listener %r from lens %r", listener.name, lens)
        return listener

    def clear_all_listeners(self) -> None:
        """Drop every lens and listener and re-arm the kill switch."""
        with self._lock:
            self._lenses.clear()
            self._all_enabled = True
        logger.debug("cleared all listeners")

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    def enable_listener(self, lens_name: str, listener_name: str) -> None:
        """Enable one edge. Raises NotFound if it does not exist."""
        self._set_enabled(lens_name, listener_name, True)

    def disable_listener(self, lens_name: str, listener_name: str) -> None:
        """Disable one edge. Raises NotFound if it does not exist."""
        self._set_enabled(lens_name, listener_name, False)

    def enable_all_listeners(self) -> None:
        """Lift the kill switch; per-edge flags apply again."""
        with self._lock:
            self._all_enabled = True
        logger.debug("all listeners enabled")

    def disable_all_listeners(self) -> None:
        """Silence every edge without touching per-edge flags."""
        with self._lock:
            self._all_enabled = False
        logger.debug("all listeners disabled")

    @property
    def all_enabled(self) -> bool:
        """State of the global kill switch (True means listeners may fire)."""
        with self._lock:
            return self._all_enabled

    def _set_enabled(self, lens_name: str, listener_name: str, enabled: bool) -> None:
        lens = normalize_name(lens_name)
        with self._lock:
            listener = self._edge(lens, listener_name)
            listener.enabled = enabled
        logger.debug(
            "%s listener %r on lens %r",
            "enabled" if enabled else "disabled",
            listener.name,
            lens,
        )

    def _edge(self, lens: str, listener_name: str) -> Listener:
        """Look up an edge; caller holds the lock."""
        name = normalize_name(listener_name)
        edges = self._lenses.get(lens)
        if edges is None:
            raise NotFound(lens, name, _suggest(lens, tuple(self._lenses)))
        listener = edges.get(name)
        if listener is None:
            raise NotFound(lens, name, _suggest(name, tuple(edges)))
        return listener

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def active_listeners(self, lens_name: str) -> Tuple[Listener, ...]:
        """
        Snapshot of listeners that should fire for a lens, in dispatch order.

        Returns an empty tuple for unknown lenses or when the kill switch is off.
        """
        lens = normalize_name(lens_name)
        with self._lock:
            if not self._all_enabled:
                return ()
            edges = self._lenses.get(lens)
            if not edges:
                return ()
            return tuple(listener for listener in edges.values() if listener.enabled)

    def listeners(self, lens_name: str) -> Tuple[Listener, ...]:
        """All listeners on a lens, enabled or not, in dispatch order."""
        lens = normalize_name(lens_name)
        with self._lock:
            return tuple(self._lenses.get(lens, {}).values())

    def lens_names(self) -> Tuple[str, ...]:
        """Names of lenses with at least one listener, in registration order."""
        with self._lock:
            return tuple(self._lenses)

    def has(self, lens_name: str, listener_name: Optional[str] = None) -> bool:
        """Check whether a lens (or one of its edges) is registered."""
        lens = normalize_name(lens_name)
        with self._lock:
            edges = self._lenses.get(lens)
            if edges is None:
                return False
            return listener_name is None or normalize_name(listener_name) in edges

    def is_active(self, lens_name: str, listener_name: str) -> bool:
        """True if the edge exists, is enabled, and the kill switch is off."""
        lens = normalize_name(lens_name)
        with self._lock:
            listener = self._edge(lens, listener_name)
            return self._all_enabled and listener.enabled

    def __len__(self) -> int:
        with self._lock:
            return sum(len(edges) for edges in self._lenses.values())

    def status(self) -> Dict[str, Any]:
        """Return registry diagnostics."""
        with self._lock:
            return {
                "all_enabled": self._all_enabled,
                "lenses": {
                    lens: {name: listener.enabled for name, listener in edges.items()}
                    for lens, edges in self._lenses.items()
                },
                "edges": sum(len(edges) for edges in self._lenses.values()),
            }

    def __repr__(self) -> str:
        state = "on" if self._all_enabled else "off"
        return f"<Registry lenses={len(self._lenses)} edges={len(self)} {state}>"
