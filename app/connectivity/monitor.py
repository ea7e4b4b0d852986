"""
AEGIS Connectivity — Monitor

Holds the online flag and tells listeners about each transition, on the
thread that delivered the source event. The flag is advisory: a send can
still fail while it reads True.
"""
import logging
import threading
from typing import Callable, List

from .sources import ConnectivitySource

logger = logging.getLogger("aegis.connectivity")

ChangeListener = Callable[[bool], None]


class ConnectivityMonitor:

    def __init__(self, source: ConnectivitySource):
        self._source = source
        self._online = bool(source.is_reachable())
        self._listeners: List[ChangeListener] = []
        self._lock = threading.Lock()
        source.subscribe(self._on_source_event)

    def is_online(self) -> bool:
        return self._online

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _on_source_event(self, reachable: bool):
        reachable = bool(reachable)
        with self._lock:
            if reachable == self._online:
                return
            self._online = reachable
            listeners = list(self._listeners)

        logger.info(f"[NET] {'ONLINE' if reachable else 'OFFLINE'} mode")
        for listener in listeners:
            try:
                listener(reachable)
            except Exception as e:
                logger.error(f"[NET] connectivity listener failed: {e}")
