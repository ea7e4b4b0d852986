# ============================================================================
# AEGIS Connectivity — Reachability Sources
# ============================================================================
# A source reports the platform's reachability and emits an event when it
# changes. The probe source uses its own APScheduler BackgroundScheduler.
# ============================================================================

import http.client
import logging
import socket
import threading
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger("aegis.connectivity.sources")

ReachabilityCallback = Callable[[bool], None]


class ConnectivitySource(ABC):
    """Port for the host platform's reachability signal."""

    def __init__(self):
        self._callbacks: List[ReachabilityCallback] = []
        self._cb_lock = threading.Lock()

    @abstractmethod
    def is_reachable(self) -> bool:
        """Current reachability as the platform sees it."""
        pass

    def subscribe(self, callback: ReachabilityCallback):
        with self._cb_lock:
            self._callbacks.append(callback)

    def _emit(self, reachable: bool):
        with self._cb_lock:
            callbacks = list(self._callbacks)
        for cb in callbacks:
            cb(reachable)

    def start(self):
        """Begin emitting events. No-op for sources the host drives directly."""
        pass

    def stop(self):
        pass


class ManualConnectivitySource(ConnectivitySource):
    """Reachability set by the host (or a test)."""

    def __init__(self, reachable: bool = False):
        super().__init__()
        self._reachable = reachable

    def is_reachable(self) -> bool:
        return self._reachable

    def set_reachable(self, reachable: bool):
        self._reachable = bool(reachable)
        self._emit(self._reachable)

    def go_online(self):
        self.set_reachable(True)

    def go_offline(self):
        self.set_reachable(False)


class ProbeConnectivitySource(ConnectivitySource):
    """
    Reachability derived from periodically requesting a URL.

    Any HTTP response counts as reachable, including error statuses.
    The first probe runs on the scheduler thread as soon as start() is
    called; until then the source reports unreachable.
    Events are emitted only when the probe result changes.
    """

    def __init__(
        self,
        url: str,
        interval_seconds: int = 15,
        timeout: float = 3,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        super().__init__()
        self.url = url
        self.interval_seconds = interval_seconds
        self.timeout = timeout
        self._scheduler = scheduler
        self._last: Optional[bool] = None

    def probe(self) -> bool:
        req = urllib.request.Request(self.url, method="HEAD")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout):
                pass
            return True
        except urllib.error.HTTPError:
            return True
        except (urllib.error.URLError, http.client.HTTPException, socket.timeout, OSError) as e:
            logger.debug(f"[PROBE] {self.url} unreachable: {e}")
            return False

    def is_reachable(self) -> bool:
        # Offline until the first scheduled probe answers
        return bool(self._last)

    def check(self):
        """Run one probe and emit if the result changed."""
        result = self.probe()
        changed = result != self._last
        self._last = result
        if changed:
            logger.info(f"[PROBE] reachability changed: {'online' if result else 'offline'}")
            self._emit(result)

    def start(self):
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(
                job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30}
            )
        if self._scheduler.running:
            return

        self._scheduler.add_job(
            self.check,
            "interval",
            seconds=self.interval_seconds,
            id="aegis_connectivity_probe",
            replace_existing=True,
            next_run_time=datetime.now(),
        )
        self._scheduler.start()
        logger.info(f"[PROBE] Scheduler started, probing {self.url} every {self.interval_seconds}s")

    def stop(self):
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
