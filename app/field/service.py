# ============================================================================
# AEGIS Field — Core Service
# ============================================================================
# The narrow interface the presentation layer calls: submit and query
# reports, manage the responder session, trigger sync, and subscribe to
# live results, connectivity, and sync status.
# ============================================================================

import base64
import binascii
import logging
import re
import threading
import time
from typing import Callable, List, Optional

from app.connectivity import ConnectivityMonitor
from app.errors import ValidationError
from app.store import PENDING, IncidentReport, ReportFilter, ReportInput, ReportStore, Session, Subscription
from app.sync import SyncEngine, SyncResult

from .positioning import PositionLocator

logger = logging.getLogger("aegis.field")

INCIDENT_TYPES = ("Road Block", "Flood", "Landslide", "Power Failure")

SEVERITY_LABELS = {
    1: "Critical",
    2: "High",
    3: "Medium",
    4: "Low",
    5: "Minimal",
}

MAX_PHOTO_BYTES = 2 * 1024 * 1024

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=.+-]+)*;base64,(?P<data>.*)$", re.DOTALL)


def now_ms() -> int:
    return int(time.time() * 1000)


def encode_photo(raw: bytes, mime_type: str = "image/jpeg") -> str:
    """Encode captured image bytes as an inline data URL, enforcing the 2 MiB cap."""
    if len(raw) > MAX_PHOTO_BYTES:
        raise ValidationError("Image too large (max 2MB)", field="photo")
    return f"data:{mime_type};base64,{base64.b64encode(raw).decode('ascii')}"


def photo_size(photo: str) -> int:
    """Decoded byte size of an inline photo."""
    match = _DATA_URL.match(photo)
    if not match:
        raise ValidationError("Photo must be a base64 data URL", field="photo")
    try:
        return len(base64.b64decode(match.group("data"), validate=True))
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Photo is not valid base64: {e}", field="photo") from e


def _run_in_thread(fn: Callable[[], object]):
    threading.Thread(target=fn, name="aegis-sync", daemon=True).start()


class FieldService:

    def __init__(
        self,
        store: ReportStore,
        engine: SyncEngine,
        monitor: ConnectivityMonitor,
        locator: PositionLocator,
        clock: Callable[[], int] = now_ms,
        dispatch: Callable[[Callable[[], object]], None] = _run_in_thread,
    ):
        self.store = store
        self.engine = engine
        self.monitor = monitor
        self.locator = locator
        self._clock = clock
        self._dispatch = dispatch
        self._unbind = engine.bind_connectivity(monitor)

    # ---- Reports ----

    def create_report(
        self,
        incident_type: str,
        severity: int,
        latitude: float = None,
        longitude: float = None,
        photo: str = None,
    ) -> IncidentReport:
        """
        Validate and save a report locally. Coordinates come from the
        position source when the caller doesn't supply both.
        """
        if incident_type not in INCIDENT_TYPES:
            raise ValidationError(f"Unknown incident type: {incident_type!r}", field="incident_type")
        if isinstance(severity, bool) or not isinstance(severity, int) or severity not in SEVERITY_LABELS:
            raise ValidationError("Severity must be an integer from 1 to 5", field="severity")
        if photo is not None and photo_size(photo) > MAX_PHOTO_BYTES:
            raise ValidationError("Image too large (max 2MB)", field="photo")

        fallback = False
        if latitude is None or longitude is None:
            position = self.locator.locate()
            latitude, longitude, fallback = position.latitude, position.longitude, position.fallback
        else:
            _check_coordinates(latitude, longitude)

        report_id = self.store.create(ReportInput(
            incident_type=incident_type,
            severity=severity,
            severity_label=SEVERITY_LABELS[severity],
            latitude=float(latitude),
            longitude=float(longitude),
            timestamp=self._clock(),
            photo=photo,
            location_fallback=fallback,
        ))
        return self.store.get(report_id)

    def list_reports(self, report_filter: ReportFilter = None) -> List[IncidentReport]:
        return self.store.query(report_filter).all()

    def pending_count(self) -> int:
        return self.store.query(PENDING).count()

    def dashboard_summary(self) -> dict:
        return self.store.stats()

    # ---- Session ----

    def login(self, responder_name: str) -> Session:
        name = (responder_name or "").strip() if isinstance(responder_name, str) else ""
        if not name:
            raise ValidationError("Responder name is required", field="responder_name")

        session = Session(responder_name=name, login_timestamp=self._clock())
        self.store.put_session(session)
        logger.info(f"User {name} logged in locally.")

        if self.monitor.is_online():
            self._dispatch(self.engine.sync)
        return session

    def logout(self):
        self.store.clear_session()
        logger.info("User logged out and local session cleared.")

    def current_session(self) -> Optional[Session]:
        return self.store.get_session()

    def is_authenticated(self) -> bool:
        return self.store.get_session() is not None

    # ---- Sync ----

    def trigger_sync(self) -> SyncResult:
        return self.engine.sync()

    def start(self):
        """Startup trigger: sync right away if online and logged in."""
        if self.monitor.is_online() and self.is_authenticated():
            self._dispatch(self.engine.sync)

    def close(self):
        self._unbind()
        self.locator.close()

    # ---- Subscriptions ----

    def subscribe_reports(self, listener, report_filter: ReportFilter = None) -> Subscription:
        return self.store.subscribe(report_filter or ReportFilter(), listener)

    def subscribe_pending_count(self, listener: Callable[[int], None]) -> Subscription:
        return self.store.subscribe(PENDING, lambda reports: listener(len(reports)))

    def on_connectivity_change(self, listener: Callable[[bool], None]):
        return self.monitor.on_change(listener)

    def on_sync_status(self, listener):
        return self.engine.on_status(listener)

    def status(self) -> dict:
        session = self.store.get_session()
        last = self.engine.last_result
        return {
            "online": self.monitor.is_online(),
            "authenticated": session is not None,
            "responder_name": session.responder_name if session else None,
            "pending": self.pending_count(),
            "syncing": self.engine.in_flight,
            "last_sync": last.to_dict() if last else None,
        }


def _check_coordinates(latitude, longitude):
    for name, value, bound in (("latitude", latitude, 90), ("longitude", longitude, 180)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{name} must be a number", field=name)
        if not -bound <= value <= bound:
            raise ValidationError(f"{name} out of range", field=name)
