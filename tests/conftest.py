"""
AEGIS — Test Infrastructure (conftest.py)
=========================================
Provides:
  - AEGIS_DB_PATH pointed at a throwaway database before main is imported
  - Per-test database files
  - Fake remote authority (idempotent per device/report id)
  - Fake shell fetcher with an offline switch
  - Manual connectivity and deterministic position sources
  - FastAPI TestClient wired to the fakes
"""

import os
import sys
import tempfile
import threading
import time

import pytest

# Ensure project root is on path
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT_DIR)

# ============================================================================
# TEST MODE: module-level app in main.py gets its own database
# ============================================================================
_IMPORT_DIR = tempfile.mkdtemp(prefix="aegis_test_")
os.environ["AEGIS_DB_PATH"] = os.path.join(_IMPORT_DIR, "aegis_import.db")
os.environ.setdefault("AEGIS_LOG_LEVEL", "WARNING")

from app.assets import CacheStorage, Fetcher, ShellController, ShellRequest, ShellResponse  # noqa: E402
from app.assets.models import same_origin  # noqa: E402
from app.connectivity import ConnectivityMonitor, ManualConnectivitySource  # noqa: E402
from app.errors import NetworkError, PositionUnavailable  # noqa: E402
from app.field import FieldService, FixedPositionSource, PositionLocator, PositionSource  # noqa: E402
from app.store import ReportInput, ReportStore, Session  # noqa: E402
from app.sync import BatchResult, RemoteAuthority, SyncEngine  # noqa: E402

SHELL_ORIGIN = "http://localhost"
DEVICE_ID = "device-test"


# ============================================================================
# Fakes
# ============================================================================

class FakeAuthority(RemoteAuthority):
    """
    In-memory ingestion endpoint. Accepting the same (device_id, id) twice
    keeps one record.
    """

    name = "fake"

    def __init__(self):
        self.accepted = {}
        self.calls = []
        self.reject = False
        self.network_down = False
        self.fail_on_call = None
        self.gate = None
        self.entered = threading.Event()

    def submit_batch(self, device_id, reports):
        self.calls.append([r.id for r in reports])
        call_no = len(self.calls)

        if self.gate is not None and call_no == 1:
            self.entered.set()
            self.gate.wait(5)

        if self.network_down:
            raise NetworkError("Authority unreachable: connection refused")
        if self.reject or self.fail_on_call == call_no:
            return BatchResult.fail("Authority returned status 503", status=503)

        for r in reports:
            self.accepted[(device_id, r.id)] = r.to_dict()
        return BatchResult.ok(len(reports), status=200)


class FakeFetcher(Fetcher):
    """Serves registered responses; raises NetworkError while offline."""

    def __init__(self, origin=SHELL_ORIGIN):
        self.origin = origin
        self.routes = {}
        self.offline = False
        self.calls = []

    def _url(self, path_or_url):
        if path_or_url.startswith("http"):
            return path_or_url
        return self.origin + path_or_url

    def serve(self, path_or_url, body=b"", status=200, headers=None, type=None):
        url = self._url(path_or_url)
        if type is None:
            type = "basic" if same_origin(url, self.origin) else "cors"
        self.routes[url] = ShellResponse(
            status=status,
            body=body,
            headers=headers or {"content-type": "text/html"},
            url=url,
            type=type,
        )

    def serve_shell(self, version=b"v1"):
        self.serve("/", b"<html>root " + version + b"</html>")
        self.serve("/index.html", b"<html>index " + version + b"</html>")
        self.serve("/manifest.json", b'{"name": "Aegis"}', headers={"content-type": "application/json"})

    def fetch(self, request):
        self.calls.append(request.url)
        if self.offline:
            raise NetworkError(f"Fetch failed for {request.url}: offline")
        response = self.routes.get(request.url)
        if response is not None:
            return response.clone()
        return ShellResponse(
            status=404,
            body=b"not found",
            url=request.url,
            type="basic" if same_origin(request.url, self.origin) else "cors",
        )


class SlowPositionSource(PositionSource):
    def __init__(self, delay=1.0):
        self.delay = delay

    def current_position(self, timeout):
        time.sleep(self.delay)
        return (1.0, 1.0)


class DeniedPositionSource(PositionSource):
    def current_position(self, timeout):
        raise PositionUnavailable("User denied the request for Geolocation.", reason="denied")


def run_inline(fn):
    fn()


def make_input(incident_type="Flood", severity=1, latitude=6.70, longitude=80.38, timestamp=None, **kwargs):
    return ReportInput(
        incident_type=incident_type,
        severity=severity,
        latitude=latitude,
        longitude=longitude,
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        **kwargs,
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "aegis_test.db")


@pytest.fixture
def store(db_path):
    return ReportStore(db_path)


@pytest.fixture
def logged_in(store):
    store.put_session(Session(responder_name="Responder One", login_timestamp=int(time.time() * 1000)))
    return store


@pytest.fixture
def authority():
    return FakeAuthority()


@pytest.fixture
def engine(store, authority):
    return SyncEngine(store, authority, device_id=DEVICE_ID, batch_size=100)


@pytest.fixture
def connectivity():
    return ManualConnectivitySource(reachable=False)


@pytest.fixture
def monitor(connectivity):
    return ConnectivityMonitor(connectivity)


@pytest.fixture
def service(store, engine, monitor):
    locator = PositionLocator(FixedPositionSource(6.70, 80.38), timeout=0.5)
    svc = FieldService(store, engine, monitor, locator, dispatch=run_inline)
    yield svc
    svc.close()


@pytest.fixture
def fetcher():
    f = FakeFetcher()
    f.serve_shell()
    return f


@pytest.fixture
def cache(db_path):
    return CacheStorage(db_path)


@pytest.fixture
def shell(cache, fetcher):
    return ShellController(cache, fetcher, SHELL_ORIGIN)


@pytest.fixture
def app(db_path, authority, connectivity, fetcher):
    from main import create_app
    return create_app(
        db_path=db_path,
        authority=authority,
        connectivity=connectivity,
        fetcher=fetcher,
        position_source=FixedPositionSource(6.70, 80.38),
        dispatch=run_inline,
    )


@pytest.fixture
def client(app):
    """FastAPI TestClient; entering it runs the lifespan (shell install)."""
    from starlette.testclient import TestClient
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
