# ================================================================
# AEGIS — Field Device Core
# Offline-first report store, sync engine, and shell cache host
# ================================================================

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from app.assets import AssetInstallError, CacheStorage, ShellCacheMiddleware, ShellController, UrllibFetcher
from app.config import DeviceConfig
from app.connectivity import ConnectivityMonitor, ManualConnectivitySource, ProbeConnectivitySource
from app.field import FieldService, PositionLocator, register_field_routes
from app.store import ReportStore
from app.sync import HttpAuthority, SyncEngine

logging.basicConfig(
    level=os.environ.get("AEGIS_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("aegis.main")

# ================================================================
# PATHS
# ================================================================

BASE_DIR = Path(__file__).resolve().parent
DB_PATH = Path(os.environ.get("AEGIS_DB_PATH", BASE_DIR / "aegis.db"))


def _default_connectivity(config: DeviceConfig):
    probe_url = config.get("probe_url") or config.get("authority_url")
    if probe_url:
        return ProbeConnectivitySource(
            probe_url,
            interval_seconds=config.get("probe_interval_seconds"),
            timeout=config.get("probe_timeout_seconds"),
        )
    logger.warning("No probe or authority URL configured; connectivity stays offline")
    return ManualConnectivitySource(reachable=False)


def create_app(
    db_path=None,
    authority=None,
    connectivity=None,
    fetcher=None,
    position_source=None,
    **service_options,
) -> FastAPI:
    """
    Build the device application. Every platform port can be injected;
    anything not supplied is built from DeviceConfig.
    """
    db_path = db_path or DB_PATH
    config = DeviceConfig(db_path)

    store = ReportStore(db_path)
    authority = authority or HttpAuthority(
        config.get("authority_url"),
        timeout=config.get("sync_timeout_seconds"),
    )
    engine = SyncEngine(
        store,
        authority,
        device_id=config.device_id(),
        batch_size=config.get("sync_batch_size"),
    )

    connectivity = connectivity or _default_connectivity(config)
    monitor = ConnectivityMonitor(connectivity)

    locator = PositionLocator(
        position_source,
        timeout=config.get("position_timeout_seconds"),
        default=(config.get("default_latitude"), config.get("default_longitude")),
    )
    service = FieldService(store, engine, monitor, locator, **service_options)

    origin = config.get("origin_url")
    controller = None
    if origin or fetcher is not None:
        origin = origin or "http://localhost"
        fetcher = fetcher or UrllibFetcher(origin, timeout=config.get("fetch_timeout_seconds"))
        controller = ShellController(
            CacheStorage(db_path),
            fetcher,
            origin,
            manifest=config.get("shell_manifest"),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if controller is not None:
            try:
                controller.start(config.get("cache_generation"))
            except AssetInstallError as e:
                logger.warning(f"Shell cache not installed: {e}")
        connectivity.start()
        service.start()
        logger.info("AEGIS field core started")
        yield
        connectivity.stop()
        service.close()

    app = FastAPI(title="AEGIS Field Core", lifespan=lifespan)
    app.state.config = config
    app.state.store = store
    app.state.engine = engine
    app.state.monitor = monitor
    app.state.service = service
    app.state.shell = controller

    if controller is not None:
        app.add_middleware(ShellCacheMiddleware, controller=controller)

    register_field_routes(app, service)
    return app


app = create_app()
