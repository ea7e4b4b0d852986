# ============================================================================
# AEGIS Shell Cache - Worker Lifecycle
# ============================================================================
# One ShellWorker per cache generation:
#   installing -> installed -> active -> superseded
# A failed install ends in redundant and never activates.
# Fetch policy: cache first, network fallback, write-back of same-origin
# 200 responses, entry document for offline navigations.
# ============================================================================

import logging
from enum import Enum
from typing import List, Optional

from app.errors import AegisError, NetworkError, StorageError

from .fetcher import Fetcher
from .models import CacheStorage, ShellRequest, ShellResponse, same_origin

logger = logging.getLogger("aegis.assets")

DEFAULT_MANIFEST = ["/", "/index.html", "/manifest.json"]
ENTRY_DOCUMENT = "/index.html"


class AssetInstallError(AegisError):
    """A manifest asset could not be fetched or stored."""


class WorkerState(str, Enum):
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    REDUNDANT = "redundant"


class ShellWorker:

    def __init__(
        self,
        generation: str,
        cache: CacheStorage,
        fetcher: Fetcher,
        origin: str,
        manifest: List[str] = None,
        entry_document: str = ENTRY_DOCUMENT,
    ):
        self.generation = generation
        self.cache = cache
        self.fetcher = fetcher
        self.origin = origin.rstrip("/")
        self.manifest = list(manifest or DEFAULT_MANIFEST)
        self.entry_document = entry_document
        self.state = WorkerState.INSTALLING

    def resolve(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return self.origin + (path if path.startswith("/") else "/" + path)

    # ---- Lifecycle ----

    def install(self):
        """Fetch the whole manifest, then store it in one transaction."""
        self.state = WorkerState.INSTALLING
        entries = []
        for path in self.manifest:
            request = ShellRequest(url=self.resolve(path))
            try:
                response = self.fetcher.fetch(request)
            except NetworkError as e:
                self.state = WorkerState.REDUNDANT
                raise AssetInstallError(f"Install of {self.generation} failed on {path}: {e}") from e
            if not response.ok:
                self.state = WorkerState.REDUNDANT
                raise AssetInstallError(
                    f"Install of {self.generation} failed on {path}: status {response.status}"
                )
            entries.append((request, response))

        try:
            self.cache.put_all(self.generation, entries)
        except StorageError as e:
            self.state = WorkerState.REDUNDANT
            raise AssetInstallError(f"Install of {self.generation} could not be stored: {e}") from e

        self.state = WorkerState.INSTALLED
        logger.info(f"[SHELL] Opened cache {self.generation} with {len(entries)} asset(s)")

    def activate(self):
        """Drop every partition that isn't this generation."""
        if self.state not in (WorkerState.INSTALLED, WorkerState.ACTIVE):
            raise AssetInstallError(f"Cannot activate {self.generation} from state {self.state.value}")

        for name in self.cache.keys():
            if name != self.generation:
                logger.info(f"[SHELL] Deleting old cache: {name}")
                self.cache.delete(name)

        self.state = WorkerState.ACTIVE

    # ---- Interception ----

    def _lookup(self, request: ShellRequest) -> Optional[ShellResponse]:
        try:
            return self.cache.match(request)
        except StorageError as e:
            logger.warning(f"[SHELL] cache lookup failed for {request.url}: {e}")
            return None

    def _should_store(self, request: ShellRequest, response: ShellResponse) -> bool:
        return (
            request.method.upper() == "GET"
            and response.status == 200
            and response.type == "basic"
            and same_origin(request.url, self.origin)
        )

    def fetch(self, request: ShellRequest) -> Optional[ShellResponse]:
        """
        Serve a request. Returns None when neither cache nor network can
        answer a non-navigation request.
        """
        cached = self._lookup(request)
        if cached is not None:
            return cached

        try:
            response = self.fetcher.fetch(request)
        except NetworkError as e:
            if request.is_navigation:
                logger.info(f"[SHELL] Offline navigation to {request.url}, serving entry document")
                return self._lookup(ShellRequest(url=self.resolve(self.entry_document)))
            logger.debug(f"[SHELL] {request.url} unavailable offline: {e}")
            return None

        if self._should_store(request, response):
            try:
                self.cache.put(self.generation, request, response.clone())
            except StorageError as e:
                logger.warning(f"[SHELL] write-back failed for {request.url}: {e}")

        return response


class ShellController:
    """
    Holds the active worker and routes every request through it.
    Without an active worker requests go straight to the network.
    """

    def __init__(
        self,
        cache: CacheStorage,
        fetcher: Fetcher,
        origin: str,
        manifest: List[str] = None,
        entry_document: str = ENTRY_DOCUMENT,
    ):
        self.cache = cache
        self.fetcher = fetcher
        self.origin = origin
        self.manifest = manifest
        self.entry_document = entry_document
        self.active: Optional[ShellWorker] = None

    def _new_worker(self, generation: str) -> ShellWorker:
        return ShellWorker(
            generation,
            self.cache,
            self.fetcher,
            self.origin,
            manifest=self.manifest,
            entry_document=self.entry_document,
        )

    def _take_over(self, worker: ShellWorker):
        worker.activate()
        previous = self.active
        if previous is not None and previous is not worker:
            previous.state = WorkerState.SUPERSEDED
            logger.info(f"[SHELL] {previous.generation} superseded by {worker.generation}")
        self.active = worker

    def deploy(self, generation: str) -> ShellWorker:
        """Install a generation and activate it immediately. Raises AssetInstallError."""
        worker = self._new_worker(generation)
        worker.install()
        self._take_over(worker)
        logger.info(f"[SHELL] {generation} active")
        return worker

    def start(self, generation: str) -> ShellWorker:
        """Resume a generation installed by an earlier run, or deploy it."""
        if self.active is not None and self.active.generation == generation:
            return self.active
        if self.cache.has(generation):
            worker = self._new_worker(generation)
            worker.state = WorkerState.INSTALLED
            self._take_over(worker)
            logger.info(f"[SHELL] Resumed cached generation {generation}")
            return worker
        return self.deploy(generation)

    def fetch(self, request: ShellRequest) -> Optional[ShellResponse]:
        if self.active is not None:
            return self.active.fetch(request)
        try:
            return self.fetcher.fetch(request)
        except NetworkError as e:
            logger.debug(f"[SHELL] no active cache and network failed: {e}")
            return None
