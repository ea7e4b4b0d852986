"""
AEGIS Shell Cache Module
Versioned cache of application shell assets for offline cold start.
"""
from .fetcher import Fetcher, UrllibFetcher
from .middleware import ShellCacheMiddleware
from .models import CacheStorage, ShellRequest, ShellResponse
from .worker import (
    DEFAULT_MANIFEST,
    AssetInstallError,
    ShellController,
    ShellWorker,
    WorkerState,
)

__all__ = [
    "Fetcher",
    "UrllibFetcher",
    "ShellCacheMiddleware",
    "CacheStorage",
    "ShellRequest",
    "ShellResponse",
    "DEFAULT_MANIFEST",
    "AssetInstallError",
    "ShellController",
    "ShellWorker",
    "WorkerState",
]
