# ============================================================================
# AEGIS Shell Cache - Network Fetcher
# ============================================================================

import http.client
import logging
import socket
import urllib.error
import urllib.request
from abc import ABC, abstractmethod

from app.errors import NetworkError

from .models import ShellRequest, ShellResponse, same_origin

logger = logging.getLogger("aegis.assets.fetcher")

# Hop-by-hop headers never stored or replayed
_SKIP_HEADERS = {"connection", "transfer-encoding", "keep-alive", "content-length"}


class Fetcher(ABC):
    """Port for the network side of the shell cache."""

    @abstractmethod
    def fetch(self, request: ShellRequest) -> ShellResponse:
        """Return the response (any status). Raise NetworkError if there is none."""
        pass


class UrllibFetcher(Fetcher):
    """Fetches from the deployment origin. Responses from other origins are typed cors/opaque."""

    def __init__(self, origin: str, timeout: float = 10):
        self.origin = origin.rstrip("/")
        self.timeout = timeout

    def _response_type(self, request: ShellRequest, final_url: str) -> str:
        if same_origin(request.url, self.origin) and same_origin(final_url, self.origin):
            return "basic"
        return "cors" if request.mode == "cors" else "opaque"

    def fetch(self, request: ShellRequest) -> ShellResponse:
        req = urllib.request.Request(
            request.url,
            headers=dict(request.headers),
            method=request.method.upper(),
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = resp.getcode()
                body = resp.read()
                headers = dict(resp.headers.items())
                final_url = resp.geturl()
        except urllib.error.HTTPError as e:
            status = e.code
            try:
                body = e.read() if e.fp else b""
            except (http.client.HTTPException, OSError):
                body = b""
            headers = dict(e.headers.items()) if e.headers else {}
            final_url = e.geturl() or request.url
        except (urllib.error.URLError, http.client.HTTPException, socket.timeout, TimeoutError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise NetworkError(f"Fetch failed for {request.url}: {reason}") from e

        return ShellResponse(
            status=status,
            body=body,
            headers={k: v for k, v in headers.items() if k.lower() not in _SKIP_HEADERS},
            url=final_url,
            type=self._response_type(request, final_url),
            redirected=final_url != request.url,
        )
