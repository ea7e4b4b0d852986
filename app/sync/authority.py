# ============================================================================
# AEGIS Sync — Remote Authority Interface
# ============================================================================
# The report-ingestion endpoint is an opaque peer. It accepts an ordered
# batch and answers for the whole batch. It must accept a resubmitted
# (device_id, id) pair without creating a duplicate.
# ============================================================================

import http.client
import json
import logging
import socket
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from app.errors import NetworkError
from app.store.models import IncidentReport

logger = logging.getLogger("aegis.sync.authority")


@dataclass
class BatchResult:
    """Result of one batch submission."""
    success: bool
    accepted: int = 0
    status: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, accepted: int, **kwargs):
        return cls(success=True, accepted=accepted, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs):
        return cls(success=False, error=error, **kwargs)


class RemoteAuthority(ABC):
    """Port for the remote report-ingestion endpoint."""

    name: str = "base"

    @abstractmethod
    def submit_batch(self, device_id: str, reports: List[IncidentReport]) -> BatchResult:
        """
        Send an ordered batch. Returns a failed BatchResult for a rejected
        batch; raises NetworkError if the peer could not be reached.
        """
        pass

    def is_configured(self) -> bool:
        return True


class HttpAuthority(RemoteAuthority):
    """JSON-over-HTTP ingestion endpoint."""

    name = "http"

    def __init__(self, url: str, timeout: float = 30):
        self.url = url
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.url)

    def submit_batch(self, device_id: str, reports: List[IncidentReport]) -> BatchResult:
        if not self.is_configured():
            return BatchResult.fail("No authority URL configured")

        payload = {
            "device_id": device_id,
            "reports": [r.to_dict() for r in reports],
        }
        req = urllib.request.Request(
            self.url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = resp.getcode()
                resp.read()
        except urllib.error.HTTPError as e:
            error_body = e.read().decode(errors="replace") if e.fp else str(e)
            logger.error(f"Authority rejected batch: {e.code} {error_body[:200]}")
            return BatchResult.fail(f"Authority returned status {e.code}", status=e.code)
        except (urllib.error.URLError, http.client.HTTPException, socket.timeout, TimeoutError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise NetworkError(f"Authority unreachable: {reason}") from e

        if 200 <= status < 300:
            logger.info(f"Authority accepted {len(reports)} report(s)")
            return BatchResult.ok(len(reports), status=status)

        return BatchResult.fail(f"Authority returned status {status}", status=status)
