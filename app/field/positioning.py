# ============================================================================
# AEGIS Field — Positioning
# ============================================================================
# Position queries are bounded by a timeout. Any error, denial, or timeout
# yields the default coordinate pair with fallback=True.
# ============================================================================

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional, Tuple

from app.errors import PositionUnavailable

logger = logging.getLogger("aegis.positioning")

# Ratnapura
DEFAULT_POSITION = (6.7029, 80.3853)


@dataclass
class Position:
    latitude: float
    longitude: float
    fallback: bool = False
    reason: Optional[str] = None


class PositionSource(ABC):
    """Port for positioning hardware."""

    @abstractmethod
    def current_position(self, timeout: float) -> Tuple[float, float]:
        """Return (latitude, longitude) or raise PositionUnavailable."""
        pass


class FixedPositionSource(PositionSource):
    """A known fix, e.g. one pushed in by a GPS daemon or entered by hand."""

    def __init__(self, latitude: float = None, longitude: float = None):
        self._fix = None
        if latitude is not None and longitude is not None:
            self._fix = (float(latitude), float(longitude))

    def update(self, latitude: float, longitude: float):
        self._fix = (float(latitude), float(longitude))

    def clear(self):
        self._fix = None

    def current_position(self, timeout: float) -> Tuple[float, float]:
        if self._fix is None:
            raise PositionUnavailable("Location information is unavailable.", reason="unavailable")
        return self._fix


class PositionLocator:

    def __init__(
        self,
        source: Optional[PositionSource],
        timeout: float = 5.0,
        default: Tuple[float, float] = DEFAULT_POSITION,
    ):
        self.source = source
        self.timeout = timeout
        self.default = default
        # One worker: a hung source blocks later queries until they time out
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="aegis-position")

    def _fallback(self, reason: str) -> Position:
        return Position(self.default[0], self.default[1], fallback=True, reason=reason)

    def locate(self) -> Position:
        if self.source is None:
            logger.warning("Positioning not available, using default location.")
            return self._fallback("unsupported")

        future = self._executor.submit(self.source.current_position, self.timeout)
        try:
            latitude, longitude = future.result(timeout=self.timeout)
            return Position(float(latitude), float(longitude))
        except FutureTimeout:
            logger.warning("Position request timed out. Using default location.")
            return self._fallback("timeout")
        except PositionUnavailable as e:
            logger.warning(f"Position error: {e} Using default location.")
            return self._fallback(e.reason)
        except Exception as e:
            logger.warning(f"Position source failed: {e}. Using default location.")
            return self._fallback("error")
        finally:
            future.cancel()

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
