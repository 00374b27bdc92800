# aptscan/services/throttle.py
from __future__ import annotations

import logging
import math
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger("throttle")

DEFAULT_MIN_INTERVAL_S = 0.333


class FrameThrottler:
    """
    Gate limiting how often a frame enters the pipeline.

    A frame is admitted only if no run is in flight and at least
    `min_interval_s` has passed since the last admission. Frames that
    arrive while busy are dropped, never queued. Every admission must be
    matched by `release()` once the run finishes (match or not).
    `acquire` returns a lease number; releasing with a lease that is no
    longer current (because it expired) does nothing.

    `max_busy_s` (optional) expires a lease that was never released, so a
    hung OCR call cannot close the gate forever.
    """

    def __init__(self, min_interval_s: float = DEFAULT_MIN_INTERVAL_S, max_busy_s: Optional[float] = None):
        if min_interval_s < 0:
            raise ValueError("min_interval_s must be >= 0")
        if max_busy_s is not None and max_busy_s <= 0:
            raise ValueError("max_busy_s must be > 0")
        self.min_interval_s = float(min_interval_s)
        self.max_busy_s = float(max_busy_s) if max_busy_s is not None else None

        self._lock = threading.Lock()
        self._busy = False
        self._last_admitted = -math.inf
        self._lease = 0
        self.admitted = 0
        self.dropped = 0

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    def admit(self, now: float) -> bool:
        return self.acquire(now) is not None

    def acquire(self, now: float) -> Optional[int]:
        with self._lock:
            if self._busy and self._lease_expired(now):
                logger.warning(
                    "Pipeline lease expired after %.2fs; forcing release", now - self._last_admitted
                )
                self._busy = False

            if self._busy or (now - self._last_admitted) < self.min_interval_s:
                self.dropped += 1
                return None

            self._busy = True
            self._last_admitted = now
            self._lease += 1
            self.admitted += 1
            return self._lease

    def release(self, lease: Optional[int] = None) -> None:
        with self._lock:
            if lease is not None and lease != self._lease:
                logger.debug("Ignoring release of expired lease %d", lease)
                return
            self._busy = False

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "busy": self._busy,
                "admitted": self.admitted,
                "dropped": self.dropped,
                "min_interval_s": self.min_interval_s,
            }

    def _lease_expired(self, now: float) -> bool:
        return self.max_busy_s is not None and (now - self._last_admitted) >= self.max_busy_s
