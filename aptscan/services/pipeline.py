# aptscan/services/pipeline.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Optional

from .scanner import OrientationRetryScanner, ScanResult
from .throttle import FrameThrottler

logger = logging.getLogger("pipeline")

ResultSink = Callable[[str, str], None]


class PipelineState(str, Enum):
    IDLE = "idle"
    ADMITTED = "admitted"
    SCANNING = "scanning"
    MATCHED = "matched"
    EXHAUSTED = "exhausted"


class PipelineCoordinator:
    """
    Per-frame pipeline: throttle gate -> orientation scan -> result sink.

    `on_frame` is called from the capture thread and returns immediately;
    admitted frames run on a single worker so at most one run is in flight.
    Each completed run emits at most one (address, unit) pair.
    """

    def __init__(
        self,
        scanner: OrientationRetryScanner,
        sink: ResultSink,
        throttler: Optional[FrameThrottler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scanner = scanner
        self.sink = sink
        self.throttler = throttler or FrameThrottler()
        self.clock = clock

        self._lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pipeline")
        self.last_result: Optional[ScanResult] = None

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    def on_frame(self, frame: Any, now: Optional[float] = None) -> Optional[Future]:
        """
        Offer a frame. Returns the Future of the pipeline run when the frame
        was admitted, None when it was dropped.
        """
        ts = now if now is not None else getattr(frame, "timestamp", None)
        if ts is None:
            ts = self.clock()
        lease = self.throttler.acquire(ts)
        if lease is None:
            return None

        self._set_state(PipelineState.ADMITTED)
        try:
            return self._executor.submit(self._run, frame, lease)
        except RuntimeError:
            # executor already shut down
            self.throttler.release(lease)
            self._set_state(PipelineState.IDLE)
            raise

    def process(self, frame: Any) -> Optional[ScanResult]:
        """
        Run one frame through the scanner and publish a match.

        Bypasses the gate and leaves `state` alone; only gated runs move the
        state machine.
        """
        result = self.scanner.scan(frame)
        if result is None:
            return None

        with self._lock:
            self.last_result = result
        logger.info("----------------------------------")
        logger.info("address: %s", result.address)
        logger.info("apt: %s", result.unit)
        logger.info("----------------------------------")
        try:
            self.sink(result.address, result.unit)
        except Exception:
            logger.error("Result sink failed", exc_info=True)
        return result

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.info("Pipeline shutdown complete")

    # -------------------------

    def _run(self, frame: Any, lease: int) -> Optional[ScanResult]:
        self._set_state(PipelineState.SCANNING)
        try:
            result = self.process(frame)
            self._set_state(PipelineState.MATCHED if result is not None else PipelineState.EXHAUSTED)
            return result
        except Exception:
            logger.error("Pipeline run failed", exc_info=True)
            return None
        finally:
            self.throttler.release(lease)
            self._set_state(PipelineState.IDLE)

    def _set_state(self, state: PipelineState) -> None:
        with self._lock:
            self._state = state
