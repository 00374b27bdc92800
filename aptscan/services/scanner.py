# aptscan/services/scanner.py
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from .address import AddressMatcher
from .orientation import CANDIDATE_ORIENTATIONS, Orientation
from .unit import extract_unit

logger = logging.getLogger("scanner")

Recognizer = Callable[[np.ndarray, Orientation], str]
UnitExtractor = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ScanResult:
    address: str
    unit: str
    text: str
    orientation: Orientation


class OrientationRetryScanner:
    """
    Try OCR on a frame under each orientation hypothesis until one yields
    text holding both a matching address and a unit number.

    Sequential mode stops calling OCR at the first success. Parallel mode
    submits every orientation at once but still reports the earliest
    orientation (in candidate order) that succeeds.
    """

    def __init__(
        self,
        recognize: Recognizer,
        matcher: Optional[AddressMatcher] = None,
        unit_extractor: UnitExtractor = extract_unit,
        orientations: Sequence[Orientation] = CANDIDATE_ORIENTATIONS,
        parallel: bool = False,
    ):
        if not orientations:
            raise ValueError("at least one orientation is required")
        self.recognize = recognize
        self.matcher = matcher or AddressMatcher()
        self.unit_extractor = unit_extractor
        self.orientations = tuple(orientations)
        self.parallel = bool(parallel)

    def scan(self, frame: Any) -> Optional[ScanResult]:
        """Scan a Frame (or a bare image array)."""
        image = getattr(frame, "image", frame)
        if self.parallel:
            return self._scan_parallel(image)
        return self._scan_sequential(image)

    def evaluate(self, text: str, orientation: Orientation) -> Optional[ScanResult]:
        """Address + unit from the same text, or None."""
        address = self.matcher.match(text)
        if address is None:
            return None
        unit = self.unit_extractor(text)
        if not unit:
            logger.debug("Address found but no unit (%s): %s", orientation.value, address)
            return None
        return ScanResult(address=address, unit=unit, text=text, orientation=orientation)

    # -------------------------

    def _scan_sequential(self, image: np.ndarray) -> Optional[ScanResult]:
        for orientation in self.orientations:
            text = self._try_recognize(image, orientation)
            if not text:
                continue
            result = self.evaluate(text, orientation)
            if result is not None:
                return result
        logger.debug("All %d orientations exhausted", len(self.orientations))
        return None

    def _scan_parallel(self, image: np.ndarray) -> Optional[ScanResult]:
        with ThreadPoolExecutor(max_workers=len(self.orientations), thread_name_prefix="ocr") as pool:
            futures: List[Future] = [pool.submit(self._try_recognize, image, o) for o in self.orientations]
            try:
                for orientation, fut in zip(self.orientations, futures):
                    text = fut.result()
                    if not text:
                        continue
                    result = self.evaluate(text, orientation)
                    if result is not None:
                        return result
            finally:
                for fut in futures:
                    fut.cancel()
        logger.debug("All %d orientations exhausted", len(self.orientations))
        return None

    def _try_recognize(self, image: np.ndarray, orientation: Orientation) -> str:
        try:
            return (self.recognize(image, orientation) or "").strip()
        except Exception as e:
            logger.debug("OCR failed for %s: %s", orientation.value, e)
            return ""
