# aptscan/services/ocr.py
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
import pytesseract

from .orientation import Orientation, orient

logger = logging.getLogger("ocr")


class OCRError(RuntimeError):
    """Tesseract could not produce text for an image."""


# =========================
# State / configuration
# =========================

@dataclass
class OCRState:
    engine: str = "tesseract"
    lang: str = "eng"
    # address labels are multi-line blocks
    psm: int = 6
    oem: int = 1
    whitelist: Optional[str] = None

    # preprocessing
    enable_deskew: bool = True        # small-angle only; quarter turns come from Orientation
    gamma: float = 1.1
    denoise: bool = True
    unsharp: bool = True
    adaptive_thresh: bool = True
    invert_if_needed: bool = True

    # upscale small frames so OCR has enough pixels; cap large ones for speed
    min_ocr_width: int = 900
    max_ocr_width: int = 1600

    initialized: bool = False


_state = OCRState()


# =========================
# Public API
# =========================

def init(cfg: Optional[Dict[str, Any]] = None) -> None:
    """
    Initialize OCR module.
    Optional config keys honored:
      engine, lang, psm, oem, whitelist,
      enable_deskew, gamma, denoise, unsharp, adaptive_thresh, invert_if_needed,
      min_ocr_width, max_ocr_width
    Raises RuntimeError if the tesseract binary is unusable.
    """
    global _state
    cfg = cfg or {}
    _state.engine = str(cfg.get("engine", _state.engine))
    _state.lang = str(cfg.get("lang", _state.lang))
    _state.psm = int(cfg.get("psm", _state.psm))
    _state.oem = int(cfg.get("oem", _state.oem))

    wl = cfg.get("whitelist", _state.whitelist)
    _state.whitelist = None if wl in (None, "", "null", "None") else str(wl)

    _state.enable_deskew = bool(cfg.get("enable_deskew", _state.enable_deskew))
    _state.gamma = float(cfg.get("gamma", _state.gamma))
    _state.denoise = bool(cfg.get("denoise", _state.denoise))
    _state.unsharp = bool(cfg.get("unsharp", _state.unsharp))
    _state.adaptive_thresh = bool(cfg.get("adaptive_thresh", _state.adaptive_thresh))
    _state.invert_if_needed = bool(cfg.get("invert_if_needed", _state.invert_if_needed))
    _state.min_ocr_width = int(cfg.get("min_ocr_width", _state.min_ocr_width))
    _state.max_ocr_width = int(cfg.get("max_ocr_width", _state.max_ocr_width))

    if _state.engine.lower() != "tesseract":
        raise RuntimeError(f"Unsupported OCR engine: {_state.engine}")

    try:
        out = subprocess.run(["tesseract", "--version"], capture_output=True, text=True, check=False)
        if out.returncode != 0:
            raise RuntimeError(out.stderr.strip() or "tesseract not available")
    except FileNotFoundError:
        raise RuntimeError("tesseract binary not found; install tesseract-ocr")

    _state.initialized = True
    logger.info("OCR initialized: engine=%s, lang=%s, psm=%d, oem=%d", _state.engine, _state.lang, _state.psm, _state.oem)


def status() -> bool:
    return _state.initialized


def recognize(image: np.ndarray, orientation: Orientation = Orientation.UP) -> str:
    """
    OCR one frame under one orientation hypothesis.
    Returns the recognized text (may be blank). Raises OCRError on failure.
    """
    if not _state.initialized:
        raise OCRError("OCR not initialized")
    if image is None or getattr(image, "size", 0) == 0:
        raise OCRError("Empty image")

    upright = orient(image, orientation)
    prepared = _preprocess(upright, _state)
    text = _run_tesseract(prepared, _state)
    logger.debug("OCR %s: %d chars", Orientation(orientation).value, len(text))
    return text.replace("\r", "").strip()


# =========================
# Core steps
# =========================

def _preprocess(img: np.ndarray, st: OCRState) -> np.ndarray:
    """Grayscale, normalize size/contrast, deskew, binarize."""
    if img.ndim == 3:
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    else:
        gray = img.copy()

    h, w = gray.shape[:2]
    target = None
    if w < st.min_ocr_width:
        target = st.min_ocr_width
    elif st.max_ocr_width and w > st.max_ocr_width:
        target = st.max_ocr_width
    if target:
        scale = target / float(max(1, w))
        interp = cv2.INTER_CUBIC if scale > 1.0 else cv2.INTER_AREA
        gray = cv2.resize(gray, (max(1, int(w * scale)), max(1, int(h * scale))), interpolation=interp)

    if st.gamma and abs(st.gamma - 1.0) > 1e-3:
        table = (np.linspace(0, 1, 256) ** (1.0 / max(1e-3, st.gamma))) * 255.0
        gray = cv2.LUT(gray, np.clip(table, 0, 255).astype(np.uint8))

    if st.denoise:
        gray = cv2.bilateralFilter(gray, d=7, sigmaColor=50, sigmaSpace=50)

    if st.enable_deskew:
        angle = _estimate_skew_angle(gray)
        if abs(angle) > 0.5:
            gray = _rotate_bound(gray, -angle)

    if st.unsharp:
        blur = cv2.GaussianBlur(gray, (0, 0), 1.0)
        gray = cv2.addWeighted(gray, 1.6, blur, -0.6, 0)

    if st.adaptive_thresh:
        out = cv2.adaptiveThreshold(gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 31, 10)
    else:
        _thr, out = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

    # tesseract prefers dark text on light background
    if st.invert_if_needed and float(np.mean(out)) < 75:
        out = cv2.bitwise_not(out)
    return out


def _run_tesseract(img: np.ndarray, st: OCRState) -> str:
    tokens: List[str] = [f"--oem {int(st.oem)}", f"--psm {int(st.psm)}"]
    if st.whitelist:
        tokens.append(f"-c tessedit_char_whitelist={_quote_tess_value(st.whitelist)}")
    config = " ".join(tokens)

    try:
        return pytesseract.image_to_string(img, lang=st.lang, config=config)
    except Exception as e:
        logger.debug("Tesseract failed: %s", e, exc_info=True)
        raise OCRError(f"OCR text extraction failed: {e}") from e


# =========================
# Utilities
# =========================

def _quote_tess_value(val: str) -> str:
    return '"' + val.replace('\\', '\\\\').replace('"', '\\"') + '"'


def _estimate_skew_angle(gray: np.ndarray) -> float:
    edges = cv2.Canny(gray, 50, 150)
    lines = cv2.HoughLines(edges, 1, np.pi / 180.0, threshold=120)
    if lines is None:
        return 0.0
    angles = []
    for rho_theta in lines:
        _, theta = rho_theta[0]
        angle = (theta * 180.0 / np.pi) - 90.0
        if -45 <= angle <= 45:
            angles.append(angle)
    return float(np.median(angles)) if angles else 0.0


def _rotate_bound(gray: np.ndarray, angle_deg: float) -> np.ndarray:
    h, w = gray.shape[:2]
    center = (w // 2, h // 2)
    m = cv2.getRotationMatrix2D(center, angle_deg, 1.0)
    cos, sin = abs(m[0, 0]), abs(m[0, 1])
    new_w = int((h * sin) + (w * cos))
    new_h = int((h * cos) + (w * sin))
    m[0, 2] += (new_w / 2) - center[0]
    m[1, 2] += (new_h / 2) - center[1]
    return cv2.warpAffine(gray, m, (new_w, new_h), flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE)
