# aptscan/main.py
from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services import camera, ocr
from .services.address import AddressFilter, AddressMatcher
from .services.pipeline import PipelineCoordinator
from .services.scanner import OrientationRetryScanner
from .services.throttle import DEFAULT_MIN_INTERVAL_S, FrameThrottler

# -----------------------------------------------------------------------------
# App metadata / logging
# -----------------------------------------------------------------------------
APP_NAME = "Apt Scanner"
APP_VERSION = "0.3.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger(APP_NAME)

# -----------------------------------------------------------------------------
# Config models
# -----------------------------------------------------------------------------
class CameraConfig(BaseModel):
    device: Optional[str] = None
    backend: Optional[str] = None
    resolution: Optional[List[int]] = None   # [w,h]
    preview_fps: Optional[int] = 30
    mount: str = "landscape_left"
    position: str = "back"

class OCRConfig(BaseModel):
    engine: str = "tesseract"
    lang: str = "eng"
    psm: int = 6
    oem: int = 1
    whitelist: Optional[str] = None
    enable_deskew: bool = True
    min_ocr_width: int = 900
    max_ocr_width: int = 1600

class ScanConfig(BaseModel):
    min_interval_s: float = DEFAULT_MIN_INTERVAL_S
    max_busy_s: Optional[float] = None
    parallel: bool = False

class FilterConfig(BaseModel):
    city_substrings: List[str] = ["lauderdale"]
    zip_codes: List[str] = ["33301"]
    street_substrings: List[str] = ["419", "2nd"]

class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(extra="allow", case_sensitive=False)

    camera: CameraConfig = Field(default_factory=CameraConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)

    server: Optional[Dict[str, Any]] = None

# -----------------------------------------------------------------------------
# Load config.yaml
# -----------------------------------------------------------------------------
def load_config(path: Optional[Path] = None) -> AppConfig:
    # config.yaml at the project root unless APTSCAN_CONFIG points elsewhere
    cfg_path = Path(path or os.environ.get("APTSCAN_CONFIG") or Path(__file__).resolve().parent.parent / "config.yaml")
    if not cfg_path.exists():
        log.warning("config.yaml not found at %s; using defaults", cfg_path)
        return AppConfig()
    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    try:
        return AppConfig(**raw)
    except Exception as e:
        raise RuntimeError(f"Invalid config.yaml: {e}") from e

CONFIG: AppConfig = load_config()

# -----------------------------------------------------------------------------
# Result sink
# -----------------------------------------------------------------------------
class ResultBoard:
    """Latest (address, unit) shown full-screen until dismissed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Optional[Dict[str, str]] = None

    def publish(self, address: str, unit: str) -> None:
        with self._lock:
            self._latest = {
                "address": address,
                "unit": unit,
                "at": datetime.now(timezone.utc).isoformat(),
            }

    def latest(self) -> Optional[Dict[str, str]]:
        with self._lock:
            return dict(self._latest) if self._latest else None

    def clear(self) -> None:
        with self._lock:
            self._latest = None


def build_pipeline(cfg: AppConfig, sink, recognize=ocr.recognize) -> PipelineCoordinator:
    matcher = AddressMatcher(AddressFilter.from_config(cfg.filter.model_dump()))
    scanner = OrientationRetryScanner(recognize, matcher, parallel=cfg.scan.parallel)
    throttler = FrameThrottler(cfg.scan.min_interval_s, cfg.scan.max_busy_s)
    return PipelineCoordinator(scanner, sink, throttler)

# -----------------------------------------------------------------------------
# Globals & framework
# -----------------------------------------------------------------------------
app = FastAPI(title=APP_NAME, version=APP_VERSION)
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

BOARD = ResultBoard()
PIPELINE: Optional[PipelineCoordinator] = None

# -----------------------------------------------------------------------------
# Startup / Shutdown
# -----------------------------------------------------------------------------
@app.on_event("startup")
async def on_startup() -> None:
    global PIPELINE
    log.info("Starting %s v%s", APP_NAME, APP_VERSION)

    try:
        ocr.init(cfg=CONFIG.ocr.model_dump())
    except Exception as e:
        log.error("OCR init failed: %s", e, exc_info=True)

    PIPELINE = build_pipeline(CONFIG, BOARD.publish)

    try:
        camera.init(
            device=CONFIG.camera.device,
            backend=CONFIG.camera.backend,
            resolution=tuple(CONFIG.camera.resolution) if CONFIG.camera.resolution else (1280, 720),
            preview_fps=CONFIG.camera.preview_fps or 30,
            mount=CONFIG.camera.mount,
            position=CONFIG.camera.position,
        )
        camera.start_feed(PIPELINE.on_frame)
        log.info("Camera initialized.")
    except Exception as e:
        log.error("Camera init failed: %s", e, exc_info=True)

    log.info("Startup complete.")

@app.on_event("shutdown")
async def on_shutdown() -> None:
    try:
        camera.shutdown()
    except Exception:
        log.warning("Camera shutdown failed", exc_info=True)
    if PIPELINE is not None:
        PIPELINE.shutdown(wait=False)
    log.info("Shutdown complete.")

# -----------------------------------------------------------------------------
# Viewfinder
# -----------------------------------------------------------------------------
@app.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(
        request, "index.html", {"app_name": APP_NAME, "version": APP_VERSION, "result": BOARD.latest()}
    )

@app.get("/camera/stream")
def camera_stream():
    if not camera.status():
        raise HTTPException(503, "Camera not ready")
    return StreamingResponse(camera.mjpeg_stream(), media_type="multipart/x-mixed-replace; boundary=frame")

# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------
@app.get("/result")
def result_latest():
    return {"result": BOARD.latest()}

@app.post("/result/clear")
def result_clear():
    BOARD.clear()
    return {"ok": True}

@app.post("/scan")
def scan_now():
    """Run the orientation scan on the current frame, outside the throttle gate."""
    if PIPELINE is None:
        raise HTTPException(503, "Pipeline not ready")
    frame = camera.read_frame()
    if frame is None:
        raise HTTPException(503, "No camera frame available")
    try:
        res = PIPELINE.process(frame)
    except Exception as e:
        raise HTTPException(500, f"Scan error: {e}")
    if res is None:
        return {"matched": False}
    return {"matched": True, "address": res.address, "unit": res.unit, "orientation": res.orientation.value}

@app.get("/status")
def status():
    return {
        "camera": camera.status(),
        "ocr": ocr.status(),
        "pipeline": PIPELINE.state.value if PIPELINE else None,
        "throttle": PIPELINE.throttler.stats() if PIPELINE else None,
    }


if __name__ == "__main__":
    import uvicorn

    server = CONFIG.server or {}
    uvicorn.run(app, host=str(server.get("host", "0.0.0.0")), port=int(server.get("port", 8000)))
