"""HTTP layer tests.

The TestClient is used without entering its context, so startup hooks
(camera + tesseract) never run; the pipeline is built with a fake OCR.
"""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from aptscan import main as app_module
from aptscan.services.camera import Frame

GOOD_TEXT = "419 2ND ST, FORT LAUDERDALE, FL 33301\nAPT 7"

client = TestClient(app_module.app)


@pytest.fixture(autouse=True)
def pipeline(monkeypatch):
    app_module.BOARD.clear()
    coord = app_module.build_pipeline(
        app_module.CONFIG, app_module.BOARD.publish, recognize=lambda image, orientation: GOOD_TEXT
    )
    monkeypatch.setattr(app_module, "PIPELINE", coord)
    monkeypatch.setattr(
        app_module.camera, "read_frame", lambda: Frame(image=np.zeros((8, 8, 3), dtype=np.uint8), timestamp=0.0)
    )
    yield coord
    coord.shutdown()
    app_module.BOARD.clear()


def test_result_empty_at_start():
    r = client.get("/result")
    assert r.status_code == 200
    assert r.json() == {"result": None}


def test_scan_publishes_result_then_clear():
    r = client.post("/scan")
    assert r.status_code == 200
    body = r.json()
    assert body["matched"] is True
    assert body["unit"] == "7"
    assert body["address"] == "419 2ND ST, FORT LAUDERDALE, FL, 33301"
    assert body["orientation"] == "up"

    latest = client.get("/result").json()["result"]
    assert latest["unit"] == "7"
    assert "at" in latest

    assert client.post("/result/clear").json() == {"ok": True}
    assert client.get("/result").json() == {"result": None}


def test_scan_without_match(pipeline, monkeypatch):
    monkeypatch.setattr(pipeline.scanner, "recognize", lambda image, orientation: "")
    r = client.post("/scan")
    assert r.status_code == 200
    assert r.json() == {"matched": False}


def test_scan_without_frame(monkeypatch):
    monkeypatch.setattr(app_module.camera, "read_frame", lambda: None)
    assert client.post("/scan").status_code == 503


def test_scan_without_pipeline(monkeypatch):
    monkeypatch.setattr(app_module, "PIPELINE", None)
    assert client.post("/scan").status_code == 503


def test_status_reports_gate(monkeypatch):
    monkeypatch.setattr(app_module.camera, "status", lambda: False)
    body = client.get("/status").json()
    assert body["camera"] is False
    assert body["pipeline"] == "idle"
    assert body["throttle"]["admitted"] == 0


def test_stream_unavailable_without_camera(monkeypatch):
    monkeypatch.setattr(app_module.camera, "status", lambda: False)
    assert client.get("/camera/stream").status_code == 503


def test_index_renders_viewfinder():
    app_module.BOARD.publish("419 2ND ST, FORT LAUDERDALE, FL, 33301", "7")
    r = client.get("/")
    assert r.status_code == 200
    assert app_module.APP_NAME in r.text
    assert '"unit": "7"' in r.text
