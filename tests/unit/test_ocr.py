from types import SimpleNamespace

import numpy as np
import pytest

from aptscan.services import ocr
from aptscan.services.orientation import Orientation


@pytest.fixture
def fresh_state(monkeypatch):
    state = ocr.OCRState()
    monkeypatch.setattr(ocr, "_state", state)
    return state


@pytest.fixture
def ready(fresh_state):
    fresh_state.initialized = True
    return fresh_state


def test_recognize_requires_init(fresh_state):
    with pytest.raises(ocr.OCRError):
        ocr.recognize(np.zeros((10, 10, 3), dtype=np.uint8))


def test_recognize_rejects_empty_image(ready):
    with pytest.raises(ocr.OCRError):
        ocr.recognize(np.zeros((0, 0, 3), dtype=np.uint8))


def test_recognize_returns_stripped_text(ready, monkeypatch):
    seen = {}

    def fake_image_to_string(img, lang, config):
        seen["shape"] = img.shape
        seen["lang"] = lang
        seen["config"] = config
        return " 419 2ND ST\r\nAPT 7 \n"

    monkeypatch.setattr(ocr.pytesseract, "image_to_string", fake_image_to_string)
    image = np.full((100, 200, 3), 255, dtype=np.uint8)

    assert ocr.recognize(image, Orientation.UP) == "419 2ND ST\nAPT 7"
    assert seen["lang"] == "eng"
    assert "--psm 6" in seen["config"]
    # upscaled to the minimum OCR width
    assert seen["shape"][1] == ready.min_ocr_width


def test_recognize_rotates_before_ocr(ready, monkeypatch):
    shapes = []
    monkeypatch.setattr(ocr.pytesseract, "image_to_string", lambda img, lang, config: shapes.append(img.shape) or "")
    ready.enable_deskew = False
    ready.min_ocr_width = 1
    ready.max_ocr_width = 0
    image = np.full((40, 100, 3), 255, dtype=np.uint8)

    ocr.recognize(image, Orientation.UP)
    ocr.recognize(image, Orientation.RIGHT)
    assert shapes == [(40, 100), (100, 40)]


def test_whitelist_is_quoted(ready, monkeypatch):
    configs = []
    monkeypatch.setattr(ocr.pytesseract, "image_to_string", lambda img, lang, config: configs.append(config) or "")
    ready.whitelist = "0123456789 #"
    ocr.recognize(np.full((50, 50, 3), 255, dtype=np.uint8))
    assert '-c tessedit_char_whitelist="0123456789 #"' in configs[0]


def test_engine_failure_raises_ocr_error(ready, monkeypatch):
    def boom(img, lang, config):
        raise RuntimeError("tesseract crashed")

    monkeypatch.setattr(ocr.pytesseract, "image_to_string", boom)
    with pytest.raises(ocr.OCRError):
        ocr.recognize(np.full((50, 50, 3), 255, dtype=np.uint8))


def test_init_applies_config(fresh_state, monkeypatch):
    monkeypatch.setattr(ocr.subprocess, "run", lambda *a, **kw: SimpleNamespace(returncode=0, stderr=""))
    ocr.init({"lang": "eng+spa", "psm": 4, "whitelist": "None", "gamma": 1.0})

    assert ocr.status() is True
    assert fresh_state.lang == "eng+spa"
    assert fresh_state.psm == 4
    assert fresh_state.whitelist is None
    assert fresh_state.gamma == 1.0


def test_init_without_tesseract_binary(fresh_state, monkeypatch):
    def missing(*a, **kw):
        raise FileNotFoundError("tesseract")

    monkeypatch.setattr(ocr.subprocess, "run", missing)
    with pytest.raises(RuntimeError, match="tesseract binary not found"):
        ocr.init({})
    assert ocr.status() is False


def test_init_rejects_unknown_engine(fresh_state):
    with pytest.raises(RuntimeError, match="Unsupported OCR engine"):
        ocr.init({"engine": "easyocr"})
