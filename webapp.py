#!/usr/bin/env python
"""
Simple Flask front-end for one-shot scan tests.
URL pattern:
  GET  /            → index page with Scan button
  POST /scan        → returns JSON {address, unit, orientation, image_base64}
"""

import base64
import datetime as dt

import cv2
from flask import Flask, jsonify, render_template_string

from aptscan.main import CONFIG
from aptscan.services import camera, ocr
from aptscan.services.address import AddressFilter, AddressMatcher
from aptscan.services.scanner import OrientationRetryScanner

app = Flask(__name__)

SCANNER = OrientationRetryScanner(
    ocr.recognize,
    AddressMatcher(AddressFilter.from_config(CONFIG.filter.model_dump())),
)


# --- helper ---------------------------------------------------------------
def frame_to_base64_jpeg(frame) -> str:
    """Convert a NumPy BGR image to base64-encoded JPEG."""
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), 80])
    if not ok:
        raise RuntimeError("cv2.imencode failed")
    return base64.b64encode(buf.tobytes()).decode("ascii")


# --- routes ---------------------------------------------------------------
INDEX_HTML = """
<!doctype html>
<title>Apt Scanner Test</title>
<style>
 body { font-family:sans-serif; margin:2rem; }
 #img-preview { max-width: 480px; border:1px solid #aaa; }
 #unit { font-size: 6rem; font-weight: bold; }
</style>
<h1>Apartment Label Scan Test</h1>

<button id="scan">Scan Label</button>
<p id="status"></p>
<div id="unit"></div>
<img id="img-preview">

<script>
document.getElementById('scan').onclick = async () => {
    document.getElementById('status').textContent = "Scanning…";
    const resp = await fetch("/scan", {method:"POST"});
    if (!resp.ok) { alert("Request failed"); return; }
    const data = await resp.json();
    document.getElementById('img-preview').src = "data:image/jpeg;base64," + data.image_base64;
    document.getElementById('unit').textContent = data.unit ?? "";
    document.getElementById('status').textContent = data.address
        ? `Address: "${data.address}" (orientation: ${data.orientation})`
        : "No matching address in any orientation.";
};
</script>
"""

@app.route("/", methods=["GET"])
def index():
    return render_template_string(INDEX_HTML)

@app.route("/scan", methods=["POST"])
def scan():
    frame = camera.get_frame()
    if frame is None:
        return jsonify({"error": "no camera frame"}), 503
    res = SCANNER.scan(frame)
    return jsonify({
        "address": res.address if res else None,
        "unit": res.unit if res else None,
        "orientation": res.orientation.value if res else None,
        "image_base64": frame_to_base64_jpeg(frame),
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
    })


if __name__ == "__main__":
    ocr.init(cfg=CONFIG.ocr.model_dump())
    camera.init(
        device=CONFIG.camera.device,
        backend=CONFIG.camera.backend,
        mount=CONFIG.camera.mount,
        position=CONFIG.camera.position,
    )
    # listens on all interfaces so you can browse from a laptop
    app.run(host="0.0.0.0", port=5000, threaded=True)
