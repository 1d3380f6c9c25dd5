"""
Flask-based web UI: detection controls, live detections panel and an MJPEG
stream of the camera with the overlay composited on top.
"""

import cv2
import time
import asyncio
import concurrent.futures
import logging
import threading
import numpy as np
from typing import Optional
from flask import Flask, Response, render_template_string, jsonify

from .config import StreamConfig
from .controller import DetectionController
from .errors import CameraUnavailable, InvalidState


logger = logging.getLogger(__name__)


PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Vision Bot</title>
  <style>
    body { font-family: sans-serif; background: #eef2ff; margin: 0; padding: 24px; }
    .layout { display: flex; gap: 24px; flex-wrap: wrap; max-width: 1200px; margin: auto; }
    .card { background: #fff; border-radius: 12px; padding: 20px; box-shadow: 0 4px 16px rgba(0,0,0,.1); }
    .video { position: relative; width: 640px; max-width: 100%; aspect-ratio: 4/3; background: #111; }
    .video img { width: 100%; height: 100%; object-fit: cover; }
    .hint { position: absolute; inset: 0; display: flex; align-items: center; justify-content: center;
            color: #fff; background: rgba(17,17,17,.5); flex-direction: column; }
    button { padding: 12px 32px; border: 0; border-radius: 8px; color: #fff; font-weight: bold; cursor: pointer; }
    #start { background: #2563eb; } #stop { background: #dc2626; }
    .bar { background: #e5e7eb; border-radius: 4px; height: 8px; }
    .bar div { background: #3b82f6; height: 8px; border-radius: 4px; }
    .item { border: 1px solid #bfdbfe; border-radius: 8px; padding: 10px; margin-bottom: 8px; }
    .row { display: flex; justify-content: space-between; margin-bottom: 6px; }
    #loading, #error { text-align: center; padding: 80px; }
  </style>
</head>
<body>
  <div id="loading" class="card">Loading AI Model...</div>
  <div id="error" class="card" hidden><h2>Error</h2><p id="error-text"></p></div>
  <div id="app" hidden>
    <h1 style="text-align:center">Vision Bot</h1>
    <div class="layout">
      <div class="card">
        <div class="video">
          <img src="/stream" alt="camera">
          <div id="hint" class="hint"><strong>Camera Ready</strong><small>Click "Start Detection" to begin</small></div>
        </div>
        <p id="message" style="color:#dc2626"></p>
        <div style="text-align:center">
          <button id="start" onclick="control('start')">Start Detection</button>
          <button id="stop" onclick="control('stop')" hidden>Stop Detection</button>
        </div>
      </div>
      <div>
        <div class="card">
          <h2>Detected Objects</h2>
          <div id="detections"><p>No objects detected yet</p></div>
          <div id="total" hidden>Total Objects: <strong id="count"></strong></div>
        </div>
        <div class="card" style="margin-top:24px">
          <h3>About</h3>
          <p>{{ about }}</p>
        </div>
      </div>
    </div>
  </div>
<script>
function show(id, visible) { document.getElementById(id).hidden = !visible; }

async function control(action) {
  const res = await fetch('/api/' + action, {method: 'POST'});
  const body = await res.json().catch(() => ({error: res.statusText}));
  document.getElementById('message').textContent = res.ok ? '' : body.error;
}

function element(tag, text) {
  const node = document.createElement(tag);
  if (text !== undefined) node.textContent = text;
  return node;
}

function renderDetections(list) {
  const panel = document.getElementById('detections');
  if (list.length === 0) {
    panel.replaceChildren(element('p', 'No objects detected yet'));
    show('total', false);
    return;
  }
  panel.replaceChildren(...list.map(d => {
    const row = element('div');
    row.className = 'row';
    row.append(element('strong', d['class']), element('span', d.percent + '%'));
    const fill = element('div');
    fill.style.width = (d.score * 100) + '%';
    const bar = element('div');
    bar.className = 'bar';
    bar.append(fill);
    const item = element('div');
    item.className = 'item';
    item.append(row, bar);
    return item;
  }));
  document.getElementById('count').textContent = list.length;
  show('total', true);
}

async function poll() {
  try {
    const status = await (await fetch('/api/status')).json();
    show('loading', status.state === 'unloaded' || status.state === 'loading');
    show('error', status.state === 'failed');
    show('app', status.state === 'ready' || status.state === 'active');
    document.getElementById('error-text').textContent = status.message || '';
    const active = status.state === 'active';
    show('start', !active);
    show('stop', active);
    show('hint', !active);
    if (status.state !== 'failed') {
      document.getElementById('message').textContent = status.message || '';
    }
    const detections = await (await fetch('/api/detections')).json();
    renderDetections(detections.detections);
  } catch (e) {
    console.error(e);
  }
  setTimeout(poll, 250);
}
poll();
</script>
</body>
</html>
"""

ABOUT_TEXT = (
    "This vision bot uses a YOLOv8 model trained on COCO to detect and identify "
    "objects in real time. It can recognize 80 object classes including people, "
    "animals, vehicles, and everyday items."
)


class MJPEGStreamer:
    """
    Web UI and MJPEG streaming server using Flask.

    Flask handles requests on its own threads; detection control calls are
    submitted to the controller's event loop.
    """

    def __init__(self, config: StreamConfig, controller: DetectionController,
                 loop: asyncio.AbstractEventLoop, control_timeout: float = 30.0):
        """
        Initialize streamer.

        Args:
            config: Stream configuration
            controller: Detection controller to expose
            loop: Event loop the controller runs on
            control_timeout: Seconds to wait for start/stop to complete
        """
        self.config = config
        self.controller = controller
        self.loop = loop
        self.control_timeout = control_timeout
        self.app = Flask(__name__)
        self.app.logger.setLevel(logging.WARNING)

        self.start_time = time.time()
        self._placeholder: Optional[bytes] = None

        self._setup_routes()

        self.server_thread: Optional[threading.Thread] = None
        self.is_running = False

    def _setup_routes(self):
        """Setup Flask routes."""

        @self.app.route('/')
        def index():
            return render_template_string(PAGE_TEMPLATE, about=ABOUT_TEXT)

        @self.app.route('/stream')
        def stream():
            return Response(
                self._generate_frames(),
                mimetype='multipart/x-mixed-replace; boundary=frame'
            )

        @self.app.route('/health')
        def health():
            snapshot = self.controller.snapshot()
            return jsonify({
                'status': 'running',
                'state': snapshot.state.value,
                'uptime': int(time.time() - self.start_time),
            })

        @self.app.route('/api/status')
        def status():
            return jsonify(self.controller.snapshot().to_dict())

        @self.app.route('/api/detections')
        def detections():
            current = self.controller.snapshot().detections
            return jsonify({
                'detections': [d.to_dict() for d in current],
                'total': len(current),
            })

        @self.app.route('/api/start', methods=['POST'])
        def start():
            try:
                self._run(self.controller.start())
            except CameraUnavailable:
                return jsonify({'error': self.controller.snapshot().message}), 503
            except InvalidState as e:
                return jsonify({'error': str(e)}), 409
            except Exception as e:
                return self._control_error('start', e)
            return jsonify(self.controller.snapshot().to_dict())

        @self.app.route('/api/stop', methods=['POST'])
        def stop():
            try:
                self._run(self.controller.stop())
            except Exception as e:
                return self._control_error('stop', e)
            return jsonify(self.controller.snapshot().to_dict())

    def _run(self, coro):
        """Run a controller coroutine on its event loop and wait for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=self.control_timeout)

    def _control_error(self, action: str, error: Exception):
        """JSON error response for a start/stop that did not complete."""
        if isinstance(error, concurrent.futures.TimeoutError):
            logger.error(f"Timed out after {self.control_timeout:.1f}s waiting for {action}")
            return jsonify({'error': f"Timed out waiting for detection to {action}"}), 504
        logger.error(f"Failed to {action} detection: {error}", exc_info=True)
        return jsonify({'error': f"Failed to {action} detection: {error}"}), 500

    def render_frame(self) -> Optional[bytes]:
        """
        JPEG of the current view: the live frame with the overlay while
        detecting, a placeholder otherwise.
        """
        frame = self.controller.video.current_frame()
        if frame is None or not self.controller.snapshot().is_active:
            return self._placeholder_frame()

        composited = self.controller.canvas.composite(frame)
        return self._encode(composited)

    def _placeholder_frame(self) -> Optional[bytes]:
        if self._placeholder is None:
            width, height = self.controller.config.video.width, self.controller.config.video.height
            image = np.full((height, width, 3), 17, dtype=np.uint8)
            cv2.putText(image, "Camera Ready", (width // 2 - 90, height // 2),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.9, (255, 255, 255), 2, cv2.LINE_AA)
            self._placeholder = self._encode(image)
        return self._placeholder

    def _encode(self, image: np.ndarray) -> Optional[bytes]:
        ret, buffer = cv2.imencode('.jpg', image, [cv2.IMWRITE_JPEG_QUALITY, self.config.jpeg_quality])
        if not ret:
            logger.warning("JPEG encoding failed")
            return None
        return buffer.tobytes()

    def _generate_frames(self):
        """
        Generator for MJPEG frames.

        Yields:
            MJPEG frame data
        """
        while True:
            frame_bytes = self.render_frame()
            if frame_bytes is not None:
                yield (b'--frame\r\n'
                       b'Content-Type: image/jpeg\r\n\r\n' + frame_bytes + b'\r\n')

            # Roughly camera rate; the placeholder does not need refreshing that often
            time.sleep(0.033 if self.controller.snapshot().is_active else 0.5)

    def start(self):
        """Start the web server in a separate thread."""
        if self.is_running:
            logger.warning("Streamer already running")
            return

        logger.info(f"Starting web server on {self.config.host}:{self.config.port}")

        def run_server():
            self.app.run(
                host=self.config.host,
                port=self.config.port,
                threaded=True,
                debug=False,
                use_reloader=False
            )

        self.server_thread = threading.Thread(target=run_server, name="web-server", daemon=True)
        self.server_thread.start()
        self.is_running = True

        logger.info("Web server started")

    def stop(self):
        """Mark the server stopped; the daemon thread ends with the process."""
        self.is_running = False
        logger.info("Web server stopped")
