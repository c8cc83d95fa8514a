# Copyright (c) 2019, Bosch Engineering Center Cluj and BFMC organizers
# All rights reserved.

# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:

# 1. Redistributions of source code must retain the above copyright notice, this
#    list of conditions and the following disclaimer.

# 2. Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.

# 3. Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.

# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
# DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
# FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
# DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
# SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
# CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
# OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
# OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE

import logging
import time

from linetracer.link.connectionLifecycle import ConnectionLifecycle
from linetracer.link.linkDispatcher import LinkDispatcher
from linetracer.link.transports import make_transport
from linetracer.statemachine.trackingSession import TrackingSession
from linetracer.vision.linePipeline import LinePipeline
from linetracer.vision.regionScanner import Polarity, make_bands
from linetracer.vision.threads.threadCamera import threadCamera
from linetracer.vision.threads.threadLineTracer import threadLineTracer


class processTracer:
    """Wires camera, pipeline, session and link together.\n
    It is also the control surface: the CLI and the control server only call
    the command methods below, none of the core logic knows which one did.

    Args:
        camera: threadCamera.
        pipeline (LinePipeline): Detection pipeline.
        lifecycle (ConnectionLifecycle): Link state machine.
        dispatcher (LinkDispatcher): Rate-limited sender.
        session (TrackingSession): Idle/Tracking toggle.
        logger (logging object): Made for debugging.
        frame_pause (float): Pause between pipeline ticks.
        show_preview (bool): Open the OpenCV preview window.
    """

    # ====================================== INIT ==========================================
    def __init__(self, camera, pipeline, lifecycle, dispatcher, session, logger=None,
                 frame_pause=0.005, show_preview=False, binary_view=False):
        self.camera = camera
        self.pipeline = pipeline
        self.lifecycle = lifecycle
        self.dispatcher = dispatcher
        self.session = session
        self.logger = logger or logging.getLogger(__name__)
        self.tracer = threadLineTracer(camera, pipeline, session, self.logger,
                                       pause=frame_pause, show_preview=show_preview)
        self.tracer.binary_view = binary_view
        self._started = False

    @classmethod
    def from_config(cls, cfg, logger=None, **overrides):
        """Build the full stack from a config module (see config.py).

        Keyword overrides take precedence over the module values, e.g.
        processTracer.from_config(config, THRESHOLD=120).
        """
        logger = logger or logging.getLogger("linetracer")

        def get(name, default):
            if name in overrides and overrides[name] is not None:
                return overrides[name]
            return getattr(cfg, name, default)

        width = get("FRAME_WIDTH", 320)
        height = get("FRAME_HEIGHT", 240)
        stride = get("SCAN_STRIDE", 5)
        bands = make_bands(height, get("SLICE_HEIGHT", 80), get("BAND_WEIGHTS", (0.7, 0.3)),
                           stride=stride, min_pixels=get("MIN_PIXELS", 20))
        pipeline = LinePipeline(
            bands,
            threshold=get("THRESHOLD", 150),
            mirrored=get("MIRROR_FEED", False),
            polarity=Polarity(get("LINE_POLARITY", "dark")),
            error_range=get("ERROR_RANGE", 100),
        )

        transport = make_transport(
            get("LINK_TYPE", "ble"),
            name_prefix=get("BLE_NAME_PREFIX", "BBC micro:bit"),
            address=get("BLE_ADDRESS", None),
            scan_timeout=get("BLE_SCAN_TIMEOUT", 10.0),
            bridge_url=get("BRIDGE_URL", None),
            logger=logger,
        )
        lifecycle = ConnectionLifecycle(transport, connect_timeout=get("CONNECT_TIMEOUT", 15.0), logger=logger)
        dispatcher = LinkDispatcher(lifecycle, min_interval=get("SEND_INTERVAL", 0.05),
                                    repeat_lost=get("LOST_SEND_EVERY_TICK", True), logger=logger)
        session = TrackingSession(dispatcher, logger=logger)
        camera = threadCamera(logger, device=get("CAMERA_DEVICE", 0), resolution=(width, height))

        return cls(camera, pipeline, lifecycle, dispatcher, session, logger,
                   frame_pause=get("FRAME_PAUSE", 0.005),
                   show_preview=get("SHOW_PREVIEW", False),
                   binary_view=get("BINARY_VIEW", False))

    # ===================================== RUN ============================================
    def start(self):
        if self._started:
            return
        self.lifecycle.start()
        self.camera.start()
        self.tracer.start()
        self._started = True
        self.logger.info("Line tracer running", extra={"component": "processTracer"})

    def stop(self):
        """Stop tracking (sends stop), close the link and stop the threads."""
        self.session.stop()
        self.tracer.stop()
        self.camera.stop()
        # give the stop command a chance to leave before the link closes
        deadline = time.monotonic() + 1.0
        while self.dispatcher.in_flight and time.monotonic() < deadline:
            time.sleep(0.01)
        self.lifecycle.shutdown()
        self._started = False
        self.logger.info("Line tracer stopped", extra={"component": "processTracer"})

    # ================================== COMMANDS ==========================================
    def start_tracking(self):
        return self.session.start()

    def stop_tracking(self):
        return self.session.stop()

    def connect(self):
        return self.lifecycle.connect()

    def disconnect(self):
        return self.lifecycle.disconnect()

    def set_threshold(self, value):
        self.pipeline.threshold = value
        return self.pipeline.threshold

    def set_mirror(self, mirrored):
        self.pipeline.mirrored = bool(mirrored)
        return self.pipeline.mirrored

    def set_polarity(self, polarity):
        self.pipeline.polarity = Polarity(polarity)
        return self.pipeline.polarity

    def set_binary_view(self, enabled):
        self.tracer.binary_view = bool(enabled)
        return self.tracer.binary_view

    def toggle_view(self):
        return self.set_binary_view(not self.tracer.binary_view)

    def switch_camera(self, device):
        return self.camera.switch_device(device)

    # ================================== TELEMETRY =========================================
    def telemetry(self):
        """Read-only snapshot for dashboards and overlays."""
        result = self.tracer.latest_result
        settings = self.pipeline.settings()
        settings["binary_view"] = self.tracer.binary_view
        return {
            "frame": result.to_dict() if result is not None else None,
            "tracking": self.session.is_tracking,
            "session": self.session.state.value,
            "link": self.lifecycle.get_stats(),
            "dispatch": self.dispatcher.get_stats(),
            "settings": settings,
            "fps": round(self.tracer.current_fps, 1),
        }
