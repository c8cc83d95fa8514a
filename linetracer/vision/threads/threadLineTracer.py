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
import threading
import time

import cv2

from linetracer.templates.threadwithstop import ThreadWithStop
from linetracer.vision.overlay import draw_overlay


class threadLineTracer(ThreadWithStop):
    """Thread which runs the line pipeline on every new camera frame.

    Per tick: take the newest frame, scan + fuse, publish the FrameResult and,
    while the session is tracking, offer the error to the link.

    Args:
        camera: threadCamera (anything with get_frame(timeout)).
        pipeline: LinePipeline.
        session: TrackingSession.
        logger (logging object): Made for debugging.
        pause (float): Seconds between ticks.
        show_preview (bool): Open an OpenCV window with the overlay.
    """

    def __init__(self, camera, pipeline, session, logger=None, pause=0.005, show_preview=False):
        super(threadLineTracer, self).__init__(pause=pause)
        self.camera = camera
        self.pipeline = pipeline
        self.session = session
        self.logger = logger or logging.getLogger(__name__)
        self.show_preview = show_preview
        self.binary_view = False

        self._result_lock = threading.Lock()
        self._latest_result = None
        self._was_detected = None

        self.frame_count = 0
        self.fps_timer = time.time()
        self.current_fps = 0.0

    @property
    def latest_result(self):
        with self._result_lock:
            return self._latest_result

    # ================================ RUN ================================================
    def thread_work(self):
        try:
            frame = self.camera.get_frame(timeout=0.5)
            if frame is None:
                return
            self.process_frame(frame)
        except Exception:
            self.logger.exception("Tick failed, waiting for the next frame", extra={"component": "Line Tracer"})

    def process_frame(self, frame):
        """Run one full tick on a frame. Returns the FrameResult."""
        result = self.pipeline.process(frame)
        with self._result_lock:
            self._latest_result = result

        self.session.offer(result.error)

        if result.detected != self._was_detected:
            self._was_detected = result.detected
            if result.detected:
                self.logger.info("Line acquired (error %d)", result.error, extra={"component": "Line Tracer"})
            else:
                self.logger.warning("Line lost", extra={"component": "Line Tracer"})

        self._update_fps()

        if self.show_preview:
            cv2.imshow("Line Tracer", draw_overlay(frame, result, self.pipeline, self.binary_view))
            cv2.waitKey(1)
        return result

    def _update_fps(self):
        self.frame_count += 1
        elapsed = time.time() - self.fps_timer
        if elapsed >= 5.0:
            self.current_fps = self.frame_count / elapsed
            self.logger.debug("%.1f FPS", self.current_fps, extra={"component": "Line Tracer"})
            self.frame_count = 0
            self.fps_timer = time.time()

    # =============================== STOP ================================================
    def stop(self):
        super(threadLineTracer, self).stop()
        if self.is_alive():
            self.join(timeout=1.0)
        if self.show_preview:
            cv2.destroyAllWindows()
