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


class threadCamera(ThreadWithStop):
    """Thread which grabs frames from an OpenCV capture device.\n
    The latest frame is kept in a single slot, a consumer that is slower than
    the camera only ever sees the newest frame.

    Args:
        logger (logging object): Made for debugging.
        device (int|str): Capture index, device path, file or stream URL.
        resolution (tuple): (width, height) every frame is resized to.
        warmup_frames (int): Frames discarded after opening the device.
    """

    # ================================ INIT ===============================================
    def __init__(self, logger=None, device=0, resolution=(320, 240), warmup_frames=10):
        super(threadCamera, self).__init__(pause=0.001)
        self.logger = logger or logging.getLogger(__name__)
        self.device = device
        self.resolution = tuple(resolution)
        self.warmup_frames = warmup_frames

        self.camera = None
        self._frame_lock = threading.Lock()
        self._new_frame = threading.Event()
        self._latest_frame = None
        self.frames_read = 0

        self._init_camera()

    # ================================ RUN ================================================
    def thread_work(self):
        """Grab one frame and publish it, resized to the working resolution."""
        if self.camera is None:
            time.sleep(0.1)
            return

        grabbed, frame = self.camera.read()
        if not grabbed or frame is None:
            time.sleep(0.01)
            return

        if (frame.shape[1], frame.shape[0]) != self.resolution:
            frame = cv2.resize(frame, self.resolution)

        with self._frame_lock:
            self._latest_frame = frame
        self.frames_read += 1
        self._new_frame.set()

    def get_frame(self, timeout=1.0):
        """Wait for a frame newer than the last one returned.

        Returns:
            numpy.ndarray or None on timeout.
        """
        if not self._new_frame.wait(timeout=timeout):
            return None
        self._new_frame.clear()
        with self._frame_lock:
            return self._latest_frame

    # ================================ INIT CAMERA ========================================
    def _init_camera(self):
        """Open the capture device. On failure camera stays None and the thread idles."""
        self.camera = cv2.VideoCapture(self.device)
        if not self.camera.isOpened():
            self.logger.error("Capture device %s not found.", self.device, extra={"component": "Camera"})
            self.camera = None
            return

        width, height = self.resolution
        self.camera.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.camera.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        # Minimize internal buffer to avoid stale frames
        self.camera.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        for _ in range(self.warmup_frames):
            grabbed, _ = self.camera.read()
            if not grabbed:
                time.sleep(0.05)

        self.logger.info("Capture device %s opened, working resolution %dx%d",
                         self.device, width, height, extra={"component": "Camera"})

    def switch_device(self, device):
        """Release the current device and open another one (front/back camera switch)."""
        self.pause_thread()
        try:
            # let an in-progress read finish before releasing
            time.sleep(self.pause * 2)
            if self.camera is not None:
                self.camera.release()
            self.device = device
            self._init_camera()
        finally:
            self.resume_thread()
        return self.camera is not None

    # =============================== STOP ================================================
    def stop(self):
        super(threadCamera, self).stop()
        if self.is_alive():
            self.join(timeout=1.0)
        if self.camera is not None:
            self.camera.release()
            self.camera = None
