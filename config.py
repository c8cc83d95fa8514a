"""
General configuration of the line tracer.
Change these values to tune detection and the link to the car.
Command line flags in main.py override the most common ones.
"""

# ======================== CAMERA ========================
# Capture device: index (0, 2, 4...), path ("/dev/video0"), video file or stream URL
CAMERA_DEVICE = 0

# Working resolution. The pipeline reads the real size from every frame,
# these values only decide what the camera frames are resized to.
FRAME_WIDTH = 320
FRAME_HEIGHT = 240

# Undo a mirrored feed (front-facing cameras)
MIRROR_FEED = False

# ======================== VISION ========================
# Brightness threshold (0-255) on the mean of the three channels
THRESHOLD = 150

# "dark" = dark line on a light floor (brightness < THRESHOLD)
# "light" = light line on a dark floor (brightness > THRESHOLD)
LINE_POLARITY = "dark"

# Bands are stacked from the bottom of the frame upwards, one per weight.
# The bottom band is the primary one, the others only correct it (look-ahead).
# Weights must sum to 1.0.
SLICE_HEIGHT = 80
BAND_WEIGHTS = (0.7, 0.3)

# Sample every SCAN_STRIDE pixels in both directions
SCAN_STRIDE = 5

# A band sees the line only with MORE matching samples than this
MIN_PIXELS = 20

# Error is normalized to [-ERROR_RANGE, ERROR_RANGE]; 999 means "no line"
ERROR_RANGE = 100

# ======================== LINK ========================
# "ble" = Nordic UART over Bluetooth LE (micro:bit)
# "websocket" = same text payloads to a WebSocket bridge / simulator
LINK_TYPE = "ble"

# BLE discovery: name prefix, or a fixed address to skip the name filter
BLE_NAME_PREFIX = "BBC micro:bit"
BLE_ADDRESS = None
BLE_SCAN_TIMEOUT = 10.0

# WebSocket bridge URL (only if LINK_TYPE = "websocket")
BRIDGE_URL = "ws://127.0.0.1:8765/uart"

# Seconds allowed for discovery + connection
CONNECT_TIMEOUT = 15.0

# Minimum seconds between two sends (50 ms = 20 messages/s max)
SEND_INTERVAL = 0.05

# True = keep sending 999 every interval while the line is lost
# False = send 999 once per loss, then stay silent until the line is back
LOST_SEND_EVERY_TICK = True

# ======================== LOOP ========================
# Pause between two pipeline ticks (the tick also waits for a new frame)
FRAME_PAUSE = 0.005

# ===================== DEBUG WINDOWS =====================
# OpenCV preview window with path line, borders and ROI boxes (needs a display)
SHOW_PREVIEW = False

# Start the preview in binary (thresholded) view
BINARY_VIEW = False

# DEBUG | INFO | WARNING | ERROR
LOG_LEVEL = "INFO"
