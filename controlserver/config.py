"""
Configuration of the control server (dashboard + remote commands).
"""

# ======================== SERVER ========================
SERVER_HOST = "0.0.0.0"       # Listen on every interface
SERVER_PORT = 8500

# ======================== TELEMETRY ========================
# Seconds between two telemetry pushes on /ws/telemetry
TELEMETRY_INTERVAL = 0.1

# "json" (text, debug friendly) | "msgpack" (binary, smaller)
RESPONSE_FORMAT = "json"

# Max seconds POST /link/connect?wait=true blocks for the outcome
CONNECT_WAIT_TIMEOUT = 20.0
