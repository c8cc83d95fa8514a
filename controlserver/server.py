"""
Control server - remote control surface and telemetry for the line tracer.

Exposes the same commands as the on-board CLI and streams the per-frame
telemetry (error, band borders, link state) to a dashboard.

HTTP endpoints:
  - GET  /                  -> Basic status
  - GET  /status            -> Full telemetry snapshot
  - POST /tracking/start    -> Start sending the steering error
  - POST /tracking/stop     -> Stop tracking, sends "stop" to the car
  - POST /link/connect      -> Discover and connect the car (?wait=true to block)
  - POST /link/disconnect   -> Drop the link
  - PUT  /settings          -> threshold / mirrored / polarity / binary_view
  - POST /view/toggle       -> Toggle the binary (thresholded) preview
  - WS   /ws/telemetry      -> Telemetry push every TELEMETRY_INTERVAL

Usage:
  python main.py --serve
"""

import asyncio
import concurrent.futures
import logging
from contextlib import asynccontextmanager
from typing import Optional

import msgpack
import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from controlserver import config

logger = logging.getLogger(__name__)
LOG = {"component": "Server"}


class SettingsUpdate(BaseModel):
    threshold: Optional[int] = None
    mirrored: Optional[bool] = None
    polarity: Optional[str] = None
    binary_view: Optional[bool] = None


def _wait_quietly(future, timeout):
    """Block until the connect attempt resolves, is cancelled or times out."""
    try:
        future.result(timeout=timeout)
    except (concurrent.futures.TimeoutError, concurrent.futures.CancelledError):
        logger.debug("Connect still pending or cancelled", extra=LOG)


def create_app(tracer, telemetry_interval=None, response_format=None):
    """Build the FastAPI app around a running processTracer."""
    telemetry_interval = telemetry_interval or config.TELEMETRY_INTERVAL
    response_format = response_format or config.RESPONSE_FORMAT

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Control server ready on %s:%s", config.SERVER_HOST, config.SERVER_PORT, extra=LOG)
        logger.info("WS telemetry: ws://<ip>:%s/ws/telemetry (%s)", config.SERVER_PORT, response_format, extra=LOG)
        yield
        logger.info("Control server shutting down", extra=LOG)

    app = FastAPI(
        title="Line Tracer Control",
        description="Remote control and telemetry for the vision line tracer",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.tracer = tracer

    # ============================================================
    # HTTP endpoints
    # ============================================================

    @app.get("/")
    async def root():
        telemetry = tracer.telemetry()
        frame = telemetry["frame"]
        return {
            "status": "running",
            "tracking": telemetry["tracking"],
            "link": telemetry["link"]["state"],
            "error": frame["error"] if frame else None,
            "detected": frame["detected"] if frame else False,
        }

    @app.get("/status")
    async def status():
        return tracer.telemetry()

    @app.post("/tracking/start")
    async def start_tracking():
        changed = tracer.start_tracking()
        return {"tracking": True, "changed": changed}

    @app.post("/tracking/stop")
    async def stop_tracking():
        changed = tracer.stop_tracking()
        return {"tracking": False, "changed": changed}

    @app.post("/link/connect")
    async def connect(wait: bool = False):
        future = tracer.connect()
        if wait:
            # Wait in a worker thread so the event loop keeps serving telemetry
            await asyncio.to_thread(_wait_quietly, future, config.CONNECT_WAIT_TIMEOUT)
        return {"state": tracer.lifecycle.state.value, "error": tracer.lifecycle.last_error}

    @app.post("/link/disconnect")
    async def disconnect():
        tracer.disconnect()
        return {"state": tracer.lifecycle.state.value}

    @app.put("/settings")
    async def update_settings(update: SettingsUpdate):
        try:
            if update.threshold is not None:
                tracer.set_threshold(update.threshold)
            if update.mirrored is not None:
                tracer.set_mirror(update.mirrored)
            if update.polarity is not None:
                tracer.set_polarity(update.polarity)
            if update.binary_view is not None:
                tracer.set_binary_view(update.binary_view)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return tracer.telemetry()["settings"]

    @app.post("/view/toggle")
    async def toggle_view():
        return {"binary_view": tracer.toggle_view()}

    # ============================================================
    # WebSocket telemetry
    # ============================================================

    @app.websocket("/ws/telemetry")
    async def websocket_telemetry(websocket: WebSocket):
        """
        Pushes tracer.telemetry() every telemetry_interval seconds.

        Format: JSON text, or msgpack binary if RESPONSE_FORMAT = "msgpack".
        Anything the client sends is ignored, receiving only serves to notice
        the close between two pushes.
        """
        await websocket.accept()
        client_host = websocket.client.host if websocket.client else "unknown"
        logger.info("Telemetry client connected: %s", client_host, extra=LOG)
        messages_sent = 0

        try:
            while True:
                telemetry = tracer.telemetry()
                if response_format == "msgpack":
                    await websocket.send_bytes(msgpack.packb(telemetry, use_bin_type=True))
                else:
                    await websocket.send_json(telemetry)
                messages_sent += 1

                try:
                    message = await asyncio.wait_for(websocket.receive(), timeout=telemetry_interval)
                except asyncio.TimeoutError:
                    continue
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            logger.debug("Telemetry client %s closed during a push", client_host, extra=LOG)
        logger.info("Telemetry client disconnected: %s (%d messages)", client_host, messages_sent, extra=LOG)

    return app


def run_server(tracer, host=None, port=None):
    """Serve the control app (blocking) until Ctrl-C."""
    app = create_app(tracer)
    uvicorn.run(
        app,
        host=host or config.SERVER_HOST,
        port=port or config.SERVER_PORT,
        log_level="warning",
    )
