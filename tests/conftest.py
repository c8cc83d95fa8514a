"""Pytest configuration and shared fixtures for the line tracer.

Provides synthetic frames, a manual clock, a fake link for the dispatcher and
an in-memory transport for the connection lifecycle.
"""
import asyncio
import concurrent.futures
import logging
import sys
from pathlib import Path

import numpy as np
import pytest

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from linetracer.link.connectionLifecycle import ConnectionLifecycle, LinkState
from linetracer.link.errors import LinkUnavailableError
from linetracer.link.transports import Transport
from linetracer.vision.regionScanner import make_bands


logging.basicConfig(level=logging.INFO)

WIDTH, HEIGHT = 320, 240
FLOOR = 220
LINE = 20


class ManualClock:
    """Monotonic clock the test advances by hand (seconds)."""

    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeLink:
    """Stands in for ConnectionLifecycle. Writes stay pending until resolved."""

    def __init__(self, connected=True):
        self.connected = connected
        self.writes = []
        self.listeners = []
        self.write_error = None

    @property
    def is_connected(self):
        return self.connected

    def add_state_listener(self, listener):
        self.listeners.append(listener)

    def set_state(self, state):
        self.connected = state is LinkState.CONNECTED
        for listener in self.listeners:
            listener(state)

    def write(self, payload):
        if self.write_error is not None:
            raise self.write_error
        if not self.connected:
            raise LinkUnavailableError("not connected")
        future = concurrent.futures.Future()
        self.writes.append((payload, future))
        return future

    @property
    def payloads(self):
        return [payload for payload, _ in self.writes]

    def complete(self, index=-1, error=None):
        future = self.writes[index][1]
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)

    def complete_all(self):
        for _, future in self.writes:
            if not future.done():
                future.set_result(None)


class FakeTransport(Transport):
    """In-memory transport driven by the lifecycle loop."""

    def __init__(self, connect_error=None, connect_delay=0.0):
        super().__init__()
        self.connect_error = connect_error
        self.connect_delay = connect_delay
        self.write_error = None
        self.connected = False
        self.written = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def connect(self):
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False

    async def write(self, payload):
        if self.write_error is not None:
            raise self.write_error
        self.written.append(payload)

    def drop(self, reason="peer gone"):
        self.connected = False
        self._report_lost(reason)


def paint(frame, x0, x1, y0, y1, value=LINE):
    """Paint the rectangle [x0, x1) x [y0, y1) with a grey value."""
    frame[y0:y1, x0:x1] = value
    return frame


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fake_link():
    return FakeLink()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def blank_frame():
    """320x240 light floor, no line."""
    return np.full((HEIGHT, WIDTH, 3), FLOOR, dtype=np.uint8)


@pytest.fixture
def bands():
    """Default layout: bottom [160, 240) weight 0.7, middle [80, 160) weight 0.3."""
    return make_bands(HEIGHT, slice_height=80, weights=(0.7, 0.3), stride=5, min_pixels=20)


@pytest.fixture
def lifecycle(fake_transport):
    link = ConnectionLifecycle(fake_transport, connect_timeout=2.0)
    yield link
    link.shutdown(timeout=2.0)
