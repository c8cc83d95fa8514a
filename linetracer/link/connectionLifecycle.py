# Connection lifecycle of the steering link.
#
# Owns the asyncio event loop that runs the transport in a background thread
# and the LinkState machine the dispatcher reads before every send:
#
#   DISCONNECTED --connect()--> CONNECTING --ok--> CONNECTED
#        ^                           |                 |
#        +------ failure / disconnect() / peer drop ---+
#
# There is no automatic reconnection, a failed connect is terminal until the
# next connect() call.

import asyncio
import concurrent.futures
import logging
import threading
from enum import Enum

from linetracer.link.errors import LinkUnavailableError


class LinkState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _resolved(value):
    future = concurrent.futures.Future()
    future.set_result(value)
    return future


class ConnectionLifecycle:
    """Connect/disconnect state machine around one transport.

    Every public method is safe to call from any thread. Transport coroutines
    run on the private loop, callers get concurrent.futures.Future objects.

    Args:
        transport: Transport instance (see linetracer.link.transports).
        connect_timeout: Seconds allowed for discovery + connection.
        logger: Logging object.
    """

    def __init__(self, transport, connect_timeout=15.0, logger=None):
        self.transport = transport
        self.connect_timeout = connect_timeout
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._state = LinkState.DISCONNECTED
        self._last_error = None
        self._connect_future = None
        self._listeners = []

        self._loop = None
        self._thread = None

        self.transport.set_disconnect_handler(self._on_transport_lost)

    # ================================ STATE ================================
    @property
    def state(self):
        with self._lock:
            return self._state

    @property
    def last_error(self):
        with self._lock:
            return self._last_error

    @property
    def is_connected(self):
        return self.state is LinkState.CONNECTED

    def add_state_listener(self, listener):
        """listener(state: LinkState) is called after every transition."""
        self._listeners.append(listener)

    def _notify(self, state):
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                self.logger.exception("Link state listener failed", extra={"component": "Link"})

    def _transition(self, state, error=None, expect=None):
        """Move to state. With expect set, only move if the current state is expect."""
        with self._lock:
            if expect is not None and self._state is not expect:
                return False
            changed = self._state is not state
            self._state = state
            self._last_error = error
        if changed:
            self._notify(state)
        return True

    # ================================ LOOP =================================
    def start(self):
        """Start the link event loop thread (idempotent)."""
        if self._loop is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="LinkLoop")
        self._thread.start()

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def shutdown(self, timeout=5.0):
        """Disconnect and stop the event loop thread."""
        if self._loop is None:
            return
        try:
            self.disconnect().result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            self.logger.warning("Transport did not close within %.1fs", timeout, extra={"component": "Link"})
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=timeout)
        if not self._loop.is_running():
            self._loop.close()
        self._loop = None
        self._thread = None

    # ================================ CONNECT ==============================
    def connect(self):
        """Start connecting.

        Returns:
            concurrent.futures.Future resolving to the terminal LinkState
            (CONNECTED, or DISCONNECTED with last_error set).
        """
        self.start()
        with self._lock:
            if self._state is LinkState.CONNECTED:
                return _resolved(LinkState.CONNECTED)
            if self._state is LinkState.CONNECTING and self._connect_future is not None:
                return self._connect_future
            self._state = LinkState.CONNECTING
            self._last_error = None
            future = asyncio.run_coroutine_threadsafe(self._connect(), self._loop)
            self._connect_future = future
        self.logger.info("Connecting via %s", self.transport.describe(), extra={"component": "Link"})
        return future

    async def _connect(self):
        # Listeners hear CONNECTING from the loop thread so it always precedes CONNECTED
        if self.state is not LinkState.CONNECTING:
            return LinkState.DISCONNECTED
        self._notify(LinkState.CONNECTING)
        try:
            await asyncio.wait_for(self.transport.connect(), timeout=self.connect_timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            return self._connect_failed(f"timed out after {self.connect_timeout:.0f}s")
        except Exception as e:
            return self._connect_failed(str(e) or type(e).__name__)

        if not self._transition(LinkState.CONNECTED, expect=LinkState.CONNECTING):
            # disconnect() won the race, release the fresh connection
            await self._close_transport()
            return LinkState.DISCONNECTED

        with self._lock:
            self._connect_future = None
        self.logger.info("Connected: %s", self.transport.describe(), extra={"component": "Link"})
        return LinkState.CONNECTED

    def _connect_failed(self, reason):
        self.logger.error("Connection failed: %s", reason, extra={"component": "Link"})
        self._transition(LinkState.DISCONNECTED, error=reason, expect=LinkState.CONNECTING)
        with self._lock:
            self._connect_future = None
        return LinkState.DISCONNECTED

    # ================================ DISCONNECT ===========================
    def disconnect(self):
        """Always lands in DISCONNECTED. In-flight writes are not cancelled.

        Returns:
            concurrent.futures.Future resolved once the transport is closed.
        """
        with self._lock:
            previous = self._state
            pending, self._connect_future = self._connect_future, None
            self._state = LinkState.DISCONNECTED
            self._last_error = None

        if pending is not None and not pending.done():
            pending.cancel()

        if previous is LinkState.DISCONNECTED or self._loop is None:
            return _resolved(LinkState.DISCONNECTED)

        self.logger.info("Disconnecting", extra={"component": "Link"})
        self._notify(LinkState.DISCONNECTED)
        return asyncio.run_coroutine_threadsafe(self._close_transport(), self._loop)

    async def _close_transport(self):
        try:
            await self.transport.disconnect()
        except Exception as e:
            self.logger.warning("Error while closing transport: %s", e, extra={"component": "Link"})
        return LinkState.DISCONNECTED

    def _on_transport_lost(self, reason):
        """Called by the transport when the peer drops on its own."""
        if self._transition(LinkState.DISCONNECTED, error=reason, expect=LinkState.CONNECTED):
            self.logger.warning("Link lost: %s", reason, extra={"component": "Link"})

    # ================================ WRITE ================================
    def write(self, payload):
        """Schedule one transport write.

        Returns:
            concurrent.futures.Future of the write.

        Raises:
            LinkUnavailableError: the link is not connected.
        """
        with self._lock:
            if self._state is not LinkState.CONNECTED:
                raise LinkUnavailableError(f"Link is {self._state.value}")
        return asyncio.run_coroutine_threadsafe(self.transport.write(payload), self._loop)

    def get_stats(self):
        with self._lock:
            return {
                "state": self._state.value,
                "last_error": self._last_error,
                "transport": self.transport.describe(),
            }
