# Link dispatcher: decides which steering values actually go on the wire.
#
# Every frame offers its error. An offer is sent only when all gates pass:
#   1. link-down: the link must be CONNECTED (no I/O otherwise)
#   2. rate:      at least min_interval since the previous attempted send
#   3. lost:      optional suppression of repeated "line lost" sentinels
#   4. in-flight: at most one transport write outstanding
# Dropped offers are never queued, the next frame carries a fresher value.
# The stop command skips the rate gate and waits for an in-flight write
# instead of being dropped.

import logging
import threading
import time

from linetracer.link.connectionLifecycle import LinkState
from linetracer.link.errors import LinkError
from linetracer.vision.bandFusion import LOST_SENTINEL

STOP_TOKEN = "stop"
DEFAULT_SEND_INTERVAL = 0.05


def encode_payload(value):
    """Decimal text plus one line feed, UTF-8."""
    return f"{value}\n".encode("utf-8")


class LinkDispatcher:
    """Rate-limited, single-in-flight sender on top of a ConnectionLifecycle.

    Args:
        link: ConnectionLifecycle (anything with is_connected, write() and
              add_state_listener()).
        min_interval: Minimum seconds between two attempted sends.
        repeat_lost: Send the lost sentinel every tick (True) or once per loss (False).
        lost_value: Value that means "no line".
        clock: Monotonic time source, in seconds.
        logger: Logging object.
    """

    def __init__(self, link, min_interval=DEFAULT_SEND_INTERVAL, repeat_lost=True,
                 lost_value=LOST_SENTINEL, clock=time.monotonic, logger=None):
        self.link = link
        self.min_interval = min_interval
        self.repeat_lost = repeat_lost
        self.lost_value = lost_value
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._in_flight = False
        self._pending_stop = False
        self._last_send_time = None
        self._last_sent_value = None
        self.last_payload = None

        self.offered = 0
        self.sent = 0
        self.failed = 0
        self.dropped_link_down = 0
        self.dropped_rate = 0
        self.dropped_lost = 0
        self.dropped_in_flight = 0

        self.link.add_state_listener(self._on_link_state)

    @property
    def in_flight(self):
        with self._lock:
            return self._in_flight

    # ================================ OFFERS ===============================
    def offer(self, value):
        """Offer this frame's error (or sentinel).

        Returns:
            bool: True if a transport write was started.
        """
        with self._lock:
            self.offered += 1
            if not self.link.is_connected:
                self.dropped_link_down += 1
                self.logger.debug("Link down, %r dropped", value, extra={"component": "Dispatcher"})
                return False

            now = self._clock()
            if self._last_send_time is not None and now - self._last_send_time < self.min_interval:
                self.dropped_rate += 1
                return False
            self._last_send_time = now

            if (not self.repeat_lost and value == self.lost_value
                    and self._last_sent_value == self.lost_value):
                self.dropped_lost += 1
                return False

            if self._in_flight or self._pending_stop:
                self.dropped_in_flight += 1
                return False

            self._in_flight = True
            self._last_sent_value = value

        return self._start_send(value)

    def send_stop(self):
        """Out-of-band stop command for the end of a tracking session.

        Skips the rate gate. If a write is in flight the stop is held and sent
        as soon as that write resolves.

        Returns:
            bool: True if the stop was sent or is pending.
        """
        with self._lock:
            if not self.link.is_connected:
                self.dropped_link_down += 1
                self.logger.warning("Link down, stop command not sent", extra={"component": "Dispatcher"})
                return False
            self._last_send_time = self._clock()
            self._last_sent_value = STOP_TOKEN
            if self._in_flight:
                self._pending_stop = True
                return True
            self._in_flight = True

        return self._start_send(STOP_TOKEN)

    # ================================ SENDING ==============================
    def _start_send(self, value):
        """Called with _in_flight already claimed for this value."""
        payload = encode_payload(value)
        try:
            future = self.link.write(payload)
        except LinkError as e:
            # Link dropped between the gate check and the write
            self.logger.debug("Send of %r skipped: %s", value, e, extra={"component": "Dispatcher"})
            self._release(failed=True)
            return False

        with self._lock:
            self.last_payload = payload.decode("utf-8").strip()
        future.add_done_callback(lambda f, v=value: self._on_send_done(f, v))
        return True

    def _on_send_done(self, future, value):
        failed = True
        try:
            if future.cancelled():
                self.logger.warning("Send of %r cancelled", value, extra={"component": "Dispatcher"})
            elif future.exception() is not None:
                self.logger.error("Send of %r failed: %s", value, future.exception(),
                                  extra={"component": "Dispatcher"})
            else:
                failed = False
        finally:
            self._release(failed)

    def _release(self, failed):
        """Clear the in-flight flag, then send a held stop command if any."""
        with self._lock:
            if failed:
                self.failed += 1
                # a failed sentinel must not hold back the next one
                self._last_sent_value = None
            else:
                self.sent += 1
            self._in_flight = False
            send_stop = self._pending_stop and self.link.is_connected
            self._pending_stop = False
            if send_stop:
                self._in_flight = True
        if send_stop:
            self._start_send(STOP_TOKEN)

    # ================================ LINK STATE ===========================
    def _on_link_state(self, state):
        """A link transition resets the rate and repeat bookkeeping.

        The in-flight flag is left alone, its write still completes.
        """
        with self._lock:
            self._last_send_time = None
            self._last_sent_value = None
            if state is not LinkState.CONNECTED:
                self._pending_stop = False

    def get_stats(self):
        with self._lock:
            return {
                "in_flight": self._in_flight,
                "last_payload": self.last_payload,
                "offered": self.offered,
                "sent": self.sent,
                "failed": self.failed,
                "dropped_link_down": self.dropped_link_down,
                "dropped_rate": self.dropped_rate,
                "dropped_lost": self.dropped_lost,
                "dropped_in_flight": self.dropped_in_flight,
                "min_interval": self.min_interval,
                "repeat_lost": self.repeat_lost,
            }
