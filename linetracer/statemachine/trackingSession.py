# Tracking session: decides whether frame errors reach the link.

import logging
import threading
from enum import Enum


class SessionState(Enum):
    IDLE = "idle"
    TRACKING = "tracking"


class TrackingSession:
    """Two-state toggle, IDLE <-> TRACKING, driven by the control surface.

    Leaving TRACKING sends exactly one out-of-band stop command. Line
    visibility has no influence on the session state.

    Args:
        dispatcher: LinkDispatcher that receives offers and the stop command.
        logger: Logging object.
    """

    def __init__(self, dispatcher, logger=None):
        self.dispatcher = dispatcher
        self.logger = logger or logging.getLogger(__name__)
        # Held across offer() and stop() so no frame value can follow the stop command
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._listeners = []

    @property
    def state(self):
        return self._state

    @property
    def is_tracking(self):
        return self._state is SessionState.TRACKING

    def add_state_listener(self, listener):
        """listener(state: SessionState) is called after every transition."""
        self._listeners.append(listener)

    def _notify(self, state):
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                self.logger.exception("Session state listener failed", extra={"component": "Session"})

    def start(self):
        """Returns True if the session was started, False if it already was."""
        with self._lock:
            if self._state is SessionState.TRACKING:
                return False
            self._state = SessionState.TRACKING
        self.logger.info("Tracking started", extra={"component": "Session"})
        self._notify(SessionState.TRACKING)
        return True

    def stop(self):
        """Returns True if the session was stopped, False if it was idle."""
        with self._lock:
            if self._state is not SessionState.TRACKING:
                return False
            self._state = SessionState.IDLE
            self.dispatcher.send_stop()
        self.logger.info("Tracking stopped, stop command dispatched", extra={"component": "Session"})
        self._notify(SessionState.IDLE)
        return True

    def offer(self, value):
        """Forward one frame's error to the dispatcher while tracking.

        Returns:
            bool: True if a send was started.
        """
        with self._lock:
            if self._state is not SessionState.TRACKING:
                return False
            return self.dispatcher.offer(value)
