"""Unit tests for the link dispatcher gates and the stop command."""
import logging

import pytest

from conftest import ManualClock
from linetracer.link.connectionLifecycle import LinkState
from linetracer.link.errors import LinkUnavailableError
from linetracer.link.linkDispatcher import LinkDispatcher, encode_payload
from linetracer.vision.bandFusion import LOST_SENTINEL


@pytest.fixture
def dispatcher(fake_link, clock):
    return LinkDispatcher(fake_link, min_interval=0.05, clock=clock)


def test_encode_payload():
    assert encode_payload(-42) == b"-42\n"
    assert encode_payload(0) == b"0\n"
    assert encode_payload(LOST_SENTINEL) == b"999\n"
    assert encode_payload("stop") == b"stop\n"


class TestRateGate:

    def test_offer_inside_interval_is_dropped(self, dispatcher, fake_link, clock):
        assert dispatcher.offer(10) is True
        fake_link.complete()

        clock.advance(0.010)
        assert dispatcher.offer(11) is False
        assert dispatcher.dropped_rate == 1

        clock.advance(0.050)
        assert dispatcher.offer(12) is True
        assert fake_link.payloads == [b"10\n", b"12\n"]

    def test_interval_is_inclusive(self, fake_link):
        clock = ManualClock(start=0.0)
        dispatcher = LinkDispatcher(fake_link, min_interval=0.05, clock=clock)
        dispatcher.offer(1)
        fake_link.complete()
        clock.advance(0.05)

        assert dispatcher.offer(2) is True

    def test_rate_window_measured_from_attempt(self, dispatcher, fake_link, clock):
        dispatcher.offer(1)
        clock.advance(0.06)
        # passes the rate gate, then loses to the in-flight write
        assert dispatcher.offer(2) is False
        fake_link.complete()

        clock.advance(0.01)
        assert dispatcher.offer(3) is False
        assert dispatcher.dropped_rate == 1


class TestInFlightGate:

    def test_second_offer_dropped_while_writing(self, dispatcher, fake_link, clock):
        assert dispatcher.offer(1) is True
        assert dispatcher.in_flight is True

        clock.advance(0.06)
        assert dispatcher.offer(2) is False
        assert dispatcher.dropped_in_flight == 1
        assert fake_link.payloads == [b"1\n"]

    def test_released_after_success(self, dispatcher, fake_link, clock):
        dispatcher.offer(1)
        fake_link.complete()

        assert dispatcher.in_flight is False
        assert dispatcher.sent == 1
        clock.advance(0.06)
        assert dispatcher.offer(2) is True

    def test_released_after_failure(self, dispatcher, fake_link, clock, caplog):
        dispatcher.offer(1)
        with caplog.at_level(logging.ERROR):
            fake_link.complete(error=OSError("GATT write failed"))

        assert dispatcher.in_flight is False
        assert dispatcher.failed == 1
        assert "GATT write failed" in caplog.text
        clock.advance(0.06)
        assert dispatcher.offer(2) is True

    def test_write_refused_by_link(self, dispatcher, fake_link):
        fake_link.write_error = LinkUnavailableError("gone")

        assert dispatcher.offer(1) is False
        assert dispatcher.in_flight is False
        assert dispatcher.failed == 1


class TestLinkDownGate:

    def test_offer_dropped_without_io(self, fake_link, clock):
        fake_link.connected = False
        dispatcher = LinkDispatcher(fake_link, clock=clock)

        assert dispatcher.offer(5) is False
        assert dispatcher.dropped_link_down == 1
        assert fake_link.writes == []

    def test_link_down_does_not_consume_rate_window(self, fake_link, clock):
        fake_link.connected = False
        dispatcher = LinkDispatcher(fake_link, clock=clock)
        dispatcher.offer(5)

        fake_link.connected = True
        assert dispatcher.offer(6) is True
        assert fake_link.payloads == [b"6\n"]


class TestStopCommand:

    def test_stop_bypasses_rate_gate(self, dispatcher, fake_link):
        dispatcher.offer(1)
        fake_link.complete()

        assert dispatcher.send_stop() is True
        assert fake_link.payloads == [b"1\n", b"stop\n"]

    def test_stop_waits_for_in_flight_write(self, dispatcher, fake_link, clock):
        dispatcher.offer(1)

        assert dispatcher.send_stop() is True
        assert fake_link.payloads == [b"1\n"]

        clock.advance(0.06)
        assert dispatcher.offer(2) is False

        fake_link.complete(0)
        assert fake_link.payloads == [b"1\n", b"stop\n"]
        assert dispatcher.in_flight is True

        fake_link.complete()
        assert dispatcher.in_flight is False
        assert dispatcher.sent == 2

    def test_held_stop_becomes_last_payload(self, dispatcher, fake_link):
        dispatcher.offer(1)
        dispatcher.send_stop()
        assert dispatcher.get_stats()["last_payload"] == "1"

        fake_link.complete(0)

        assert dispatcher.get_stats()["last_payload"] == "stop"

    def test_stop_sent_after_failed_write(self, dispatcher, fake_link):
        dispatcher.offer(1)
        dispatcher.send_stop()

        fake_link.complete(0, error=OSError("boom"))

        assert fake_link.payloads == [b"1\n", b"stop\n"]

    def test_stop_dropped_when_link_down(self, fake_link, clock):
        fake_link.connected = False
        dispatcher = LinkDispatcher(fake_link, clock=clock)

        assert dispatcher.send_stop() is False
        assert fake_link.writes == []

    def test_pending_stop_discarded_on_disconnect(self, dispatcher, fake_link):
        dispatcher.offer(1)
        dispatcher.send_stop()

        fake_link.set_state(LinkState.DISCONNECTED)
        fake_link.complete(0)

        assert fake_link.payloads == [b"1\n"]
        assert dispatcher.in_flight is False

    def test_stop_restarts_rate_window(self, dispatcher, fake_link, clock):
        dispatcher.send_stop()
        fake_link.complete()

        clock.advance(0.01)
        assert dispatcher.offer(3) is False
        assert dispatcher.dropped_rate == 1


class TestLostSentinel:

    def test_repeated_when_enabled(self, dispatcher, fake_link, clock):
        for _ in range(3):
            assert dispatcher.offer(LOST_SENTINEL) is True
            fake_link.complete()
            clock.advance(0.06)

        assert fake_link.payloads == [b"999\n"] * 3

    def test_sent_once_per_loss_when_disabled(self, fake_link, clock):
        dispatcher = LinkDispatcher(fake_link, repeat_lost=False, clock=clock)

        def tick(value):
            result = dispatcher.offer(value)
            if result:
                fake_link.complete()
            clock.advance(0.06)
            return result

        assert tick(LOST_SENTINEL) is True
        assert tick(LOST_SENTINEL) is False
        assert tick(5) is True
        assert tick(LOST_SENTINEL) is True
        assert dispatcher.dropped_lost == 1
        assert fake_link.payloads == [b"999\n", b"5\n", b"999\n"]

    def test_failed_sentinel_is_retried_when_disabled(self, fake_link, clock):
        dispatcher = LinkDispatcher(fake_link, repeat_lost=False, clock=clock)

        assert dispatcher.offer(LOST_SENTINEL) is True
        fake_link.complete(error=OSError("GATT write failed"))
        clock.advance(0.06)

        assert dispatcher.offer(LOST_SENTINEL) is True
        fake_link.complete()
        assert dispatcher.dropped_lost == 0
        assert dispatcher.sent == 1
        assert fake_link.payloads == [b"999\n", b"999\n"]


class TestLinkTransitions:

    def test_transition_resets_rate_window(self, dispatcher, fake_link):
        dispatcher.offer(1)
        fake_link.complete()

        fake_link.set_state(LinkState.DISCONNECTED)
        fake_link.set_state(LinkState.CONNECTED)

        assert dispatcher.offer(2) is True

    def test_transition_keeps_in_flight(self, dispatcher, fake_link, clock):
        dispatcher.offer(1)

        fake_link.set_state(LinkState.DISCONNECTED)
        fake_link.set_state(LinkState.CONNECTED)
        assert dispatcher.in_flight is True
        assert dispatcher.offer(2) is False

        fake_link.complete(0)
        assert dispatcher.in_flight is False

    def test_stats(self, dispatcher, fake_link, clock):
        dispatcher.offer(-7)
        fake_link.complete()
        clock.advance(0.01)
        dispatcher.offer(3)

        stats = dispatcher.get_stats()

        assert stats["offered"] == 2
        assert stats["sent"] == 1
        assert stats["dropped_rate"] == 1
        assert stats["last_payload"] == "-7"
        assert stats["in_flight"] is False
