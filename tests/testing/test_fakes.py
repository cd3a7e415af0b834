"""Tests for the pulpit.testing fakes."""

import pytest

from pulpit.clock import Clock, LoopClock
from pulpit.errors import PushDeliveryError
from pulpit.push.dispatcher import PushDispatcher
from pulpit.testing.fakes import FakeConnection, ManualClock, RecordingPushDispatcher


class TestManualClock:
    """Tests for deterministic timers."""

    def test_is_a_clock(self) -> None:
        assert isinstance(ManualClock(), Clock)
        assert isinstance(LoopClock(), Clock)

    def test_timers_fire_in_deadline_order(self) -> None:
        clock = ManualClock()
        fired: list[tuple[str, float]] = []
        clock.call_later(5, lambda: fired.append(("b", clock.now())))
        clock.call_later(2, lambda: fired.append(("a", clock.now())))

        clock.advance(10)

        assert fired == [("a", 2.0), ("b", 5.0)]
        assert clock.now() == 10.0

    def test_cancelled_timer_does_not_fire(self) -> None:
        clock = ManualClock()
        fired: list[int] = []
        timer = clock.call_later(1, lambda: fired.append(1))

        timer.cancel()
        clock.advance(5)

        assert fired == []
        assert clock.pending_timers == 0

    def test_cancelled_timers_are_released(self) -> None:
        """Cancelled timers do not accumulate across a long test."""
        clock = ManualClock()
        for _ in range(50):
            clock.call_later(30, lambda: None).cancel()
        keep = clock.call_later(60, lambda: None)

        clock.advance(1)

        assert clock._timers == [keep]

    def test_timer_scheduled_by_callback_fires_in_same_advance(self) -> None:
        clock = ManualClock()
        fired: list[float] = []

        def first() -> None:
            clock.call_later(1, lambda: fired.append(clock.now()))

        clock.call_later(1, first)
        clock.advance(3)

        assert fired == [2.0]


class TestFakeConnection:
    """Tests for FakeConnection."""

    async def test_records_frames(self) -> None:
        handle = FakeConnection()
        await handle.send({"type": "ping"})

        assert handle.sent == [{"type": "ping"}]
        assert handle.last_frame == {"type": "ping"}

    async def test_first_close_wins(self) -> None:
        handle = FakeConnection()
        handle.close(4003, "Superseded")
        handle.close(1000, "")

        assert handle.close_code == 4003
        assert handle.close_calls == 2
        with pytest.raises(ConnectionError):
            await handle.send({"type": "ping"})


class TestRecordingPushDispatcher:
    """Tests for RecordingPushDispatcher."""

    async def test_records_and_fails_on_demand(self) -> None:
        push = RecordingPushDispatcher()
        assert isinstance(push, PushDispatcher)

        await push.send_command("tok", "01HX", "Lamp")
        await push.send_alert("tok", "Hi", None, sound="loud")
        push.failing_tokens.add("bad")

        with pytest.raises(PushDeliveryError):
            await push.send_alert("bad", "Hi", None)
        assert len(push.commands) == 1
        assert push.alerts[0].data["sound"] == "loud"
