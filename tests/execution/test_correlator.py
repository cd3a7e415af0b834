"""Tests for ExecutionCorrelator and ExecutionHandle."""

import asyncio
import threading

import pytest

from pulpit.errors import DuplicateCorrelationError
from pulpit.execution.correlator import ExecutionCorrelator, ExecutionHandle
from pulpit.models.entities import ExecutionOutcome
from pulpit.models.enums import DeliveryChannel, ExecutionStatus
from pulpit.observability.metrics import MetricsCollector
from pulpit.testing.fakes import ManualClock


class TestExecutionHandle:
    """Tests for single-resolution semantics."""

    async def test_first_resolve_wins(self) -> None:
        handle = ExecutionHandle("01HX")
        first = ExecutionOutcome.from_result("01HX", True, output="first")
        second = ExecutionOutcome.from_result("01HX", False, error="second")

        assert handle.resolve(first) is True
        assert handle.resolve(second) is False

        assert await handle == first
        assert handle.done
        assert handle.outcome == first

    async def test_caller_giving_up_does_not_cancel(self) -> None:
        """A waiter that times out leaves the handle resolvable."""
        handle = ExecutionHandle("01HX")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(handle.wait(), timeout=0.01)

        outcome = ExecutionOutcome.from_result("01HX", True)
        assert handle.resolve(outcome) is True
        assert await handle.wait() == outcome

    async def test_resolve_from_another_thread(self) -> None:
        handle = ExecutionHandle("01HX")
        outcome = ExecutionOutcome.from_result("01HX", True, output="threaded")

        thread = threading.Thread(target=handle.resolve, args=(outcome,))
        thread.start()
        result = await asyncio.wait_for(handle.wait(), timeout=2)
        thread.join()

        assert result == outcome


class TestExecutionCorrelator:
    """Tests for expect/resolve/timeout/discard."""

    async def test_result_resolves_waiter(
        self, correlator: ExecutionCorrelator, metrics: MetricsCollector
    ) -> None:
        handle = correlator.expect("01HX", timeout_seconds=30)
        outcome = ExecutionOutcome.from_result("01HX", True, output="done")

        assert correlator.is_pending("01HX")
        assert correlator.resolve("01HX", outcome) is True

        assert await handle == outcome
        assert not correlator.is_pending("01HX")
        assert len(correlator) == 0
        assert (
            metrics.get_histogram_count(
                "pulpit_execution_duration_seconds", {"channel": "socket"}
            )
            == 1
        )

    async def test_timeout_produces_timed_out(
        self, correlator: ExecutionCorrelator, manual_clock: ManualClock
    ) -> None:
        """Timeout resolves the waiter with TIMED_OUT, not FAILED."""
        handle = correlator.expect("01HX", timeout_seconds=5)

        manual_clock.advance(4.9)
        assert not handle.done

        manual_clock.advance(0.1)
        outcome = await handle

        assert outcome.status is ExecutionStatus.TIMED_OUT
        assert outcome.execution_id == "01HX"
        assert not correlator.is_pending("01HX")

    async def test_late_result_after_timeout_is_dropped(
        self,
        correlator: ExecutionCorrelator,
        manual_clock: ManualClock,
        metrics: MetricsCollector,
    ) -> None:
        handle = correlator.expect("01HX", timeout_seconds=5)
        manual_clock.advance(5)

        late = correlator.resolve("01HX", ExecutionOutcome.from_result("01HX", True))

        assert late is False
        assert (await handle).status is ExecutionStatus.TIMED_OUT
        assert metrics.get_counter("pulpit_late_results_total") == 1

    async def test_result_cancels_timer(
        self, correlator: ExecutionCorrelator, manual_clock: ManualClock
    ) -> None:
        """Once a result arrives, the timeout never fires."""
        handle = correlator.expect("01HX", timeout_seconds=5)
        correlator.resolve("01HX", ExecutionOutcome.from_result("01HX", True))

        manual_clock.advance(10)

        assert (await handle).status is ExecutionStatus.SUCCEEDED
        assert manual_clock.pending_timers == 0

    async def test_duplicate_result_is_dropped(self, correlator: ExecutionCorrelator) -> None:
        handle = correlator.expect("01HX", timeout_seconds=5)
        correlator.resolve("01HX", ExecutionOutcome.from_result("01HX", True, output="one"))

        assert (
            correlator.resolve("01HX", ExecutionOutcome.from_result("01HX", True, output="two"))
            is False
        )
        assert (await handle).output == "one"

    async def test_unknown_id_is_dropped(self, correlator: ExecutionCorrelator) -> None:
        assert correlator.resolve("nope", ExecutionOutcome.from_result("nope", True)) is False

    async def test_duplicate_pending_id_raises(self, correlator: ExecutionCorrelator) -> None:
        correlator.expect("01HX", timeout_seconds=5)

        with pytest.raises(DuplicateCorrelationError):
            correlator.expect("01HX", timeout_seconds=5)

    async def test_discard(self, correlator: ExecutionCorrelator) -> None:
        handle = correlator.expect("01HX", timeout_seconds=5)
        failed = ExecutionOutcome.failed(DeliveryChannel.SOCKET, "send failed", "01HX")

        assert correlator.discard("01HX", failed) is True
        assert correlator.discard("01HX", failed) is False
        assert await handle == failed

    async def test_independent_executions(
        self, correlator: ExecutionCorrelator, manual_clock: ManualClock
    ) -> None:
        """Concurrent executions time out independently."""
        short = correlator.expect("short", timeout_seconds=1)
        long = correlator.expect("long", timeout_seconds=10)

        manual_clock.advance(2)

        assert (await short).status is ExecutionStatus.TIMED_OUT
        assert not long.done
        assert correlator.pending_ids() == ["long"]

    async def test_shutdown_fails_pending(self, correlator: ExecutionCorrelator) -> None:
        first = correlator.expect("a", timeout_seconds=30)
        second = correlator.expect("b", timeout_seconds=30)

        assert correlator.shutdown("Server shutting down") == 2

        for handle in (first, second):
            outcome = await handle
            assert outcome.status is ExecutionStatus.FAILED
            assert outcome.error == "Server shutting down"
        assert len(correlator) == 0

    async def test_id_can_be_reused_after_completion(
        self, correlator: ExecutionCorrelator
    ) -> None:
        correlator.expect("01HX", timeout_seconds=5)
        correlator.resolve("01HX", ExecutionOutcome.from_result("01HX", True))

        again = correlator.expect("01HX", timeout_seconds=5)

        assert not again.done
        assert correlator.is_pending("01HX")


class TestTimeoutResultRace:
    """A timeout and a device result racing on separate threads."""

    async def test_exactly_one_resolution(self, metrics: MetricsCollector) -> None:
        """Whichever side wins, the handle completes once and the table is emptied."""
        for i in range(200):
            clock = ManualClock()
            correlator = ExecutionCorrelator(clock=clock, metrics=metrics)
            correlation_id = f"01HX{i:04d}"
            handle = correlator.expect(correlation_id, timeout_seconds=5)

            completions: list[bool] = []
            resolve_handle = handle.resolve

            def counting_resolve(
                outcome: ExecutionOutcome, _resolve=resolve_handle, _seen=completions
            ) -> bool:
                won = _resolve(outcome)
                _seen.append(won)
                return won

            handle.resolve = counting_resolve  # type: ignore[method-assign]

            barrier = threading.Barrier(2)
            result_accepted: list[bool] = []

            def fire_timeout(_clock=clock, _barrier=barrier) -> None:
                _barrier.wait()
                _clock.advance(5)

            def deliver_result(
                _id=correlation_id, _barrier=barrier, _accepted=result_accepted
            ) -> None:
                _barrier.wait()
                _accepted.append(
                    correlator.resolve(_id, ExecutionOutcome.from_result(_id, True, "done"))
                )

            threads = [
                threading.Thread(target=fire_timeout),
                threading.Thread(target=deliver_result),
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            outcome = await handle.wait()

            assert completions.count(True) == 1
            assert len(correlator) == 0
            if result_accepted == [True]:
                assert outcome.status is ExecutionStatus.SUCCEEDED
            else:
                assert result_accepted == [False]
                assert outcome.status is ExecutionStatus.TIMED_OUT
