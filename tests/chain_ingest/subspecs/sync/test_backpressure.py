"""Tests for queue depth admission control."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import pytest
from hypothesis import given
from hypothesis import strategies as st

from chain_ingest.subspecs.sync import BackpressureController, BackpressureState
from chain_ingest.subspecs.sync.backpressure import wait_for_signal
from tests.chain_ingest.helpers import FakeClock, FakeQueue, run_async


class TickingQueue(FakeQueue):
    """Queue whose every depth read advances a fake clock."""

    def __init__(self, clock: FakeClock, step: float, depths: list[int]) -> None:
        super().__init__(depths)
        self.clock = clock
        self.step = step

    def depth(self) -> int:
        self.clock.advance(self.step)
        return super().depth()


def make_controller(
    queue: FakeQueue, threshold: int = 100, **kwargs: Any
) -> BackpressureController:
    """Controller that never sleeps between polls."""
    return BackpressureController(queue=queue, threshold=threshold, poll_interval=0.0, **kwargs)


class TestAdmission:
    """Admit or wait depending on the observed depth."""

    def test_admits_immediately_below_threshold(self) -> None:
        """A shallow queue is admitted after one check."""
        queue = FakeQueue([10])
        controller = make_controller(queue)

        state = run_async(controller.admit())

        assert state is BackpressureState.ADMIT
        assert controller.state is BackpressureState.ADMIT
        assert queue.depth_calls == 1
        assert controller.polls_waited == 0
        assert controller.last_depth == 10

    def test_threshold_itself_blocks(self) -> None:
        """Depth equal to the threshold waits."""
        queue = FakeQueue([100, 99])
        controller = make_controller(queue)

        state = run_async(controller.admit())

        assert state is BackpressureState.ADMIT
        assert controller.polls_waited == 1
        assert controller.last_depth == 99

    def test_waits_until_queue_drains(self, sample_value: Callable[..., float]) -> None:
        """Each poll above the threshold is counted as a wait."""
        queue = FakeQueue([150, 120, 50])
        controller = make_controller(queue)
        before = sample_value("chain_ingest_backpressure_waits_total")

        state = run_async(controller.admit())

        assert state is BackpressureState.ADMIT
        assert queue.depth_calls == 3
        assert controller.polls_waited == 2
        assert sample_value("chain_ingest_backpressure_waits_total") == before + 2

    def test_unreachable_queue_fails_open(self, caplog: pytest.LogCaptureFixture) -> None:
        """A failed depth read counts as an empty queue and is logged."""
        controller = make_controller(FakeQueue(unreachable=True))

        with caplog.at_level(logging.WARNING):
            state = run_async(controller.admit())

        assert state is BackpressureState.ADMIT
        assert controller.last_depth is None
        assert "Queue depth unavailable" in caplog.text

    def test_threshold_must_be_positive(self) -> None:
        """A zero threshold could never admit anything."""
        with pytest.raises(ValueError, match="threshold"):
            BackpressureController(queue=FakeQueue(), threshold=0)

    def test_invalid_transition_rejected(self) -> None:
        """A finished admission cannot go back to waiting."""
        controller = make_controller(FakeQueue())
        run_async(controller.admit())

        with pytest.raises(ValueError, match="Invalid state transition"):
            controller._transition_to(BackpressureState.WAIT)

    @given(
        blocked=st.lists(st.integers(min_value=0, max_value=50), max_size=8),
        threshold=st.integers(min_value=1, max_value=50),
    )
    def test_never_admits_at_or_above_threshold(self, blocked: list[int], threshold: int) -> None:
        """Admission only follows a depth strictly below the threshold."""
        depths = [threshold + extra for extra in blocked] + [threshold - 1]
        queue = FakeQueue(depths)
        controller = make_controller(queue, threshold=threshold)

        state = run_async(controller.admit())

        assert state is BackpressureState.ADMIT
        assert controller.last_depth == threshold - 1
        assert controller.polls_waited == len(blocked)


class TestCancellation:
    """Cancellation aborts waiting."""

    def test_cancelled_before_check(self) -> None:
        """A set signal wins before the depth is even read."""
        queue = FakeQueue([500])
        controller = make_controller(queue)
        cancel = asyncio.Event()
        cancel.set()

        state = run_async(controller.admit(cancel))

        assert state is BackpressureState.CANCELLED
        assert queue.depth_calls == 0

    def test_cancel_interrupts_long_wait(self) -> None:
        """Setting the signal ends a wait far shorter than the poll interval."""
        queue = FakeQueue([500])
        controller = BackpressureController(queue=queue, threshold=100, poll_interval=3600.0)

        async def run() -> BackpressureState:
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.01, cancel.set)
            return await asyncio.wait_for(controller.admit(cancel), timeout=5.0)

        assert run_async(run()) is BackpressureState.CANCELLED
        assert controller.polls_waited == 1

    def test_wait_for_signal_times_out(self) -> None:
        """An unset signal reports a timeout."""

        async def run() -> bool:
            return await wait_for_signal(asyncio.Event(), 0.0)

        assert run_async(run()) is False

    def test_wait_for_signal_without_event_sleeps(self) -> None:
        """Without a signal the wait simply elapses."""
        assert run_async(wait_for_signal(None, 0.0)) is False


class TestProgressLogging:
    """Coarse progress lines while blocked."""

    def test_progress_reported_every_interval(self, caplog: pytest.LogCaptureFixture) -> None:
        """The first wait and each elapsed progress interval are logged."""
        clock = FakeClock()
        queue = TickingQueue(clock, step=100.0, depths=[200, 200, 200, 200, 200, 50])
        controller = make_controller(queue, progress_interval=300.0, time_fn=clock)

        with caplog.at_level(logging.INFO, logger="chain_ingest.subspecs.sync.backpressure"):
            state = run_async(controller.admit())

        assert state is BackpressureState.ADMIT
        messages = [record.getMessage() for record in caplog.records]
        assert sum("Waiting..." in message for message in messages) == 1
        assert sum("Still waiting" in message for message in messages) == 1
        assert any("Queue drained to 50" in message for message in messages)
