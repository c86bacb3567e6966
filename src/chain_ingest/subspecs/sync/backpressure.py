"""
Backpressure for chunk admission.

Scheduling can produce work far faster than jobs complete. Without a gate,
the work queue would grow without bound and a restart would strand millions
of queued jobs. The controller admits a chunk only while the observed queue
depth is below a threshold.

How It Works
------------
1. **Check**: read the queue depth
2. **Admit** if the depth is below the threshold
3. Otherwise **Wait** one poll interval and check again
4. While waiting, log a progress line every progress interval

The wait is a cancellable timer. Setting the cancellation event aborts the
wait immediately, and the admission reports CANCELLED instead of blocking.

Fail-Open
---------
If the depth cannot be observed, the controller logs a warning and treats the
depth as zero. Forward progress wins over strict admission control; the queue
is expected to bound itself independently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from chain_ingest.subspecs import metrics

from .config import DEFAULT_POLL_INTERVAL, DEFAULT_PROGRESS_INTERVAL
from .errors import QueueUnreachableError
from .states import BackpressureState

logger = logging.getLogger(__name__)


class QueueDepthSource(Protocol):
    """Anything that reports how many jobs are pending."""

    def depth(self) -> int:
        """
        Return the number of pending jobs.

        Raises:
            QueueUnreachableError: If the depth cannot be observed.
        """
        ...


async def wait_for_signal(signal: asyncio.Event | None, timeout: float) -> bool:
    """
    Wait until the signal is set or the timeout elapses.

    Args:
        signal: Event to wait on. None waits for the full timeout.
        timeout: Maximum wait in seconds.

    Returns:
        True if the signal was set, False if the timeout elapsed.
    """
    if signal is None:
        await asyncio.sleep(timeout)
        return False
    try:
        await asyncio.wait_for(signal.wait(), timeout)
    except TimeoutError:
        return False
    return True


@dataclass(slots=True)
class BackpressureController:
    """
    Gates chunk admission on observed queue depth.

    One call to `admit()` drives the CHECK / WAIT / ADMIT state machine for
    a single chunk.
    """

    queue: QueueDepthSource
    """Source of the current queue depth."""

    threshold: int
    """Depth at or above which admission waits."""

    poll_interval: float = DEFAULT_POLL_INTERVAL
    """Seconds between depth polls while waiting."""

    progress_interval: float = DEFAULT_PROGRESS_INTERVAL
    """Seconds between progress log lines while waiting."""

    time_fn: Callable[[], float] = time.monotonic
    """Time source function (injectable for testing)."""

    _state: BackpressureState = field(default=BackpressureState.CHECK)
    """State of the current (or last) admission."""

    _last_depth: int | None = field(default=None)
    """Depth seen by the most recent check."""

    _polls_waited: int = field(default=0)
    """Total polls spent waiting across all admissions."""

    def __post_init__(self) -> None:
        """Validate the threshold and intervals."""
        if self.threshold < 1:
            raise ValueError(f"queue threshold must be positive, got {self.threshold}")
        if self.poll_interval < 0 or self.progress_interval < 0:
            raise ValueError("poll and progress intervals must be non-negative")

    @property
    def state(self) -> BackpressureState:
        """State of the current (or last) admission."""
        return self._state

    @property
    def last_depth(self) -> int | None:
        """Depth seen by the most recent check."""
        return self._last_depth

    @property
    def polls_waited(self) -> int:
        """Total polls spent waiting across all admissions."""
        return self._polls_waited

    def observe_depth(self) -> int:
        """
        Read the queue depth, failing open.

        Returns:
            The observed depth, or 0 if the queue is unreachable.
        """
        try:
            depth = self.queue.depth()
        except QueueUnreachableError as exc:
            logger.warning("Queue depth unavailable, admitting without backpressure: %s", exc)
            self._last_depth = None
            return 0

        self._last_depth = depth
        metrics.queue_depth.set(depth)
        return depth

    async def admit(self, cancel: asyncio.Event | None = None) -> BackpressureState:
        """
        Block until the queue can take another chunk.

        Args:
            cancel: Optional cancellation signal.

        Returns:
            ADMIT when the chunk may be submitted, CANCELLED if the signal
            was set first.
        """
        self._state = BackpressureState.CHECK

        waiting_since: float | None = None
        last_report = 0.0

        while True:
            if cancel is not None and cancel.is_set():
                self._transition_to(BackpressureState.CANCELLED)
                return self._state

            depth = self.observe_depth()
            if depth < self.threshold:
                if waiting_since is not None:
                    logger.info(
                        "Queue drained to %d after %.0fs, admitting chunk",
                        depth,
                        self.time_fn() - waiting_since,
                    )
                self._transition_to(BackpressureState.ADMIT)
                return self._state

            self._transition_to(BackpressureState.WAIT)

            # First wait is always reported; later ones only every progress interval.
            now = self.time_fn()
            if waiting_since is None:
                waiting_since = now
                last_report = now
                logger.info("Queue size: %d (threshold %d). Waiting...", depth, self.threshold)
            elif now - last_report >= self.progress_interval:
                last_report = now
                logger.info(
                    "Still waiting for queue to drain: depth=%d threshold=%d waited=%.0fs",
                    depth,
                    self.threshold,
                    now - waiting_since,
                )

            self._polls_waited += 1
            metrics.backpressure_waits.inc()

            if await wait_for_signal(cancel, self.poll_interval):
                self._transition_to(BackpressureState.CANCELLED)
                return self._state

            self._transition_to(BackpressureState.CHECK)

    def _transition_to(self, new_state: BackpressureState) -> None:
        """
        Move the admission state machine.

        Raises:
            ValueError: If the transition is not allowed.
        """
        if not self._state.can_transition_to(new_state):
            raise ValueError(f"Invalid state transition: {self._state.name} -> {new_state.name}")
        self._state = new_state
