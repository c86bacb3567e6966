"""
Retry delay policies for failed batches.

A batch that fails systemically is executed again after a delay. The policy
only computes the delay; the work queue holds the job until it elapses, so
tests can check the schedule without waiting in real time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .config import DEFAULT_RETRY_DELAY


class BackoffPolicy(Protocol):
    """Computes how long a failed batch waits before its next attempt."""

    def delay(self, attempt: int) -> float:
        """
        Seconds to wait before re-running a batch.

        Args:
            attempt: The attempt that just failed (1 for the first execution).
        """
        ...


@dataclass(frozen=True, slots=True)
class ConstantBackoff:
    """Same delay after every failed attempt."""

    seconds: float = DEFAULT_RETRY_DELAY
    """Delay applied to every retry."""

    def delay(self, attempt: int) -> float:  # noqa: ARG002
        """Return the fixed delay."""
        return self.seconds


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Delay growing geometrically with the attempt number, capped."""

    base: float = DEFAULT_RETRY_DELAY
    """Delay after the first failed attempt."""

    factor: float = 2.0
    """Growth factor between consecutive attempts."""

    max_delay: float = 600.0
    """Upper bound on any single delay."""

    def delay(self, attempt: int) -> float:
        """Return `base * factor ** (attempt - 1)`, capped at `max_delay`."""
        return min(self.base * self.factor ** max(attempt - 1, 0), self.max_delay)
