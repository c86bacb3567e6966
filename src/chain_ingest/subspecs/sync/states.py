"""State machines and outcome values for ingestion."""

from __future__ import annotations

from enum import Enum, auto


class BackpressureState(Enum):
    """
    States of one chunk admission.

    State Machine Diagram
    ---------------------
    ::

        CHECK --> ADMIT
          |  ^
          v  |
          WAIT --> CANCELLED

    Transitions
    -----------
    CHECK -> ADMIT
        - Triggered when: observed depth is below the threshold
          (or could not be observed at all)

    CHECK -> WAIT
        - Triggered when: observed depth is at or above the threshold

    WAIT -> CHECK
        - Triggered when: the poll interval elapsed

    WAIT -> CANCELLED / CHECK -> CANCELLED
        - Triggered when: the cancellation signal is set

    ADMIT and CANCELLED are terminal for one admission.
    """

    CHECK = auto()
    """Reading the queue depth."""

    WAIT = auto()
    """Queue is too deep; waiting for the next poll."""

    ADMIT = auto()
    """Chunk may be handed to the job submission interface."""

    CANCELLED = auto()
    """Waiting was aborted by the cancellation signal."""

    def can_transition_to(self, target: BackpressureState) -> bool:
        """
        Check if transition to target state is valid.

        Args:
            target: The proposed target state.

        Returns:
            True if the transition is allowed by the state machine rules.
        """
        return target in _VALID_TRANSITIONS.get(self, set())


_VALID_TRANSITIONS: dict[BackpressureState, set[BackpressureState]] = {
    BackpressureState.CHECK: {
        BackpressureState.ADMIT,
        BackpressureState.WAIT,
        BackpressureState.CANCELLED,
    },
    BackpressureState.WAIT: {BackpressureState.CHECK, BackpressureState.CANCELLED},
    BackpressureState.ADMIT: set(),
    BackpressureState.CANCELLED: set(),
}
"""Valid state transitions for one admission."""


class JobOutcome(Enum):
    """
    Classification of one job execution.

    The failure ratio of a batch decides between the failure outcomes. A
    minority of failed heights is tolerated (they resurface as gaps on a
    later pass). A majority is treated as systemic and retried a bounded
    number of times.
    """

    SUCCESS = auto()
    """Every height was fetched and written."""

    PARTIAL_SUCCESS = auto()
    """Some heights failed, but not more than the failure threshold."""

    RETRY = auto()
    """Too many heights failed; the batch runs again after a delay."""

    TERMINAL_FAILURE = auto()
    """Too many heights failed and no attempts remain."""


class FailureKind(Enum):
    """Reason a single height could not be ingested."""

    TIMEOUT = "timeout"
    """Retrieval exceeded its deadline."""

    TRANSPORT = "transport"
    """Network or protocol failure talking to the node."""

    REMOTE = "remote"
    """The node answered with an explicit error."""

    WRITE = "write"
    """The block store rejected the payload."""

    UNEXPECTED = "unexpected"
    """Any other error raised while fetching."""
