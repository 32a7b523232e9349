"""Swap attempt state machine."""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class SwapState(str, Enum):
    """Lifecycle of one swap attempt."""

    QUOTED = "quoted"
    INSTRUCTIONS_RESOLVED = "instructions_resolved"
    PREREQ_MISSING = "prereq_missing"
    COMPOSED = "composed"
    SIMULATED_OK = "simulated_ok"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SwapState.PREREQ_MISSING, SwapState.CONFIRMED, SwapState.FAILED})

ALLOWED_TRANSITIONS: dict[SwapState, frozenset[SwapState]] = {
    SwapState.QUOTED: frozenset({SwapState.INSTRUCTIONS_RESOLVED, SwapState.FAILED}),
    SwapState.INSTRUCTIONS_RESOLVED: frozenset(
        {SwapState.PREREQ_MISSING, SwapState.COMPOSED, SwapState.FAILED}
    ),
    SwapState.COMPOSED: frozenset({SwapState.SIMULATED_OK, SwapState.FAILED}),
    SwapState.SIMULATED_OK: frozenset({SwapState.SUBMITTED, SwapState.FAILED}),
    SwapState.SUBMITTED: frozenset({SwapState.CONFIRMED, SwapState.FAILED}),
    SwapState.PREREQ_MISSING: frozenset(),
    SwapState.CONFIRMED: frozenset(),
    SwapState.FAILED: frozenset(),
}


class InvalidTransition(Exception):
    """Raised when a swap attempt is moved backwards, sideways or past a terminal state."""

    def __init__(self, current: SwapState, requested: SwapState):
        super().__init__(f"Cannot move swap attempt from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class SwapAttempt:
    """Tracks one pass through the pipeline.

    States only move forward. An attempt never re-enters an earlier state;
    a retry is a new attempt with a new quote.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self.state = SwapState.QUOTED
        self.history: list[SwapState] = [SwapState.QUOTED]
        self.failure: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, new_state: SwapState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, new_state)
        logger.info(f"Swap {self.label}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self, kind: str) -> None:
        """Move to FAILED, recording the error kind. No-op if already terminal."""
        if self.is_terminal:
            return
        self.failure = kind
        self.advance(SwapState.FAILED)
