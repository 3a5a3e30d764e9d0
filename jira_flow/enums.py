"""Enumerations for transition outcomes and run phases."""

from enum import Enum


class OutcomeStatus(str, Enum):
    """Result of one engine operation."""

    COMPLETED = "completed"
    NO_OP = "no_op"
    SUSPENDED = "suspended"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class RunPhase(str, Enum):
    """Phases of a multi-step run to the terminal stage.

    The happy path is IDLE -> RUNNING -> DONE. ERROR and SUSPENDED keep the
    completed steps so the run can be resumed from where it stopped.
    """

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class Operation(str, Enum):
    """Engine operations exposed to the presentation layer."""

    ADVANCE = "advance"
    REGRESS = "regress"
    RUN_TO_COMPLETION = "run_to_completion"
    RESUME = "resume"

    def __str__(self) -> str:
        return self.value
