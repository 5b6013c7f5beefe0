"""Pipeline phase and status definitions shared across the run lifecycle."""

from __future__ import annotations

from enum import StrEnum


class Phase(StrEnum):
    """Value of ``current_phase`` on a run, and ``phase`` in error details."""

    GENERATING = "generating"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    FINALIZING = "finalizing"


class RunStatus(StrEnum):
    """Run lifecycle. Forward-only; any non-terminal state may fail."""

    PENDING = "pending"
    GENERATING = "generating"
    RUNNING = "running"
    EVALUATING = "evaluating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)

    def can_transition_to(self, target: RunStatus) -> bool:
        if self.is_terminal:
            return False
        if target is RunStatus.FAILED:
            return True
        return _RUN_ORDER.index(target) > _RUN_ORDER.index(self)


_RUN_ORDER = [
    RunStatus.PENDING,
    RunStatus.GENERATING,
    RunStatus.RUNNING,
    RunStatus.EVALUATING,
    RunStatus.COMPLETED,
]


class QuestionStatus(StrEnum):
    PENDING = "pending"
    EXECUTING = "executing"
    EVALUATING = "evaluating"  # answered, waiting for the judge
    COMPLETED = "completed"
    FAILED = "failed"


class Strictness(StrEnum):
    """Stored on the run config; reserved for future rubric tuning."""

    STRICT = "strict"
    MODERATE = "moderate"
    LENIENT = "lenient"
