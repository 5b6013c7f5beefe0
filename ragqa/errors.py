"""Exception taxonomy for the QA pipeline.

Per-question errors (ExecutionError, EvaluationError) are caught at the
per-question boundary and written to the question record. Everything else
reaches the orchestrator, which marks the run failed and raises RunFatalError.
"""

from __future__ import annotations


class QAPipelineError(Exception):
    """Base class for all pipeline errors."""


class GenerationError(QAPipelineError):
    """Question generation could not produce a persisted question set."""


class ExecutionError(QAPipelineError):
    """Retrieval or answer generation failed for a single question."""


class EvaluationError(QAPipelineError):
    """The judge failed or returned unusable output for a single question.

    ``cost`` carries whatever judge spend was incurred before the failure.
    """

    def __init__(self, message: str, cost: float = 0.0) -> None:
        super().__init__(message)
        self.cost = cost


class RunFatalError(QAPipelineError):
    """A phase failed and the run was marked failed."""

    def __init__(self, phase: str, message: str) -> None:
        super().__init__(f"{phase} phase failed: {message}")
        self.phase = phase
        self.message = message


class RunNotFoundError(QAPipelineError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Test run not found: {run_id}")
        self.run_id = run_id


class InvalidTransitionError(QAPipelineError):
    """A run status change would move backwards or leave a terminal state."""

    def __init__(self, run_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Run {run_id} cannot move from '{current}' to '{target}'"
        )
        self.run_id = run_id
        self.current = current
        self.target = target
