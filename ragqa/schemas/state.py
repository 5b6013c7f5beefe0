"""Graph state for the run pipeline (LangGraph TypedDict state)."""

from __future__ import annotations

from typing import TypedDict


class PipelineState(TypedDict, total=False):
    """Flows: generate -> execute -> evaluate -> finalize.

    Only identifiers and counters travel through the graph; the records
    themselves live in the database.
    """

    run_id: str
    tenant_id: str

    # ----- Phase tracking -----
    current_phase: str

    # ----- Counters -----
    questions_generated: int
    questions_executed: int
    questions_scored: int
    generation_cost: float

    # ----- Output -----
    overall_score: float
