"""Run orchestrator: the generate -> execute -> evaluate -> finalize graph.

    START -> generate -> execute -> evaluate -> finalize -> END

Each node persists its own results and advances the run status before the
next node starts. A node that raises is reported as RunFatalError(phase);
run_complete_test then marks the run failed with ``{phase, error}`` and
re-raises. Partial results (already executed or scored questions) are kept.

Only pending runs can be started. A run left mid-phase by a crash stays in
its last status; ``Executor.execute_run`` and ``Evaluator.evaluate_run`` pick
up remaining pending and unscored questions if called again manually.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Awaitable, Callable
from contextlib import closing
from typing import Any

import structlog
from langgraph.graph import END, START, StateGraph

from ragqa.config import QASettings, get_qa_settings
from ragqa.errors import InvalidTransitionError, RunFatalError, RunNotFoundError
from ragqa.logging_config import bind_run
from ragqa.persistence.repository import (
    create_test_run,
    get_tenant_document_count,
    get_test_run,
    update_test_run,
)
from ragqa.pipeline.context import PipelineContext
from ragqa.pipeline.distribution import calculate_total_questions
from ragqa.pipeline.evaluator import Evaluator
from ragqa.pipeline.executor import Executor
from ragqa.pipeline.finalizer import finalize
from ragqa.pipeline.generator import QuestionGenerator
from ragqa.schemas.phases import Phase, RunStatus
from ragqa.schemas.records import TestRun, TestRunConfig
from ragqa.schemas.state import PipelineState

logger = structlog.get_logger(__name__)

Node = Callable[[PipelineState], Awaitable[dict]]


# ---------------------------------------------------------------------------
# Run creation
# ---------------------------------------------------------------------------


def create_run_for_tenant(
    conn: sqlite3.Connection,
    tenant_id: str,
    overrides: dict[str, Any] | None = None,
    qa_settings: QASettings | None = None,
) -> TestRun:
    """Create a pending run: merge config with defaults and fix the question budget."""
    qa = qa_settings or get_qa_settings()
    data = qa.run.model_dump()
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})
    config = TestRunConfig.model_validate(data)

    document_count = get_tenant_document_count(conn, tenant_id)
    total = calculate_total_questions(
        config.min_questions, document_count, config.questions_per_document
    )
    run_id = create_test_run(conn, tenant_id, config, total)
    logger.info(
        "run_planned",
        run_id=run_id,
        tenant_id=tenant_id,
        documents=document_count,
        total_questions=total,
    )
    return get_test_run(conn, run_id)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


def _phase_node(phase: Phase, fn: Node) -> Node:
    """Tag any failure inside a node with the phase it happened in."""

    async def node(state: PipelineState) -> dict:
        try:
            return await fn(state)
        except RunFatalError:
            raise
        except Exception as exc:
            raise RunFatalError(phase, str(exc) or type(exc).__name__) from exc

    node.__name__ = f"{phase.value}_node"
    return node


def build_pipeline_graph(ctx: PipelineContext):
    """Build and compile the linear run graph bound to a context."""

    async def generate(state: PipelineState) -> dict:
        run_id = state["run_id"]
        with closing(ctx.connect()) as conn:
            update_test_run(
                conn,
                run_id,
                status=RunStatus.GENERATING,
                current_phase=Phase.GENERATING,
                started_at=ctx.clock(),
            )
            run = get_test_run(conn, run_id)

        generator = QuestionGenerator(ctx)
        try:
            questions = await generator.generate(run)
        finally:
            # Spend is recorded even when generation fails
            with closing(ctx.connect()) as conn:
                update_test_run(
                    conn,
                    run_id,
                    cost_breakdown=run.cost_breakdown.model_copy(
                        update={"generation": generator.cost}
                    ),
                )

        with closing(ctx.connect()) as conn:
            update_test_run(
                conn, run_id, status=RunStatus.RUNNING, current_phase=Phase.EXECUTING
            )
        return {
            "current_phase": Phase.EXECUTING.value,
            "questions_generated": len(questions),
            "generation_cost": generator.cost,
        }

    async def execute(state: PipelineState) -> dict:
        run_id = state["run_id"]
        executed = await Executor(ctx).execute_run(run_id)
        with closing(ctx.connect()) as conn:
            update_test_run(
                conn, run_id, status=RunStatus.EVALUATING, current_phase=Phase.EVALUATING
            )
        return {"current_phase": Phase.EVALUATING.value, "questions_executed": executed}

    async def evaluate(state: PipelineState) -> dict:
        scored = await Evaluator(ctx).evaluate_run(state["run_id"])
        return {"current_phase": Phase.FINALIZING.value, "questions_scored": scored}

    async def finalize_node(state: PipelineState) -> dict:
        final = await finalize(state["run_id"], ctx)
        return {"overall_score": final.overall_score}

    builder = StateGraph(PipelineState)
    builder.add_node("generate", _phase_node(Phase.GENERATING, generate))
    builder.add_node("execute", _phase_node(Phase.EXECUTING, execute))
    builder.add_node("evaluate", _phase_node(Phase.EVALUATING, evaluate))
    builder.add_node("finalize", _phase_node(Phase.FINALIZING, finalize_node))

    builder.add_edge(START, "generate")
    builder.add_edge("generate", "execute")
    builder.add_edge("execute", "evaluate")
    builder.add_edge("evaluate", "finalize")
    builder.add_edge("finalize", END)
    return builder.compile()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _record_failure(ctx: PipelineContext, run_id: str, exc: RunFatalError) -> None:
    cause = exc.__cause__
    details = {
        "phase": exc.phase,
        "error": exc.message,
        "error_type": type(cause).__name__ if cause else type(exc).__name__,
    }
    try:
        with closing(ctx.connect()) as conn:
            update_test_run(
                conn,
                run_id,
                status=RunStatus.FAILED,
                error_message=exc.message,
                error_details=details,
                completed_at=ctx.clock(),
            )
    except Exception:
        # The run stays in its last status; the raise below still reports it
        logger.exception("run_failure_not_recorded", run_id=run_id, phase=exc.phase)


async def run_complete_test(run_id: str, ctx: PipelineContext) -> TestRun:
    """Execute all phases of a pending run. Returns the completed run.

    Raises:
        RunNotFoundError: no such run.
        InvalidTransitionError: the run is not pending (already started,
            completed or failed). Nothing is modified.
        RunFatalError: a phase failed; the run is now marked failed.
    """
    with closing(ctx.connect()) as conn:
        run = get_test_run(conn, run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    if run.status is not RunStatus.PENDING:
        raise InvalidTransitionError(run_id, run.status, RunStatus.GENERATING)

    graph = build_pipeline_graph(ctx)
    with bind_run(run.id, run.tenant_id):
        logger.info("run_started", total_questions=run.total_questions)
        try:
            result = await graph.ainvoke({"run_id": run_id, "tenant_id": run.tenant_id})
        except RunFatalError as exc:
            logger.error("run_failed", phase=exc.phase, error=exc.message)
            _record_failure(ctx, run_id, exc)
            raise
        logger.info(
            "run_completed",
            overall_score=result.get("overall_score"),
            questions=result.get("questions_generated"),
        )

    with closing(ctx.connect()) as conn:
        return get_test_run(conn, run_id)
