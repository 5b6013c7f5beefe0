"""Prometheus metrics for the QA API.

Tracks submitted and finished runs, question outcomes, pipeline spend and
worker pool load. Exposed via the /api/v1/metrics endpoint.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, generate_latest

from ragqa.schemas.records import TestQuestion, TestRun

# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

RUNS_SUBMITTED = Counter(
    "ragqa_runs_submitted_total",
    "Total test runs submitted",
    ["tenant_id"],
)
RUNS_FINISHED = Counter(
    "ragqa_runs_finished_total",
    "Total test runs finished",
    ["status"],
)
QUESTIONS_EXECUTED = Counter(
    "ragqa_questions_total",
    "Questions by final outcome",
    ["category", "outcome"],
)
PIPELINE_COST = Counter(
    "ragqa_pipeline_cost_usd_total",
    "Estimated LLM spend in USD",
    ["phase"],
)
QUEUE_DEPTH = Gauge(
    "ragqa_queue_depth",
    "Runs waiting for a worker slot",
)
ACTIVE_WORKERS = Gauge(
    "ragqa_active_workers",
    "Runs currently held by the worker pool",
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def record_run_submitted(tenant_id: str) -> None:
    RUNS_SUBMITTED.labels(tenant_id=tenant_id).inc()


def record_run_finished(status: str) -> None:
    RUNS_FINISHED.labels(status=status).inc()


def _outcome(question: TestQuestion) -> str:
    if question.passed is True:
        return "passed"
    if question.passed is False:
        return "failed"
    return str(question.status)


def record_run_results(run: TestRun, questions: list[TestQuestion]) -> None:
    """Count question outcomes and spend of a finished run."""
    for q in questions:
        QUESTIONS_EXECUTED.labels(category=str(q.category), outcome=_outcome(q)).inc()
    breakdown = run.cost_breakdown
    PIPELINE_COST.labels(phase="generation").inc(breakdown.generation)
    PIPELINE_COST.labels(phase="execution").inc(breakdown.execution)
    PIPELINE_COST.labels(phase="evaluation").inc(breakdown.evaluation)


def set_queue_depth(depth: int) -> None:
    QUEUE_DEPTH.set(depth)


def set_active_workers(count: int) -> None:
    ACTIVE_WORKERS.set(count)


def get_metrics_text() -> str:
    """Generate Prometheus metrics text output."""
    return generate_latest().decode("utf-8")
