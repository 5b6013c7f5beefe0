"""FastAPI application for the RAG chatbot QA pipeline.

Provides REST endpoints for starting test runs per tenant, polling progress,
browsing scored questions, managing question templates and monitoring.

Usage:
    uvicorn ragqa.api.app:app --reload          # Development
    uvicorn ragqa.api.app:app --host 0.0.0.0    # Production (behind reverse proxy)
"""

from __future__ import annotations

import os
import sqlite3
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware

from ragqa.api.dependencies import (
    get_context,
    get_db,
    get_worker_pool,
    init_dependencies,
    reset_dependencies,
)
from ragqa.api.metrics import get_metrics_text, record_run_submitted
from ragqa.api.queue import WorkerPool
from ragqa.api.schemas import (
    ErrorResponse,
    HealthResponse,
    RunCreatedResponse,
    RunCreateRequest,
    TemplateUpdateRequest,
    TenantRunsResponse,
)
from ragqa.collaborators import LexicalRetriever, LLMAnswerGenerator, load_retriever
from ragqa.config import get_settings
from ragqa.logging_config import setup_logging
from ragqa.persistence.repository import (
    create_template,
    delete_template,
    delete_test_run,
    get_global_qa_stats,
    get_template,
    get_templates,
    get_tenant_document_count,
    get_tenant_test_overview,
    get_test_questions,
    get_test_run,
    get_test_run_progress,
    list_test_runs_for_tenant,
    update_template,
)
from ragqa.pipeline.context import PipelineContext
from ragqa.pipeline.orchestrator import create_run_for_tenant
from ragqa.schemas.categories import Category
from ragqa.schemas.phases import QuestionStatus, RunStatus
from ragqa.schemas.records import (
    GlobalQAStats,
    RunProgress,
    TemplateInput,
    TenantTestOverview,
    TestQuestion,
    TestRun,
    TestTemplate,
)

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# App lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline context and worker pool; cancel jobs on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, json_output=True)

    if settings.retriever:
        retriever = load_retriever(settings.retriever)
    else:
        retriever = LexicalRetriever(settings.database_path)
        logger.warning("lexical_retriever_active", db_path=settings.database_path)

    ctx = PipelineContext(
        db_path=settings.database_path,
        retriever=retriever,
        answer_generator=LLMAnswerGenerator(),
    )
    worker_pool = WorkerPool(ctx, max_workers=settings.max_workers)
    init_dependencies(ctx, worker_pool)
    logger.info("api_started", max_workers=settings.max_workers, db_path=settings.database_path)

    yield

    await worker_pool.shutdown()
    reset_dependencies()
    logger.info("api_shutdown")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="RAG Chatbot QA API",
    description=(
        "Automated quality tests for tenant chatbots: generate questions from "
        "the tenant corpus, run them through the chatbot and score the answers."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

cors_origins = os.environ.get("RAGQA_CORS_ORIGINS", "").split(",")
cors_origins = [o.strip() for o in cors_origins if o.strip()]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

_NOT_FOUND = {404: {"model": ErrorResponse}}


def _require_run(conn: sqlite3.Connection, run_id: str) -> TestRun:
    run = get_test_run(conn, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found.")
    return run


def _require_template(conn: sqlite3.Connection, tenant_id: str, template_id: str) -> TestTemplate:
    template = get_template(conn, template_id)
    if template is None or template.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail="Template not found.")
    return template


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@app.post(
    "/api/v1/tenants/{tenant_id}/runs",
    response_model=RunCreatedResponse,
    status_code=202,
    responses={422: {"model": ErrorResponse}},
)
async def create_run(
    tenant_id: str,
    request: RunCreateRequest,
    conn: sqlite3.Connection = Depends(get_db),
    ctx: PipelineContext = Depends(get_context),
    pool: WorkerPool = Depends(get_worker_pool),
):
    """Create a test run for a tenant and, by default, start it in the background.

    Poll GET /runs/{id}/progress for status.
    """
    run = create_run_for_tenant(conn, tenant_id, request.overrides(), ctx.qa_settings)
    record_run_submitted(tenant_id)
    if request.run_in_background:
        pool.submit(run.id, tenant_id)
    return RunCreatedResponse(
        run_id=run.id,
        total_questions=run.total_questions,
        config=run.config,
        scheduled=request.run_in_background,
    )


@app.post(
    "/api/v1/runs/{run_id}/start",
    status_code=202,
    responses={**_NOT_FOUND, 409: {"model": ErrorResponse}},
)
async def start_run(
    run_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    pool: WorkerPool = Depends(get_worker_pool),
):
    """Schedule a run that was created without starting it."""
    run = _require_run(conn, run_id)
    if run.status is not RunStatus.PENDING:
        raise HTTPException(
            status_code=409,
            detail=f"Run can only be started from pending (status: {run.status.value}).",
        )
    try:
        pool.submit(run.id, run.tenant_id)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"run_id": run_id, "status": "queued"}


@app.get("/api/v1/tenants/{tenant_id}/runs", response_model=TenantRunsResponse)
async def list_tenant_runs(
    tenant_id: str,
    limit: int = 20,
    conn: sqlite3.Connection = Depends(get_db),
):
    """Run history of a tenant, newest first."""
    return TenantRunsResponse(
        tenant_id=tenant_id,
        document_count=get_tenant_document_count(conn, tenant_id),
        runs=list_test_runs_for_tenant(conn, tenant_id, limit=limit),
    )


@app.get("/api/v1/runs/{run_id}", response_model=TestRun, responses=_NOT_FOUND)
async def get_run(run_id: str, conn: sqlite3.Connection = Depends(get_db)):
    return _require_run(conn, run_id)


@app.get("/api/v1/runs/{run_id}/progress", response_model=RunProgress, responses=_NOT_FOUND)
async def get_run_progress(run_id: str, conn: sqlite3.Connection = Depends(get_db)):
    progress = get_test_run_progress(conn, run_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Run not found.")
    return progress


@app.get(
    "/api/v1/runs/{run_id}/questions",
    response_model=list[TestQuestion],
    responses=_NOT_FOUND,
)
async def list_run_questions(
    run_id: str,
    category: Category | None = None,
    status: QuestionStatus | None = None,
    passed: bool | None = None,
    conn: sqlite3.Connection = Depends(get_db),
):
    """Questions of a run in generation order, optionally filtered."""
    _require_run(conn, run_id)
    return get_test_questions(conn, run_id, category=category, status=status, passed=passed)


@app.delete("/api/v1/runs/{run_id}", responses=_NOT_FOUND)
async def delete_run(
    run_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    pool: WorkerPool = Depends(get_worker_pool),
):
    """Delete a run and its questions, cancelling it first if it is running."""
    _require_run(conn, run_id)
    cancelled = await pool.cancel(run_id)
    delete_test_run(conn, run_id)
    logger.info("run_deleted", run_id=run_id, cancelled=cancelled)
    return {"run_id": run_id, "deleted": True, "cancelled": cancelled}


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@app.get("/api/v1/tenants/{tenant_id}/templates", response_model=list[TestTemplate])
async def list_templates(
    tenant_id: str,
    active_only: bool = False,
    conn: sqlite3.Connection = Depends(get_db),
):
    return get_templates(conn, tenant_id, active_only=active_only)


@app.post(
    "/api/v1/tenants/{tenant_id}/templates",
    response_model=TestTemplate,
    status_code=201,
)
async def add_template(
    tenant_id: str,
    template: TemplateInput,
    conn: sqlite3.Connection = Depends(get_db),
):
    return create_template(conn, tenant_id, template)


@app.patch(
    "/api/v1/tenants/{tenant_id}/templates/{template_id}",
    response_model=TestTemplate,
    responses=_NOT_FOUND,
)
async def patch_template(
    tenant_id: str,
    template_id: str,
    request: TemplateUpdateRequest,
    conn: sqlite3.Connection = Depends(get_db),
):
    _require_template(conn, tenant_id, template_id)
    return update_template(conn, template_id, **request.model_dump(exclude_none=True))


@app.delete("/api/v1/tenants/{tenant_id}/templates/{template_id}", responses=_NOT_FOUND)
async def remove_template(
    tenant_id: str,
    template_id: str,
    conn: sqlite3.Connection = Depends(get_db),
):
    _require_template(conn, tenant_id, template_id)
    delete_template(conn, template_id)
    return {"template_id": template_id, "deleted": True}


# ---------------------------------------------------------------------------
# Stats, health & metrics
# ---------------------------------------------------------------------------


@app.get("/api/v1/tenants/{tenant_id}/overview", response_model=TenantTestOverview)
async def tenant_overview(tenant_id: str, conn: sqlite3.Connection = Depends(get_db)):
    return get_tenant_test_overview(conn, tenant_id)


@app.get("/api/v1/stats", response_model=GlobalQAStats)
async def global_stats(conn: sqlite3.Connection = Depends(get_db)):
    return get_global_qa_stats(conn)


@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check(
    conn: sqlite3.Connection = Depends(get_db),
    pool: WorkerPool = Depends(get_worker_pool),
):
    """Health check endpoint for load balancers and monitoring."""
    try:
        conn.execute("SELECT 1").fetchone()
        db_connected = True
    except sqlite3.Error:
        db_connected = False
    return HealthResponse(
        status="healthy" if db_connected else "degraded",
        queue_depth=pool.pending_count,
        active_workers=pool.active_count,
        max_workers=pool.max_workers,
        db_connected=db_connected,
    )


@app.get("/api/v1/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=get_metrics_text(),
        media_type="text/plain; charset=utf-8",
    )
