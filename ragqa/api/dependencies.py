"""FastAPI dependency injection for the QA API.

The pipeline context and worker pool are created once in the app lifespan
(or by tests) and injected into route handlers via Depends().
"""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException

from ragqa.api.queue import WorkerPool
from ragqa.pipeline.context import PipelineContext

# ---------------------------------------------------------------------------
# Singleton instances (initialized in app lifespan)
# ---------------------------------------------------------------------------

_context: PipelineContext | None = None
_worker_pool: WorkerPool | None = None


def init_dependencies(context: PipelineContext, worker_pool: WorkerPool) -> None:
    """Initialize shared dependency instances. Called once at app startup."""
    global _context, _worker_pool
    _context = context
    _worker_pool = worker_pool


def reset_dependencies() -> None:
    global _context, _worker_pool
    _context = None
    _worker_pool = None


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_context() -> PipelineContext:
    if _context is None:
        raise HTTPException(status_code=500, detail="Pipeline context not initialized")
    return _context


def get_worker_pool() -> WorkerPool:
    if _worker_pool is None:
        raise HTTPException(status_code=500, detail="Worker pool not initialized")
    return _worker_pool


async def get_db(ctx: PipelineContext = Depends(get_context)) -> AsyncIterator[sqlite3.Connection]:
    """One connection per request, closed afterwards."""
    conn = ctx.connect()
    try:
        yield conn
    finally:
        conn.close()
