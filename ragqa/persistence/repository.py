"""Repository functions for QA pipeline persistence.

Each function takes a sqlite3.Connection and performs a single operation.
Connections are opened/closed by callers (pipeline phases, API handlers, run.py).
Updates use patch semantics: only the keyword arguments given are written.
"""

from __future__ import annotations

import json
import random
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel

from ragqa.errors import InvalidTransitionError, RunNotFoundError
from ragqa.schemas.phases import RunStatus
from ragqa.schemas.records import (
    CorpusChunk,
    CostBreakdown,
    GlobalQAStats,
    RunProgress,
    TemplateInput,
    TenantTestOverview,
    TestQuestion,
    TestRun,
    TestRunConfig,
    TestTemplate,
)

logger = structlog.get_logger(__name__)


def _now() -> str:
    """Return current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def _encode(column: str, value: Any, json_columns: frozenset[str]) -> Any:
    if value is None:
        return None
    if column in json_columns:
        return json.dumps(_plain(value), ensure_ascii=False)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def _decode(row: sqlite3.Row, json_columns: frozenset[str]) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for key in row.keys():
        value = row[key]
        if value is None:
            continue  # model defaults apply
        data[key] = json.loads(value) if key in json_columns else value
    return data


def _build_set_clause(
    updates: dict[str, Any],
    allowed: frozenset[str],
    json_columns: frozenset[str],
) -> tuple[str, list[Any]]:
    unknown = set(updates) - allowed
    if unknown:
        raise ValueError(f"Unknown or read-only columns: {sorted(unknown)}")
    columns = list(updates)
    clause = ", ".join(f"{col} = ?" for col in columns)
    params = [_encode(col, updates[col], json_columns) for col in columns]
    return clause, params


# ---------------------------------------------------------------------------
# Test runs
# ---------------------------------------------------------------------------

_RUN_JSON = frozenset({
    "config", "scores_by_category", "summary", "cost_breakdown", "error_details",
})
_RUN_UPDATABLE = frozenset({
    "status", "config", "total_questions", "questions_completed", "current_phase",
    "overall_score", "scores_by_category", "summary", "cost_breakdown", "total_cost",
    "started_at", "completed_at", "duration_seconds", "error_message", "error_details",
})


def _row_to_run(row: sqlite3.Row) -> TestRun:
    return TestRun.model_validate(_decode(row, _RUN_JSON))


def create_test_run(
    conn: sqlite3.Connection,
    tenant_id: str,
    config: TestRunConfig,
    total_questions: int,
    run_id: str | None = None,
) -> str:
    """Create a pending test run record. Returns run_id."""
    run_id = run_id or str(uuid.uuid4())
    conn.execute(
        """INSERT INTO qa_test_runs (id, tenant_id, status, config, total_questions,
           cost_breakdown, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            run_id,
            tenant_id,
            RunStatus.PENDING.value,
            config.model_dump_json(),
            total_questions,
            CostBreakdown().model_dump_json(),
            _now(),
        ),
    )
    conn.commit()
    logger.info(
        "test_run_created",
        run_id=run_id,
        tenant_id=tenant_id,
        total_questions=total_questions,
    )
    return run_id


def get_test_run(conn: sqlite3.Connection, run_id: str) -> TestRun | None:
    row = conn.execute("SELECT * FROM qa_test_runs WHERE id = ?", (run_id,)).fetchone()
    return _row_to_run(row) if row else None


def list_test_runs_for_tenant(
    conn: sqlite3.Connection,
    tenant_id: str,
    limit: int = 20,
) -> list[TestRun]:
    """Tenant history, newest first."""
    rows = conn.execute(
        """SELECT * FROM qa_test_runs WHERE tenant_id = ?
           ORDER BY created_at DESC LIMIT ?""",
        (tenant_id, limit),
    ).fetchall()
    return [_row_to_run(r) for r in rows]


def update_test_run(conn: sqlite3.Connection, run_id: str, **updates: Any) -> None:
    """Patch a run.

    Runs in a terminal status are immutable, and a status change must move
    forward (or to failed). Violations raise InvalidTransitionError.
    """
    if not updates:
        return
    row = conn.execute(
        "SELECT status FROM qa_test_runs WHERE id = ?", (run_id,)
    ).fetchone()
    if row is None:
        raise RunNotFoundError(run_id)

    current = RunStatus(row["status"])
    target = RunStatus(updates["status"]) if "status" in updates else current
    if current.is_terminal:
        raise InvalidTransitionError(run_id, current, target)
    if target is not current and not current.can_transition_to(target):
        raise InvalidTransitionError(run_id, current, target)

    clause, params = _build_set_clause(updates, _RUN_UPDATABLE, _RUN_JSON)
    conn.execute(f"UPDATE qa_test_runs SET {clause} WHERE id = ?", (*params, run_id))
    conn.commit()
    if target is not current:
        logger.info("test_run_status_changed", run_id=run_id, status=target.value)


def delete_test_run(conn: sqlite3.Connection, run_id: str) -> bool:
    """Delete a run and, via cascade, all of its questions."""
    cur = conn.execute("DELETE FROM qa_test_runs WHERE id = ?", (run_id,))
    conn.commit()
    deleted = cur.rowcount > 0
    if deleted:
        logger.info("test_run_deleted", run_id=run_id)
    return deleted


def get_test_run_progress(conn: sqlite3.Connection, run_id: str) -> RunProgress | None:
    row = conn.execute(
        """SELECT status, current_phase, questions_completed, total_questions
           FROM qa_test_runs WHERE id = ?""",
        (run_id,),
    ).fetchone()
    if row is None:
        return None
    total = row["total_questions"] or 0
    completed = row["questions_completed"] or 0
    percent = int(completed * 100 / total + 0.5) if total else 0
    return RunProgress(
        run_id=run_id,
        status=row["status"],
        current_phase=row["current_phase"],
        questions_completed=completed,
        total_questions=total,
        percent=percent,
    )


# ---------------------------------------------------------------------------
# Test questions
# ---------------------------------------------------------------------------

_QUESTION_JSON = frozenset({"citations", "rag_details", "evaluation"})
_QUESTION_COLUMNS = (
    "id", "test_run_id", "tenant_id", "position", "category", "question", "language",
    "expected_answer", "ground_truth", "source_chunk_id", "source_document",
    "source_page", "template_id", "is_auto_generated", "status", "created_at",
)
_QUESTION_UPDATABLE = frozenset({
    "actual_answer", "citations", "rag_details", "response_time_ms", "execution_cost",
    "score", "passed", "evaluation", "evaluation_cost", "status", "error_message",
    "executed_at", "evaluated_at",
})


def _row_to_question(row: sqlite3.Row) -> TestQuestion:
    return TestQuestion.model_validate(_decode(row, _QUESTION_JSON))


def insert_test_questions(
    conn: sqlite3.Connection,
    questions: list[TestQuestion],
) -> int:
    """Insert a batch of questions in one transaction.

    Any failure rolls back the whole batch and re-raises.
    """
    created_at = _now()
    placeholders = ", ".join("?" for _ in _QUESTION_COLUMNS)
    rows = []
    for q in questions:
        data = q.model_dump()
        data["created_at"] = created_at
        rows.append(tuple(_encode(c, data[c], _QUESTION_JSON) for c in _QUESTION_COLUMNS))
    try:
        conn.executemany(
            f"INSERT INTO qa_test_questions ({', '.join(_QUESTION_COLUMNS)}) "
            f"VALUES ({placeholders})",
            rows,
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    logger.info(
        "test_questions_inserted",
        run_id=questions[0].test_run_id if questions else None,
        count=len(rows),
    )
    return len(rows)


def get_test_questions(
    conn: sqlite3.Connection,
    run_id: str,
    *,
    category: str | None = None,
    status: str | None = None,
    passed: bool | None = None,
) -> list[TestQuestion]:
    """Questions of a run in generation order, optionally filtered."""
    sql = "SELECT * FROM qa_test_questions WHERE test_run_id = ?"
    params: list[Any] = [run_id]
    if category is not None:
        sql += " AND category = ?"
        params.append(str(category))
    if status is not None:
        sql += " AND status = ?"
        params.append(str(status))
    if passed is not None:
        sql += " AND passed = ?"
        params.append(int(passed))
    sql += " ORDER BY position, created_at"
    return [_row_to_question(r) for r in conn.execute(sql, params).fetchall()]


def get_test_question(conn: sqlite3.Connection, question_id: str) -> TestQuestion | None:
    row = conn.execute(
        "SELECT * FROM qa_test_questions WHERE id = ?", (question_id,)
    ).fetchone()
    return _row_to_question(row) if row else None


def get_pending_questions(conn: sqlite3.Connection, run_id: str) -> list[TestQuestion]:
    return get_test_questions(conn, run_id, status="pending")


def reset_interrupted_questions(conn: sqlite3.Connection, run_id: str) -> int:
    """Put questions left in 'executing' by a crashed worker back to pending."""
    cursor = conn.execute(
        """UPDATE qa_test_questions SET status = 'pending'
           WHERE test_run_id = ? AND status = 'executing'""",
        (run_id,),
    )
    conn.commit()
    return cursor.rowcount


def get_unscored_questions(conn: sqlite3.Connection, run_id: str) -> list[TestQuestion]:
    """Executed questions still waiting for a score, in execution order."""
    rows = conn.execute(
        """SELECT * FROM qa_test_questions
           WHERE test_run_id = ? AND score IS NULL
             AND status IN ('evaluating', 'completed')
           ORDER BY executed_at, position""",
        (run_id,),
    ).fetchall()
    return [_row_to_question(r) for r in rows]


def update_test_question(
    conn: sqlite3.Connection,
    question_id: str,
    **updates: Any,
) -> None:
    if not updates:
        return
    clause, params = _build_set_clause(updates, _QUESTION_UPDATABLE, _QUESTION_JSON)
    conn.execute(
        f"UPDATE qa_test_questions SET {clause} WHERE id = ?",
        (*params, question_id),
    )
    conn.commit()


def count_questions_by_status(conn: sqlite3.Connection, run_id: str) -> dict[str, int]:
    rows = conn.execute(
        """SELECT status, COUNT(*) AS n FROM qa_test_questions
           WHERE test_run_id = ? GROUP BY status""",
        (run_id,),
    ).fetchall()
    return {r["status"]: r["n"] for r in rows}


def sum_question_costs(conn: sqlite3.Connection, run_id: str) -> tuple[float, float]:
    """Return (execution, evaluation) cost totals over a run's questions."""
    row = conn.execute(
        """SELECT COALESCE(SUM(execution_cost), 0) AS execution,
                  COALESCE(SUM(evaluation_cost), 0) AS evaluation
           FROM qa_test_questions WHERE test_run_id = ?""",
        (run_id,),
    ).fetchone()
    return float(row["execution"]), float(row["evaluation"])


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_TEMPLATE_JSON = frozenset({"expected_sources"})
_TEMPLATE_UPDATABLE = frozenset({
    "category", "question", "expected_answer", "expected_sources", "language",
    "is_active", "notes",
})


def _row_to_template(row: sqlite3.Row) -> TestTemplate:
    return TestTemplate.model_validate(_decode(row, _TEMPLATE_JSON))


def create_template(
    conn: sqlite3.Connection,
    tenant_id: str,
    data: TemplateInput,
) -> TestTemplate:
    template_id = str(uuid.uuid4())
    now = _now()
    conn.execute(
        """INSERT INTO qa_test_templates (id, tenant_id, category, question,
           expected_answer, expected_sources, language, is_active, notes,
           created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            template_id,
            tenant_id,
            data.category.value,
            data.question,
            data.expected_answer,
            _encode("expected_sources", data.expected_sources, _TEMPLATE_JSON),
            data.language,
            int(data.is_active),
            data.notes,
            now,
            now,
        ),
    )
    conn.commit()
    logger.info("template_created", template_id=template_id, tenant_id=tenant_id)
    return get_template(conn, template_id)


def get_template(conn: sqlite3.Connection, template_id: str) -> TestTemplate | None:
    row = conn.execute(
        "SELECT * FROM qa_test_templates WHERE id = ?", (template_id,)
    ).fetchone()
    return _row_to_template(row) if row else None


def get_templates(
    conn: sqlite3.Connection,
    tenant_id: str,
    active_only: bool = False,
) -> list[TestTemplate]:
    sql = "SELECT * FROM qa_test_templates WHERE tenant_id = ?"
    if active_only:
        sql += " AND is_active = 1"
    sql += " ORDER BY category, created_at"
    return [_row_to_template(r) for r in conn.execute(sql, (tenant_id,)).fetchall()]


def update_template(
    conn: sqlite3.Connection,
    template_id: str,
    **updates: Any,
) -> TestTemplate | None:
    if updates:
        clause, params = _build_set_clause(updates, _TEMPLATE_UPDATABLE, _TEMPLATE_JSON)
        conn.execute(
            f"UPDATE qa_test_templates SET {clause}, updated_at = ? WHERE id = ?",
            (*params, _now(), template_id),
        )
        conn.commit()
    return get_template(conn, template_id)


def delete_template(conn: sqlite3.Connection, template_id: str) -> bool:
    cur = conn.execute("DELETE FROM qa_test_templates WHERE id = ?", (template_id,))
    conn.commit()
    return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Corpus
# ---------------------------------------------------------------------------


def add_document(
    conn: sqlite3.Connection,
    tenant_id: str,
    filename: str,
    processing_status: str = "completed",
) -> str:
    """Register a document. Normally done by the ingestion subsystem."""
    document_id = str(uuid.uuid4())
    conn.execute(
        """INSERT INTO documents (id, tenant_id, filename, processing_status, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        (document_id, tenant_id, filename, processing_status, _now()),
    )
    conn.commit()
    return document_id


def add_document_chunk(
    conn: sqlite3.Connection,
    tenant_id: str,
    document_id: str,
    content: str,
    page_number: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> str:
    chunk_id = str(uuid.uuid4())
    conn.execute(
        """INSERT INTO document_chunks (id, tenant_id, document_id, content,
           page_number, metadata)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (chunk_id, tenant_id, document_id, content, page_number,
         json.dumps(metadata or {})),
    )
    conn.commit()
    return chunk_id


def get_tenant_document_count(conn: sqlite3.Connection, tenant_id: str) -> int:
    """Count of successfully processed documents for a tenant."""
    row = conn.execute(
        """SELECT COUNT(*) AS n FROM documents
           WHERE tenant_id = ? AND processing_status = 'completed'""",
        (tenant_id,),
    ).fetchone()
    return int(row["n"])


def get_random_chunks_for_tenant(
    conn: sqlite3.Connection,
    tenant_id: str,
    count: int,
    rng: random.Random | None = None,
) -> list[CorpusChunk]:
    """Random passages from the tenant's processed documents.

    Over-fetches 3x the requested count before shuffling so short corpora
    still yield a varied sample.
    """
    rng = rng or random.Random()
    rows = conn.execute(
        """SELECT c.id, c.document_id, c.content, c.page_number, c.metadata,
                  d.filename AS document_filename
           FROM document_chunks c
           JOIN documents d ON d.id = c.document_id
           WHERE c.tenant_id = ? AND d.processing_status = 'completed'
           ORDER BY RANDOM() LIMIT ?""",
        (tenant_id, count * 3),
    ).fetchall()
    chunks = [
        CorpusChunk.model_validate(_decode(r, frozenset({"metadata"}))) for r in rows
    ]
    chunks.sort(key=lambda c: c.id)  # rng alone decides the order
    rng.shuffle(chunks)
    return chunks[:count]


def get_tenant_chunks(
    conn: sqlite3.Connection,
    tenant_id: str,
) -> list[CorpusChunk]:
    """All processed chunks of a tenant, for the lexical retriever."""
    rows = conn.execute(
        """SELECT c.id, c.document_id, c.content, c.page_number, c.metadata,
                  d.filename AS document_filename
           FROM document_chunks c
           JOIN documents d ON d.id = c.document_id
           WHERE c.tenant_id = ? AND d.processing_status = 'completed'""",
        (tenant_id,),
    ).fetchall()
    return [CorpusChunk.model_validate(_decode(r, frozenset({"metadata"}))) for r in rows]


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def get_tenant_test_overview(
    conn: sqlite3.Connection,
    tenant_id: str,
) -> TenantTestOverview:
    row = conn.execute(
        """SELECT COUNT(*) AS run_count,
                  SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed_count,
                  MAX(created_at) AS last_run_at,
                  AVG(CASE WHEN status = 'completed' THEN overall_score END) AS average_score,
                  COALESCE(SUM(total_cost), 0) AS total_cost
           FROM qa_test_runs WHERE tenant_id = ?""",
        (tenant_id,),
    ).fetchone()
    last = conn.execute(
        """SELECT overall_score FROM qa_test_runs
           WHERE tenant_id = ? AND status = 'completed'
           ORDER BY completed_at DESC LIMIT 1""",
        (tenant_id,),
    ).fetchone()
    return TenantTestOverview(
        tenant_id=tenant_id,
        run_count=row["run_count"] or 0,
        completed_count=row["completed_count"] or 0,
        last_run_at=row["last_run_at"],
        last_score=last["overall_score"] if last else None,
        average_score=row["average_score"],
        total_cost=row["total_cost"] or 0.0,
    )


def get_global_qa_stats(
    conn: sqlite3.Connection,
    now: datetime | None = None,
) -> GlobalQAStats:
    """Totals across all tenants; "this week" means the last 7 days."""
    now = now or datetime.now(timezone.utc)
    week_ago = (now - timedelta(days=7)).isoformat()
    row = conn.execute(
        """SELECT COUNT(*) AS total_tests,
                  COALESCE(SUM(total_cost), 0) AS total_cost,
                  AVG(CASE WHEN status = 'completed' THEN overall_score END) AS average_score,
                  SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END) AS tests_this_week
           FROM qa_test_runs""",
        (week_ago,),
    ).fetchone()
    return GlobalQAStats(
        total_tests=row["total_tests"] or 0,
        total_cost=row["total_cost"] or 0.0,
        average_score=row["average_score"],
        tests_this_week=row["tests_this_week"] or 0,
    )
