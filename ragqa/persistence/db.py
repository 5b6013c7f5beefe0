"""SQLite persistence for QA runs, questions and templates.

The ``documents`` and ``document_chunks`` tables belong to the ingestion
subsystem; the pipeline only reads them (document counts, passage sampling).
Creating them here lets a fresh database be seeded for local runs and tests.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

DB_PATH = Path("data/qa.db")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    id                TEXT PRIMARY KEY,
    tenant_id         TEXT NOT NULL,
    filename          TEXT NOT NULL,
    processing_status TEXT NOT NULL DEFAULT 'pending',
    created_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS document_chunks (
    id          TEXT PRIMARY KEY,
    tenant_id   TEXT NOT NULL,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    content     TEXT NOT NULL,
    page_number INTEGER,
    metadata    TEXT
);

CREATE TABLE IF NOT EXISTS qa_test_runs (
    id                  TEXT PRIMARY KEY,
    tenant_id           TEXT NOT NULL,
    status              TEXT NOT NULL DEFAULT 'pending',
    config              TEXT NOT NULL,
    total_questions     INTEGER NOT NULL DEFAULT 0,
    questions_completed INTEGER NOT NULL DEFAULT 0,
    current_phase       TEXT,
    overall_score       REAL,
    scores_by_category  TEXT,
    summary             TEXT,
    cost_breakdown      TEXT NOT NULL,
    total_cost          REAL,
    started_at          TEXT,
    completed_at        TEXT,
    duration_seconds    INTEGER,
    error_message       TEXT,
    error_details       TEXT,
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS qa_test_questions (
    id                TEXT PRIMARY KEY,
    test_run_id       TEXT NOT NULL REFERENCES qa_test_runs(id) ON DELETE CASCADE,
    tenant_id         TEXT NOT NULL,
    position          INTEGER NOT NULL DEFAULT 0,
    category          TEXT NOT NULL,
    question          TEXT NOT NULL,
    language          TEXT NOT NULL DEFAULT 'nl',
    expected_answer   TEXT,
    ground_truth      TEXT,
    source_chunk_id   TEXT,
    source_document   TEXT,
    source_page       INTEGER,
    template_id       TEXT,
    is_auto_generated INTEGER NOT NULL DEFAULT 1,
    actual_answer     TEXT,
    citations         TEXT,
    rag_details       TEXT,
    response_time_ms  INTEGER,
    execution_cost    REAL NOT NULL DEFAULT 0,
    score             REAL CHECK (score IS NULL OR (score >= 0 AND score <= 100)),
    passed            INTEGER,
    evaluation        TEXT,
    evaluation_cost   REAL NOT NULL DEFAULT 0,
    status            TEXT NOT NULL DEFAULT 'pending',
    error_message     TEXT,
    executed_at       TEXT,
    evaluated_at      TEXT,
    created_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS qa_test_templates (
    id               TEXT PRIMARY KEY,
    tenant_id        TEXT NOT NULL,
    category         TEXT NOT NULL,
    question         TEXT NOT NULL,
    expected_answer  TEXT,
    expected_sources TEXT,
    language         TEXT NOT NULL DEFAULT 'nl',
    is_active        INTEGER NOT NULL DEFAULT 1,
    notes            TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_tenant ON documents(tenant_id);
CREATE INDEX IF NOT EXISTS idx_chunks_tenant ON document_chunks(tenant_id);
CREATE INDEX IF NOT EXISTS idx_runs_tenant ON qa_test_runs(tenant_id, created_at);
CREATE INDEX IF NOT EXISTS idx_questions_run ON qa_test_questions(test_run_id, position);
CREATE INDEX IF NOT EXISTS idx_templates_tenant ON qa_test_templates(tenant_id);
"""


# ---------------------------------------------------------------------------
# Connection factory
# ---------------------------------------------------------------------------


def get_connection(db_path: str | Path | None = None) -> sqlite3.Connection:
    """Get or create a SQLite connection. Auto-creates tables on first use."""
    path = Path(db_path) if db_path else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    _ensure_tables(conn)
    return conn


# ---------------------------------------------------------------------------
# Table setup
# ---------------------------------------------------------------------------


def _ensure_tables(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist. Runs migrations for schema changes."""
    conn.executescript(SCHEMA_SQL)
    # Migration: ground_truth was added after the first release
    columns = {
        row[1] for row in conn.execute("PRAGMA table_info(qa_test_questions)").fetchall()
    }
    if "ground_truth" not in columns:
        conn.execute("ALTER TABLE qa_test_questions ADD COLUMN ground_truth TEXT")
        logger.info("migration_applied", column="qa_test_questions.ground_truth")
    conn.commit()
