"""Persisted record schemas: test runs, questions, templates and rollups."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ragqa.schemas.categories import Category
from ragqa.schemas.phases import Phase, QuestionStatus, RunStatus, Strictness


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class TestRunConfig(BaseModel):
    min_questions: int = Field(default=60, ge=0)
    questions_per_document: int = Field(default=2, ge=0)
    categories: list[Category] = Field(default_factory=lambda: list(Category), min_length=1)
    languages: list[str] = Field(default_factory=lambda: ["nl"], min_length=1)
    strictness: Strictness = Strictness.STRICT

    @field_validator("categories")
    @classmethod
    def _dedupe_categories(cls, value: list[Category]) -> list[Category]:
        # Keep first occurrence; order matters for the remainder rule.
        return list(dict.fromkeys(value))

    @field_validator("languages")
    @classmethod
    def _normalise_languages(cls, value: list[str]) -> list[str]:
        cleaned = [lang.strip().lower() for lang in value if lang.strip()]
        if not cleaned:
            raise ValueError("at least one language is required")
        return list(dict.fromkeys(cleaned))

    @property
    def default_language(self) -> str:
        return self.languages[0]


class CostBreakdown(BaseModel):
    """USD spend per phase."""

    generation: float = 0.0
    execution: float = 0.0
    evaluation: float = 0.0

    @property
    def total(self) -> float:
        return self.generation + self.execution + self.evaluation


class TestSummary(BaseModel):
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class TestRun(BaseModel):
    id: str
    tenant_id: str
    status: RunStatus = RunStatus.PENDING
    config: TestRunConfig = Field(default_factory=TestRunConfig)

    total_questions: int = 0
    questions_completed: int = 0
    current_phase: Phase | None = None

    overall_score: float | None = None
    scores_by_category: dict[str, float] = Field(default_factory=dict)
    summary: TestSummary | None = None

    cost_breakdown: CostBreakdown = Field(default_factory=CostBreakdown)
    total_cost: float | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: int | None = None

    error_message: str | None = None
    error_details: dict[str, Any] | None = None
    created_at: datetime | None = None


class RunProgress(BaseModel):
    run_id: str
    status: RunStatus
    current_phase: Phase | None = None
    questions_completed: int = 0
    total_questions: int = 0
    percent: int = 0


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------


class Citation(BaseModel):
    """A source reference the chatbot returned with an answer."""

    document: str
    page: int | None = None
    similarity: float | None = None


class Evaluation(BaseModel):
    reasoning: str = ""
    issues: list[str] = Field(default_factory=list)
    category_specific: dict[str, Any] = Field(default_factory=dict)


class TestQuestion(BaseModel):
    id: str
    test_run_id: str
    tenant_id: str
    position: int = 0

    category: Category
    question: str
    language: str = "nl"
    expected_answer: str | None = None
    ground_truth: str | None = None
    source_chunk_id: str | None = None
    source_document: str | None = None
    source_page: int | None = None
    template_id: str | None = None
    is_auto_generated: bool = True

    actual_answer: str | None = None
    citations: list[Citation] = Field(default_factory=list)
    rag_details: dict[str, Any] = Field(default_factory=dict)
    response_time_ms: int | None = None
    execution_cost: float = 0.0

    score: float | None = Field(default=None, ge=0, le=100)
    passed: bool | None = None
    evaluation: Evaluation | None = None
    evaluation_cost: float = 0.0

    status: QuestionStatus = QuestionStatus.PENDING
    error_message: str | None = None
    executed_at: datetime | None = None
    evaluated_at: datetime | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class SourceRef(BaseModel):
    document: str
    page: int | None = None


class TemplateInput(BaseModel):
    """Fields an author supplies when creating a template."""

    category: Category
    question: str = Field(..., min_length=3)
    expected_answer: str | None = None
    expected_sources: list[SourceRef] = Field(default_factory=list)
    language: str = "nl"
    is_active: bool = True
    notes: str | None = None


class TestTemplate(TemplateInput):
    id: str
    tenant_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Corpus (owned by the ingestion subsystem, read-only here)
# ---------------------------------------------------------------------------


class CorpusChunk(BaseModel):
    id: str
    document_id: str
    document_filename: str
    content: str
    page_number: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------


class TenantTestOverview(BaseModel):
    tenant_id: str
    run_count: int = 0
    completed_count: int = 0
    last_run_at: datetime | None = None
    last_score: float | None = None
    average_score: float | None = None
    total_cost: float = 0.0


class GlobalQAStats(BaseModel):
    total_tests: int = 0
    total_cost: float = 0.0
    average_score: float | None = None
    tests_this_week: int = 0
