"""Request/response Pydantic models for the API layer."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ragqa.schemas.categories import Category
from ragqa.schemas.phases import Strictness
from ragqa.schemas.records import SourceRef, TestRun, TestRunConfig

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RunCreateRequest(BaseModel):
    """Request body for starting a test run. Unset fields use qa.toml defaults."""

    min_questions: int | None = Field(default=None, ge=0, le=1000)
    questions_per_document: int | None = Field(default=None, ge=0, le=50)
    categories: list[Category] | None = Field(default=None, min_length=1)
    languages: list[str] | None = Field(default=None, min_length=1)
    strictness: Strictness | None = None
    run_in_background: bool = Field(
        default=True,
        description="Schedule the run on the worker pool. False only creates it.",
    )

    def overrides(self) -> dict:
        return self.model_dump(exclude={"run_in_background"}, exclude_none=True)


class TemplateUpdateRequest(BaseModel):
    """Partial template update; only the given fields change."""

    category: Category | None = None
    question: str | None = Field(default=None, min_length=3)
    expected_answer: str | None = None
    expected_sources: list[SourceRef] | None = None
    language: str | None = None
    is_active: bool | None = None
    notes: str | None = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RunCreatedResponse(BaseModel):
    run_id: str
    status: str = "pending"
    total_questions: int
    config: TestRunConfig
    scheduled: bool = True
    message: str = "Test run created."


class TenantRunsResponse(BaseModel):
    """Tenant history plus the document count a new run would use."""

    tenant_id: str
    document_count: int
    runs: list[TestRun]


class HealthResponse(BaseModel):
    status: str = "healthy"
    queue_depth: int = 0
    active_workers: int = 0
    max_workers: int = 4
    db_connected: bool = True
    version: str = "0.1.0"


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
