"""Structured JSON output schemas for every LLM call in the pipeline."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GeneratedQuestionOutput(BaseModel):
    """A question grounded in one corpus passage."""

    question: str = Field(..., min_length=5)
    expected_answer: str = Field(..., min_length=1)
    key_facts: list[str] = Field(default_factory=list)


class HallucinationQuestionOutput(BaseModel):
    """A plausible question whose answer should not be in the corpus."""

    question: str = Field(..., min_length=5)
    topic: str = ""


class NoAnswerQuestionsOutput(BaseModel):
    questions: list[str] = Field(..., min_length=1)


class TranslatedQuestionOutput(BaseModel):
    question: str = Field(..., min_length=3)
    expected_answer: str = ""


class JudgeOutput(BaseModel):
    """Judge verdict for one answer.

    ``passed`` is informational; the pipeline recomputes it from the capped
    score.
    """

    score: float = Field(..., ge=0, le=100)
    passed: bool
    reasoning: str = Field(..., min_length=1)
    issues: list[str] = Field(default_factory=list)
    category_specific: dict[str, Any] = Field(default_factory=dict)
