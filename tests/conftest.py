"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import random
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

# Ensure tests don't accidentally call real APIs
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import pytest
from langchain_core.messages import AIMessage

from ragqa.collaborators import GeneratedAnswer, RetrievedContext
from ragqa.config import load_qa_settings
from ragqa.persistence.db import get_connection
from ragqa.persistence.repository import add_document, add_document_chunk
from ragqa.pipeline.context import PipelineContext
from ragqa.schemas.categories import Category
from ragqa.schemas.records import Citation, TestQuestion

ROOT = Path(__file__).resolve().parent.parent

TENANT = "acme"

USAGE = {"input_tokens": 1000, "output_tokens": 500, "total_tokens": 1500}

PASSAGES = [
    "Employees are entitled to 25 vacation days per calendar year. Requests must be "
    "submitted through the HR portal at least two weeks in advance.",
    "The office opens at 08:00 and closes at 18:00 on weekdays. Visitors must sign in "
    "at the reception desk and wear a visitor badge at all times.",
    "Travel expenses are reimbursed within 30 days after submitting the expense form "
    "with the original receipts attached. Mileage is paid at 0.23 euro per kilometre.",
    "Sick leave must be reported to your manager before 09:00 on the first day. After "
    "two weeks of absence the company doctor contacts you to discuss reintegration.",
]


# ---------------------------------------------------------------------------
# Scripted LLM doubles
# ---------------------------------------------------------------------------


def prompt_text(messages: list) -> str:
    return messages[-1].content


class ScriptedChat:
    """Stands in for a chat model: replies come from a handler function."""

    def __init__(self, role: str, handler, calls: list) -> None:  # noqa: ANN001
        self.role = role
        self._handler = handler
        self._calls = calls

    async def ainvoke(self, messages, config=None, **kwargs):  # noqa: ANN001, ANN003
        self._calls.append((self.role, messages))
        reply = self._handler(messages)
        if isinstance(reply, BaseException):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return AIMessage(content=reply, usage_metadata=dict(USAGE))


class FakeLLMFactory:
    """Drop-in for ``create_llm`` that records every client it builds."""

    def __init__(self, **handlers) -> None:  # noqa: ANN003
        self.handlers = handlers
        self.calls: list[tuple[str, list]] = []
        self.requests: list[dict] = []

    def __call__(self, role, temperature=None, json_mode=False, qa_settings=None, **kwargs):  # noqa: ANN001, ANN003
        self.requests.append({"role": role, "temperature": temperature, "json_mode": json_mode})
        if role not in self.handlers:
            raise AssertionError(f"unexpected LLM role: {role}")
        return ScriptedChat(role, self.handlers[role], self.calls)

    def calls_for(self, role: str) -> list[list]:
        return [messages for r, messages in self.calls if r == role]


class GeneratorScript:
    """Answers each generator prompt with a schema-valid object."""

    def __init__(self) -> None:
        self.n = 0

    def __call__(self, messages):  # noqa: ANN001
        self.n += 1
        prompt = prompt_text(messages)
        if "PERSONAL" in prompt:
            return {"questions": [f"How many vacation days do I have left, case {i}?" for i in range(12)]}
        if "NOT covered" in prompt:
            return {
                "question": f"Question {self.n}: what is the policy on office pets?",
                "topic": f"topic {self.n}",
            }
        if "Rewrite this chatbot test question" in prompt:
            return {"question": f"Translated question {self.n}?", "expected_answer": "Translated answer."}
        return {
            "question": f"Generated question {self.n} about the handbook?",
            "expected_answer": "The handbook says 25 days.",
            "key_facts": ["25 days"],
        }


class JudgeScript:
    """Default verdict is a clean pass; queue ``replies`` to script others."""

    def __init__(self, score: float = 90) -> None:
        self.score = score
        self.replies: list = []

    def __call__(self, messages):  # noqa: ANN001
        if self.replies:
            return self.replies.pop(0)
        return {
            "score": self.score,
            "passed": self.score >= 70,
            "reasoning": "Correct and sourced.",
            "issues": [],
            "category_specific": {"hallucinated": False},
        }


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------


class FakeRetriever:
    def __init__(self, similarity: float = 0.3, fail_on: tuple[str, ...] = ()) -> None:
        self.similarity = similarity
        self.fail_on = fail_on
        self.calls: list[tuple[str, str]] = []

    async def retrieve_context(self, tenant_id: str, question: str) -> RetrievedContext:
        self.calls.append((tenant_id, question))
        if any(marker in question for marker in self.fail_on):
            raise RuntimeError("vector store unavailable")
        return RetrievedContext(
            context_text="[handbook.pdf, p. 3]\nEmployees get 25 vacation days.",
            citations=[Citation(document="handbook.pdf", page=3, similarity=self.similarity)],
            embedding_tokens=10,
            embedding_cost=0.0001,
        )


class FakeAnswerGenerator:
    def __init__(
        self,
        answer: str = "Employees get 25 vacation days (handbook.pdf, p. 3).",
        fail_on: tuple[str, ...] = (),
        empty_on: tuple[str, ...] = (),
    ) -> None:
        self.answer = answer
        self.fail_on = fail_on
        self.empty_on = empty_on
        self.calls: list[tuple[str, str]] = []

    async def generate_answer(self, system_prompt: str, question: str) -> GeneratedAnswer:
        self.calls.append((system_prompt, question))
        if any(marker in question for marker in self.fail_on):
            raise RuntimeError("LLM provider error")
        text = "" if any(marker in question for marker in self.empty_on) else self.answer
        return GeneratedAnswer(text=text, input_tokens=1000, output_tokens=200, model="gpt-4o")


class TickingClock:
    """Deterministic clock: every call advances one second."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def qa_settings():
    return load_qa_settings(ROOT / "qa.toml")


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "qa.db"


@pytest.fixture
def conn(db_path):
    connection = get_connection(db_path)
    yield connection
    connection.close()


@pytest.fixture
def seeded_corpus(conn):
    """Three processed documents with four passages each, plus one pending document."""
    for d in range(3):
        doc_id = add_document(conn, TENANT, f"handbook-{d}.pdf")
        for p, passage in enumerate(PASSAGES):
            add_document_chunk(conn, TENANT, doc_id, passage, page_number=p + 1)
    add_document(conn, TENANT, "draft.pdf", processing_status="processing")
    other = add_document(conn, "globex", "other.pdf")
    add_document_chunk(conn, "globex", other, PASSAGES[0], page_number=1)
    return TENANT


@pytest.fixture
def generator_script():
    return GeneratorScript()


@pytest.fixture
def judge_script():
    return JudgeScript()


@pytest.fixture
def fake_llm(generator_script, judge_script):
    return FakeLLMFactory(
        generator=generator_script,
        judge=judge_script,
        fixer=lambda messages: {"error": "fixer cannot help"},
    )


@pytest.fixture
def fake_retriever():
    return FakeRetriever()


@pytest.fixture
def fake_answers():
    return FakeAnswerGenerator()


@pytest.fixture
def ctx(db_path, qa_settings, fake_llm, fake_retriever, fake_answers):
    return PipelineContext(
        db_path=db_path,
        retriever=fake_retriever,
        answer_generator=fake_answers,
        qa_settings=qa_settings,
        llm_factory=fake_llm,
        sleep=AsyncMock(),
        rng=random.Random(7),
        clock=TickingClock(),
    )


def make_question(run_id: str, position: int, category: Category = Category.RETRIEVAL, **kwargs) -> TestQuestion:  # noqa: ANN003
    fields = {
        "id": str(uuid.uuid4()),
        "test_run_id": run_id,
        "tenant_id": TENANT,
        "position": position,
        "category": category,
        "question": f"Question {position} about the handbook?",
        "expected_answer": "25 vacation days.",
    }
    fields.update(kwargs)
    return TestQuestion(**fields)
