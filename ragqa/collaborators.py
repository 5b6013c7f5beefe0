"""Contracts for the services the pipeline consumes but does not own.

The retrieval subsystem and the chatbot's answer call are black boxes: the
executor talks to them only through the protocols below. ``load_retriever``
wires a deployment's real retriever from an import path; the lexical
retriever is a dependency-free stand-in for local runs and tests.
"""

from __future__ import annotations

import importlib
import re
from contextlib import closing
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from ragqa.config import QASettings, get_qa_settings
from ragqa.models import LLMFactory, create_llm
from ragqa.persistence.db import get_connection
from ragqa.persistence.repository import get_tenant_chunks
from ragqa.schemas.records import Citation
from ragqa.utils.costs import usage_tokens

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class RetrievedContext(BaseModel):
    context_text: str = ""
    citations: list[Citation] = Field(default_factory=list)
    embedding_tokens: int = 0
    embedding_cost: float = 0.0
    diagnostic_trace: dict[str, Any] = Field(default_factory=dict)

    @property
    def best_similarity(self) -> float:
        return max((c.similarity or 0.0 for c in self.citations), default=0.0)


class GeneratedAnswer(BaseModel):
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str | None = None


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Retriever(Protocol):
    """Turns a question into ranked context. Idempotent, side-effect free."""

    async def retrieve_context(self, tenant_id: str, question: str) -> RetrievedContext: ...


@runtime_checkable
class AnswerGenerator(Protocol):
    """Single-shot, non-streaming answer call."""

    async def generate_answer(self, system_prompt: str, question: str) -> GeneratedAnswer: ...


# ---------------------------------------------------------------------------
# Default implementations
# ---------------------------------------------------------------------------


class LLMAnswerGenerator:
    """Answers with the ``answer`` role model from qa.toml."""

    def __init__(
        self,
        llm_factory: LLMFactory = create_llm,
        qa_settings: QASettings | None = None,
    ) -> None:
        self._qa = qa_settings or get_qa_settings()
        self._llm = llm_factory("answer", qa_settings=self._qa)
        self._model = self._qa.get_model("answer")

    async def generate_answer(self, system_prompt: str, question: str) -> GeneratedAnswer:
        response = await self._llm.ainvoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=question)]
        )
        input_tokens, output_tokens = usage_tokens(response)
        text = response.content if isinstance(response.content, str) else str(response.content)
        return GeneratedAnswer(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=self._model,
        )


_WORD = re.compile(r"\w+", re.UNICODE)


def _terms(text: str) -> set[str]:
    return {w for w in _WORD.findall(text.lower()) if len(w) > 2}


class LexicalRetriever:
    """Term-overlap retrieval over the tenant's stored chunks.

    Similarity is the fraction of question terms found in the chunk. It lives
    in [0, 1] but is not comparable to cosine similarity from a vector store:
    unrelated passages sharing common words already score 0.3-0.5.
    Hallucination verification uses ``similarity_threshold`` below instead of
    the qa.toml value.
    """

    similarity_threshold = 0.8

    def __init__(self, db_path: str | Path, top_k: int = 5) -> None:
        self._db_path = db_path
        self._top_k = top_k

    async def retrieve_context(self, tenant_id: str, question: str) -> RetrievedContext:
        query_terms = _terms(question)
        with closing(get_connection(self._db_path)) as conn:
            chunks = get_tenant_chunks(conn, tenant_id)

        scored = []
        for chunk in chunks:
            if not query_terms:
                break
            overlap = len(query_terms & _terms(chunk.content)) / len(query_terms)
            if overlap > 0:
                scored.append((overlap, chunk))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        top = scored[: self._top_k]

        return RetrievedContext(
            context_text="\n\n---\n\n".join(
                f"[{c.document_filename}, p. {c.page_number or '?'}]\n{c.content}"
                for _, c in top
            ),
            citations=[
                Citation(document=c.document_filename, page=c.page_number, similarity=round(s, 4))
                for s, c in top
            ],
            diagnostic_trace={
                "retriever": "lexical",
                "query_terms": len(query_terms),
                "candidates": len(chunks),
                "chunk_ids": [c.id for _, c in top],
            },
        )


def load_retriever(path: str, **kwargs: Any) -> Retriever:
    """Build a retriever from ``"package.module:factory"``."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Retriever path must look like 'module:factory', got {path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    retriever = factory(**kwargs)
    if not isinstance(retriever, Retriever):
        raise TypeError(f"{path} did not return an object with retrieve_context()")
    logger.info("retriever_loaded", path=path)
    return retriever
