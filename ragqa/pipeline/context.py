"""Explicit dependencies handed to every pipeline component."""

from __future__ import annotations

import asyncio
import random
import sqlite3
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from langchain_core.runnables import Runnable

from ragqa.collaborators import AnswerGenerator, Retriever
from ragqa.config import QASettings, get_qa_settings
from ragqa.models import LLMFactory, create_llm
from ragqa.persistence.db import get_connection


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineContext:
    """Everything a phase needs, with no module-level clients.

    Tests swap ``llm_factory``, ``sleep``, ``rng`` and ``clock`` for
    deterministic doubles.
    """

    db_path: str | Path
    retriever: Retriever
    answer_generator: AnswerGenerator
    qa_settings: QASettings = field(default_factory=get_qa_settings)
    llm_factory: LLMFactory = create_llm
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], datetime] = _utcnow

    def connect(self) -> sqlite3.Connection:
        return get_connection(self.db_path)

    def llm(self, role: str, **kwargs) -> Runnable:  # noqa: ANN003
        return self.llm_factory(role, qa_settings=self.qa_settings, **kwargs)
