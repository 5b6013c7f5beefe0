"""Helpers for strict structured output with JSON fixing retries."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Generic, TypeVar

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.utils.json import parse_json_markdown
from pydantic import BaseModel

from ragqa.config import QASettings, get_qa_settings
from ragqa.models import LLMFactory, create_llm
from ragqa.utils.costs import message_cost

T = TypeVar("T", bound=BaseModel)


class StructuredOutputError(ValueError):
    """Output stayed invalid after every fixer attempt."""

    def __init__(self, message: str, cost: float = 0.0) -> None:
        super().__init__(message)
        self.cost = cost


@dataclass
class StructuredResult(Generic[T]):
    value: T
    cost: float
    attempts: int


def _schema_text(schema: type[T]) -> str:
    return json.dumps(schema.model_json_schema(), ensure_ascii=True)


def _parse_schema(content: str, schema: type[T]) -> T:
    data = parse_json_markdown(content)
    return schema.model_validate(data)


def _content(message) -> str:  # noqa: ANN001
    content = message.content if message.content else ""
    return content if isinstance(content, str) else str(content)


async def invoke_structured_with_fix(
    *,
    role: str,
    messages: list,
    schema: type[T],
    llm_factory: LLMFactory = create_llm,
    qa_settings: QASettings | None = None,
    temperature: float | None = None,
    max_attempts: int | None = None,
    memory_window: int | None = None,
) -> StructuredResult[T]:
    """Invoke a role and enforce a valid schema with fixer retries.

    Strategy:
    1) Primary model call in JSON mode
    2) Parse + validate
    3) If invalid, invoke fixer LLM with error memory and retry parse

    The returned cost covers the primary call and every fixer call. Provider
    errors propagate unchanged; exhausted parsing raises StructuredOutputError
    carrying the spend so far.
    """
    qa = qa_settings or get_qa_settings()
    max_attempts = max_attempts or qa.judge.max_attempts
    memory_window = memory_window or qa.judge.memory_window

    llm = llm_factory(role, temperature=temperature, json_mode=True, qa_settings=qa)
    response = await llm.ainvoke(messages)
    cost = message_cost(qa.get_model(role), response, qa)
    content = _content(response)
    errors: list[str] = []

    for attempt in range(1, max_attempts + 1):
        try:
            return StructuredResult(
                value=_parse_schema(content, schema), cost=cost, attempts=attempt
            )
        except Exception as exc:  # parse or validation
            err = str(exc)
            errors.append(err)
            if attempt >= max_attempts:
                raise StructuredOutputError(
                    f"{role} failed structured parsing after {max_attempts} attempts. "
                    f"Last error: {err}",
                    cost=cost,
                ) from exc

            recent = errors[-memory_window:]
            fixer = llm_factory("fixer", json_mode=True, qa_settings=qa)
            fixer_messages = [
                SystemMessage(
                    content=(
                        "Repair the JSON below so it validates against the schema. Reply with "
                        "the corrected JSON object only: no markdown, no commentary, no extra keys."
                    )
                ),
                HumanMessage(
                    content=(
                        f"Schema JSON:\n{_schema_text(schema)}\n\n"
                        f"Invalid output:\n{content}\n\n"
                        f"Validation errors so far:\n- " + "\n- ".join(recent)
                    )
                ),
            ]
            fixed = await fixer.ainvoke(fixer_messages)
            cost += message_cost(qa.get_model("fixer"), fixed, qa)
            content = _content(fixed)
