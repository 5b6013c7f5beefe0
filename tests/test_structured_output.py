"""Tests for JSON-mode structured output with fixer retries."""

from __future__ import annotations

import pytest
from langchain_core.messages import HumanMessage

from conftest import FakeLLMFactory
from ragqa.schemas.llm_outputs import JudgeOutput
from ragqa.utils.structured_output import StructuredOutputError, invoke_structured_with_fix

VALID = {
    "score": 80,
    "passed": True,
    "reasoning": "Fine.",
    "issues": [],
    "category_specific": {},
}

JUDGE_CALL = 0.0075  # 1000 in / 500 out on gpt-4o
FIXER_CALL = 0.00045  # same usage on gpt-4o-mini


class TestInvokeStructuredWithFix:
    @pytest.mark.asyncio
    async def test_valid_first_try(self, qa_settings):
        llm = FakeLLMFactory(judge=lambda m: VALID)
        result = await invoke_structured_with_fix(
            role="judge",
            messages=[HumanMessage(content="judge this")],
            schema=JudgeOutput,
            llm_factory=llm,
            qa_settings=qa_settings,
        )
        assert result.value.score == 80
        assert result.attempts == 1
        assert result.cost == pytest.approx(JUDGE_CALL)
        assert llm.requests == [{"role": "judge", "temperature": None, "json_mode": True}]

    @pytest.mark.asyncio
    async def test_markdown_fenced_json_accepted(self, qa_settings):
        fenced = '```json\n{"score": 75, "passed": true, "reasoning": "ok"}\n```'
        llm = FakeLLMFactory(judge=lambda m: fenced)
        result = await invoke_structured_with_fix(
            role="judge",
            messages=[HumanMessage(content="x")],
            schema=JudgeOutput,
            llm_factory=llm,
            qa_settings=qa_settings,
        )
        assert result.value.score == 75
        assert result.value.issues == []

    @pytest.mark.asyncio
    async def test_fixer_repairs_output(self, qa_settings):
        llm = FakeLLMFactory(judge=lambda m: "score: eighty", fixer=lambda m: VALID)
        result = await invoke_structured_with_fix(
            role="judge",
            messages=[HumanMessage(content="x")],
            schema=JudgeOutput,
            llm_factory=llm,
            qa_settings=qa_settings,
        )
        assert result.attempts == 2
        assert result.cost == pytest.approx(JUDGE_CALL + FIXER_CALL)
        fixer_prompt = llm.calls_for("fixer")[0][-1].content
        assert "score: eighty" in fixer_prompt
        assert "Schema JSON" in fixer_prompt

    @pytest.mark.asyncio
    async def test_out_of_range_score_is_invalid(self, qa_settings):
        bad = dict(VALID, score=140)
        llm = FakeLLMFactory(judge=lambda m: bad, fixer=lambda m: bad)
        with pytest.raises(StructuredOutputError) as exc_info:
            await invoke_structured_with_fix(
                role="judge",
                messages=[HumanMessage(content="x")],
                schema=JudgeOutput,
                llm_factory=llm,
                qa_settings=qa_settings,
            )
        # 1 primary + (max_attempts - 1) fixer calls, all paid for
        assert len(llm.calls_for("fixer")) == qa_settings.judge.max_attempts - 1
        assert exc_info.value.cost == pytest.approx(JUDGE_CALL + 2 * FIXER_CALL)

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, qa_settings):
        llm = FakeLLMFactory(judge=lambda m: RuntimeError("rate limited"))
        with pytest.raises(RuntimeError, match="rate limited"):
            await invoke_structured_with_fix(
                role="judge",
                messages=[HumanMessage(content="x")],
                schema=JudgeOutput,
                llm_factory=llm,
                qa_settings=qa_settings,
            )

    @pytest.mark.asyncio
    async def test_temperature_forwarded(self, qa_settings):
        llm = FakeLLMFactory(generator=lambda m: VALID)
        await invoke_structured_with_fix(
            role="generator",
            messages=[HumanMessage(content="x")],
            schema=JudgeOutput,
            llm_factory=llm,
            qa_settings=qa_settings,
            temperature=0.95,
        )
        assert llm.requests[0]["temperature"] == 0.95
