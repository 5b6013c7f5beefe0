"""Tests for judging executed answers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import TENANT, make_question, prompt_text
from ragqa.persistence.repository import (
    create_test_run,
    get_test_question,
    get_test_run,
    insert_test_questions,
    update_test_question,
)
from ragqa.pipeline.evaluator import NO_ANSWER_REASONING, Evaluator, build_judge_prompt
from ragqa.schemas.categories import Category
from ragqa.schemas.phases import QuestionStatus
from ragqa.schemas.records import Citation, TestRunConfig

JUDGE_CALL = 0.0075  # 1000 in / 500 out on gpt-4o
FIXER_CALL = 0.00045  # same usage on gpt-4o-mini

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def run_id(conn):
    return create_test_run(conn, TENANT, TestRunConfig(), 5)


def _answered(run_id: str, position: int, answer: str = "Employees get 25 days.", **kwargs):  # noqa: ANN003
    kwargs.setdefault("status", QuestionStatus.EVALUATING)
    kwargs.setdefault("executed_at", T0 + timedelta(seconds=position))
    return make_question(run_id, position, actual_answer=answer, **kwargs)


_EXECUTION_FIELDS = ("actual_answer", "citations", "executed_at", "score", "passed")


def _store(conn, questions) -> None:  # noqa: ANN001
    """Insert, then write the fields the executor and judge would have set."""
    insert_test_questions(conn, questions)
    for q in questions:
        update_test_question(conn, q.id, **{f: getattr(q, f) for f in _EXECUTION_FIELDS})


# ---------------------------------------------------------------------------
# Judge prompt
# ---------------------------------------------------------------------------


class TestBuildJudgePrompt:
    def test_includes_question_answer_and_sources(self):
        q = _answered(
            "r1", 0, citations=[Citation(document="handbook.pdf", page=3), Citation(document="faq.md")]
        )
        prompt = build_judge_prompt(q)
        assert "QUESTION: Question 0 about the handbook?" in prompt
        assert "EXPECTED ANSWER: 25 vacation days." in prompt
        assert "CHATBOT ANSWER: Employees get 25 days." in prompt
        assert "CITED SOURCES: handbook.pdf p.3, faq.md" in prompt
        assert "CATEGORY: Retrieval" in prompt

    def test_hard_caps_stated(self):
        prompt = build_judge_prompt(_answered("r1", 0, category=Category.HALLUCINATION))
        assert "score at most 20" in prompt
        assert "score at most 50" in prompt
        assert "score at most 40" in prompt
        assert '"hallucinated": true/false' in prompt

    def test_missing_expected_answer(self):
        prompt = build_judge_prompt(_answered("r1", 0, expected_answer=None))
        assert "No specific expected answer given" in prompt

    def test_consistency_previous_answers(self):
        q = _answered("r1", 0, category=Category.CONSISTENCY)
        prompt = build_judge_prompt(q, ["First answer.", "Second answer."])
        assert "- First answer.\n- Second answer." in prompt

    def test_consistency_without_previous_answers(self):
        prompt = build_judge_prompt(_answered("r1", 0, category=Category.CONSISTENCY))
        assert "(none yet)" in prompt


# ---------------------------------------------------------------------------
# Single question
# ---------------------------------------------------------------------------


class TestEvaluateQuestion:
    @pytest.mark.asyncio
    async def test_clean_pass(self, ctx, run_id):
        result = await Evaluator(ctx).evaluate_question(_answered(run_id, 0))
        assert result.score == 90
        assert result.passed is True
        assert result.cost == pytest.approx(JUDGE_CALL)

    @pytest.mark.asyncio
    async def test_judge_runs_in_json_mode(self, ctx, run_id, fake_llm):
        await Evaluator(ctx).evaluate_question(_answered(run_id, 0))
        assert fake_llm.requests[0] == {"role": "judge", "temperature": None, "json_mode": True}

    @pytest.mark.asyncio
    async def test_fluent_invention_capped(self, ctx, run_id, judge_script):
        judge_script.replies.append({
            "score": 85,
            "passed": True,
            "reasoning": "Fluent and confident.",
            "issues": [],
            "category_specific": {"hallucinated": True},
        })
        result = await Evaluator(ctx).evaluate_question(
            _answered(run_id, 0, category=Category.HALLUCINATION)
        )
        assert result.score == 20
        assert result.passed is False
        assert result.category_specific["judge_score"] == 85
        assert result.issues == ["hallucinated claim"]
        assert result.category_specific["rubric_adjustments"] == [
            "Score capped from 85 to 20: hallucinated claim"
        ]

    @pytest.mark.asyncio
    async def test_pass_flag_mismatch_kept_out_of_issues(self, ctx, run_id, judge_script):
        judge_script.replies.append({
            "score": 65,
            "passed": True,
            "reasoning": "Mostly right.",
            "issues": ["Missing deadline"],
            "category_specific": {},
        })
        result = await Evaluator(ctx).evaluate_question(_answered(run_id, 0))
        assert result.passed is False
        assert result.issues == ["Missing deadline"]
        assert "disagrees" in result.category_specific["rubric_adjustments"][0]


# ---------------------------------------------------------------------------
# Whole run
# ---------------------------------------------------------------------------


class TestEvaluateRun:
    @pytest.mark.asyncio
    async def test_scores_every_answered_question(self, ctx, conn, run_id):
        questions = [_answered(run_id, i) for i in range(3)]
        _store(conn, questions)

        scored = await Evaluator(ctx).evaluate_run(run_id)

        assert scored == 3
        for q in questions:
            stored = get_test_question(conn, q.id)
            assert stored.status == QuestionStatus.COMPLETED
            assert stored.score == 90
            assert stored.passed is True
            assert stored.evaluation.reasoning == "Correct and sourced."
            assert stored.evaluation_cost == pytest.approx(JUDGE_CALL)
            assert stored.evaluated_at is not None
        run = get_test_run(conn, run_id)
        assert run.cost_breakdown.evaluation == pytest.approx(3 * JUDGE_CALL)

    @pytest.mark.asyncio
    async def test_empty_answer_scored_zero_without_judge(self, ctx, conn, run_id, fake_llm):
        q = _answered(run_id, 0, answer="   ")
        _store(conn, [q])

        await Evaluator(ctx).evaluate_run(run_id)

        stored = get_test_question(conn, q.id)
        assert stored.score == 0
        assert stored.passed is False
        assert stored.evaluation.reasoning == NO_ANSWER_REASONING
        assert stored.evaluation.issues == ["No response"]
        assert stored.evaluation_cost == 0
        assert fake_llm.calls_for("judge") == []

    @pytest.mark.asyncio
    async def test_judge_failure_scores_zero_and_continues(self, ctx, conn, run_id, judge_script):
        judge_script.replies.append(RuntimeError("judge unavailable"))
        first, second = _answered(run_id, 0), _answered(run_id, 1)
        _store(conn, [first, second])

        await Evaluator(ctx).evaluate_run(run_id)

        failed = get_test_question(conn, first.id)
        assert failed.status == QuestionStatus.COMPLETED
        assert failed.score == 0
        assert failed.passed is False
        assert failed.evaluation.reasoning.startswith("Evaluation failed:")
        assert "judge unavailable" in failed.evaluation.reasoning
        assert failed.evaluation.issues == ["Evaluation error"]
        assert get_test_question(conn, second.id).score == 90

    @pytest.mark.asyncio
    async def test_malformed_output_keeps_spent_cost(self, ctx, conn, run_id, judge_script):
        judge_script.replies.append("The answer looks fine to me.")
        q = _answered(run_id, 0)
        _store(conn, [q])

        await Evaluator(ctx).evaluate_run(run_id)

        stored = get_test_question(conn, q.id)
        assert stored.score == 0
        assert "malformed judge output" in stored.evaluation.reasoning
        assert stored.evaluation_cost == pytest.approx(JUDGE_CALL + 2 * FIXER_CALL)

    @pytest.mark.asyncio
    async def test_failed_executions_stay_unscored(self, ctx, conn, run_id):
        failed = make_question(run_id, 0, status=QuestionStatus.FAILED, error_message="boom")
        ok = _answered(run_id, 1)
        _store(conn, [failed, ok])

        scored = await Evaluator(ctx).evaluate_run(run_id)

        assert scored == 1
        stored = get_test_question(conn, failed.id)
        assert stored.score is None
        assert stored.status == QuestionStatus.FAILED

    @pytest.mark.asyncio
    async def test_consistency_judged_against_other_answers(self, ctx, conn, run_id, fake_llm):
        text = "How many vacation days do employees get?"
        questions = [
            _answered(run_id, i, answer=f"Answer variant {i}.", category=Category.CONSISTENCY, question=text)
            for i in range(3)
        ]
        _store(conn, questions)

        await Evaluator(ctx).evaluate_run(run_id)

        first_prompt = prompt_text(fake_llm.calls_for("judge")[0])
        previous = first_prompt.split("PREVIOUS ANSWERS:")[1]
        assert "- Answer variant 1." in previous
        assert "- Answer variant 2." in previous
        assert "- Answer variant 0." not in previous

    @pytest.mark.asyncio
    async def test_delay_only_between_judge_calls(self, ctx, conn, run_id):
        _store(
            conn,
            [_answered(run_id, 0), _answered(run_id, 1, answer=""), _answered(run_id, 2)],
        )
        await Evaluator(ctx).evaluate_run(run_id)
        assert ctx.sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_already_scored_questions_skipped(self, ctx, conn, run_id, fake_llm):
        done = _answered(run_id, 0, status=QuestionStatus.COMPLETED, score=55, passed=False)
        _store(conn, [done])
        scored = await Evaluator(ctx).evaluate_run(run_id)
        assert scored == 0
        assert get_test_question(conn, done.id).score == 55
        assert fake_llm.calls_for("judge") == []
