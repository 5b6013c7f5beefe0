"""Judge: scores executed answers with an independent LLM call.

The judge runs in JSON mode at low temperature. Its output is validated
against JudgeOutput (with bounded fixer retries), then hard caps and the pass
decision are applied in code (utils.rubric). Questions without an answer are
scored 0 without calling the judge. Judge failures score the question 0 with
the failure as reasoning; the run continues.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
from typing import Any

import structlog
from langchain_core.messages import HumanMessage, SystemMessage

from ragqa.errors import EvaluationError
from ragqa.persistence.repository import (
    get_test_questions,
    get_test_run,
    get_unscored_questions,
    sum_question_costs,
    update_test_question,
    update_test_run,
)
from ragqa.pipeline.context import PipelineContext
from ragqa.prompts.templates import JUDGE_FOCUS, JUDGE_SYSTEM, JUDGE_TASK
from ragqa.schemas.categories import CATEGORY_INFO, Category, language_name
from ragqa.schemas.llm_outputs import JudgeOutput
from ragqa.schemas.phases import QuestionStatus
from ragqa.schemas.records import Evaluation, TestQuestion
from ragqa.utils.rubric import apply_rubric
from ragqa.utils.structured_output import StructuredOutputError, invoke_structured_with_fix

logger = structlog.get_logger(__name__)

NO_ANSWER_REASONING = "No answer received from the chatbot"


@dataclass
class EvaluationResult:
    score: float
    passed: bool
    reasoning: str
    issues: list[str] = field(default_factory=list)
    category_specific: dict[str, Any] = field(default_factory=dict)
    cost: float = 0.0

    def as_evaluation(self) -> Evaluation:
        return Evaluation(
            reasoning=self.reasoning,
            issues=self.issues,
            category_specific=self.category_specific,
        )


def build_judge_prompt(question: TestQuestion, previous_answers: list[str] | None = None) -> str:
    extra, fields = JUDGE_FOCUS[question.category]
    extra = extra.format(
        previous_answers="\n".join(f"- {a}" for a in previous_answers or []) or "(none yet)",
        language_name=language_name(question.language),
    )
    citations = ", ".join(
        f"{c.document}" + (f" p.{c.page}" if c.page is not None else "")
        for c in question.citations
    )
    return JUDGE_TASK.format(
        question=question.question,
        expected_answer=question.expected_answer or "No specific expected answer given",
        actual_answer=question.actual_answer or "(no answer received)",
        citations=citations or "(none)",
        category_label=CATEGORY_INFO[Category(question.category)]["label"],
        extra_context=extra,
        category_fields=fields,
    )


class Evaluator:
    def __init__(self, ctx: PipelineContext) -> None:
        self._ctx = ctx

    async def evaluate_question(
        self,
        question: TestQuestion,
        previous_answers: list[str] | None = None,
    ) -> EvaluationResult:
        """Judge one answered question. Raises EvaluationError on failure."""
        qa = self._ctx.qa_settings
        messages = [
            SystemMessage(content=JUDGE_SYSTEM),
            HumanMessage(content=build_judge_prompt(question, previous_answers)),
        ]
        try:
            result = await invoke_structured_with_fix(
                role="judge",
                messages=messages,
                schema=JudgeOutput,
                llm_factory=self._ctx.llm_factory,
                qa_settings=qa,
            )
        except StructuredOutputError as exc:
            raise EvaluationError(f"malformed judge output: {exc}", cost=exc.cost) from exc
        except Exception as exc:
            raise EvaluationError(f"judge call failed: {exc}") from exc

        output = result.value
        verdict = apply_rubric(output, question.category, qa.judge)
        category_specific = dict(output.category_specific)
        issues = list(output.issues)
        if verdict.cap_reason and verdict.cap_reason not in issues:
            issues.append(verdict.cap_reason)
        if verdict.violations:
            category_specific["judge_score"] = output.score
            category_specific["rubric_adjustments"] = verdict.violations
            logger.warning(
                "judge_rubric_adjusted",
                question_id=question.id,
                judge_score=output.score,
                score=verdict.score,
                violations=verdict.violations,
            )
        return EvaluationResult(
            score=verdict.score,
            passed=verdict.passed,
            reasoning=output.reasoning,
            issues=issues,
            category_specific=category_specific,
            cost=result.cost,
        )

    async def evaluate_run(self, run_id: str) -> int:
        """Score every executed, unscored question. Returns how many were scored."""
        delay = self._ctx.qa_settings.pipeline.inter_question_delay
        with closing(self._ctx.connect()) as conn:
            run = get_test_run(conn, run_id)
            to_score = get_unscored_questions(conn, run_id)
            answers_by_text = _answers_by_question(get_test_questions(conn, run_id))
            logger.info("evaluation_started", run_id=run_id, questions=len(to_score))

            judged = 0
            errors = 0
            for question in to_score:
                if not (question.actual_answer or "").strip():
                    update_test_question(
                        conn,
                        question.id,
                        status=QuestionStatus.COMPLETED,
                        score=0.0,
                        passed=False,
                        evaluation=Evaluation(reasoning=NO_ANSWER_REASONING, issues=["No response"]),
                        evaluation_cost=0.0,
                        evaluated_at=self._ctx.clock(),
                    )
                    continue

                if judged:
                    await self._ctx.sleep(delay)
                judged += 1

                previous = None
                if question.category == Category.CONSISTENCY:
                    previous = [
                        a for qid, a in answers_by_text.get(question.question, [])
                        if qid != question.id
                    ]
                try:
                    result = await self.evaluate_question(question, previous)
                except EvaluationError as exc:
                    errors += 1
                    logger.warning(
                        "question_evaluation_failed",
                        run_id=run_id,
                        question_id=question.id,
                        error=str(exc),
                    )
                    result = EvaluationResult(
                        score=0.0,
                        passed=False,
                        reasoning=f"Evaluation failed: {exc}",
                        issues=["Evaluation error"],
                        cost=exc.cost,
                    )

                update_test_question(
                    conn,
                    question.id,
                    status=QuestionStatus.COMPLETED,
                    score=result.score,
                    passed=result.passed,
                    evaluation=result.as_evaluation(),
                    evaluation_cost=result.cost,
                    evaluated_at=self._ctx.clock(),
                )

            _, evaluation_cost = sum_question_costs(conn, run_id)
            breakdown = run.cost_breakdown.model_copy(update={"evaluation": evaluation_cost})
            update_test_run(conn, run_id, cost_breakdown=breakdown)
        logger.info(
            "evaluation_finished",
            run_id=run_id,
            scored=len(to_score),
            judged=judged,
            errors=errors,
            cost=round(evaluation_cost, 6),
        )
        return len(to_score)


def _answers_by_question(questions: list[TestQuestion]) -> dict[str, list[tuple[str, str]]]:
    """Question text -> [(question id, answer)] for consistency judging."""
    grouped: dict[str, list[tuple[str, str]]] = {}
    for q in questions:
        if q.category == Category.CONSISTENCY and q.actual_answer:
            grouped.setdefault(q.question, []).append((q.id, q.actual_answer))
    return grouped
