"""Executor: drives each pending question through the chatbot pipeline.

Questions run one at a time in generation order, separated by a fixed delay
to stay under provider rate limits. A question that fails (retrieval error,
answer error, timeout) is marked failed with zero cost and the batch moves
on. ``questions_completed`` is checkpointed every few questions.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any

import structlog

from ragqa.errors import ExecutionError
from ragqa.persistence.repository import (
    get_pending_questions,
    get_test_questions,
    get_test_run,
    reset_interrupted_questions,
    sum_question_costs,
    update_test_question,
    update_test_run,
)
from ragqa.pipeline.context import PipelineContext
from ragqa.prompts.templates import ANSWER_SYSTEM, NO_CONTEXT
from ragqa.schemas.categories import language_name
from ragqa.schemas.phases import QuestionStatus
from ragqa.schemas.records import Citation, TestQuestion
from ragqa.utils.costs import token_cost

logger = structlog.get_logger(__name__)


@dataclass
class ExecutionResult:
    answer: str
    citations: list[Citation]
    diagnostic_trace: dict[str, Any] = field(default_factory=dict)
    response_time_ms: int = 0
    cost: float = 0.0


def build_system_prompt(context_text: str, language: str) -> str:
    return ANSWER_SYSTEM.format(
        context=context_text.strip() or NO_CONTEXT,
        language_name=language_name(language),
    )


class Executor:
    def __init__(self, ctx: PipelineContext) -> None:
        self._ctx = ctx
        self._cfg = ctx.qa_settings.pipeline

    async def _call(self, awaitable, what: str):  # noqa: ANN001
        timeout = self._cfg.call_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except TimeoutError as exc:
            raise ExecutionError(f"{what} timed out after {timeout:g}s") from exc
        except Exception as exc:
            raise ExecutionError(f"{what} failed: {exc}") from exc

    async def execute_question(self, question: TestQuestion) -> ExecutionResult:
        """Retrieve context, answer once, and price the round trip.

        Raises ExecutionError on any retrieval or answer failure.
        """
        started = time.perf_counter()
        retrieved = await self._call(
            self._ctx.retriever.retrieve_context(question.tenant_id, question.question),
            "retrieval",
        )
        system_prompt = build_system_prompt(retrieved.context_text, question.language)
        answer = await self._call(
            self._ctx.answer_generator.generate_answer(system_prompt, question.question),
            "answer generation",
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        model = answer.model or self._ctx.qa_settings.get_model("answer")
        generation_cost = token_cost(
            model, answer.input_tokens, answer.output_tokens, self._ctx.qa_settings
        )
        return ExecutionResult(
            answer=answer.text,
            citations=retrieved.citations,
            diagnostic_trace={
                "model": model,
                "input_tokens": answer.input_tokens,
                "output_tokens": answer.output_tokens,
                "embedding_tokens": retrieved.embedding_tokens,
                "retrieval_cost": retrieved.embedding_cost,
                "generation_cost": generation_cost,
                "context_chars": len(retrieved.context_text),
                "retrieval": retrieved.diagnostic_trace,
            },
            response_time_ms=elapsed_ms,
            cost=retrieved.embedding_cost + generation_cost,
        )

    async def execute_run(self, run_id: str) -> int:
        """Execute every pending question of a run. Returns how many ran."""
        with closing(self._ctx.connect()) as conn:
            run = get_test_run(conn, run_id)
            reset = reset_interrupted_questions(conn, run_id)
            if reset:
                logger.warning("interrupted_questions_reset", run_id=run_id, count=reset)
            pending = get_pending_questions(conn, run_id)
            done_before = len(get_test_questions(conn, run_id)) - len(pending)
            logger.info("execution_started", run_id=run_id, pending=len(pending))

            processed = 0
            failed = 0
            every = self._cfg.progress_checkpoint_every
            for question in pending:
                if processed:
                    await self._ctx.sleep(self._cfg.inter_question_delay)

                update_test_question(conn, question.id, status=QuestionStatus.EXECUTING)
                try:
                    result = await self.execute_question(question)
                except ExecutionError as exc:
                    failed += 1
                    update_test_question(
                        conn,
                        question.id,
                        status=QuestionStatus.FAILED,
                        error_message=str(exc),
                        execution_cost=0.0,
                        executed_at=self._ctx.clock(),
                    )
                    logger.warning(
                        "question_execution_failed",
                        run_id=run_id,
                        question_id=question.id,
                        category=question.category,
                        error=str(exc),
                    )
                else:
                    update_test_question(
                        conn,
                        question.id,
                        status=QuestionStatus.EVALUATING,
                        actual_answer=result.answer,
                        citations=result.citations,
                        rag_details=result.diagnostic_trace,
                        response_time_ms=result.response_time_ms,
                        execution_cost=result.cost,
                        executed_at=self._ctx.clock(),
                    )

                processed += 1
                if processed % every == 0:
                    update_test_run(conn, run_id, questions_completed=done_before + processed)

            execution_cost, _ = sum_question_costs(conn, run_id)
            breakdown = run.cost_breakdown.model_copy(update={"execution": execution_cost})
            update_test_run(
                conn,
                run_id,
                questions_completed=done_before + processed,
                cost_breakdown=breakdown,
            )
        logger.info(
            "execution_finished",
            run_id=run_id,
            executed=processed,
            failed=failed,
            cost=round(execution_cost, 6),
        )
        return processed
