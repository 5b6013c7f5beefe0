"""Question generator: builds a run's test battery.

Order of work:
  1. Per-category quotas from the run's total (see pipeline.distribution)
  2. Active tenant templates, which count toward their category's quota
  3. Content-grounded questions from sampled passages (LLM)
  4. Hallucination probes, verified against the corpus via the retriever
  5. Fixed out-of-scope bank, LLM-written personal (no-answer) questions
  6. Consistency repeats and multilingual translations of grounded questions

Per-item LLM failures are logged and skipped. Sampling failures, an empty
result, or a failed batch insert raise GenerationError.
"""

from __future__ import annotations

import math
import uuid
from contextlib import closing

import structlog
from langchain_core.messages import HumanMessage, SystemMessage

from ragqa.errors import GenerationError
from ragqa.persistence.repository import get_templates, insert_test_questions
from ragqa.pipeline.context import PipelineContext
from ragqa.pipeline.distribution import calculate_category_distribution
from ragqa.pipeline.sampler import CorpusSampler
from ragqa.prompts.templates import (
    ACCURACY_TASK,
    CITATION_TASK,
    GENERATOR_SYSTEM,
    HALLUCINATION_EXPECTED,
    HALLUCINATION_TASK,
    NO_ANSWER_EXPECTED,
    NO_ANSWER_TASK,
    OUT_OF_SCOPE_EXPECTED,
    RETRIEVAL_TASK,
    TRANSLATE_TASK,
)
from ragqa.schemas.categories import Category, language_name, out_of_scope_bank
from ragqa.schemas.llm_outputs import (
    GeneratedQuestionOutput,
    HallucinationQuestionOutput,
    NoAnswerQuestionsOutput,
    TranslatedQuestionOutput,
)
from ragqa.schemas.records import CorpusChunk, TestQuestion, TestRun
from ragqa.utils.structured_output import invoke_structured_with_fix

logger = structlog.get_logger(__name__)

_GROUNDED_TASKS = {
    Category.RETRIEVAL: RETRIEVAL_TASK,
    Category.ACCURACY: ACCURACY_TASK,
    Category.CITATION: CITATION_TASK,
}


class QuestionGenerator:
    """Generates and persists the questions of one run."""

    def __init__(self, ctx: PipelineContext) -> None:
        self._ctx = ctx
        self._cfg = ctx.qa_settings.pipeline
        self._sampler = CorpusSampler(ctx)
        self.cost = 0.0
        self._chunks: list[CorpusChunk] = []
        self._cursor = 0

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def generate(self, run: TestRun) -> list[TestQuestion]:
        """Build, trim and persist the run's questions. Returns them in order."""
        quotas = calculate_category_distribution(run.total_questions, run.config.categories)
        logger.info(
            "generation_started",
            run_id=run.id,
            total=run.total_questions,
            quotas={str(k): v for k, v in quotas.items()},
        )

        try:
            self._chunks = self._sampler.sample(
                run.tenant_id, max(self._cfg.sample_floor, run.total_questions)
            )
        except Exception as exc:
            raise GenerationError(f"corpus sampling failed: {exc}") from exc

        by_category = self._template_questions(run, quotas)
        for category, quota in quotas.items():
            remaining = quota - len(by_category.get(category, []))
            if remaining <= 0:
                continue
            generated = await self._generate_category(run, category, remaining, by_category)
            by_category.setdefault(category, []).extend(generated[:remaining])

        questions = [q for cat in quotas for q in by_category.get(cat, [])]
        questions = questions[: run.total_questions]
        if not questions:
            raise GenerationError("no questions could be generated")
        for position, question in enumerate(questions):
            question.position = position

        conn = self._ctx.connect()
        try:
            insert_test_questions(conn, questions)
        except Exception as exc:
            raise GenerationError(f"question insert failed: {exc}") from exc
        finally:
            conn.close()

        shortfall = run.total_questions - len(questions)
        logger.info(
            "generation_finished",
            run_id=run.id,
            generated=len(questions),
            shortfall=shortfall,
            cost=round(self.cost, 6),
        )
        return questions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_question(self, run: TestRun, category: Category, question: str, **fields) -> TestQuestion:  # noqa: ANN003
        fields.setdefault("language", run.config.default_language)
        return TestQuestion(
            id=str(uuid.uuid4()),
            test_run_id=run.id,
            tenant_id=run.tenant_id,
            category=category,
            question=question.strip(),
            **fields,
        )

    def _next_chunk(self) -> CorpusChunk | None:
        if not self._chunks:
            return None
        chunk = self._chunks[self._cursor % len(self._chunks)]
        self._cursor += 1
        return chunk

    def _passage(self, chunk: CorpusChunk) -> str:
        return chunk.content[: self._cfg.max_chunk_chars]

    async def _ask(self, schema, prompt: str, temperature: float | None = None):  # noqa: ANN001
        result = await invoke_structured_with_fix(
            role="generator",
            messages=[SystemMessage(content=GENERATOR_SYSTEM), HumanMessage(content=prompt)],
            schema=schema,
            llm_factory=self._ctx.llm_factory,
            qa_settings=self._ctx.qa_settings,
            temperature=temperature,
        )
        self.cost += result.cost
        return result.value

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _template_questions(
        self, run: TestRun, quotas: dict[Category, int]
    ) -> dict[Category, list[TestQuestion]]:
        with closing(self._ctx.connect()) as conn:
            templates = get_templates(conn, run.tenant_id, active_only=True)

        by_category: dict[Category, list[TestQuestion]] = {}
        for template in templates:
            bucket = by_category.setdefault(template.category, [])
            if len(bucket) >= quotas.get(template.category, 0):
                continue  # category disabled or already full
            source = template.expected_sources[0] if template.expected_sources else None
            bucket.append(
                self._new_question(
                    run,
                    template.category,
                    template.question,
                    language=template.language,
                    expected_answer=template.expected_answer,
                    source_document=source.document if source else None,
                    source_page=source.page if source else None,
                    template_id=template.id,
                    is_auto_generated=False,
                )
            )
        used = sum(len(v) for v in by_category.values())
        if used:
            logger.info("templates_included", run_id=run.id, count=used)
        return by_category

    # ------------------------------------------------------------------
    # Category dispatch
    # ------------------------------------------------------------------

    async def _generate_category(
        self,
        run: TestRun,
        category: Category,
        count: int,
        existing: dict[Category, list[TestQuestion]],
    ) -> list[TestQuestion]:
        if category in _GROUNDED_TASKS:
            return await self._grounded(run, category, count)
        if category is Category.HALLUCINATION:
            return await self._hallucination(run, count)
        if category is Category.OUT_OF_SCOPE:
            return self._out_of_scope(run, count)
        if category is Category.NO_ANSWER:
            return await self._no_answer(run, count)
        if category is Category.CONSISTENCY:
            return await self._consistency(run, count)
        return await self._multilingual(run, count, existing)

    async def _grounded(
        self,
        run: TestRun,
        category: Category,
        count: int,
        task_category: Category | None = None,
    ) -> list[TestQuestion]:
        """Passage-grounded questions; tries up to two passages per slot."""
        task = _GROUNDED_TASKS[task_category or category]
        language = run.config.default_language
        out: list[TestQuestion] = []
        attempts = 0
        while len(out) < count and attempts < count * 2:
            chunk = self._next_chunk()
            if chunk is None:
                logger.warning("generation_no_passages", run_id=run.id, category=category)
                break
            attempts += 1
            prompt = task.format(
                content=self._passage(chunk),
                filename=chunk.document_filename,
                page=chunk.page_number or "?",
                language_name=language_name(language),
            )
            try:
                parsed: GeneratedQuestionOutput = await self._ask(GeneratedQuestionOutput, prompt)
            except Exception as exc:
                logger.warning(
                    "question_generation_failed",
                    run_id=run.id,
                    category=category,
                    chunk_id=chunk.id,
                    error=str(exc),
                )
                continue

            expected = parsed.expected_answer
            if parsed.key_facts:
                expected += f"\n[REQUIRED FACTS: {'; '.join(parsed.key_facts)}]"
            out.append(
                self._new_question(
                    run,
                    category,
                    parsed.question,
                    expected_answer=expected,
                    ground_truth=chunk.content[: self._cfg.ground_truth_chars],
                    source_chunk_id=chunk.id,
                    source_document=chunk.document_filename,
                    source_page=chunk.page_number,
                )
            )
        return out

    async def _hallucination(self, run: TestRun, count: int) -> list[TestQuestion]:
        """Plausible questions the corpus cannot answer.

        A candidate is rejected when the retriever finds a passage at or above
        the similarity threshold (the answer probably exists) or when it
        repeats an earlier candidate's opening. A retriever that scores on
        its own scale declares ``similarity_threshold``; otherwise the
        qa.toml value, tuned for cosine similarity, applies.
        """
        language = run.config.default_language
        threshold = getattr(self._ctx.retriever, "similarity_threshold", None)
        if threshold is None:
            threshold = self._cfg.hallucination_similarity_threshold
        seen_prefixes: set[str] = set()
        topics: list[str] = []
        out: list[TestQuestion] = []

        for slot in range(count):
            for attempt in range(self._cfg.hallucination_max_attempts):
                chunk = self._next_chunk()
                prompt = HALLUCINATION_TASK.format(
                    content=self._passage(chunk)[:500] if chunk else "(no passage available)",
                    avoid=", ".join(topics) or "none",
                    language_name=language_name(language),
                )
                try:
                    parsed: HallucinationQuestionOutput = await self._ask(
                        HallucinationQuestionOutput, prompt, temperature=0.9 + 0.05 * attempt
                    )
                except Exception as exc:
                    logger.warning("hallucination_generation_failed", run_id=run.id, error=str(exc))
                    continue

                prefix = parsed.question.strip().lower()[:30]
                if prefix in seen_prefixes:
                    logger.debug("hallucination_duplicate", slot=slot, attempt=attempt)
                    continue

                try:
                    retrieved = await self._ctx.retriever.retrieve_context(
                        run.tenant_id, parsed.question
                    )
                except Exception as exc:
                    logger.warning("hallucination_verify_failed", run_id=run.id, error=str(exc))
                    continue
                self.cost += retrieved.embedding_cost
                similarity = retrieved.best_similarity
                if similarity >= threshold:
                    logger.info(
                        "hallucination_rejected_answerable",
                        run_id=run.id,
                        similarity=round(similarity, 3),
                    )
                    continue

                seen_prefixes.add(prefix)
                if parsed.topic:
                    topics.append(parsed.topic)
                out.append(
                    self._new_question(
                        run,
                        Category.HALLUCINATION,
                        parsed.question,
                        expected_answer=HALLUCINATION_EXPECTED,
                    )
                )
                break
        return out

    def _out_of_scope(self, run: TestRun, count: int) -> list[TestQuestion]:
        language = run.config.default_language
        bank = list(out_of_scope_bank(language))
        self._ctx.rng.shuffle(bank)
        return [
            self._new_question(
                run,
                Category.OUT_OF_SCOPE,
                bank[i % len(bank)],
                expected_answer=OUT_OF_SCOPE_EXPECTED,
                language=language if language in ("nl", "en", "de") else "en",
            )
            for i in range(count)
        ]

    async def _no_answer(self, run: TestRun, count: int) -> list[TestQuestion]:
        language = run.config.default_language
        prompt = NO_ANSWER_TASK.format(count=count, language_name=language_name(language))
        try:
            parsed: NoAnswerQuestionsOutput = await self._ask(
                NoAnswerQuestionsOutput, prompt, temperature=0.8
            )
        except Exception as exc:
            logger.warning("no_answer_generation_failed", run_id=run.id, error=str(exc))
            return []

        unique = list(dict.fromkeys(q.strip() for q in parsed.questions if q.strip()))
        return [
            self._new_question(
                run, Category.NO_ANSWER, text, expected_answer=NO_ANSWER_EXPECTED
            )
            for text in unique[:count]
        ]

    async def _consistency(self, run: TestRun, count: int) -> list[TestQuestion]:
        """Base retrieval questions, each asked ``consistency_repeats`` times."""
        repeats = self._cfg.consistency_repeats
        bases = await self._grounded(
            run, Category.CONSISTENCY, math.ceil(count / repeats),
            task_category=Category.RETRIEVAL,
        )
        out: list[TestQuestion] = []
        for base in bases:
            for _ in range(repeats):
                out.append(
                    base.model_copy(update={"id": str(uuid.uuid4())})
                )
        return out[:count]

    async def _multilingual(
        self,
        run: TestRun,
        count: int,
        existing: dict[Category, list[TestQuestion]],
    ) -> list[TestQuestion]:
        """Translate grounded questions into the non-default languages."""
        targets = run.config.languages[1:] or self._cfg.fallback_multilingual_languages
        sources = [
            q
            for cat in (Category.RETRIEVAL, Category.ACCURACY, Category.CITATION)
            for q in existing.get(cat, [])
            if q.is_auto_generated
        ]
        if len(sources) < count:
            sources += await self._grounded(
                run, Category.RETRIEVAL, count - len(sources)
            )
        if not sources:
            return []

        out: list[TestQuestion] = []
        for i in range(count):
            source = sources[i % len(sources)]
            target = targets[i % len(targets)]
            prompt = TRANSLATE_TASK.format(
                language_name=language_name(target),
                question=source.question,
                expected_answer=source.expected_answer or "",
            )
            try:
                parsed: TranslatedQuestionOutput = await self._ask(
                    TranslatedQuestionOutput, prompt
                )
            except Exception as exc:
                logger.warning(
                    "translation_failed", run_id=run.id, language=target, error=str(exc)
                )
                continue
            out.append(
                self._new_question(
                    run,
                    Category.MULTILINGUAL,
                    parsed.question,
                    language=target,
                    expected_answer=parsed.expected_answer or source.expected_answer,
                    ground_truth=source.ground_truth,
                    source_chunk_id=source.source_chunk_id,
                    source_document=source.source_document,
                    source_page=source.source_page,
                )
            )
        return out
