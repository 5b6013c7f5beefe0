"""Aggregator: rolls question scores into the run's final report."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from contextlib import closing
from statistics import fmean

import structlog

from ragqa.errors import RunNotFoundError
from ragqa.persistence.repository import get_test_questions, get_test_run, update_test_run
from ragqa.pipeline.context import PipelineContext
from ragqa.schemas.categories import CATEGORY_INFO, CATEGORY_RECOMMENDATIONS, Category
from ragqa.schemas.phases import RunStatus
from ragqa.schemas.records import CostBreakdown, TestQuestion, TestRun, TestSummary

logger = structlog.get_logger(__name__)

STRENGTH_THRESHOLD = 85
WEAKNESS_THRESHOLD = 50
RECOMMENDATION_THRESHOLD = 70
COMMON_ISSUE_MIN = 3


def _mean(values: list[float]) -> float:
    return round(fmean(values), 2) if values else 0.0


def compute_scores(questions: Iterable[TestQuestion]) -> tuple[float, dict[str, float], set[Category]]:
    """Overall mean, per-category means and the categories that had scores.

    Unscored questions are excluded, not counted as zero. Every category is
    reported; one without scored questions reports 0.
    """
    by_category: dict[Category, list[float]] = {c: [] for c in Category}
    for q in questions:
        if q.score is not None:
            by_category[Category(q.category)].append(q.score)

    all_scores = [s for scores in by_category.values() for s in scores]
    per_category = {c.value: _mean(scores) for c, scores in by_category.items()}
    scored = {c for c, scores in by_category.items() if scores}
    return _mean(all_scores), per_category, scored


def build_summary(
    scores_by_category: dict[str, float],
    scored_categories: set[Category],
    questions: Iterable[TestQuestion],
) -> TestSummary:
    strengths: list[str] = []
    weaknesses: list[str] = []
    recommendations: list[str] = []

    for category in Category:
        score = scores_by_category.get(category.value, 0.0)
        label = CATEGORY_INFO[category]["label"]
        if category in scored_categories and score >= STRENGTH_THRESHOLD:
            strengths.append(f"{label}: strong performance ({score:.0f}%)")
        elif 0 < score < WEAKNESS_THRESHOLD:
            weaknesses.append(f"{label}: needs improvement ({score:.0f}%)")
        if category in scored_categories and score < RECOMMENDATION_THRESHOLD:
            recommendations.append(f"{label}: {CATEGORY_RECOMMENDATIONS[category]}")

    issue_counts = Counter(
        issue
        for q in questions
        if q.evaluation is not None
        for issue in q.evaluation.issues
    )
    for issue, count in issue_counts.most_common():
        if count < COMMON_ISSUE_MIN:
            break
        weaknesses.append(f"Common problem: {issue} ({count}x)")

    return TestSummary(
        strengths=strengths or ["No clear strengths identified"],
        weaknesses=weaknesses or ["No critical weaknesses"],
        recommendations=recommendations or ["Keep monitoring and testing regularly"],
    )


async def finalize(run_id: str, ctx: PipelineContext) -> TestRun:
    """Compute final scores, summary, cost and duration; mark the run completed."""
    with closing(ctx.connect()) as conn:
        run = get_test_run(conn, run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        questions = get_test_questions(conn, run_id)

        overall, per_category, scored = compute_scores(questions)
        summary = build_summary(per_category, scored, questions)
        cost = CostBreakdown(
            generation=run.cost_breakdown.generation,
            execution=sum(q.execution_cost for q in questions),
            evaluation=sum(q.evaluation_cost for q in questions),
        )
        now = ctx.clock()
        duration = (
            int(round((now - run.started_at).total_seconds())) if run.started_at else 0
        )

        update_test_run(
            conn,
            run_id,
            status=RunStatus.COMPLETED,
            current_phase=None,
            questions_completed=len(questions),
            overall_score=overall,
            scores_by_category=per_category,
            summary=summary,
            cost_breakdown=cost,
            total_cost=cost.total,
            completed_at=now,
            duration_seconds=max(duration, 0),
        )
        final = get_test_run(conn, run_id)

    logger.info(
        "run_finalized",
        run_id=run_id,
        overall_score=overall,
        questions=len(questions),
        scored=sum(1 for q in questions if q.score is not None),
        total_cost=round(cost.total, 6),
        duration_seconds=duration,
    )
    return final
