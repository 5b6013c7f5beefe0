"""Question budget and per-category quotas.

Integer arithmetic only: each enabled category except the last gets its share
rounded half-up, never more than what is left; the last enabled category
takes the remainder, so the quotas always sum exactly to the total.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from ragqa.schemas.categories import DEFAULT_CATEGORY_DISTRIBUTION, Category


def calculate_total_questions(
    min_questions: int,
    document_count: int,
    questions_per_document: int,
) -> int:
    """``min_questions + document_count * questions_per_document``."""
    if min(min_questions, document_count, questions_per_document) < 0:
        raise ValueError("question counts must be non-negative")
    return min_questions + document_count * questions_per_document


def calculate_category_distribution(
    total: int,
    categories: Iterable[Category | str],
    weights: Mapping[Category, int] = DEFAULT_CATEGORY_DISTRIBUTION,
) -> dict[Category, int]:
    """Split ``total`` across the enabled categories, in the given order."""
    enabled = list(dict.fromkeys(Category(c) for c in categories))
    if not enabled:
        raise ValueError("at least one category must be enabled")
    if total < 0:
        raise ValueError("total must be non-negative")

    weight_sum = sum(weights[c] for c in enabled)
    quotas: dict[Category, int] = {}
    assigned = 0
    for category in enabled[:-1]:
        if weight_sum:
            # round(total * w / weight_sum), half-up
            share = (2 * total * weights[category] + weight_sum) // (2 * weight_sum)
        else:
            share = total // len(enabled)
        share = min(share, total - assigned)
        quotas[category] = share
        assigned += share
    quotas[enabled[-1]] = total - assigned
    return quotas
