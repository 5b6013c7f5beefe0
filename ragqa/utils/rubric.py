"""Deterministic rubric enforcement for judge verdicts.

The judge reports a score plus raw signals in ``category_specific``. Hard caps
and the pass decision are computed here so a fluent-but-wrong verdict can
never slip through: an answer flagged as hallucinated scores at most 20 even
if the judge said 85.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ragqa.config import JudgeTable
from ragqa.schemas.categories import Category
from ragqa.schemas.llm_outputs import JudgeOutput


@dataclass(frozen=True)
class RubricVerdict:
    score: float
    passed: bool
    violations: list[str] = field(default_factory=list)
    cap_reason: str | None = None


_TRUE_STRINGS = frozenset({"true", "yes", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "0"})


def _parse_flag(value: Any) -> bool | None:
    """Judge flags as bool; None when absent or unreadable."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return None


def _flag(data: dict[str, Any], key: str) -> bool:
    return _parse_flag(data.get(key)) is True


def hard_caps(
    category: Category | str,
    category_specific: dict[str, Any],
    cfg: JudgeTable,
) -> list[tuple[float, str]]:
    """Caps triggered by the judge's signals, lowest first."""
    caps: list[tuple[float, str]] = []
    if _flag(category_specific, "hallucinated"):
        caps.append((cfg.hallucination_cap, "hallucinated claim"))
    wrong_doc = (
        category == Category.CITATION
        and _parse_flag(category_specific.get("document_correct")) is False
    )
    if _flag(category_specific, "wrong_citation") or wrong_doc:
        caps.append((cfg.wrong_citation_cap, "wrong source cited"))
    if _flag(category_specific, "unanswered_but_available"):
        caps.append((cfg.unanswered_cap, "answer was available but not given"))
    return sorted(caps)


def apply_rubric(
    output: JudgeOutput,
    category: Category | str,
    cfg: JudgeTable,
) -> RubricVerdict:
    """Clamp, cap and decide pass/fail for one judge verdict."""
    score = max(0.0, min(100.0, float(output.score)))
    violations: list[str] = []
    cap_reason = None

    for cap, reason in hard_caps(category, output.category_specific, cfg):
        if score > cap:
            violations.append(f"Score capped from {score:g} to {cap:g}: {reason}")
            score = cap
            cap_reason = reason

    passed = score >= cfg.pass_threshold
    if output.passed != passed and not violations:
        violations.append(
            f"Judge pass flag {output.passed} disagrees with score {score:g}"
        )
    return RubricVerdict(
        score=score, passed=passed, violations=violations, cap_reason=cap_reason
    )
