"""Tests for categories, lifecycle enums and record schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ragqa.schemas.categories import (
    CATEGORY_INFO,
    CATEGORY_RECOMMENDATIONS,
    DEFAULT_CATEGORY_DISTRIBUTION,
    OUT_OF_SCOPE_QUESTIONS,
    Category,
    language_name,
    out_of_scope_bank,
)
from ragqa.schemas.llm_outputs import JudgeOutput
from ragqa.schemas.phases import RunStatus
from ragqa.schemas.records import CostBreakdown, TemplateInput, TestRunConfig


class TestCategories:
    """Static tables cover every category."""

    def test_distribution_sums_to_100(self):
        assert sum(DEFAULT_CATEGORY_DISTRIBUTION.values()) == 100
        assert set(DEFAULT_CATEGORY_DISTRIBUTION) == set(Category)

    def test_every_category_has_label_and_recommendation(self):
        for category in Category:
            assert CATEGORY_INFO[category]["label"]
            assert CATEGORY_RECOMMENDATIONS[category]

    def test_out_of_scope_banks(self):
        assert set(OUT_OF_SCOPE_QUESTIONS) == {"nl", "en", "de"}
        assert all(len(bank) == 10 for bank in OUT_OF_SCOPE_QUESTIONS.values())
        assert out_of_scope_bank("sv") == OUT_OF_SCOPE_QUESTIONS["en"]

    def test_language_names(self):
        assert language_name("nl") == "Dutch"
        assert language_name("xx") == "xx"


class TestRunStatus:
    """Forward-only lifecycle; terminal states never move."""

    def test_forward_transitions(self):
        assert RunStatus.PENDING.can_transition_to(RunStatus.GENERATING)
        assert RunStatus.GENERATING.can_transition_to(RunStatus.RUNNING)
        assert RunStatus.RUNNING.can_transition_to(RunStatus.EVALUATING)
        assert RunStatus.EVALUATING.can_transition_to(RunStatus.COMPLETED)

    def test_backward_transition_rejected(self):
        assert not RunStatus.EVALUATING.can_transition_to(RunStatus.RUNNING)
        assert not RunStatus.RUNNING.can_transition_to(RunStatus.PENDING)

    @pytest.mark.parametrize("status", [RunStatus.PENDING, RunStatus.RUNNING, RunStatus.EVALUATING])
    def test_any_active_state_may_fail(self, status):
        assert status.can_transition_to(RunStatus.FAILED)

    @pytest.mark.parametrize("status", [RunStatus.COMPLETED, RunStatus.FAILED])
    def test_terminal_states_are_final(self, status):
        assert status.is_terminal
        assert not status.can_transition_to(RunStatus.FAILED)
        assert not status.can_transition_to(RunStatus.COMPLETED)


class TestTestRunConfig:
    def test_defaults(self):
        config = TestRunConfig()
        assert config.categories == list(Category)
        assert config.languages == ["nl"]
        assert config.default_language == "nl"

    def test_duplicates_removed_in_order(self):
        config = TestRunConfig(
            categories=["citation", "retrieval", "citation"],
            languages=[" EN ", "nl", "en"],
        )
        assert config.categories == [Category.CITATION, Category.RETRIEVAL]
        assert config.languages == ["en", "nl"]

    def test_empty_categories_rejected(self):
        with pytest.raises(ValidationError):
            TestRunConfig(categories=[])

    def test_blank_languages_rejected(self):
        with pytest.raises(ValidationError):
            TestRunConfig(languages=["  "])

    def test_unknown_category_rejected(self):
        with pytest.raises(ValidationError):
            TestRunConfig(categories=["vibes"])


class TestRecordModels:
    def test_cost_total(self):
        costs = CostBreakdown(generation=0.01, execution=0.04, evaluation=0.01)
        assert costs.total == pytest.approx(0.06)

    def test_judge_score_bounds(self):
        with pytest.raises(ValidationError):
            JudgeOutput(score=120, passed=True, reasoning="x")
        with pytest.raises(ValidationError):
            JudgeOutput(score=-1, passed=False, reasoning="x")

    def test_template_question_too_short(self):
        with pytest.raises(ValidationError):
            TemplateInput(category="retrieval", question="?")
