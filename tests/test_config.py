"""Tests for pipeline configuration loading from qa.toml."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest
from pydantic import ValidationError

from ragqa.config import QASettings, Settings, load_qa_settings
from ragqa.utils.costs import message_cost, token_cost, usage_tokens

ROOT = Path(__file__).resolve().parent.parent


class TestQASettingsDefaults:
    def test_role_models(self):
        s = QASettings()
        assert s.get_model("generator") == "gpt-4o-mini"
        assert s.get_model("answer") == "gpt-4o"
        assert s.get_model("judge") == "gpt-4o"
        assert s.get_model("fixer") == "gpt-4o"  # falls back to defaults

    def test_role_temperatures(self):
        s = QASettings()
        assert s.get_temperature("generator") == 0.7
        assert s.get_temperature("judge") == 0.3
        assert s.get_temperature("fixer") == 0.0

    def test_answer_role_never_retries(self):
        assert QASettings().roles.answer.max_retries == 0

    def test_unknown_role_uses_defaults(self):
        s = QASettings()
        assert s.get_model("nonexistent") == "gpt-4o"
        assert s.get_temperature("nonexistent") == 0.7

    def test_pipeline_defaults(self):
        p = QASettings().pipeline
        assert p.inter_question_delay == 0.2
        assert p.progress_checkpoint_every == 5
        assert p.sample_floor == 30
        assert p.min_chunk_length == 100
        assert p.consistency_repeats == 3
        assert p.hallucination_similarity_threshold == 0.60
        assert p.fallback_multilingual_languages == ["en", "de"]

    def test_judge_caps(self):
        j = QASettings().judge
        assert (j.hallucination_cap, j.wrong_citation_cap, j.unanswered_cap) == (20, 50, 40)
        assert j.pass_threshold == 70

    def test_run_defaults(self):
        r = QASettings().run
        assert r.min_questions == 60
        assert r.questions_per_document == 2
        assert len(r.categories) == 8
        assert r.languages == ["nl"]


class TestQASettingsOverrides:
    def test_override_role_model(self):
        s = QASettings.model_validate({"roles": {"judge": {"model": "gpt-4o-mini"}}})
        assert s.get_model("judge") == "gpt-4o-mini"
        assert s.get_model("answer") == "gpt-4o"

    def test_override_pipeline(self):
        s = QASettings.model_validate({"pipeline": {"inter_question_delay": 0, "progress_checkpoint_every": 2}})
        assert s.pipeline.inter_question_delay == 0
        assert s.pipeline.progress_checkpoint_every == 2

    def test_invalid_checkpoint_rejected(self):
        with pytest.raises(ValidationError):
            QASettings.model_validate({"pipeline": {"progress_checkpoint_every": 0}})

    def test_empty_dict_uses_defaults(self):
        assert QASettings.model_validate({}).defaults.model == "gpt-4o"


class TestQATomlFile:
    def test_repo_file_parses(self):
        s = load_qa_settings(ROOT / "qa.toml")
        assert s.get_model("generator") == "gpt-4o-mini"
        assert s.roles.answer.max_retries == 0

    def test_repo_file_matches_model_defaults(self):
        with open(ROOT / "qa.toml", "rb") as f:
            data = tomllib.load(f)
        assert data["judge"]["pass_threshold"] == QASettings().judge.pass_threshold
        assert data["run"]["categories"] == QASettings().run.categories


class TestPricing:
    def test_exact_model(self):
        price = QASettings().get_price("gpt-4o")
        assert price.input_per_million == 2.50
        assert price.output_per_million == 10.00

    def test_dated_snapshot_uses_longest_prefix(self):
        s = QASettings()
        assert s.get_price("gpt-4o-mini-2024-07-18").input_per_million == 0.15
        assert s.get_price("gpt-4o-2024-08-06").input_per_million == 2.50

    def test_unknown_model(self):
        assert QASettings().get_price("mystery-model") is None

    def test_token_cost(self):
        cost = token_cost("gpt-4o", 1000, 500, QASettings())
        assert cost == pytest.approx(0.0075)

    def test_unknown_model_costs_nothing(self):
        assert token_cost("mystery-model", 1000, 1000, QASettings()) == 0.0

    def test_usage_from_message(self):
        from langchain_core.messages import AIMessage

        msg = AIMessage(
            content="x",
            usage_metadata={"input_tokens": 200, "output_tokens": 100, "total_tokens": 300},
        )
        assert usage_tokens(msg) == (200, 100)
        assert message_cost("gpt-4o-mini", msg, QASettings()) == pytest.approx(0.00009)

    def test_message_without_usage(self):
        from langchain_core.messages import AIMessage

        assert usage_tokens(AIMessage(content="x")) == (0, 0)


class TestEnvSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        s = Settings(_env_file=None)
        assert s.openai_api_key == "sk-test"
        assert s.database_path == "data/qa.db"
        assert s.max_workers == 4
        assert s.retriever == ""

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("DATABASE_PATH", "/tmp/other.db")
        monkeypatch.setenv("MAX_WORKERS", "8")
        s = Settings(_env_file=None)
        assert s.database_path == "/tmp/other.db"
        assert s.max_workers == 8

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
