"""Application configuration using pydantic-settings.

Loads secrets and deployment settings from environment variables and .env.
Pipeline behaviour (models, temperatures, pricing, pacing, judge caps) is
loaded from qa.toml at the repository root.

Priority: CLI args > Environment variables (.env) > qa.toml > hardcoded defaults
"""

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Pipeline settings from qa.toml
# ---------------------------------------------------------------------------


class RoleConfig(BaseModel):
    """Base configuration for a single LLM role."""

    model: str | None = None
    temperature: float | None = None
    max_retries: int = 2


class GeneratorConfig(RoleConfig):
    """Question generator. Creative enough to vary phrasing."""

    model: str | None = "gpt-4o-mini"
    temperature: float = 0.7


class AnswerConfig(RoleConfig):
    """The chatbot under test. Single call, the executor never retries."""

    model: str | None = "gpt-4o"
    temperature: float = 0.7
    max_retries: int = 0


class JudgeConfig(RoleConfig):
    model: str | None = "gpt-4o"
    temperature: float = 0.3


class FixerConfig(RoleConfig):
    temperature: float = 0.0


class RolesTable(BaseModel):
    """The [roles] table from qa.toml."""

    generator: GeneratorConfig = Field(default_factory=GeneratorConfig)
    answer: AnswerConfig = Field(default_factory=AnswerConfig)
    judge: JudgeConfig = Field(default_factory=JudgeConfig)
    fixer: FixerConfig = Field(default_factory=FixerConfig)


class DefaultsTable(BaseModel):
    """The [defaults] table from qa.toml."""

    model: str = "gpt-4o"
    timeout: float = 60.0


class ModelPrice(BaseModel):
    """Token prices in USD per one million tokens."""

    input_per_million: float = Field(ge=0)
    output_per_million: float = Field(default=0.0, ge=0)


def _default_pricing() -> dict[str, ModelPrice]:
    return {
        "gpt-4o": ModelPrice(input_per_million=2.50, output_per_million=10.00),
        "gpt-4o-mini": ModelPrice(input_per_million=0.15, output_per_million=0.60),
        "text-embedding-3-small": ModelPrice(input_per_million=0.02),
    }


_ALL_CATEGORIES = [
    "retrieval", "accuracy", "citation", "hallucination",
    "out_of_scope", "no_answer", "consistency", "multilingual",
]


class RunDefaultsTable(BaseModel):
    """The [run] table: defaults merged into every new test run config."""

    min_questions: int = Field(default=60, ge=0)
    questions_per_document: int = Field(default=2, ge=0)
    categories: list[str] = Field(default_factory=lambda: list(_ALL_CATEGORIES))
    languages: list[str] = Field(default_factory=lambda: ["nl"])
    strictness: str = "strict"


class PipelineTable(BaseModel):
    """The [pipeline] table from qa.toml."""

    inter_question_delay: float = Field(default=0.2, ge=0)
    progress_checkpoint_every: int = Field(default=5, ge=1)
    call_timeout: float = Field(default=60.0, gt=0)
    sample_floor: int = Field(default=30, ge=1)
    min_chunk_length: int = 100
    max_chunk_chars: int = 2000
    ground_truth_chars: int = 500
    consistency_repeats: int = Field(default=3, ge=1)
    hallucination_max_attempts: int = Field(default=3, ge=1)
    hallucination_similarity_threshold: float = Field(default=0.60, ge=0, le=1)
    fallback_multilingual_languages: list[str] = Field(
        default_factory=lambda: ["en", "de"]
    )


class JudgeTable(BaseModel):
    """The [judge] table: pass threshold, malformed-output retries, hard caps."""

    pass_threshold: float = 70
    max_attempts: int = Field(default=3, ge=1)
    memory_window: int = Field(default=2, ge=1)
    hallucination_cap: float = 20
    wrong_citation_cap: float = 50
    unanswered_cap: float = 40


class QASettings(BaseModel):
    """Configuration loaded from qa.toml."""

    defaults: DefaultsTable = Field(default_factory=DefaultsTable)
    roles: RolesTable = Field(default_factory=RolesTable)
    pricing: dict[str, ModelPrice] = Field(default_factory=_default_pricing)
    run: RunDefaultsTable = Field(default_factory=RunDefaultsTable)
    pipeline: PipelineTable = Field(default_factory=PipelineTable)
    judge: JudgeTable = Field(default_factory=JudgeTable)

    def get_role_config(self, role: str) -> RoleConfig:
        """Get the config for a specific role."""
        return getattr(self.roles, role, RoleConfig())

    def get_model(self, role: str) -> str:
        """Get the resolved model for a role (role-specific > defaults)."""
        return self.get_role_config(role).model or self.defaults.model

    def get_temperature(self, role: str) -> float:
        """Get the resolved temperature for a role."""
        role_cfg = self.get_role_config(role)
        if role_cfg.temperature is not None:
            return role_cfg.temperature
        return 0.7  # fallback

    def get_price(self, model: str) -> ModelPrice | None:
        """Price for a model; dated snapshots fall back to their base name."""
        if model in self.pricing:
            return self.pricing[model]
        # "gpt-4o-2024-08-06" -> "gpt-4o"; longest prefix wins over "gpt-4"
        for name in sorted(self.pricing, key=len, reverse=True):
            if model.startswith(name + "-"):
                return self.pricing[name]
        return None


_QA_SETTINGS_CACHE: QASettings | None = None


def load_qa_settings(toml_path: str | Path) -> QASettings:
    """Parse and validate a qa.toml file."""
    with open(toml_path, "rb") as f:
        data = tomllib.load(f)
    return QASettings.model_validate(data)


def get_qa_settings() -> QASettings:
    """Load and cache pipeline settings from qa.toml."""
    global _QA_SETTINGS_CACHE
    if _QA_SETTINGS_CACHE is not None:
        return _QA_SETTINGS_CACHE

    toml_path = Path(__file__).parent.parent / "qa.toml"
    if toml_path.exists():
        _QA_SETTINGS_CACHE = load_qa_settings(toml_path)
    else:
        _QA_SETTINGS_CACHE = QASettings()

    return _QA_SETTINGS_CACHE


# ---------------------------------------------------------------------------
# Environment settings from .env (API keys, secrets, env-var overrides)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Keys
    openai_api_key: str
    openai_base_url: str | None = None  # Azure / proxy deployments

    # LangSmith (set LANGCHAIN_TRACING_V2=true to enable)
    langchain_tracing_v2: bool = False
    langchain_api_key: str | None = None
    langchain_project: str = "ragqa"

    # Storage
    database_path: str = "data/qa.db"

    # Retrieval collaborator, "package.module:factory". Empty = lexical fallback.
    retriever: str = ""

    # Background worker pool
    max_workers: int = 4

    # Logging
    log_level: str = "INFO"


def get_settings() -> Settings:
    """Create and return a Settings instance.

    Also exports LangSmith env vars so the LangChain SDK
    picks them up automatically for tracing.
    """
    settings = Settings()

    # LangSmith tracing is driven by env vars read by langchain-core.
    # We mirror them from our pydantic-settings into os.environ.
    if settings.langchain_tracing_v2:
        os.environ.setdefault("LANGCHAIN_TRACING_V2", "true")
        if settings.langchain_api_key:
            os.environ.setdefault("LANGCHAIN_API_KEY", settings.langchain_api_key)
        os.environ.setdefault("LANGCHAIN_PROJECT", settings.langchain_project)

    return settings
