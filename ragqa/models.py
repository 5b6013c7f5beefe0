"""LLM factory for the pipeline roles.

Roles (generator, answer, judge, fixer) map to models and temperatures in
qa.toml. Every client carries the configured request timeout; the answer role
is built with ``max_retries=0`` so a failing call surfaces as a question
failure instead of being retried behind the executor's back.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from langchain_core.runnables import Runnable
from langchain_openai import ChatOpenAI

from ragqa.config import QASettings, Settings, get_qa_settings, get_settings

logger = structlog.get_logger(__name__)

LLMFactory = Callable[..., Runnable]


def create_llm(
    role: str,
    temperature: float | None = None,
    json_mode: bool = False,
    qa_settings: QASettings | None = None,
    settings: Settings | None = None,
) -> Runnable:
    """Create a chat model for a pipeline role.

    Args:
        role: Role name used to look up config in qa.toml.
        temperature: Sampling temperature. None = read from qa.toml.
        json_mode: Constrain the response to a single JSON object.
        qa_settings: Optional QASettings; loads qa.toml if not provided.
        settings: Optional Settings instance; loads from env if not provided.
    """
    if settings is None:
        settings = get_settings()
    if qa_settings is None:
        qa_settings = get_qa_settings()

    role_cfg = qa_settings.get_role_config(role)
    if temperature is None:
        temperature = qa_settings.get_temperature(role)

    kwargs = dict(
        model=qa_settings.get_model(role),
        temperature=temperature,
        openai_api_key=settings.openai_api_key,
        timeout=qa_settings.defaults.timeout,
        max_retries=role_cfg.max_retries,
    )
    if settings.openai_base_url:
        kwargs["openai_api_base"] = settings.openai_base_url

    llm: Runnable = ChatOpenAI(**kwargs)
    if json_mode:
        llm = llm.bind(response_format={"type": "json_object"})
    logger.debug("llm_created", role=role, model=kwargs["model"], json_mode=json_mode)
    return llm
