"""Token accounting: read usage off LLM responses and price it."""

from __future__ import annotations

from typing import Any

import structlog

from ragqa.config import QASettings, get_qa_settings

logger = structlog.get_logger(__name__)

_warned_models: set[str] = set()


def usage_tokens(message: Any) -> tuple[int, int]:
    """Return (input_tokens, output_tokens) from an AIMessage.

    Providers that report no usage yield (0, 0).
    """
    usage = getattr(message, "usage_metadata", None) or {}
    return int(usage.get("input_tokens", 0)), int(usage.get("output_tokens", 0))


def token_cost(
    model: str,
    input_tokens: int,
    output_tokens: int = 0,
    settings: QASettings | None = None,
) -> float:
    """USD cost of a call, from the per-million prices in qa.toml."""
    settings = settings or get_qa_settings()
    price = settings.get_price(model)
    if price is None:
        if model not in _warned_models:
            _warned_models.add(model)
            logger.warning("model_price_unknown", model=model)
        return 0.0
    return (
        input_tokens * price.input_per_million
        + output_tokens * price.output_per_million
    ) / 1_000_000


def message_cost(model: str, message: Any, settings: QASettings | None = None) -> float:
    return token_cost(model, *usage_tokens(message), settings=settings)
