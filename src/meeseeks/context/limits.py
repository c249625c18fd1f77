"""Per-model token limits.

``available_for_input`` is the budget the context manager fits prompts into;
it leaves room for the model's answer inside ``context_window``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class ModelTokenLimits:
    context_window: int
    max_output_tokens: int
    available_for_input: int


MODEL_TOKEN_LIMITS: dict[str, ModelTokenLimits] = {
    # OpenAI
    "gpt-4o": ModelTokenLimits(128_000, 16_384, 100_000),
    "gpt-4o-mini": ModelTokenLimits(128_000, 16_384, 100_000),
    "gpt-4-turbo": ModelTokenLimits(128_000, 4_096, 100_000),
    "gpt-4": ModelTokenLimits(8_192, 8_192, 6_000),
    "gpt-3.5-turbo": ModelTokenLimits(16_385, 4_096, 12_000),
    "o1-preview": ModelTokenLimits(128_000, 32_768, 90_000),
    "o1-mini": ModelTokenLimits(128_000, 65_536, 60_000),
    # Anthropic
    "claude-3.5-sonnet": ModelTokenLimits(200_000, 8_192, 150_000),
    "claude-3.5-haiku": ModelTokenLimits(200_000, 8_192, 150_000),
    # Google
    "gemini-3-flash-preview": ModelTokenLimits(128_000, 8_192, 100_000),
}

# Conservative fallback for unknown models
DEFAULT_TOKEN_LIMIT = ModelTokenLimits(8_192, 4_096, 6_000)


def get_model_limits(
    model_id: str,
    overrides: Mapping[str, ModelTokenLimits] | None = None,
) -> ModelTokenLimits:
    """Return the limits of *model_id*; *overrides* take precedence over the table.

    Unknown ids get ``DEFAULT_TOKEN_LIMIT``.
    """
    if overrides and model_id in overrides:
        return overrides[model_id]
    return MODEL_TOKEN_LIMITS.get(model_id, DEFAULT_TOKEN_LIMIT)


def get_available_tokens(
    model_id: str,
    overrides: Mapping[str, ModelTokenLimits] | None = None,
) -> int:
    return get_model_limits(model_id, overrides).available_for_input
