"""Tests for the model token limit table."""

from __future__ import annotations

from meeseeks.context.limits import (
    DEFAULT_TOKEN_LIMIT,
    MODEL_TOKEN_LIMITS,
    ModelTokenLimits,
    get_available_tokens,
    get_model_limits,
)


def test_known_model():
    limits = get_model_limits("gpt-4")
    assert limits == ModelTokenLimits(context_window=8_192, max_output_tokens=8_192, available_for_input=6_000)


def test_unknown_model_gets_conservative_default():
    assert get_model_limits("some-new-model") == DEFAULT_TOKEN_LIMIT
    assert get_available_tokens("some-new-model") == 6_000


def test_overrides_take_precedence():
    overrides = {"gpt-4": ModelTokenLimits(32_768, 4_096, 28_000)}
    assert get_available_tokens("gpt-4", overrides) == 28_000
    assert get_available_tokens("gpt-4o", overrides) == 100_000


def test_override_adds_new_model():
    overrides = {"local/llama": ModelTokenLimits(4_096, 1_024, 3_000)}
    assert get_available_tokens("local/llama", overrides) == 3_000


def test_input_budget_fits_inside_window():
    for limits in MODEL_TOKEN_LIMITS.values():
        assert limits.available_for_input <= limits.context_window
