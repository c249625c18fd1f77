"""Token budgeting: model limits, token counting and prompt condensing."""

from meeseeks.context.condense import (
    CondenseResult,
    CondenseSettings,
    ContextAnalysis,
    analyze_context,
    condense_context,
    truncate_diff,
)
from meeseeks.context.limits import (
    DEFAULT_TOKEN_LIMIT,
    MODEL_TOKEN_LIMITS,
    ModelTokenLimits,
    get_available_tokens,
    get_model_limits,
)
from meeseeks.context.tokenizer import TiktokenTokenizer, Tokenizer, count_tokens, truncate_to_token_limit

__all__ = [
    "CondenseResult",
    "CondenseSettings",
    "ContextAnalysis",
    "analyze_context",
    "condense_context",
    "truncate_diff",
    "DEFAULT_TOKEN_LIMIT",
    "MODEL_TOKEN_LIMITS",
    "ModelTokenLimits",
    "get_available_tokens",
    "get_model_limits",
    "TiktokenTokenizer",
    "Tokenizer",
    "count_tokens",
    "truncate_to_token_limit",
]
