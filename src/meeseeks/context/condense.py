"""Context budget manager: fit a system + user prompt into a model's input budget.

A prompt costs ``tokens(content) + per_message_overhead`` per message. When
the two messages exceed the model's ``available_for_input`` budget, lossy
strategies run in order until the prompt fits or they are exhausted:

  1. reduce-kb     : cut the knowledge base content inside the system prompt
  2. truncate-diff : drop whole file sections from the git diff inside the
                     user prompt, trailing files first

A strategy's output is kept only if it lowers the token count. Running out
of strategies is not an error: the result carries a warning instead.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace

from meeseeks.context.limits import ModelTokenLimits, get_available_tokens
from meeseeks.context.tokenizer import Tokenizer, default_tokenizer, truncate_to_token_limit

NO_CHANGES = "(no changes)"
CONTENT_TRUNCATED_MARKER = "\n\n[... content truncated to fit model context limit]"
_FILE_DIFF_SPLIT = re.compile(r"(?=diff --git)")


@dataclass(frozen=True)
class CondenseSettings:
    """Tunables of the budget manager (``context:`` section of the config)."""

    per_message_overhead: int = 4
    kb_floor: int = 1_000
    diff_reserve: int = 100
    diff_floor: int = 500
    model_limits: Mapping[str, ModelTokenLimits] = field(default_factory=dict)


@dataclass
class ContextAnalysis:
    system_tokens: int
    user_tokens: int
    total_tokens: int
    available_tokens: int
    exceeds_limit: bool
    overflow_tokens: int


@dataclass
class CondenseResult:
    condensed: bool
    strategy: str  # none | reduce-kb | truncate-diff | both
    original_tokens: int
    final_tokens: int
    system_prompt: str
    user_prompt: str
    warnings: list[str] = field(default_factory=list)


# ------------------------------------------------------------------
# Counting
# ------------------------------------------------------------------


def analyze_context(
    messages: Sequence[Mapping[str, str]],
    model_id: str,
    *,
    tokenizer: Tokenizer | None = None,
    settings: CondenseSettings | None = None,
) -> ContextAnalysis:
    """Token usage of chat *messages* (``{"role", "content"}``) against *model_id*'s budget."""
    tok = tokenizer or default_tokenizer()
    cfg = settings or CondenseSettings()

    def count(text: str) -> int:
        return len(tok.encode(text)) if text else 0

    total = sum(count(m.get("content", "")) + cfg.per_message_overhead for m in messages)
    available = get_available_tokens(model_id, cfg.model_limits)
    system = next((m for m in messages if m.get("role") == "system"), None)
    user = next((m for m in messages if m.get("role") == "user"), None)
    return ContextAnalysis(
        system_tokens=count(system["content"]) if system else 0,
        user_tokens=count(user["content"]) if user else 0,
        total_tokens=total,
        available_tokens=available,
        exceeds_limit=total > available,
        overflow_tokens=max(0, total - available),
    )


@dataclass(frozen=True)
class _Budget:
    """Immutable working state passed through the strategies."""

    system_prompt: str
    user_prompt: str
    kb_content: str | None
    diff_text: str | None
    available: int
    tokenizer: Tokenizer
    settings: CondenseSettings

    def count(self, text: str) -> int:
        return len(self.tokenizer.encode(text)) if text else 0

    @property
    def total(self) -> int:
        overhead = self.settings.per_message_overhead
        return self.count(self.system_prompt) + overhead + self.count(self.user_prompt) + overhead

    @property
    def overflow(self) -> int:
        return max(0, self.total - self.available)


_Strategy = Callable[[_Budget], "tuple[_Budget, str] | None"]


# ------------------------------------------------------------------
# Strategies
# ------------------------------------------------------------------


def _truncate_with_marker(text: str, max_tokens: int, tokenizer: Tokenizer) -> str:
    truncated = truncate_to_token_limit(text, max_tokens, tokenizer)
    if truncated == text:
        return text
    return truncated + CONTENT_TRUNCATED_MARKER


def _reduce_kb(budget: _Budget) -> tuple[_Budget, str] | None:
    kb = budget.kb_content
    floor = budget.settings.kb_floor
    if not kb or kb not in budget.system_prompt or budget.count(budget.system_prompt) <= floor:
        return None

    kb_tokens = budget.count(kb)
    target = max(floor, kb_tokens - budget.overflow)
    if target >= kb_tokens:
        return None

    reduced = _truncate_with_marker(kb, target, budget.tokenizer)
    updated = replace(
        budget,
        system_prompt=budget.system_prompt.replace(kb, reduced, 1),
        kb_content=reduced,
    )
    return updated, f"Knowledge base content reduced from {kb_tokens:,} to {target:,} tokens"


def truncate_diff(
    diff: str,
    max_tokens: int,
    tokenizer: Tokenizer | None = None,
    reserve: int = 100,
) -> tuple[str, bool]:
    """Keep leading per-file sections of *diff* within ``max_tokens - reserve``.

    If not even the first file fits, it is kept truncated. Dropped files are
    summarized in a trailing marker.

    Returns:
        ``(diff, changed)``.
    """
    if not diff or diff == NO_CHANGES:
        return diff, False
    tok = tokenizer or default_tokenizer()
    if len(tok.encode(diff)) <= max_tokens:
        return diff, False

    segments = [s for s in _FILE_DIFF_SPLIT.split(diff) if s]
    budget = max(0, max_tokens - reserve)
    kept: list[str] = []
    used = 0
    for segment in segments:
        tokens = len(tok.encode(segment))
        if used + tokens <= budget:
            kept.append(segment)
            used += tokens
        else:
            if not kept:
                kept.append(_truncate_with_marker(segment, budget, tok))
            break

    result = "".join(kept)
    dropped = len(segments) - len(kept)
    if dropped > 0:
        result += f"\n\n[... {dropped} more file(s) truncated to fit model context limit]"
    return result, result != diff


def _truncate_diff(budget: _Budget) -> tuple[_Budget, str] | None:
    diff = budget.diff_text
    if not diff or diff == NO_CHANGES or diff not in budget.user_prompt:
        return None

    diff_tokens = budget.count(diff)
    target = max(budget.settings.diff_floor, diff_tokens - budget.overflow)
    truncated, changed = truncate_diff(diff, target, budget.tokenizer, budget.settings.diff_reserve)
    if not changed:
        return None

    updated = replace(
        budget,
        user_prompt=budget.user_prompt.replace(diff, truncated, 1),
        diff_text=truncated,
    )
    return updated, f"Git diff truncated from {diff_tokens:,} to {budget.count(truncated):,} tokens"


_STRATEGIES: tuple[tuple[str, _Strategy], ...] = (
    ("reduce-kb", _reduce_kb),
    ("truncate-diff", _truncate_diff),
)


# ------------------------------------------------------------------
# Orchestration
# ------------------------------------------------------------------


def condense_context(
    model_id: str,
    system_prompt: str,
    user_prompt: str,
    kb_content: str | None = None,
    diff_text: str | None = None,
    *,
    tokenizer: Tokenizer | None = None,
    settings: CondenseSettings | None = None,
) -> CondenseResult:
    """Fit *system_prompt* + *user_prompt* into *model_id*'s input budget.

    Args:
        model_id: Target model; unknown ids get conservative default limits.
        system_prompt: System message, possibly embedding *kb_content*.
        user_prompt: User message, possibly embedding *diff_text*.
        kb_content: The knowledge base text as it appears in the system prompt.
        diff_text: The git diff as it appears in the user prompt.
        tokenizer: Token counter (tiktoken ``cl100k_base`` by default).
        settings: Overhead, floors and model limit overrides.

    Returns:
        CondenseResult. ``final_tokens <= original_tokens`` always holds.
    """
    cfg = settings or CondenseSettings()
    budget = _Budget(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        kb_content=kb_content,
        diff_text=diff_text,
        available=get_available_tokens(model_id, cfg.model_limits),
        tokenizer=tokenizer or default_tokenizer(),
        settings=cfg,
    )
    original_tokens = budget.total
    if original_tokens <= budget.available:
        return CondenseResult(
            condensed=False,
            strategy="none",
            original_tokens=original_tokens,
            final_tokens=original_tokens,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
        )

    applied: list[str] = []
    warnings: list[str] = []
    current_tokens = original_tokens
    for name, strategy in _STRATEGIES:
        if current_tokens <= budget.available:
            break
        outcome = strategy(budget)
        if outcome is None:
            continue
        candidate, warning = outcome
        candidate_tokens = candidate.total
        if candidate_tokens >= current_tokens:
            continue
        budget, current_tokens = candidate, candidate_tokens
        applied.append(name)
        warnings.append(warning)

    if current_tokens > budget.available:
        warnings.append(
            f"Context still exceeds limit by {current_tokens - budget.available:,} tokens. "
            "API call may fail."
        )

    return CondenseResult(
        condensed=True,
        strategy="both" if len(applied) > 1 else (applied[0] if applied else "none"),
        original_tokens=original_tokens,
        final_tokens=current_tokens,
        system_prompt=budget.system_prompt,
        user_prompt=budget.user_prompt,
        warnings=warnings,
    )
