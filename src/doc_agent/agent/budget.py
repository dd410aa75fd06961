"""Token budget accounting for one conversation turn."""

from __future__ import annotations

import math

import structlog

from doc_agent.config import TokenBudgetConfig
from doc_agent.types import TokenBudget

logger = structlog.get_logger(__name__)

TRUNCATION_MARKER = "\n...(truncated to fit the token budget)"

# Rough per-character costs: dense scripts (CJK and most non-Latin text) use
# far more tokens per character than ASCII.
_ASCII_WEIGHT = 0.25
_NON_ASCII_WEIGHT = 1.5


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    non_ascii = sum(1 for ch in text if ord(ch) > 127)
    ascii_count = len(text) - non_ascii
    return math.ceil(non_ascii * _NON_ASCII_WEIGHT + ascii_count * _ASCII_WEIGHT)


class TokenBudgetManager:
    """Tracks the token allowance and truncates content to fit it.

    `used_tokens` only grows. Callers insert `fit(text)` rather than `text`,
    so the allowance is never exceeded.
    """

    def __init__(self, config: TokenBudgetConfig | None = None) -> None:
        self.config = config or TokenBudgetConfig()
        self.total_budget = self.config.total_budget
        self.context_tokens = self.config.context_tokens
        self.used_tokens = 0

    def estimate(self, text: str) -> int:
        return estimate_tokens(text)

    def remaining(self) -> int:
        return max(0, self.total_budget - self.used_tokens)

    def reserve(self, estimated_tokens: int) -> bool:
        """Return whether `estimated_tokens` fit in what is left."""
        return 0 <= estimated_tokens <= self.remaining()

    def consume(self, actual_tokens: int) -> None:
        if actual_tokens < 0:
            raise ValueError("consumed tokens must be non-negative")
        self.used_tokens += actual_tokens

    def truncate(self, text: str, max_tokens: int) -> str:
        """Longest prefix of `text` that costs at most `max_tokens`.

        A marker is appended when anything was cut. Returns an empty string if
        not even the marker fits.
        """

        if estimate_tokens(text) <= max_tokens:
            return text
        available = max_tokens - estimate_tokens(TRUNCATION_MARKER)
        if available <= 0:
            return ""
        return self.prefix(text, available) + TRUNCATION_MARKER

    def prefix(self, text: str, max_tokens: int) -> str:
        """Longest prefix of `text` that costs at most `max_tokens`, unmarked."""

        if max_tokens <= 0:
            return ""
        # Prefix cost is monotonic in length, so binary search the cut point.
        low, high = 0, len(text)
        while low < high:
            middle = (low + high + 1) // 2
            if estimate_tokens(text[:middle]) <= max_tokens:
                low = middle
            else:
                high = middle - 1
        return text[:low]

    def fit(self, text: str) -> str:
        fitted = self.truncate(text, self.remaining())
        if fitted != text:
            logger.info(
                "budget_truncated",
                original_tokens=estimate_tokens(text),
                kept_tokens=estimate_tokens(fitted),
                remaining=self.remaining(),
            )
        return fitted

    def snapshot(self) -> TokenBudget:
        return TokenBudget(
            total_budget=self.total_budget,
            context_tokens=self.context_tokens,
            used_tokens=self.used_tokens,
        )
