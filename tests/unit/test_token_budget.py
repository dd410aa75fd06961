import pytest

from doc_agent.agent.budget import TRUNCATION_MARKER, TokenBudgetManager, estimate_tokens
from doc_agent.config import TokenBudgetConfig


def test_estimate_weights_dense_scripts_higher() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("注意力") == 5
    assert estimate_tokens("注意力") > estimate_tokens("abc")


def test_reserve_does_not_consume() -> None:
    budget = TokenBudgetManager(TokenBudgetConfig(total_budget=100, context_tokens=50))

    assert budget.reserve(100)
    assert not budget.reserve(101)
    assert not budget.reserve(-1)
    assert budget.used_tokens == 0

    budget.consume(40)
    assert budget.remaining() == 60
    assert not budget.reserve(61)
    with pytest.raises(ValueError):
        budget.consume(-5)


def test_truncate_keeps_short_text_untouched() -> None:
    budget = TokenBudgetManager()

    assert budget.truncate("short text", 100) == "short text"


def test_truncate_cuts_to_limit_and_marks_the_cut() -> None:
    budget = TokenBudgetManager()
    text = "word " * 1000

    truncated = budget.truncate(text, 120)

    assert truncated.endswith(TRUNCATION_MARKER)
    assert estimate_tokens(truncated) <= 120
    assert text.startswith(truncated[: -len(TRUNCATION_MARKER)])
    assert budget.truncate(text, 2) == ""


def test_truncate_handles_mixed_scripts() -> None:
    budget = TokenBudgetManager()
    text = "模型" * 200 + "tail"

    truncated = budget.truncate(text, 60)

    assert estimate_tokens(truncated) <= 60
    assert truncated.startswith("模型")


def test_fit_never_exceeds_total_budget() -> None:
    budget = TokenBudgetManager(TokenBudgetConfig(total_budget=200, context_tokens=100))

    for _ in range(10):
        fitted = budget.fit("retrieved paragraph " * 40)
        budget.consume(budget.estimate(fitted))
        assert budget.used_tokens <= budget.total_budget

    snapshot = budget.snapshot()
    assert snapshot.total_budget == 200
    assert snapshot.context_tokens == 100
    assert snapshot.used_tokens == budget.used_tokens


def test_context_tokens_cannot_exceed_total() -> None:
    with pytest.raises(ValueError):
        TokenBudgetConfig(total_budget=100, context_tokens=200)


def test_prefix_cuts_without_marker() -> None:
    budget = TokenBudgetManager()

    assert budget.prefix("Name: paper.pdf", 100) == "Name: paper.pdf"
    assert budget.prefix("Name: paper.pdf", 2) == "Name: pa"
    assert budget.prefix("模型模型", 3) == "模型"
    assert budget.prefix("anything", 0) == ""
