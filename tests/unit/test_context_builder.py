from langchain_core.messages import AIMessage, HumanMessage

from doc_agent.agent.budget import TokenBudgetManager, estimate_tokens
from doc_agent.agent.context import ContextBuilder, is_empty_result
from doc_agent.config import TokenBudgetConfig
from doc_agent.retrieval.index import SemanticIndex
from doc_agent.types import Chunk, DocumentOverview, SemanticGroup, ToolResult


def _index(groups: int = 3) -> SemanticIndex:
    return SemanticIndex(
        [
            SemanticGroup(group_id=f"g{idx}", keywords=(f"topic{idx}",), summary=f"Summary {idx}.")
            for idx in range(groups)
        ],
        [Chunk(chunk_id="c0", text="chunk", vector=(1.0, 0.0), belongs_to_group="g0")],
        doc_gist="A short paper.",
    )


def test_seed_is_never_empty() -> None:
    seed = ContextBuilder().build(DocumentOverview(), None, TokenBudgetManager())

    assert "Name: unknown" in seed
    assert "=== BUDGET ===" in seed


def test_seed_describes_document_and_retrieval_state() -> None:
    overview = DocumentOverview(name="attention.pdf", page_count=15, language="en")

    seed = ContextBuilder().build(overview, [], TokenBudgetManager(), _index())

    assert "Name: attention.pdf" in seed
    assert "Pages: 15" in seed
    assert "Gist: A short paper." in seed
    assert "Semantic groups: 3" in seed
    assert "Chunks: 1 (with vectors)" in seed
    assert "- [g2] topic2" in seed


def test_outline_is_shortened_for_large_documents() -> None:
    seed = ContextBuilder().build(DocumentOverview(), None, TokenBudgetManager(), _index(20))

    assert "- [g11] topic11" in seed
    assert "[g12]" not in seed
    assert "8 more groups" in seed


def test_history_is_condensed_to_recent_turns() -> None:
    history = [
        {"role": "user", "content": "first question"},
        ("assistant", "first answer"),
        HumanMessage(content="second   question\nwith newline"),
        AIMessage(content="x" * 1000),
    ]

    seed = ContextBuilder(history_turns=3).build(DocumentOverview(), history, TokenBudgetManager())

    assert "first question" not in seed
    assert "assistant: first answer" in seed
    assert "human: second question with newline" in seed
    assert "ai: " + "x" * 297 + "..." in seed


def test_seed_is_capped_by_context_tokens() -> None:
    budget = TokenBudgetManager(TokenBudgetConfig(total_budget=1000, context_tokens=60))
    overview = DocumentOverview(gist="long gist " * 500)

    seed = ContextBuilder().build(overview, None, budget, _index(50))

    assert seed
    assert estimate_tokens(seed) <= 60
    assert budget.used_tokens == 0


def test_format_tool_result_renders_errors_and_hits() -> None:
    builder = ContextBuilder()
    failed = ToolResult(tool="nope", params={"a": 1}, error="Unknown tool: nope")
    found = ToolResult(
        tool="find",
        params={"query": "dropout"},
        output={"count": 1, "results": [{"group_id": "g1", "snippet": "dropout 0.1", "score": 1.0}]},
    )
    fetched = ToolResult(
        tool="fetch_group",
        params={"group_id": "g1"},
        output={"group_id": "g1", "granularity": "full", "text": "z" * 2000, "char_count": 2000},
    )

    assert builder.format_tool_result(failed) == '[tool: nope({"a": 1})]\nError: Unknown tool: nope'
    assert "1. [g1] dropout 0.1" in builder.format_tool_result(found)
    rendered = builder.format_tool_result(fetched)
    assert "Group [g1] (full, 2000 chars):" in rendered
    assert "z" * 1500 in rendered and "z" * 1501 not in rendered
    assert rendered.endswith("...(long group text shortened)")


def test_is_empty_result() -> None:
    assert is_empty_result(ToolResult(tool="find", params={}, output={"count": 0, "results": []}))
    assert is_empty_result(ToolResult(tool="fetch_group", params={}, output={"text": ""}))
    assert not is_empty_result(ToolResult(tool="map", params={}, output={"map": [{"group_id": "g"}]}))
    assert not is_empty_result(ToolResult(tool="x", params={}, error="boom"))


def test_seed_survives_a_context_too_small_for_the_truncation_marker() -> None:
    budget = TokenBudgetManager(TokenBudgetConfig(total_budget=1000, context_tokens=8))

    seed = ContextBuilder().build(DocumentOverview(name="paper.pdf"), [], budget, None)

    assert seed == "Name: paper.pdf"
    assert estimate_tokens(seed) <= 8


def test_format_text_matches_and_group_detail() -> None:
    builder = ContextBuilder()
    matches = ToolResult(
        tool="boolean_search",
        params={"query": "dropout AND 0.1"},
        output={
            "count": 1,
            "matches": [
                {
                    "source_id": "c1",
                    "group_id": "g0",
                    "position": 4,
                    "match": "dropout",
                    "preview": "Use dropout 0.1",
                    "matched_terms": ["dropout", "0.1"],
                }
            ],
        },
    )
    detail = ToolResult(
        tool="fetch",
        params={"group_id": "g0"},
        output={
            "group_id": "g0",
            "text": "Body text.",
            "structure": {"sections": ["2 Training"], "figures": []},
            "keywords": ["training"],
            "summary": "How it was trained.",
        },
    )

    rendered = builder.format_tool_result(matches)
    assert "1 text matches:" in rendered
    assert "1. [c1 / g0] @4 dropout, 0.1" in rendered
    assert "   Use dropout 0.1" in rendered

    rendered = builder.format_tool_result(detail)
    assert "Group [g0] (10 chars):" in rendered
    assert "sections: 2 Training" in rendered
    assert "figures" not in rendered
    assert rendered.endswith("Body text.")

    assert is_empty_result(ToolResult(tool="grep", params={}, output={"count": 0, "matches": []}))
