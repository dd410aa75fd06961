from pydantic import BaseModel

from doc_agent.agent.parser import DecisionParser
from doc_agent.agent.prompts import (
    assess_sufficiency,
    build_round_prompt,
    build_system_prompt,
    describe_tools,
    system_notices,
)
from doc_agent.agent.registry import ToolSpec
from doc_agent.types import ToolResult


class _QueryInput(BaseModel):
    query: str
    limit: int = 5


def _spec() -> ToolSpec:
    return ToolSpec(name="find", description="search", args_schema=_QueryInput, handler=str)


def test_system_prompt_documents_every_decision_format() -> None:
    prompt = build_system_prompt()

    assert '"action": "use_tool"' in prompt
    assert '"tool_calls"' in prompt
    assert '"action": "answer"' in prompt
    assert "Ground every statement" in prompt


def test_caller_prompt_precedes_loop_protocol() -> None:
    prompt = build_system_prompt("Answer in French.")

    assert prompt.startswith("Answer in French.\n\n")
    assert prompt.endswith(build_system_prompt())


def test_documented_examples_parse_into_decisions() -> None:
    parser = DecisionParser()
    examples = [
        '{"action": "use_tool", "thought": "t", "tool": "find", "params": {"query": "q"}}',
        '{"action": "use_tool", "thought": "t", "parallel": true, '
        '"tool_calls": [{"tool": "find", "params": {}}, {"tool": "map", "params": {}}]}',
        '{"action": "answer", "thought": "t", "answer": "a"}',
    ]

    for example in examples:
        _, strategy = parser.parse_with_strategy(example)
        assert strategy == "code_block" or strategy == "raw_object"


def test_tool_descriptions_list_parameters() -> None:
    described = describe_tools([_spec()])

    assert described.startswith("- find: search")
    assert '"query": {"type": "string"}' in described
    assert describe_tools([]) == "(no tools available)"


def test_notices_follow_loop_progress() -> None:
    repeated = [
        ToolResult(tool="find", params={"query": "x"}, output={"results": []}),
        ToolResult(tool="find", params={"query": "x"}, output={"results": []}),
    ]

    first = system_notices([], 1, 5)
    middle = system_notices(repeated, 3, 5)
    final = system_notices([], 5, 5)

    assert len(first) == 1 and first[0].startswith("- First round")
    assert any("repeated the same tool call" in notice for notice in middle)
    assert any("returned nothing" in notice for notice in middle)
    assert final[-1].startswith("- FINAL ROUND (5/5)")


def test_round_prompt_layout() -> None:
    prompt = build_round_prompt(
        question="What is the dropout rate?",
        context='Known: {"json": "braces"}',
        specs=[_spec()],
        history=[],
        round_index=2,
        max_iterations=5,
    )

    assert "Question:\nWhat is the dropout rate?" in prompt
    assert 'Known: {"json": "braces"}' in prompt
    assert "=== SYSTEM NOTICES ===" not in prompt
    assert "Round 2/5" in prompt


def _rows(tool: str, count: int, width: int) -> ToolResult:
    items = [{"chunk_id": f"c{idx}", "text": "x" * width} for idx in range(count)]
    return ToolResult(tool=tool, params={"query": tool}, output={"results": items})


def test_sufficiency_rating_thresholds() -> None:
    assert assess_sufficiency([]) == ("insufficient", "0 items")
    assert assess_sufficiency([_rows("vector_search", 1, 100)])[0] == "insufficient"
    assert assess_sufficiency([_rows("vector_search", 1, 900)])[0] == "maybe_sufficient"

    rating, summary = assess_sufficiency(
        [
            _rows("vector_search", 3, 400),
            ToolResult(tool="grep", params={"query": "x"}, output={"matches": [{"preview": "y" * 400}]}),
            ToolResult(tool="fetch_group", params={"group_id": "g"}, error="boom"),
        ]
    )

    assert rating == "likely_sufficient"
    assert summary == "4 items (3 from vector_search, 1 from grep)"


def test_sufficiency_notice_appears_before_final_round_only() -> None:
    history = [_rows("vector_search", 3, 400), _rows("keyword_search", 2, 400)]

    middle = system_notices(history, 2, 5)
    final = system_notices(history, 5, 5)
    thin = system_notices([_rows("vector_search", 1, 10)], 2, 5)

    assert any(
        notice.startswith("- Retrieved so far: 5 items (3 from vector_search, 2 from keyword_search)")
        and "over 2 tool calls" in notice
        and "answer now" in notice
        for notice in middle
    )
    assert not any("Retrieved so far" in notice for notice in final)
    assert not any("Retrieved so far" in notice for notice in thin)
