"""Prompt text for the planning rounds."""

from __future__ import annotations

import json
from collections.abc import Sequence

from langchain_core.prompts import PromptTemplate

from doc_agent.agent.context import is_empty_result
from doc_agent.agent.registry import ToolSpec
from doc_agent.types import ToolResult

_SYSTEM_PROMPT = """
You are a document retrieval assistant. You answer questions about one long
document by calling retrieval tools and reading what they return.

Work iteratively:
1) Decide what information the question needs.
2) Call the tools that retrieve it. Several independent calls may run in
   parallel in one round.
3) Read the results. If they are enough, answer; otherwise retrieve more.

Rules:
- Ground every statement in retrieved document content.
- Do not answer from general knowledge and do not ask the user for details.
- Do not repeat a call that already failed or returned nothing.
- If the document does not contain the answer, say so.

Response format: reply with exactly one JSON object and nothing else.

Single tool call:
{"action": "use_tool", "thought": "...", "tool": "<name>", "params": {...}}

Parallel tool calls:
{"action": "use_tool", "thought": "...", "parallel": true,
 "tool_calls": [{"tool": "<name>", "params": {...}}, {"tool": "<name>", "params": {...}}]}

Final answer:
{"action": "answer", "thought": "...", "answer": "..."}
""".strip()

_ROUND_TEMPLATE = PromptTemplate.from_template(
    """========================================
Question:
{question}
========================================

Known information:
{context}

{notices}Available tools:
{tools}

---
{instruction}"""
)

_FIRST_ROUND = (
    "Round {round_index}/{max_iterations}: no document text has been read yet. "
    "Pick the tools and search terms that best cover the question and reply with a use_tool JSON object."
)
_LATER_ROUND = (
    "Round {round_index}/{max_iterations}: if the known information answers the question, "
    "reply with an answer JSON object; otherwise reply with a use_tool JSON object."
)


def build_system_prompt(caller_prompt: str = "") -> str:
    """Caller instructions (persona, language) followed by the loop protocol."""

    caller_prompt = (caller_prompt or "").strip()
    if not caller_prompt:
        return _SYSTEM_PROMPT
    return f"{caller_prompt}\n\n{_SYSTEM_PROMPT}"


def describe_tools(specs: Sequence[ToolSpec]) -> str:
    lines: list[str] = []
    for spec in specs:
        described = spec.describe()
        params = {
            name: {key: value for key, value in schema.items() if key in ("type", "default", "enum", "items")}
            for name, schema in described["parameters"].items()
        }
        lines.append(f"- {spec.name}: {spec.description}")
        lines.append(f"  params: {json.dumps(params, ensure_ascii=False)}")
    return "\n".join(lines) if lines else "(no tools available)"


_ITEM_KEYS = ("results", "matches", "groups", "map")


def _retrieved_items(result: ToolResult) -> list:
    output = result.output if isinstance(result.output, dict) else {}
    for key in _ITEM_KEYS:
        if output.get(key):
            return list(output[key])
    if output.get("text"):
        return [output["text"]]
    return []


def assess_sufficiency(history: Sequence[ToolResult]) -> tuple[str, str]:
    """Rate how much has been retrieved so far.

    Returns `(rating, summary)` where rating is one of `likely_sufficient`,
    `maybe_sufficient` or `insufficient`, and summary reads like
    `"5 items (3 from vector_search, 2 from grep)"`.
    """

    successful = 0
    content_chars = 0
    per_tool: dict[str, int] = {}
    for result in history:
        if not result.ok:
            continue
        items = _retrieved_items(result)
        if not items:
            continue
        successful += 1
        content_chars += len(json.dumps(items, ensure_ascii=False, default=str))
        per_tool[result.tool] = per_tool.get(result.tool, 0) + len(items)

    if successful >= 2 and content_chars > 1500:
        rating = "likely_sufficient"
    elif successful >= 1 and content_chars > 800:
        rating = "maybe_sufficient"
    else:
        rating = "insufficient"
    breakdown = ", ".join(f"{count} from {tool}" for tool, count in per_tool.items())
    summary = f"{sum(per_tool.values())} items ({breakdown})" if per_tool else "0 items"
    return rating, summary


def system_notices(
    history: Sequence[ToolResult],
    round_index: int,
    max_iterations: int,
) -> list[str]:
    """Hints that steer the model away from common loop failures."""

    notices: list[str] = []
    if round_index == 1:
        notices.append("- First round: retrieve document content before answering.")
    if len(history) >= 2:
        last, previous = history[-1], history[-2]
        if last.tool == previous.tool and last.params == previous.params:
            notices.append(
                "- You repeated the same tool call with the same parameters. "
                "Try another tool or other terms, or answer from what you have."
            )
    if history and is_empty_result(history[-1]):
        notices.append(
            "- The last call returned nothing. The information may not be in the document, "
            "or different terms are needed."
        )
    if round_index < max_iterations and history:
        rating, summary = assess_sufficiency(history)
        if rating != "insufficient":
            notices.append(
                f"- Retrieved so far: {summary} over {len(history)} tool calls. "
                "If this already answers the question, answer now."
            )
    if round_index >= max_iterations:
        notices.append(
            f"- FINAL ROUND ({round_index}/{max_iterations}): answer now from the available "
            "information. A partial answer is better than none."
        )
    return notices


def build_round_prompt(
    *,
    question: str,
    context: str,
    specs: Sequence[ToolSpec],
    history: Sequence[ToolResult],
    round_index: int,
    max_iterations: int,
) -> str:
    notices = system_notices(history, round_index, max_iterations)
    notice_block = ("=== SYSTEM NOTICES ===\n" + "\n".join(notices) + "\n\n") if notices else ""
    instruction = (_FIRST_ROUND if round_index == 1 else _LATER_ROUND).format(
        round_index=round_index, max_iterations=max_iterations
    )
    return _ROUND_TEMPLATE.format(
        question=question,
        context=context,
        notices=notice_block,
        tools=describe_tools(specs),
        instruction=instruction,
    )
