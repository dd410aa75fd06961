"""Fault-tolerant conversion of model text into planning decisions."""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from typing import Any

import structlog

from doc_agent.agent.decision import AnswerDecision, Decision, ToolCall, ToolDecision

logger = structlog.get_logger(__name__)

_CODE_BLOCK = re.compile(r"```(?:json)?[ \t]*\n?([\s\S]*?)\n?```", flags=re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")

ParseStrategy = Callable[[str], "Decision | None"]


class DecisionParser:
    """Turns raw model output into a `Decision`; never raises.

    Strategies are tried in order and the first one yielding a structurally
    valid decision wins:

    1. `code_block`: JSON inside a fenced code block.
    2. `raw_object`: the span from the first `{` to the last `}`.
    3. `repaired_object`: the same span after stripping comments, converting
       single-quoted strings and dropping trailing commas.

    When none succeeds the raw text itself becomes the answer.
    """

    FALLBACK = "plain_text"

    def __init__(
        self, strategies: Sequence[tuple[str, ParseStrategy]] | None = None
    ) -> None:
        self.strategies: list[tuple[str, ParseStrategy]] = list(
            strategies
            if strategies is not None
            else [
                ("code_block", parse_code_block),
                ("raw_object", parse_raw_object),
                ("repaired_object", parse_repaired_object),
            ]
        )

    def parse(self, raw_text: str) -> Decision:
        decision, _ = self.parse_with_strategy(raw_text)
        return decision

    def parse_with_strategy(self, raw_text: str) -> tuple[Decision, str]:
        """Parse and also report which strategy produced the decision."""

        text = raw_text if isinstance(raw_text, str) else str(raw_text or "")
        for name, strategy in self.strategies:
            try:
                decision = strategy(text)
            except (ValueError, TypeError, KeyError, RecursionError) as exc:
                logger.debug("decision_strategy_failed", strategy=name, error=str(exc))
                continue
            if decision is not None:
                logger.debug("decision_parsed", strategy=name, action=decision.action)
                return decision, name

        logger.warning("decision_unparseable", length=len(text))
        return AnswerDecision(thought="unparseable", answer=text.strip()), self.FALLBACK


def parse_code_block(text: str) -> Decision | None:
    match = _CODE_BLOCK.search(text)
    if match is None:
        return None
    return normalize_decision(json.loads(match.group(1).strip()))


def parse_raw_object(text: str) -> Decision | None:
    span = _object_span(text)
    if span is None:
        return None
    return normalize_decision(json.loads(span))


def parse_repaired_object(text: str) -> Decision | None:
    span = _object_span(text)
    if span is None:
        return None
    return normalize_decision(json.loads(repair_json(span)))


def repair_json(text: str) -> str:
    """Apply the deterministic repairs for near-JSON model output."""

    return _TRAILING_COMMA.sub(r"\1", _rewrite_outside_strings(text))


def normalize_decision(parsed: Any) -> Decision:
    """Validate a decoded JSON value and build the matching decision.

    Raises `ValueError` when the object is not a usable decision, which makes
    the calling strategy fail without failing the whole parse.
    """

    if not isinstance(parsed, dict):
        raise ValueError("decision is not a JSON object")
    action = parsed.get("action")
    if not action:
        raise ValueError("decision is missing the action field")

    thought = _as_text(parsed.get("thought"))
    if action == "answer":
        return AnswerDecision(thought=thought, answer=_as_text(parsed.get("answer")))

    if action == "use_tool":
        tool_calls = parsed.get("tool_calls")
        if isinstance(tool_calls, list):
            calls = tuple(_tool_call(item) for item in tool_calls)
            if not calls:
                raise ValueError("tool_calls must not be empty")
            return ToolDecision(thought=thought, calls=calls, parallel=True)
        if parsed.get("tool"):
            return ToolDecision(thought=thought, calls=(_tool_call(parsed),), parallel=False)
        raise ValueError("use_tool requires tool or tool_calls")

    raise ValueError(f"unknown action: {action!r}")


def _tool_call(item: Any) -> ToolCall:
    if not isinstance(item, dict):
        raise ValueError("tool call is not an object")
    tool = item.get("tool")
    if not isinstance(tool, str) or not tool.strip():
        raise ValueError("tool call is missing the tool name")
    params = item.get("params") or {}
    if not isinstance(params, dict):
        raise ValueError("tool params must be an object")
    return ToolCall(tool=tool.strip(), params=params)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _object_span(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    return text[start : end + 1]


def _rewrite_outside_strings(text: str) -> str:
    # Single pass that tracks double-quoted strings so that `//` in URLs and
    # apostrophes inside proper strings survive.
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            j = i + 1
            while j < n and text[j] != '"':
                j += 2 if text[j] == "\\" else 1
            out.append(text[i : j + 1])
            i = j + 1
        elif ch == "'":
            j = i + 1
            body: list[str] = []
            while j < n and text[j] != "'":
                if text[j] == "\\" and j + 1 < n:
                    body.append("'" if text[j + 1] == "'" else text[j : j + 2])
                    j += 2
                    continue
                body.append('\\"' if text[j] == '"' else text[j])
                j += 1
            out.append('"' + "".join(body) + '"')
            i = j + 1
        elif text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline < 0 else newline
        elif text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = n if close < 0 else close + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)
