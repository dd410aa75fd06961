"""Planning decisions and the per-round audit record."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from doc_agent.types import ToolResult


@dataclass(frozen=True, slots=True)
class ToolCall:
    tool: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"tool": self.tool, "params": self.params}


@dataclass(frozen=True, slots=True)
class AnswerDecision:
    """Terminal decision: the model is ready to answer."""

    thought: str
    answer: str

    action: Literal["answer"] = field(default="answer", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "thought": self.thought, "answer": self.answer}


@dataclass(frozen=True, slots=True)
class ToolDecision:
    """The model wants one or more retrieval tools executed.

    A single call is `parallel=False` with exactly one entry in `calls`; the
    `tool_calls` form is `parallel=True` with at least one entry.
    """

    thought: str
    calls: tuple[ToolCall, ...]
    parallel: bool = False

    action: Literal["use_tool"] = field(default="use_tool", init=False)

    def __post_init__(self) -> None:
        if not self.calls:
            raise ValueError("use_tool decision requires at least one tool call")
        if not self.parallel and len(self.calls) != 1:
            raise ValueError("a non-parallel use_tool decision carries exactly one call")

    def to_dict(self) -> dict[str, Any]:
        if self.parallel:
            return {
                "action": self.action,
                "thought": self.thought,
                "parallel": True,
                "tool_calls": [call.to_dict() for call in self.calls],
            }
        call = self.calls[0]
        return {
            "action": self.action,
            "thought": self.thought,
            "parallel": False,
            "tool": call.tool,
            "params": call.params,
        }


Decision = Union[AnswerDecision, ToolDecision]


@dataclass(frozen=True, slots=True)
class IterationRecord:
    """What happened in one planning round. Appended once, never mutated."""

    round_index: int
    decision: Decision
    tool_results: tuple[ToolResult, ...] = ()
    tokens_consumed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_index": self.round_index,
            "decision": self.decision.to_dict(),
            "tool_results": [result.to_dict() for result in self.tool_results],
            "tokens_consumed": self.tokens_consumed,
        }
