"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def _strings(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True, slots=True)
class GroupStructure:
    """Structural landmarks detected inside a semantic group."""

    figures: tuple[str, ...] = ()
    tables: tuple[str, ...] = ()
    sections: tuple[str, ...] = ()
    key_points: tuple[str, ...] = ()
    formulas: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GroupStructure":
        data = data or {}
        return cls(
            figures=_strings(data.get("figures")),
            tables=_strings(data.get("tables")),
            sections=_strings(data.get("sections")),
            key_points=_strings(_pick(data, "key_points", "keyPoints")),
            formulas=_strings(data.get("formulas")),
        )

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "sections": list(self.sections),
            "figures": list(self.figures),
            "tables": list(self.tables),
            "formulas": list(self.formulas),
            "key_points": list(self.key_points),
        }


@dataclass(frozen=True, slots=True)
class SemanticGroup:
    """A pre-clustered region of a document, produced by the ingest stage."""

    group_id: str
    char_count: int = 0
    keywords: tuple[str, ...] = ()
    summary: str = ""
    digest: str = ""
    full_text: str | None = None
    structure: GroupStructure = field(default_factory=GroupStructure)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SemanticGroup":
        """Build a group from the upstream payload (camelCase or snake_case)."""

        group_id = _pick(data, "group_id", "groupId")
        if group_id is None:
            raise ValueError("semantic group is missing groupId")
        full_text = _pick(data, "full_text", "fullText")
        return cls(
            group_id=str(group_id),
            char_count=int(_pick(data, "char_count", "charCount", default=0)),
            keywords=_strings(data.get("keywords")),
            summary=str(data.get("summary") or ""),
            digest=str(data.get("digest") or ""),
            full_text=str(full_text) if full_text is not None else None,
            structure=GroupStructure.from_dict(data.get("structure")),
        )


@dataclass(frozen=True, slots=True)
class Chunk:
    """A small span of raw document text with its embedding vector."""

    chunk_id: str
    text: str
    vector: tuple[float, ...] = ()
    belongs_to_group: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        chunk_id = _pick(data, "chunk_id", "chunkId", "id")
        if chunk_id is None:
            raise ValueError("chunk is missing chunkId")
        group = _pick(data, "belongs_to_group", "belongsToGroup", "groupId")
        vector = _pick(data, "vector", "embedding", default=())
        return cls(
            chunk_id=str(chunk_id),
            text=str(data.get("text") or ""),
            vector=tuple(float(value) for value in vector),
            belongs_to_group=str(group) if group is not None else None,
        )


@dataclass(slots=True)
class DocumentOverview:
    """Caller-supplied facts about the document being discussed."""

    name: str = "unknown"
    page_count: int | None = None
    language: str | None = None
    gist: str = ""


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of one tool invocation. `error` set means the call failed."""

    tool: str
    params: dict[str, Any]
    output: Any = None
    error: str | None = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "tool": self.tool,
            "params": self.params,
            "output": self.output,
            "latency_ms": self.latency_ms,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class TokenBudget:
    """Point-in-time view of the token allowance."""

    total_budget: int
    context_tokens: int
    used_tokens: int


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    error: str | None = None


class EventType(str, Enum):
    THOUGHT = "thought"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ANSWER = "answer"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class AgentEvent:
    """One item of the event stream produced by a run."""

    type: EventType
    round_index: int
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "round": self.round_index, **self.data}
