"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import inspect
import json
from collections.abc import Callable
from time import perf_counter
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from doc_agent.agent.decision import ToolCall
from doc_agent.types import ToolResult, ToolTrace

logger = structlog.get_logger(__name__)

# Tags that make a tool depend on parts of the index being present.
REQUIRES_GROUPS = "groups"
REQUIRES_CHUNKS = "chunks"
REQUIRES_VECTORS = "vectors"


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], Any]
    tags: list[str] = Field(default_factory=list)

    async def invoke(self, payload: dict[str, Any]) -> Any:
        data = self.args_schema.model_validate(payload)
        output = self.handler(data)
        if inspect.isawaitable(output):
            output = await output
        return output

    def describe(self) -> dict[str, Any]:
        schema = self.args_schema.model_json_schema()
        return {
            "name": self.name,
            "description": self.description,
            "parameters": schema.get("properties", {}),
            "required": schema.get("required", []),
        }


class ToolRegistry:
    """Stores tool specs and executes them on behalf of the engine."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def available(
        self,
        *,
        has_groups: bool = True,
        has_chunks: bool = True,
        has_vectors: bool = True,
    ) -> list[ToolSpec]:
        """Specs usable for a document in the given state."""

        present = {
            REQUIRES_GROUPS: has_groups,
            REQUIRES_CHUNKS: has_chunks,
            REQUIRES_VECTORS: has_vectors,
        }
        return [
            spec
            for spec in self._tools.values()
            if all(present.get(tag, True) for tag in spec.tags)
        ]

    async def execute(self, name: str, payload: dict[str, Any]) -> Any:
        """Run a tool and return its raw output; errors propagate."""

        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return await self._execute_spec(spec, payload)

    async def run(self, call: ToolCall) -> ToolResult:
        """Run a tool call for the engine. Never raises.

        Unknown tools, invalid parameters and handler exceptions are reported
        through `ToolResult.error` so the loop can carry on.
        """

        start = perf_counter()
        output: Any = None
        error: str | None = None
        spec = self._tools.get(call.tool)
        if spec is None:
            error = f"Unknown tool: {call.tool}"
            self._notify(call.tool, call.params, None, error, (perf_counter() - start) * 1000.0)
        else:
            try:
                output = await self._execute_spec(spec, call.params)
            except Exception as exc:
                error = _error_message(call.tool, exc)
        latency_ms = (perf_counter() - start) * 1000.0

        if error is None:
            logger.info("tool_executed", tool=call.tool, latency_ms=round(latency_ms, 2))
        else:
            logger.warning("tool_failed", tool=call.tool, error=error)
        return ToolResult(
            tool=call.tool,
            params=call.params,
            output=output,
            error=error,
            latency_ms=latency_ms,
        )

    async def _execute_spec(self, spec: ToolSpec, payload: dict[str, Any]) -> Any:
        start = perf_counter()
        try:
            output = await spec.invoke(payload)
        except Exception as exc:
            self._notify(
                spec.name, payload, None, _error_message(spec.name, exc), (perf_counter() - start) * 1000.0
            )
            raise
        self._notify(spec.name, payload, output, None, (perf_counter() - start) * 1000.0)
        return output

    def _notify(
        self,
        name: str,
        payload: dict[str, Any],
        output: Any,
        error: str | None,
        latency_ms: float,
    ) -> None:
        if self._observer is None:
            return
        trace = ToolTrace(
            name=name,
            input_payload=payload,
            output_preview=_preview(output),
            latency_ms=latency_ms,
            error=error,
        )
        try:
            self._observer(trace)
        except Exception:
            # A failing observer does not change the tool outcome.
            logger.exception("tool_observer_failed", tool=name)


def _error_message(name: str, exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return f"Invalid parameters for {name}: {exc.errors(include_url=False)}"
    return f"{type(exc).__name__}: {exc}"


def _preview(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output[:320]
    return json.dumps(output, ensure_ascii=False, default=str)[:320]
