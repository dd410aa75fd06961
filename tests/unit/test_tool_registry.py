import asyncio

import pytest
from pydantic import BaseModel, Field, ValidationError

from doc_agent.agent.decision import ToolCall
from doc_agent.agent.registry import ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    value: int = Field(ge=1)


def _echo_registry() -> ToolRegistry:
    registry = ToolRegistry()

    def _handler(data: EchoInput) -> str:
        return str(data.value)

    registry.register(
        ToolSpec(
            name="echo",
            description="echo positive int",
            args_schema=EchoInput,
            handler=_handler,
        )
    )
    return registry


@pytest.mark.asyncio
async def test_tool_registry_validation() -> None:
    registry = _echo_registry()

    assert await registry.execute("echo", {"value": 3}) == "3"

    with pytest.raises(ValidationError):
        await registry.execute("echo", {"value": 0})
    with pytest.raises(KeyError):
        await registry.execute("missing", {})


def test_duplicate_tool_registration_rejected() -> None:
    registry = _echo_registry()

    with pytest.raises(ValueError):
        registry.register(registry.specs()[0])


@pytest.mark.asyncio
async def test_run_reports_failures_as_tool_results() -> None:
    registry = _echo_registry()

    ok = await registry.run(ToolCall("echo", {"value": 2}))
    unknown = await registry.run(ToolCall("teleport", {"to": "mars"}))
    invalid = await registry.run(ToolCall("echo", {"value": -1}))

    assert ok.ok and ok.output == "2"
    assert unknown.error == "Unknown tool: teleport"
    assert unknown.output is None
    assert unknown.params == {"to": "mars"}
    assert invalid.error is not None and invalid.error.startswith("Invalid parameters for echo")


@pytest.mark.asyncio
async def test_async_handlers_and_raised_errors() -> None:
    registry = ToolRegistry()

    class QueryInput(BaseModel):
        query: str

    async def _slow(data: QueryInput) -> dict[str, str]:
        await asyncio.sleep(0)
        return {"echo": data.query}

    def _broken(data: QueryInput) -> str:
        raise RuntimeError("index offline")

    registry.register(ToolSpec(name="slow", description="", args_schema=QueryInput, handler=_slow))
    registry.register(ToolSpec(name="broken", description="", args_schema=QueryInput, handler=_broken))

    slow = await registry.run(ToolCall("slow", {"query": "q"}))
    broken = await registry.run(ToolCall("broken", {"query": "q"}))

    assert slow.output == {"echo": "q"}
    assert broken.error == "RuntimeError: index offline"


def test_available_filters_by_document_state() -> None:
    registry = ToolRegistry()
    for name, tags in (("groups_tool", ["groups"]), ("vector_tool", ["chunks", "vectors"]), ("plain", [])):
        registry.register(
            ToolSpec(name=name, description="", args_schema=EchoInput, handler=str, tags=tags)
        )

    names = [
        spec.name
        for spec in registry.available(has_groups=True, has_chunks=True, has_vectors=False)
    ]

    assert names == ["groups_tool", "plain"]


def test_describe_exposes_parameter_schema() -> None:
    described = _echo_registry().specs()[0].describe()

    assert described["name"] == "echo"
    assert described["parameters"]["value"]["type"] == "integer"
    assert described["required"] == ["value"]
