import pytest
from pydantic import ValidationError
from pydantic import BaseModel

from doc_agent.agent.decision import ToolCall
from doc_agent.agent.registry import ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    text: str


@pytest.mark.asyncio
async def test_tool_observer_captures_latency_payload_and_errors() -> None:
    registry = ToolRegistry()

    def _handler(data: EchoInput) -> str:
        return data.text.upper()

    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=_handler,
        )
    )

    observed = []
    registry.set_observer(observed.append)
    result = await registry.run(ToolCall("echo", {"text": "hello"}))
    await registry.run(ToolCall("nope", {}))
    registry.set_observer(None)

    assert result.output == "HELLO"
    assert len(observed) == 2
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert observed[0].output_preview == "HELLO"
    assert observed[0].latency_ms >= 0.0
    assert observed[0].error is None
    assert observed[1].error == "Unknown tool: nope"


def _echo_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=lambda data: data.text.upper(),
        )
    )
    return registry


@pytest.mark.asyncio
async def test_raising_observer_does_not_change_tool_outcome() -> None:
    registry = _echo_registry()

    def _broken(trace) -> None:
        raise RuntimeError("observer broke")

    registry.set_observer(_broken)
    ok = await registry.run(ToolCall("echo", {"text": "hi"}))
    unknown = await registry.run(ToolCall("nope", {}))

    assert ok.ok and ok.output == "HI"
    assert unknown.error == "Unknown tool: nope"
    assert await registry.execute("echo", {"text": "again"}) == "AGAIN"


@pytest.mark.asyncio
async def test_direct_execute_is_observed_on_success_and_failure() -> None:
    registry = _echo_registry()
    observed = []
    registry.set_observer(observed.append)

    assert await registry.execute("echo", {"text": "hi"}) == "HI"
    with pytest.raises(ValidationError):
        await registry.execute("echo", {})

    assert [trace.name for trace in observed] == ["echo", "echo"]
    assert observed[0].error is None and observed[0].output_preview == "HI"
    assert observed[1].error.startswith("Invalid parameters for echo")
