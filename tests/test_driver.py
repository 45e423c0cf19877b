import asyncio
from typing import Any

import pytest

from learning_assistant.db import Database
from learning_assistant.llm.base import LLMProvider, UpstreamModelError
from learning_assistant.models import (
    STATE_INPUT_AVAILABLE,
    LLMStreamChunk,
    LLMToolCall,
    Message,
    TextPart,
    ToolResultPart,
)
from learning_assistant.pipeline.driver import GenerationDriver
from learning_assistant.pipeline.events import CollectingSink
from learning_assistant.tools.base import Tool
from learning_assistant.tools.registry import ToolRegistry


class ScriptedProvider(LLMProvider):
    """Replays one scripted list of chunks per call; the last script repeats."""

    def __init__(self, *scripts: list[LLMStreamChunk]) -> None:
        self._scripts = list(scripts)
        self.requests: list[list[dict[str, Any]]] = []

    async def stream(self, messages, tools=None):  # noqa: ANN001, ANN201
        self.requests.append(messages)
        index = min(len(self.requests) - 1, len(self._scripts) - 1)
        for chunk in self._scripts[index]:
            yield chunk


class FailingProvider(LLMProvider):
    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    async def stream(self, messages, tools=None):  # noqa: ANN001, ANN201
        raise self._exc
        yield  # pragma: no cover


class EchoTool(Tool):
    name = "echo"
    description = "Echo text back."
    parameters_schema: dict[str, Any] = {"type": "object", "properties": {"text": {"type": "string"}}}

    async def run(self, **kwargs: Any) -> dict[str, str]:
        return {"echo": kwargs.get("text", "")}


class FailingTool(Tool):
    name = "explode"
    description = "Always fails."
    parameters_schema: dict[str, Any] = {"type": "object", "properties": {}}

    async def run(self, **kwargs: Any) -> Any:
        raise RuntimeError("boom")


class ConfirmTool(Tool):
    name = "confirmMe"
    description = "Needs approval."
    parameters_schema: dict[str, Any] = {"type": "object", "properties": {}}
    requires_confirmation = True

    async def run(self, **kwargs: Any) -> str:
        return "done"


def _text(text: str) -> list[LLMStreamChunk]:
    return [LLMStreamChunk(text=text), LLMStreamChunk(finish_reason="stop")]


def _tool(name: str, call_id: str | None, **arguments: Any) -> list[LLMStreamChunk]:
    return [
        LLMStreamChunk(
            tool_calls=[LLMToolCall(name=name, arguments=arguments, call_id=call_id)],
            finish_reason="tool_calls",
        )
    ]


@pytest.fixture
def registry(tmp_path):
    db = Database(tmp_path / "assistant.db")
    db.initialize()
    registry = ToolRegistry(db)
    registry.register(EchoTool())
    registry.register(FailingTool())
    registry.register(ConfirmTool())
    return registry


@pytest.mark.asyncio
async def test_text_only_answer(registry):
    llm = ScriptedProvider([LLMStreamChunk(text="Hel"), LLMStreamChunk(text="lo", finish_reason="stop")])
    messages = [Message.user("hi")]
    sink = CollectingSink()

    result = await GenerationDriver(llm, registry).run(messages, "system", "conv-1", sink)

    assert [e.type for e in sink.events] == ["text-delta", "text-delta", "finish"]
    assert messages[-1].role == "assistant"
    assert messages[-1].parts == [TextPart("Hello")]
    assert result.steps == 1
    assert result.finish_reason == "stop"
    assert llm.requests[0][0] == {"role": "system", "content": "system"}


@pytest.mark.asyncio
async def test_tool_round_trip_then_answer(registry):
    llm = ScriptedProvider(_tool("echo", "c1", text="ping"), _text("It said ping."))
    messages = [Message.user("echo ping")]
    sink = CollectingSink()

    result = await GenerationDriver(llm, registry).run(messages, "system", "conv-1", sink)

    assert [e.type for e in sink.events] == ["tool-call", "tool-result", "text-delta", "finish"]
    assert result.steps == 2
    assistant = messages[-1]
    assert assistant.text() == "It said ping."
    assert assistant.result_for("c1").output == {"echo": "ping"}

    second_request = llm.requests[1]
    assert second_request[-2]["tool_calls"][0]["id"] == "c1"
    assert second_request[-1]["role"] == "tool"
    assert "ping" in second_request[-1]["content"]


@pytest.mark.asyncio
async def test_step_bound_limits_model_calls(registry):
    llm = ScriptedProvider(_tool("echo", None, text="again"))
    messages = [Message.user("loop forever")]
    sink = CollectingSink()

    result = await GenerationDriver(llm, registry, max_steps=3).run(messages, "system", "conv-1", sink)

    assert len(llm.requests) == 3
    assert result.steps == 3
    assert result.finish_reason == "tool-calls"
    assert messages[-1].unresolved_tool_calls() == []
    assert sink.events[-1].type == "finish"


@pytest.mark.asyncio
async def test_tool_error_is_visible_to_model_and_turn_continues(registry):
    llm = ScriptedProvider(_tool("explode", "c1"), _text("The tool failed."))
    messages = [Message.user("try it")]
    sink = CollectingSink()

    result = await GenerationDriver(llm, registry).run(messages, "system", "conv-1", sink)

    assert result.finish_reason == "stop"
    tool_results = sink.of_type("tool-result")
    assert tool_results[0].is_error
    assert "boom" in llm.requests[1][-1]["content"]


@pytest.mark.asyncio
async def test_confirmation_required_call_ends_the_turn(registry):
    llm = ScriptedProvider(_tool("confirmMe", "c1"), _text("never reached"))
    messages = [Message.user("do the risky thing")]
    sink = CollectingSink()

    result = await GenerationDriver(llm, registry).run(messages, "system", "conv-1", sink)

    assert len(llm.requests) == 1
    assert result.finish_reason == "tool-calls"
    (call,) = messages[-1].tool_calls()
    assert call.state == STATE_INPUT_AVAILABLE
    assert [e.type for e in sink.events] == ["tool-call", "finish"]


@pytest.mark.asyncio
async def test_continues_trailing_assistant_message(registry):
    assistant = Message.create("assistant", [TextPart("Let me check. ")])
    messages = [Message.user("hi"), assistant]
    llm = ScriptedProvider(_text("Done."))

    await GenerationDriver(llm, registry).run(messages, "system", "conv-1", CollectingSink())

    assert len(messages) == 2
    assert assistant.text() == "Let me check. Done."


@pytest.mark.asyncio
async def test_upstream_error_propagates(registry):
    llm = FailingProvider(UpstreamModelError("401 unauthorized"))
    with pytest.raises(UpstreamModelError, match="401"):
        await GenerationDriver(llm, registry).run([Message.user("hi")], "system", "conv-1", CollectingSink())


@pytest.mark.asyncio
async def test_unexpected_provider_error_is_wrapped(registry):
    llm = FailingProvider(ConnectionError("reset by peer"))
    with pytest.raises(UpstreamModelError, match="reset by peer"):
        await GenerationDriver(llm, registry).run([Message.user("hi")], "system", "conv-1", CollectingSink())


@pytest.mark.asyncio
async def test_abort_before_start_skips_model(registry):
    llm = ScriptedProvider(_text("unused"))
    abort = asyncio.Event()
    abort.set()
    messages = [Message.user("hi")]
    sink = CollectingSink()

    result = await GenerationDriver(llm, registry).run(messages, "system", "conv-1", sink, abort)

    assert llm.requests == []
    assert result.finish_reason == "abort"
    assert result.message is None
    assert len(messages) == 1
    assert [e.type for e in sink.events] == ["finish"]


@pytest.mark.asyncio
async def test_generated_call_id_when_provider_omits_one(registry):
    llm = ScriptedProvider(
        [LLMStreamChunk(tool_calls=[LLMToolCall(name="echo", arguments={"text": "x"})], finish_reason="tool_calls")],
        _text("ok"),
    )
    messages = [Message.user("hi")]

    await GenerationDriver(llm, registry).run(messages, "system", "conv-1", CollectingSink())

    (call,) = messages[-1].tool_calls()
    assert call.tool_call_id
    assert isinstance(messages[-1].result_for(call.tool_call_id), ToolResultPart)


def test_rejects_non_positive_step_bound(registry):
    with pytest.raises(ValueError):
        GenerationDriver(ScriptedProvider(_text("x")), registry, max_steps=0)


class AbortMidStreamProvider(LLMProvider):
    """Sets the abort flag after its first chunk and records whether it was closed."""

    def __init__(self, abort: asyncio.Event) -> None:
        self._abort = abort
        self.requests = 0
        self.closed = False

    async def stream(self, messages, tools=None):  # noqa: ANN001, ANN201
        self.requests += 1
        try:
            yield LLMStreamChunk(text="Hel")
            self._abort.set()
            yield LLMStreamChunk(text="lo")
            yield LLMStreamChunk(tool_calls=[LLMToolCall(name="echo", arguments={}, call_id="c1")])
            yield LLMStreamChunk(finish_reason="stop")
        finally:
            self.closed = True


class AbortingTool(Tool):
    name = "slow"
    description = "Sets the abort flag while running."
    parameters_schema: dict[str, Any] = {"type": "object", "properties": {}}

    def __init__(self, abort: asyncio.Event) -> None:
        self._abort = abort

    async def run(self, **kwargs: Any) -> str:
        self._abort.set()
        return "finished anyway"


@pytest.mark.asyncio
async def test_abort_during_model_stream_stops_streaming(registry):
    abort = asyncio.Event()
    llm = AbortMidStreamProvider(abort)
    messages = [Message.user("hi")]
    sink = CollectingSink()

    result = await GenerationDriver(llm, registry).run(messages, "system", "conv-1", sink, abort)

    assert result.finish_reason == "abort"
    assert llm.requests == 1
    assert llm.closed is True
    assert messages[-1].parts == [TextPart("Hel")]
    assert [e.type for e in sink.events] == ["text-delta", "finish"]
    assert sink.events[-1].finish_reason == "abort"


@pytest.mark.asyncio
async def test_abort_during_tool_execution_discards_results(tmp_path):
    db = Database(tmp_path / "assistant.db")
    db.initialize()
    abort = asyncio.Event()
    registry = ToolRegistry(db)
    registry.register(AbortingTool(abort))
    llm = ScriptedProvider(_tool("slow", "c1"), _text("never reached"))
    messages = [Message.user("go")]
    sink = CollectingSink()

    result = await GenerationDriver(llm, registry).run(messages, "system", "conv-1", sink, abort)

    assert result.finish_reason == "abort"
    assert len(llm.requests) == 1
    (call,) = messages[-1].tool_calls()
    assert call.state == STATE_INPUT_AVAILABLE
    assert messages[-1].result_for("c1") is None
    assert [e.type for e in sink.events] == ["tool-call", "finish"]
