import asyncio
from typing import Any

import pytest

from learning_assistant.db import Database
from learning_assistant.models import (
    APPROVED,
    DENIED,
    STATE_INPUT_AVAILABLE,
    STATE_OUTPUT_AVAILABLE,
    STATE_OUTPUT_ERROR,
    Message,
    ToolCallPart,
    ToolResultPart,
)
from learning_assistant.pipeline.events import CollectingSink
from learning_assistant.pipeline.interceptor import DENIED_MESSAGE, ToolCallInterceptor
from learning_assistant.tools.base import Tool
from learning_assistant.tools.registry import ToolRegistry


class EchoTool(Tool):
    name = "echo"
    description = "Echo text back."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self) -> None:
        self.calls = 0

    async def run(self, **kwargs: Any) -> dict[str, str]:
        self.calls += 1
        return {"echo": kwargs["text"]}


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

    def __init__(self) -> None:
        self.calls = 0

    async def run(self, **kwargs: Any) -> str:
        self.calls += 1
        return "confirmed and done"


class AbortingTool(Tool):
    """Simulates cancellation arriving while the tool is in flight."""

    name = "slow"
    description = "Sets the abort flag while running."
    parameters_schema: dict[str, Any] = {"type": "object", "properties": {}}

    def __init__(self, abort: asyncio.Event) -> None:
        self._abort = abort

    async def run(self, **kwargs: Any) -> str:
        self._abort.set()
        return "finished anyway"


@pytest.fixture
def db(tmp_path):
    db = Database(tmp_path / "assistant.db")
    db.initialize()
    return db


@pytest.fixture
def registry(db):
    registry = ToolRegistry(db)
    registry.register(EchoTool())
    registry.register(FailingTool())
    registry.register(ConfirmTool())
    return registry


def _assistant(*calls: ToolCallPart) -> Message:
    return Message.create("assistant", list(calls))


def _results(message: Message) -> list[ToolResultPart]:
    return [part for part in message.parts if isinstance(part, ToolResultPart)]


@pytest.mark.asyncio
async def test_auto_execute_call_gets_result_and_event(registry):
    call = ToolCallPart(tool_call_id="c1", tool_name="echo", input={"text": "hi"})
    messages = [Message.user("echo hi"), _assistant(call)]
    sink = CollectingSink()

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", sink)

    results = _results(messages[-1])
    assert len(results) == 1
    assert results[0].output == {"echo": "hi"}
    assert results[0].is_error is False
    assert call.state == STATE_OUTPUT_AVAILABLE
    assert [e.type for e in sink.events] == ["tool-result"]
    assert sink.events[0].tool_call_id == "c1"


@pytest.mark.asyncio
async def test_failure_is_encoded_as_error_result(registry):
    call = ToolCallPart(tool_call_id="c1", tool_name="explode")
    messages = [_assistant(call)]

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink())

    (result,) = _results(messages[-1])
    assert result.is_error is True
    assert result.output == {"error": "boom"}
    assert call.state == STATE_OUTPUT_ERROR


@pytest.mark.asyncio
async def test_exactly_one_result_per_auto_call(registry):
    calls = [
        ToolCallPart(tool_call_id="a", tool_name="echo", input={"text": "1"}),
        ToolCallPart(tool_call_id="b", tool_name="explode"),
        ToolCallPart(tool_call_id="c", tool_name="echo", input={}),
    ]
    messages = [_assistant(*calls)]

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink())

    results = _results(messages[-1])
    assert [r.tool_call_id for r in results] == ["a", "b", "c"]
    assert [r.is_error for r in results] == [False, True, True]


@pytest.mark.asyncio
async def test_confirmation_required_call_stays_pending(registry):
    call = ToolCallPart(tool_call_id="c1", tool_name="confirmMe")
    messages = [_assistant(call)]
    sink = CollectingSink()

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", sink)

    assert call.state == STATE_INPUT_AVAILABLE
    assert _results(messages[-1]) == []
    assert sink.events == []
    assert registry.get("confirmMe").calls == 0


@pytest.mark.asyncio
async def test_approved_call_runs(registry):
    call = ToolCallPart(tool_call_id="c1", tool_name="confirmMe", approval=APPROVED)
    messages = [_assistant(call)]

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink())

    assert _results(messages[-1])[0].output == "confirmed and done"
    assert registry.get("confirmMe").calls == 1


@pytest.mark.asyncio
async def test_denied_call_gets_denial_error(registry):
    call = ToolCallPart(tool_call_id="c1", tool_name="confirmMe", approval=DENIED)
    messages = [_assistant(call)]

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink())

    (result,) = _results(messages[-1])
    assert result.output == {"error": DENIED_MESSAGE}
    assert call.state == STATE_OUTPUT_ERROR
    assert registry.get("confirmMe").calls == 0


@pytest.mark.asyncio
async def test_resolve_is_idempotent(registry):
    messages = [_assistant(ToolCallPart(tool_call_id="c1", tool_name="echo", input={"text": "x"}))]
    interceptor = ToolCallInterceptor(registry)

    await interceptor.resolve(messages, "conv-1", CollectingSink())
    parts_after_first = list(messages[-1].parts)
    sink = CollectingSink()
    await interceptor.resolve(messages, "conv-1", sink)

    assert messages[-1].parts == parts_after_first
    assert sink.events == []
    assert registry.get("echo").calls == 1


@pytest.mark.asyncio
async def test_unknown_tool_gets_error_result(registry):
    messages = [_assistant(ToolCallPart(tool_call_id="c1", tool_name="nope"))]

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink())

    (result,) = _results(messages[-1])
    assert result.is_error
    assert "Unknown tool: nope" in result.output["error"]


@pytest.mark.asyncio
async def test_trailing_user_message_is_left_alone(registry):
    user = Message.user("hello")
    sink = CollectingSink()
    result = await ToolCallInterceptor(registry).resolve([user], "conv-1", sink)
    assert result == [user]
    assert sink.events == []


@pytest.mark.asyncio
async def test_abort_before_execution_skips_tools(registry):
    abort = asyncio.Event()
    abort.set()
    messages = [_assistant(ToolCallPart(tool_call_id="c1", tool_name="echo", input={"text": "x"}))]

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink(), abort)

    assert _results(messages[-1]) == []
    assert registry.get("echo").calls == 0


@pytest.mark.asyncio
async def test_in_flight_result_is_discarded_after_abort(db):
    abort = asyncio.Event()
    registry = ToolRegistry(db)
    registry.register(AbortingTool(abort))
    call = ToolCallPart(tool_call_id="c1", tool_name="slow")
    messages = [_assistant(call)]
    sink = CollectingSink()

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", sink, abort)

    assert _results(messages[-1]) == []
    assert call.state == STATE_INPUT_AVAILABLE
    assert sink.events == []


@pytest.mark.asyncio
async def test_concurrent_mode_keeps_emission_order(registry):
    calls = [
        ToolCallPart(tool_call_id=str(i), tool_name="echo", input={"text": str(i)})
        for i in range(4)
    ]
    messages = [_assistant(*calls)]

    await ToolCallInterceptor(registry, concurrent=True).resolve(messages, "conv-1", CollectingSink())

    assert [r.output["echo"] for r in _results(messages[-1])] == ["0", "1", "2", "3"]


class DelayedTool(Tool):
    name = "delayed"
    description = "Sleeps, then returns its label."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"label": {"type": "string"}, "delay": {"type": "number"}},
        "required": ["label", "delay"],
    }

    def __init__(self) -> None:
        self.log: list[tuple[str, str]] = []

    async def run(self, **kwargs: Any) -> str:
        self.log.append(("start", kwargs["label"]))
        await asyncio.sleep(kwargs["delay"])
        self.log.append(("end", kwargs["label"]))
        return kwargs["label"]


@pytest.mark.asyncio
async def test_concurrent_calls_overlap_and_results_keep_emission_order(db):
    tool = DelayedTool()
    registry = ToolRegistry(db)
    registry.register(tool)
    calls = [
        ToolCallPart(tool_call_id="slow", tool_name="delayed", input={"label": "slow", "delay": 0.05}),
        ToolCallPart(tool_call_id="fast", tool_name="delayed", input={"label": "fast", "delay": 0}),
    ]
    messages = [_assistant(*calls)]
    sink = CollectingSink()

    await ToolCallInterceptor(registry, concurrent=True).resolve(messages, "conv-1", sink)

    assert tool.log == [("start", "slow"), ("start", "fast"), ("end", "fast"), ("end", "slow")]
    assert [r.output for r in _results(messages[-1])] == ["slow", "fast"]
    assert [e.tool_call_id for e in sink.events] == ["slow", "fast"]


@pytest.mark.asyncio
async def test_sequential_calls_do_not_overlap(db):
    tool = DelayedTool()
    registry = ToolRegistry(db)
    registry.register(tool)
    calls = [
        ToolCallPart(tool_call_id="a", tool_name="delayed", input={"label": "a", "delay": 0.01}),
        ToolCallPart(tool_call_id="b", tool_name="delayed", input={"label": "b", "delay": 0}),
    ]

    await ToolCallInterceptor(registry).resolve([_assistant(*calls)], "conv-1", CollectingSink())

    assert tool.log == [("start", "a"), ("end", "a"), ("start", "b"), ("end", "b")]


@pytest.mark.asyncio
async def test_executions_are_logged(db, registry):
    messages = [_assistant(ToolCallPart(tool_call_id="c1", tool_name="explode"))]

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink())

    (row,) = db.list_tool_executions("conv-1")
    assert row["tool_name"] == "explode"
    assert row["succeeded"] == 0


@pytest.mark.asyncio
async def test_configured_confirmation_keeps_call_pending(db):
    tool = EchoTool()
    registry = ToolRegistry(db, confirm_tools=frozenset({"echo"}))
    registry.register(tool)
    call = ToolCallPart(tool_call_id="c1", tool_name="echo", input={"text": "x"})
    messages = [_assistant(call)]

    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink())

    assert call.state == STATE_INPUT_AVAILABLE
    assert tool.calls == 0

    call.approval = APPROVED
    await ToolCallInterceptor(registry).resolve(messages, "conv-1", CollectingSink())

    assert _results(messages[-1])[0].output == {"echo": "x"}
