"""Resolution of pending tool calls on the trailing assistant message."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from learning_assistant.models import (
    APPROVED,
    DENIED,
    STATE_INPUT_AVAILABLE,
    STATE_OUTPUT_AVAILABLE,
    STATE_OUTPUT_ERROR,
    Message,
    StreamEvent,
    ToolCallPart,
    ToolResultPart,
)
from learning_assistant.pipeline.events import EventSink
from learning_assistant.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

DENIED_MESSAGE = "Error: User denied access to tool execution"


class ToolCallInterceptor:
    """Executes auto-execute and approved tool calls and splices results into the message.

    Calls to tools that need confirmation and carry no decision stay at
    ``input-available``. Executor failures become error results; nothing is
    retried and nothing propagates out of ``resolve``.
    """

    def __init__(self, registry: ToolRegistry, concurrent: bool = False) -> None:
        self._registry = registry
        self._concurrent = concurrent

    async def resolve(
        self,
        messages: list[Message],
        conversation_id: str,
        sink: EventSink,
        abort: asyncio.Event | None = None,
    ) -> list[Message]:
        """Resolve what can be resolved on the last message; returns ``messages``."""

        if not messages or messages[-1].role != "assistant":
            return messages
        await self.resolve_message(messages[-1], conversation_id, sink, abort)
        return messages

    async def resolve_message(
        self,
        message: Message,
        conversation_id: str,
        sink: EventSink,
        abort: asyncio.Event | None = None,
    ) -> int:
        """Resolve the message's pending calls in emission order; returns how many were resolved."""

        runnable = [call for call in message.unresolved_tool_calls() if self._should_run(call)]
        if not runnable:
            return 0

        if self._concurrent:
            outcomes = await asyncio.gather(
                *(self._run_call(call, conversation_id, abort) for call in runnable)
            )
        else:
            outcomes = []
            for call in runnable:
                if _aborted(abort):
                    break
                outcomes.append(await self._run_call(call, conversation_id, abort))

        if _aborted(abort):
            LOGGER.info("Turn aborted; discarding %d tool result(s)", len(outcomes))
            return 0

        for call, (output, is_error) in zip(runnable, outcomes):
            result = ToolResultPart(tool_call_id=call.tool_call_id, output=output, is_error=is_error)
            call.state = STATE_OUTPUT_ERROR if is_error else STATE_OUTPUT_AVAILABLE
            message.parts.append(result)
            await sink.emit(StreamEvent.tool_result(result))
        return len(outcomes)

    def _should_run(self, call: ToolCallPart) -> bool:
        if call.state != STATE_INPUT_AVAILABLE:
            return False
        if call.tool_name not in self._registry:
            # Unknown names are answered with an error so the model can recover.
            return True
        if self._registry.is_auto_execute(call.tool_name):
            return True
        return call.approval in (APPROVED, DENIED)

    async def _run_call(
        self,
        call: ToolCallPart,
        conversation_id: str,
        abort: asyncio.Event | None,
    ) -> tuple[Any, bool]:
        if _aborted(abort):
            return None, True
        if call.approval == DENIED:
            return {"error": DENIED_MESSAGE}, True
        try:
            output = await self._registry.execute(conversation_id, call.tool_name, call.input)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Tool %s failed for call %s: %s", call.tool_name, call.tool_call_id, exc)
            return {"error": str(exc)}, True
        return output, False


def _aborted(abort: asyncio.Event | None) -> bool:
    return abort is not None and abort.is_set()
