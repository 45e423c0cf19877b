"""Bounded model/tool loop streaming output to a sink."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass

from learning_assistant.llm.base import LLMProvider, UpstreamModelError
from learning_assistant.llm.transcript import to_model_messages
from learning_assistant.models import Message, StreamEvent, TextPart, ToolCallPart, new_id
from learning_assistant.pipeline.events import EventSink
from learning_assistant.pipeline.interceptor import ToolCallInterceptor
from learning_assistant.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

AWAITING_MODEL = "awaiting-model"
AWAITING_TOOLS = "awaiting-tools"
DONE = "done"


@dataclass(slots=True)
class DriverResult:
    message: Message | None
    steps: int
    finish_reason: str


class GenerationDriver:
    """Alternates model steps and tool resolution until a text answer or the step bound.

    Every model call counts as one step. Tool calls of a step run concurrently
    and all of them finish before the next step starts. Calls that still need
    the user's confirmation end the turn so the client can decide.
    """

    def __init__(
        self,
        llm: LLMProvider,
        tool_registry: ToolRegistry,
        max_steps: int = 10,
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self._llm = llm
        self._tool_registry = tool_registry
        self._interceptor = ToolCallInterceptor(tool_registry, concurrent=True)
        self._max_steps = max_steps

    async def run(
        self,
        messages: list[Message],
        system_prompt: str,
        conversation_id: str,
        sink: EventSink,
        abort: asyncio.Event | None = None,
    ) -> DriverResult:
        """Generate into the trailing assistant message, appending one if needed."""

        if messages and messages[-1].role == "assistant":
            assistant = messages[-1]
        else:
            assistant = Message.create("assistant")
            messages.append(assistant)

        state = AWAITING_MODEL
        steps = 0
        finish_reason = "stop"
        while state != DONE:
            if abort is not None and abort.is_set():
                finish_reason = "abort"
                break
            if state == AWAITING_MODEL:
                steps += 1
                step_calls, finish_reason = await self._model_step(messages, assistant, system_prompt, sink, abort)
                if abort is not None and abort.is_set():
                    finish_reason = "abort"
                    break
                state = AWAITING_TOOLS if step_calls else DONE
            else:
                await self._interceptor.resolve_message(assistant, conversation_id, sink, abort)
                if abort is not None and abort.is_set():
                    finish_reason = "abort"
                    break
                if assistant.unresolved_tool_calls():
                    LOGGER.info("Turn paused on %d call(s) awaiting confirmation", len(assistant.unresolved_tool_calls()))
                    finish_reason = "tool-calls"
                    state = DONE
                elif steps >= self._max_steps:
                    LOGGER.info("Step bound of %d reached", self._max_steps)
                    finish_reason = "tool-calls"
                    state = DONE
                else:
                    state = AWAITING_MODEL

        if not assistant.parts:
            messages.remove(assistant)
        await sink.emit(StreamEvent.finish(finish_reason))
        return DriverResult(message=assistant if assistant.parts else None, steps=steps, finish_reason=finish_reason)

    async def _model_step(
        self,
        messages: list[Message],
        assistant: Message,
        system_prompt: str,
        sink: EventSink,
        abort: asyncio.Event | None,
    ) -> tuple[list[ToolCallPart], str]:
        model_messages = to_model_messages(system_prompt, messages)
        calls: list[ToolCallPart] = []
        finish_reason = "stop"
        try:
            stream = self._llm.stream(model_messages, tools=self._tool_registry.list_tool_specs())
            async with aclosing(stream):
                async for chunk in stream:
                    if abort is not None and abort.is_set():
                        break
                    if chunk.text:
                        _append_text(assistant, chunk.text)
                        await sink.emit(StreamEvent.text_delta(chunk.text))
                    for tool_call in chunk.tool_calls:
                        call_id = tool_call.call_id
                        if not call_id or any(c.tool_call_id == call_id for c in assistant.tool_calls()):
                            call_id = new_id()
                        part = ToolCallPart(
                            tool_call_id=call_id,
                            tool_name=tool_call.name,
                            input=tool_call.arguments,
                        )
                        assistant.parts.append(part)
                        calls.append(part)
                        await sink.emit(StreamEvent.tool_call(part))
                    if chunk.finish_reason:
                        finish_reason = chunk.finish_reason
        except UpstreamModelError:
            raise
        except Exception as exc:
            raise UpstreamModelError(f"Model call failed: {exc}") from exc
        return calls, finish_reason


def _append_text(message: Message, text: str) -> None:
    if message.parts and isinstance(message.parts[-1], TextPart):
        message.parts[-1].text += text
    else:
        message.parts.append(TextPart(text))
