"""Core domain models used across layers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

ROLES = ("user", "assistant", "system")

STATE_INPUT_AVAILABLE = "input-available"
STATE_OUTPUT_AVAILABLE = "output-available"
STATE_OUTPUT_ERROR = "output-error"

APPROVED = "approved"
DENIED = "denied"


@dataclass(slots=True)
class TextPart:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(slots=True)
class ToolCallPart:
    """Tool invocation proposed by the model, tracked until it has a result."""

    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    state: str = STATE_INPUT_AVAILABLE
    # Recorded out-of-band by the client for tools that need confirmation.
    approval: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "tool-call",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "input": self.input,
            "state": self.state,
        }
        if self.approval is not None:
            data["approval"] = self.approval
        return data


@dataclass(slots=True)
class ToolResultPart:
    tool_call_id: str
    output: Any
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool-result",
            "toolCallId": self.tool_call_id,
            "output": self.output,
            "isError": self.is_error,
        }


Part = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass(slots=True)
class Message:
    """One conversation turn holding an ordered list of parts."""

    id: str
    role: str
    parts: list[Part] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(cls, role: str, parts: list[Part] | None = None) -> Message:
        return cls(id=new_id(), role=role, parts=list(parts or []))

    @classmethod
    def user(cls, text: str) -> Message:
        return cls.create("user", [TextPart(text)])

    def tool_calls(self) -> list[ToolCallPart]:
        return [part for part in self.parts if isinstance(part, ToolCallPart)]

    def result_for(self, tool_call_id: str) -> ToolResultPart | None:
        for part in self.parts:
            if isinstance(part, ToolResultPart) and part.tool_call_id == tool_call_id:
                return part
        return None

    def is_resolved(self, call: ToolCallPart) -> bool:
        return call.state != STATE_INPUT_AVAILABLE or self.result_for(call.tool_call_id) is not None

    def unresolved_tool_calls(self) -> list[ToolCallPart]:
        return [call for call in self.tool_calls() if not self.is_resolved(call)]

    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "parts": [part.to_dict() for part in self.parts],
            "metadata": {"createdAt": self.created_at.isoformat()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        role = data.get("role")
        if role not in ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")
        created_raw = (data.get("metadata") or {}).get("createdAt")
        if created_raw:
            created_at = datetime.fromisoformat(str(created_raw).replace("Z", "+00:00"))
        else:
            created_at = datetime.now(timezone.utc)
        return cls(
            id=data.get("id") or new_id(),
            role=role,
            parts=[part_from_dict(raw) for raw in data.get("parts", [])],
            created_at=created_at,
        )


def part_from_dict(data: dict[str, Any]) -> Part:
    kind = data.get("type")
    if kind == "text":
        return TextPart(text=str(data.get("text", "")))
    if kind == "tool-call":
        state = data.get("state", STATE_INPUT_AVAILABLE)
        if state not in (STATE_INPUT_AVAILABLE, STATE_OUTPUT_AVAILABLE, STATE_OUTPUT_ERROR):
            raise ValueError(f"Unsupported tool call state: {state!r}")
        approval = data.get("approval")
        if approval not in (None, APPROVED, DENIED):
            raise ValueError(f"Unsupported approval value: {approval!r}")
        return ToolCallPart(
            tool_call_id=str(data["toolCallId"]),
            tool_name=str(data["toolName"]),
            input=dict(data.get("input") or {}),
            state=state,
            approval=approval,
        )
    if kind == "tool-result":
        return ToolResultPart(
            tool_call_id=str(data["toolCallId"]),
            output=data.get("output"),
            is_error=bool(data.get("isError", False)),
        )
    raise ValueError(f"Unsupported part type: {kind!r}")


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class StreamEvent:
    """Incremental event written to the client stream."""

    type: str
    delta: str | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    input: dict[str, Any] | None = None
    output: Any = None
    is_error: bool = False
    finish_reason: str | None = None
    error: str | None = None

    @classmethod
    def text_delta(cls, delta: str) -> StreamEvent:
        return cls(type="text-delta", delta=delta)

    @classmethod
    def tool_call(cls, part: ToolCallPart) -> StreamEvent:
        return cls(type="tool-call", tool_call_id=part.tool_call_id, tool_name=part.tool_name, input=part.input)

    @classmethod
    def tool_result(cls, part: ToolResultPart) -> StreamEvent:
        return cls(type="tool-result", tool_call_id=part.tool_call_id, output=part.output, is_error=part.is_error)

    @classmethod
    def finish(cls, reason: str, error: str | None = None) -> StreamEvent:
        return cls(type="finish", finish_reason=reason, error=error)

    def to_dict(self) -> dict[str, Any]:
        if self.type == "text-delta":
            return {"type": self.type, "delta": self.delta}
        if self.type == "tool-call":
            return {
                "type": self.type,
                "toolCallId": self.tool_call_id,
                "toolName": self.tool_name,
                "input": self.input,
            }
        if self.type == "tool-result":
            return {
                "type": self.type,
                "toolCallId": self.tool_call_id,
                "output": self.output,
                "isError": self.is_error,
            }
        data: dict[str, Any] = {"type": self.type, "finishReason": self.finish_reason}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class LLMStreamChunk:
    """Incremental piece of a streamed model response.

    Tool calls are only reported once their arguments are complete, on the
    chunk that carries the finish reason.
    """

    text: str = ""
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    finish_reason: str | None = None


@dataclass(slots=True)
class ScheduleTrigger:
    """When a scheduled task fires: an absolute time, a delay, or a cron expression."""

    type: str
    at: datetime | None = None
    delay_seconds: float | None = None
    cron: str | None = None

    def describe(self) -> str:
        if self.type == "scheduled" and self.at is not None:
            return self.at.isoformat()
        if self.type == "delayed":
            return f"{self.delay_seconds:g}"
        return self.cron or ""


@dataclass(slots=True)
class ScheduledTask:
    """Represents a persisted scheduled task."""

    id: str
    conversation_id: str
    callback: str
    payload: str
    trigger_type: str
    next_run_at: datetime
    cron: str | None = None
    status: str = "pending"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.payload,
            "type": self.trigger_type,
            "callback": self.callback,
            "nextRunAt": self.next_run_at.isoformat(),
            "cron": self.cron,
            "status": self.status,
        }
