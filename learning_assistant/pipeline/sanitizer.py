"""Transcript repair applied before any tool interception or generation."""

from __future__ import annotations

import logging

from learning_assistant.models import Message, ToolCallPart
from learning_assistant.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)


def sanitize_messages(messages: list[Message], registry: ToolRegistry) -> list[Message]:
    """Drop trailing assistant messages whose tool calls cannot be resolved.

    A pending call is acceptable only when the interceptor can finish it: the
    tool auto-executes, or it needs confirmation and the user already decided.
    Anything else drops the whole message, repeatedly, so the input list is
    never modified and a second pass is a no-op.
    """

    sanitized = list(messages)
    while sanitized and _is_malformed(sanitized[-1], registry):
        dropped = sanitized.pop()
        LOGGER.info("Dropping trailing assistant message %s with unresolved tool calls", dropped.id)
    return sanitized


def _is_malformed(message: Message, registry: ToolRegistry) -> bool:
    if message.role != "assistant":
        return False
    return any(not _resolvable(call, registry) for call in message.unresolved_tool_calls())


def _resolvable(call: ToolCallPart, registry: ToolRegistry) -> bool:
    if call.tool_name not in registry:
        return False
    if registry.requires_confirmation(call.tool_name):
        return call.approval is not None
    return True
