"""Sinks receiving incremental stream events."""

from __future__ import annotations

import asyncio
from typing import Protocol

from learning_assistant.models import StreamEvent


class EventSink(Protocol):
    async def emit(self, event: StreamEvent) -> None: ...


class CollectingSink:
    """Keeps every event in memory; used for scheduled runs and tests."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []

    async def emit(self, event: StreamEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[StreamEvent]:
        return [event for event in self.events if event.type == event_type]


class QueueSink:
    """Hands events to a consumer through an asyncio queue; ``None`` marks the end."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()

    async def emit(self, event: StreamEvent) -> None:
        await self.queue.put(event)

    async def close(self) -> None:
        await self.queue.put(None)
