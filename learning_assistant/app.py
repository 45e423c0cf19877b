"""FastAPI application exposing the chat endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from learning_assistant.chat_service import ChatService
from learning_assistant.llm.base import UpstreamModelError
from learning_assistant.models import Message, StreamEvent
from learning_assistant.pipeline.events import QueueSink

LOGGER = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    messages: list[dict[str, Any]] = Field(default_factory=list)


def create_app(service: ChatService, api_key_configured: bool = True) -> FastAPI:
    app = FastAPI(title="Learning Assistant", version="0.1.0")

    def encode(event: StreamEvent) -> bytes:
        payload = json.dumps(event.to_dict(), separators=(",", ":"), default=str)
        return f"data: {payload}\n\n".encode("utf-8")

    async def stream_turn(conversation_id: str, messages: list[Message]) -> AsyncIterator[bytes]:
        sink = QueueSink()
        abort = asyncio.Event()

        async def produce() -> None:
            try:
                await service.run_turn(conversation_id, messages, sink, abort)
            except UpstreamModelError as exc:
                LOGGER.warning("Turn failed for %s: %s", conversation_id, exc)
                await sink.emit(StreamEvent.finish("error", error=str(exc)))
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("Unexpected failure in turn for %s", conversation_id)
                await sink.emit(StreamEvent.finish("error", error=str(exc)))
            finally:
                await sink.close()

        producer = asyncio.create_task(produce(), name=f"chat-turn-{conversation_id}")
        try:
            while True:
                event = await sink.queue.get()
                if event is None:
                    break
                yield encode(event)
        finally:
            abort.set()
            await asyncio.shield(producer)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/check-api-key")
    async def check_api_key() -> dict[str, bool]:
        return {"success": api_key_configured}

    @app.post("/agents/chat/{conversation_id}")
    async def chat(conversation_id: str, payload: ChatRequest) -> StreamingResponse:
        try:
            messages = [Message.from_dict(raw) for raw in payload.messages]
        except (KeyError, TypeError, ValueError) as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return StreamingResponse(stream_turn(conversation_id, messages), media_type="text/event-stream")

    @app.get("/agents/chat/{conversation_id}/messages")
    async def get_messages(conversation_id: str) -> list[dict[str, Any]]:
        return [message.to_dict() for message in service.history(conversation_id)]

    @app.delete("/agents/chat/{conversation_id}/messages", status_code=status.HTTP_204_NO_CONTENT)
    async def clear_messages(conversation_id: str) -> None:
        service.clear_history(conversation_id)

    return app
