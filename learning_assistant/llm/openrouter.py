"""OpenRouter implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

import httpx

from learning_assistant.config import Settings
from learning_assistant.llm.base import LLMProvider, UpstreamModelError
from learning_assistant.models import LLMStreamChunk, LLMToolCall

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]


class OpenRouterProvider(LLMProvider):
    """LLM provider using OpenRouter's OpenAI-compatible streaming chat endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[LLMStreamChunk]:
        payload: dict[str, Any] = {
            "model": self._settings.openrouter_model,
            "messages": messages,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools

        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        try:
            async with httpx.AsyncClient(base_url=self._settings.openrouter_base_url, timeout=timeout) as client:
                for attempt in range(_MAX_RETRIES + 1):
                    async with client.stream(
                        "POST",
                        "/chat/completions",
                        headers={
                            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
                            "Content-Type": "application/json",
                        },
                        json=payload,
                    ) as response:
                        if response.status_code == 429 and attempt < _MAX_RETRIES:
                            wait = _RETRY_BACKOFF_SECONDS[attempt]
                            _LOGGER.warning(
                                "OpenRouter rate limited (429), retrying in %ds (attempt %d/%d)",
                                wait,
                                attempt + 1,
                                _MAX_RETRIES,
                            )
                            await asyncio.sleep(wait)
                            continue
                        if response.status_code >= 400:
                            body = (await response.aread()).decode("utf-8", errors="replace")
                            raise UpstreamModelError(
                                f"OpenRouter request failed (HTTP {response.status_code}): {body[:500]}"
                            )
                        async for chunk in parse_sse_stream(response.aiter_lines()):
                            yield chunk
                        return
        except httpx.HTTPError as exc:
            raise UpstreamModelError(f"OpenRouter request failed: {exc}") from exc


async def parse_sse_stream(lines: AsyncIterator[str]) -> AsyncIterator[LLMStreamChunk]:
    """Turn OpenAI-style ``data:`` lines into chunks, assembling tool call arguments."""

    pending: dict[int, dict[str, str]] = {}
    finished = False

    async for line in lines:
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            break
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            _LOGGER.warning("Skipping malformed stream line: %r", data[:200])
            continue
        if "error" in event:
            raise UpstreamModelError(f"OpenRouter stream error: {event['error']}")
        choices = event.get("choices") or []
        if not choices:
            continue
        choice = choices[0]
        delta = choice.get("delta") or {}

        for tool_delta in delta.get("tool_calls") or []:
            index = tool_delta.get("index", len(pending))
            entry = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
            if tool_delta.get("id"):
                entry["id"] = tool_delta["id"]
            function_data = tool_delta.get("function") or {}
            if function_data.get("name"):
                entry["name"] = function_data["name"]
            entry["arguments"] += function_data.get("arguments") or ""

        content = delta.get("content")
        finish_reason = choice.get("finish_reason")
        if finish_reason:
            finished = True
            _LOGGER.info("LLM stream finished: finish_reason=%r tool_calls=%d", finish_reason, len(pending))
            yield LLMStreamChunk(text=content or "", tool_calls=_complete(pending), finish_reason=finish_reason)
            pending = {}
        elif content:
            yield LLMStreamChunk(text=content)

    if not finished:
        calls = _complete(pending)
        yield LLMStreamChunk(tool_calls=calls, finish_reason="tool_calls" if calls else "stop")


def _complete(pending: dict[int, dict[str, str]]) -> list[LLMToolCall]:
    return [
        LLMToolCall(
            name=entry["name"],
            arguments=_safe_json_loads(entry["arguments"] or "{}"),
            call_id=entry["id"] or None,
        )
        for _, entry in sorted(pending.items())
    ]


def _safe_json_loads(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
