"""Cloudflare documentation search via DuckDuckGo."""

from __future__ import annotations

import asyncio
from typing import Any

from ddgs import DDGS

from learning_assistant.tools.base import Tool

DOCS_SITE = "developers.cloudflare.com"


class SearchDocsTool(Tool):
    """Search developers.cloudflare.com (no API key required)."""

    name = "searchCloudflareDocs"
    description = (
        "Search Cloudflare's technical documentation when you need implementation details, "
        "API references, or how-to guides that aren't in blog posts."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Technical topic to search for."},
            "maxResults": {
                "type": "integer",
                "description": "Max results to return (default 3, max 10).",
                "default": 3,
            },
        },
        "required": ["query"],
        "additionalProperties": False,
    }

    async def run(self, **kwargs: Any) -> dict[str, Any] | str:
        query = str(kwargs["query"]).strip()
        limit = max(1, min(int(kwargs.get("maxResults") or 3), 10))

        results = await asyncio.to_thread(
            lambda: DDGS().text(f"site:{DOCS_SITE} {query}", max_results=limit, backend="duckduckgo")
        )
        docs = [r for r in results or [] if DOCS_SITE in r.get("href", "")][:limit]

        if not docs:
            return (
                f'No documentation found for "{query}". '
                "This might be a good opportunity to reach out to a Cloudflare expert!"
            )

        return {
            "query": query,
            "source": "Cloudflare Documentation",
            "results": [
                {"position": i, "title": r["title"], "url": r["href"], "snippet": r.get("body", "")}
                for i, r in enumerate(docs, start=1)
            ],
        }
