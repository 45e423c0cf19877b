"""Cloudflare blog discovery and article reading tools."""

from __future__ import annotations

import re
from typing import Any

import httpx

from learning_assistant.tools.base import Tool

DEFAULT_FEED_URL = "https://blog.cloudflare.com/rss/"
MAX_CONTENT_CHARS = 4000

_ITEM_RE = re.compile(r"<item>(.*?)</item>", re.DOTALL)
_TITLE_RE = re.compile(r"<title><!\[CDATA\[(.*?)\]\]></title>", re.DOTALL)
_LINK_RE = re.compile(r"<link>(.*?)</link>", re.DOTALL)
_DATE_RE = re.compile(r"<pubDate>(.*?)</pubDate>", re.DOTALL)
_DESC_RE = re.compile(r"<description><!\[CDATA\[(.*?)\]\]></description>", re.DOTALL)
_CREATOR_RE = re.compile(r"<dc:creator><!\[CDATA\[(.*?)\]\]></dc:creator>", re.DOTALL)


def _strip_html(text: str) -> str:
    return re.sub(r"<[^>]+>", "", text or "")


class LatestContentTool(Tool):
    """List recent posts from the Cloudflare blog feed."""

    name = "getLatestCloudflareContent"
    description = (
        "Get the latest blog posts and announcements from Cloudflare. Use this when users "
        "want to see what's new, learn about recent updates, or discover interesting "
        "Cloudflare content."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "count": {
                "type": "integer",
                "description": "Number of recent posts to fetch (1-10).",
                "default": 5,
            },
            "topic": {
                "type": "string",
                "description": "Optional topic filter like 'AI', 'security', 'workers'.",
            },
        },
        "additionalProperties": False,
    }

    def __init__(self, feed_url: str = DEFAULT_FEED_URL) -> None:
        self._feed_url = feed_url

    async def run(self, **kwargs: Any) -> dict[str, Any] | str:
        count = max(1, min(int(kwargs.get("count") or 5), 10))
        topic = str(kwargs.get("topic") or "").strip()

        async with httpx.AsyncClient() as client:
            resp = await client.get(self._feed_url, timeout=15.0)
            if resp.status_code != 200:
                return f"Error fetching blog feed: HTTP {resp.status_code}"
            xml = resp.text

        posts: list[dict[str, Any]] = []
        for item in _ITEM_RE.findall(xml):
            if len(posts) >= count:
                break
            title = _TITLE_RE.search(item)
            link = _LINK_RE.search(item)
            if not (title and link):
                continue
            desc = _DESC_RE.search(item)
            summary = _strip_html(desc.group(1))[:200] if desc else ""
            if topic and topic.lower() not in f"{title.group(1)} {summary}".lower():
                continue
            date = _DATE_RE.search(item)
            author = _CREATOR_RE.search(item)
            posts.append(
                {
                    "position": len(posts) + 1,
                    "title": title.group(1),
                    "url": link.group(1).strip(),
                    "publishDate": date.group(1) if date else "Unknown date",
                    "summary": f"{summary}...",
                    "author": author.group(1) if author else None,
                }
            )

        if not posts:
            if topic:
                return f'No recent posts found about "{topic}". Try a broader topic or remove the filter.'
            return "Unable to fetch recent posts. Please try again."

        return {
            "source": "Cloudflare Blog",
            "topic": topic or "All topics",
            "count": len(posts),
            "posts": posts,
            "suggestion": (
                "Pick a post that interests you and I can explain it in detail, "
                "or ask me to search for more specific topics!"
            ),
        }


class ExplainContentTool(Tool):
    """Fetch a blog post or docs page and return its readable text."""

    name = "explainCloudflareContent"
    description = (
        "Fetch and explain the content of a specific Cloudflare blog post or documentation "
        "page. Use this when a user wants to learn about a specific article or doc."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "url": {
                "type": "string",
                "description": "The URL of the Cloudflare blog post or doc page to explain.",
            },
        },
        "required": ["url"],
        "additionalProperties": False,
    }

    async def run(self, **kwargs: Any) -> dict[str, Any] | str:
        url = str(kwargs["url"]).strip()

        async with httpx.AsyncClient(follow_redirects=True) as client:
            resp = await client.get(url, timeout=20.0)
            if resp.status_code != 200:
                return f"Error fetching content: HTTP {resp.status_code}"
            html = resp.text

        return {
            "url": url,
            "title": _extract_title(html),
            "author": _extract_author(html),
            "contentPreview": _extract_body(html),
            "note": "I've read the article. Ask me questions about it or request a specific explanation!",
        }


def _extract_body(html: str) -> str:
    match = re.search(r"<article[^>]*>(.*?)</article>", html, re.DOTALL) or re.search(
        r"<main[^>]*>(.*?)</main>", html, re.DOTALL
    )
    content = match.group(1) if match else ""
    content = re.sub(r"<script[^>]*>.*?</script>", "", content, flags=re.DOTALL | re.IGNORECASE)
    content = re.sub(r"<style[^>]*>.*?</style>", "", content, flags=re.DOTALL | re.IGNORECASE)
    content = re.sub(r"<[^>]+>", " ", content)
    return re.sub(r"\s+", " ", content).strip()[:MAX_CONTENT_CHARS]


def _extract_title(html: str) -> str:
    match = re.search(r"<title>([^<]+)</title>", html)
    if not match:
        return "Unknown"
    return match.group(1).replace(" | Cloudflare", "").strip()


def _extract_author(html: str) -> str:
    for pattern in (
        r'<meta name="author" content="([^"]+)"',
        r'class="author[^"]*"[^>]*>([^<]+)<',
        r"By ([A-Z][a-z]+ [A-Z][a-z]+)",
    ):
        match = re.search(pattern, html)
        if match:
            return match.group(1).strip()
    return "Unknown"
