"""Networking tools: locate an author's LinkedIn profile and draft an outreach message."""

from __future__ import annotations

import asyncio
import re
from typing import Any

from ddgs import DDGS

from learning_assistant.tools.base import Tool

_PROFILE_RE = re.compile(r"https://(?:[a-z]{2,3}\.)?linkedin\.com/in/[A-Za-z0-9_-]+")


class FindAuthorTool(Tool):
    """Look up an article author's LinkedIn profile through a web search."""

    name = "findAuthorOnLinkedIn"
    description = (
        "Find the author of a Cloudflare article on LinkedIn to enable networking and deeper "
        "learning. Use this when the user wants to connect with the author or has questions "
        "not answered in the content."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "authorName": {"type": "string", "description": "Full name of the article author."},
            "articleTitle": {"type": "string", "description": "Title of the article they wrote."},
            "articleUrl": {"type": "string", "description": "URL of the article."},
        },
        "required": ["authorName", "articleTitle", "articleUrl"],
        "additionalProperties": False,
    }

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        author = str(kwargs["authorName"]).strip()
        query = f"{author} Cloudflare site:linkedin.com/in/"

        results = await asyncio.to_thread(
            lambda: DDGS().text(query, max_results=5, backend="duckduckgo")
        )

        for result in results or []:
            match = _PROFILE_RE.search(result.get("href", ""))
            if match:
                return {
                    "found": True,
                    "authorName": author,
                    "profileUrl": match.group(0),
                    "articleTitle": kwargs["articleTitle"],
                    "articleUrl": kwargs["articleUrl"],
                    "suggestion": "I found their LinkedIn profile! Would you like me to draft a connection message?",
                }

        return {
            "found": False,
            "authorName": author,
            "message": (
                f"Couldn't find a LinkedIn profile for {author}. You could try searching manually "
                "on LinkedIn or look for them on Cloudflare's team page."
            ),
        }


class DraftMessageTool(Tool):
    """Compose a connection request referencing the article the user read."""

    name = "draftLinkedInMessage"
    description = (
        "Draft a professional LinkedIn connection message to a Cloudflare author. Use this "
        "after finding their profile to help the user network and ask for deeper insights."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "authorName": {"type": "string", "description": "Name of the person to connect with."},
            "articleTitle": {"type": "string", "description": "Title of their article the user read."},
            "articleUrl": {"type": "string", "description": "URL of the article."},
            "userQuestion": {"type": "string", "description": "Specific question the user has."},
            "userBackground": {
                "type": "string",
                "description": "Brief context about the user's background or interest.",
            },
        },
        "required": ["authorName", "articleTitle", "articleUrl"],
        "additionalProperties": False,
    }

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        author = str(kwargs["authorName"]).strip()
        title = kwargs["articleTitle"]
        first_name = author.split(" ")[0] if author else "there"
        question = kwargs.get("userQuestion")
        background = kwargs.get("userBackground")

        message = f"Hi {first_name},\n\n"
        message += f'I recently read your article "{title}" and found it really insightful. '
        if background:
            message += f"{background} "
        if question:
            message += f"\n\nI have a question that I couldn't find answered in the article: {question}\n\n"
            message += "Would you be open to sharing your thoughts or pointing me to additional resources?\n\n"
        else:
            message += "I'd love to connect and learn more about your work at Cloudflare.\n\n"
        message += "Thanks for sharing your knowledge with the community!\n\nBest regards"

        return {
            "authorName": author,
            "articleTitle": title,
            "articleUrl": kwargs["articleUrl"],
            "message": message,
            "tips": [
                "Keep it under 300 characters for a connection request (LinkedIn limit)",
                "Personalize further based on their LinkedIn profile",
                "Be specific about what you found interesting",
                "Show genuine curiosity, not just self-promotion",
            ],
            "shortVersion": (
                f'Hi {first_name}, I really enjoyed your article "{title}" and would love to connect '
                "to learn more about your work at Cloudflare. Thanks for sharing your insights with "
                "the community!"
            ),
        }
