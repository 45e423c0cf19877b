"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from learning_assistant.app import create_app
from learning_assistant.chat_service import ChatService
from learning_assistant.config import Settings, confirmation_required_tools, load_settings
from learning_assistant.db import Database
from learning_assistant.llm.openrouter import OpenRouterProvider
from learning_assistant.scheduler import TaskScheduler
from learning_assistant.tools.content_tool import ExplainContentTool, LatestContentTool
from learning_assistant.tools.docs_search_tool import SearchDocsTool
from learning_assistant.tools.linkedin_tool import DraftMessageTool, FindAuthorTool
from learning_assistant.tools.registry import ToolRegistry
from learning_assistant.tools.schedule_tool import (
    EXECUTE_TASK_HANDLER,
    CancelScheduledTaskTool,
    ListScheduledTasksTool,
    ScheduleTaskTool,
)

LOGGER = logging.getLogger(__name__)


def build_registry(settings: Settings, db: Database, scheduler: TaskScheduler) -> ToolRegistry:
    """Assemble the tool set once; it is passed explicitly to every consumer."""

    tools = ToolRegistry(db, confirm_tools=confirmation_required_tools(settings))
    tools.register(LatestContentTool(settings.content_feed_url))
    tools.register(ExplainContentTool())
    tools.register(SearchDocsTool())
    tools.register(FindAuthorTool())
    tools.register(DraftMessageTool())
    tools.register(ScheduleTaskTool(scheduler))
    tools.register(ListScheduledTasksTool(scheduler))
    tools.register(CancelScheduledTaskTool(scheduler))
    return tools


async def run() -> None:
    """Initialize app layers and serve until shutdown."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())
    if not settings.openrouter_api_key:
        LOGGER.error("OPENROUTER_API_KEY is not set")

    db = Database(settings.database_path)
    db.initialize()

    scheduler = TaskScheduler(db=db, poll_interval_seconds=settings.scheduler_poll_interval_seconds)
    tools = build_registry(settings, db, scheduler)
    service = ChatService(
        db=db,
        llm=OpenRouterProvider(settings),
        tool_registry=tools,
        max_steps=settings.max_steps,
    )
    scheduler.register_handler(EXECUTE_TASK_HANDLER, service.execute_task)

    app = create_app(service, api_key_configured=bool(settings.openrouter_api_key))
    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
    )

    scheduler_task = asyncio.create_task(scheduler.run_forever(), name="task-scheduler")
    try:
        await server.serve()
    finally:
        scheduler.stop()
        scheduler_task.cancel()
        LOGGER.info("Assistant shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
