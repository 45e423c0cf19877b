"""Scheduling tools backed by the task scheduler."""

from __future__ import annotations

from typing import Any

from learning_assistant.scheduler import SchedulingError, TaskScheduler, parse_trigger
from learning_assistant.tools.base import Tool

EXECUTE_TASK_HANDLER = "executeTask"


class ScheduleTaskTool(Tool):
    """Schedule a prompt to run later in the current conversation."""

    name = "scheduleTask"
    description = "Schedule a task to be executed at a later time."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "description": {"type": "string", "description": "What the task should do."},
            "when": {
                "type": "object",
                "description": (
                    "When to run. type is one of 'scheduled' (with an ISO-8601 'date'), "
                    "'delayed' (with 'delayInSeconds'), 'cron' (with a five-field 'cron' "
                    "expression) or 'no-schedule'."
                ),
                "properties": {
                    "type": {"type": "string", "enum": ["scheduled", "delayed", "cron", "no-schedule"]},
                    "date": {"type": "string"},
                    "delayInSeconds": {"type": "number"},
                    "cron": {"type": "string"},
                },
                "required": ["type"],
            },
        },
        "required": ["description", "when"],
        "additionalProperties": False,
    }

    def __init__(self, scheduler: TaskScheduler) -> None:
        self._scheduler = scheduler

    async def run(self, **kwargs: Any) -> str:
        when = kwargs["when"]
        if when.get("type") == "no-schedule":
            return "Not a valid schedule input"
        try:
            trigger = parse_trigger(when)
        except SchedulingError as exc:
            raise SchedulingError(f"Error scheduling task: {exc}") from exc
        self._scheduler.schedule(
            conversation_id=kwargs["conversation_id"],
            trigger=trigger,
            handler_name=EXECUTE_TASK_HANDLER,
            payload=kwargs["description"],
        )
        return f'Task scheduled for type "{trigger.type}" : {trigger.describe()}'


class ListScheduledTasksTool(Tool):
    name = "getScheduledTasks"
    description = "List all scheduled tasks."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    def __init__(self, scheduler: TaskScheduler) -> None:
        self._scheduler = scheduler

    async def run(self, **kwargs: Any) -> list[dict[str, Any]] | str:
        tasks = self._scheduler.list_schedules(kwargs["conversation_id"])
        if not tasks:
            return "No scheduled tasks found."
        return [task.to_dict() for task in tasks]


class CancelScheduledTaskTool(Tool):
    name = "cancelScheduledTask"
    description = "Cancel a scheduled task by ID."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "taskId": {"type": "string", "description": "The ID of the task to cancel."},
        },
        "required": ["taskId"],
        "additionalProperties": False,
    }

    def __init__(self, scheduler: TaskScheduler) -> None:
        self._scheduler = scheduler

    async def run(self, **kwargs: Any) -> str:
        task_id = kwargs["taskId"]
        if not self._scheduler.cancel_schedule(kwargs["conversation_id"], task_id):
            raise SchedulingError(f"Error canceling task {task_id}: task not found")
        return f"Task {task_id} has been successfully canceled."
