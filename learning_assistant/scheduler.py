"""Async scheduler for delayed, timed and recurring tasks."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from learning_assistant.cron import CronExpression
from learning_assistant.db import Database
from learning_assistant.models import ScheduledTask, ScheduleTrigger, new_id

LOGGER = logging.getLogger(__name__)

TaskHandler = Callable[[ScheduledTask], Awaitable[None]]


class SchedulingError(ValueError):
    """Raised for invalid triggers and unknown task ids."""


def parse_trigger(when: dict[str, Any]) -> ScheduleTrigger:
    """Build a trigger from the ``when`` object of a schedule request."""

    kind = when.get("type")
    if kind == "scheduled":
        raw = when.get("date")
        if not raw:
            raise SchedulingError("A scheduled trigger needs a date")
        try:
            at = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError as exc:
            raise SchedulingError(f"Invalid date {raw!r}") from exc
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        return ScheduleTrigger(type="scheduled", at=at)
    if kind == "delayed":
        delay = when.get("delayInSeconds")
        if not isinstance(delay, (int, float)) or isinstance(delay, bool) or delay < 0:
            raise SchedulingError(f"Invalid delay {delay!r}: expected a non-negative number of seconds")
        return ScheduleTrigger(type="delayed", delay_seconds=float(delay))
    if kind == "cron":
        expression = str(when.get("cron") or "").strip()
        try:
            CronExpression.parse(expression)
        except ValueError as exc:
            raise SchedulingError(str(exc)) from exc
        return ScheduleTrigger(type="cron", cron=expression)
    raise SchedulingError("Not a valid schedule input")


class TaskScheduler:
    """Persists tasks and dispatches due ones to named handlers."""

    def __init__(self, db: Database, poll_interval_seconds: float = 2.0) -> None:
        self._db = db
        self._poll_interval_seconds = poll_interval_seconds
        self._handlers: dict[str, TaskHandler] = {}
        self._stop_event = asyncio.Event()

    def register_handler(self, name: str, handler: TaskHandler) -> None:
        self._handlers[name] = handler

    def schedule(
        self,
        conversation_id: str,
        trigger: ScheduleTrigger,
        handler_name: str,
        payload: str,
        now: datetime | None = None,
    ) -> str:
        """Persist a task and return its id."""

        now = now or datetime.now(timezone.utc)
        if trigger.type == "scheduled" and trigger.at is not None:
            run_at = trigger.at
        elif trigger.type == "delayed" and trigger.delay_seconds is not None:
            run_at = now + timedelta(seconds=trigger.delay_seconds)
        elif trigger.type == "cron" and trigger.cron:
            run_at = CronExpression.parse(trigger.cron).next_after(now)
        else:
            raise SchedulingError("Not a valid schedule input")

        task = ScheduledTask(
            id=new_id(),
            conversation_id=conversation_id,
            callback=handler_name,
            payload=payload,
            trigger_type=trigger.type,
            next_run_at=run_at,
            cron=trigger.cron,
        )
        self._db.create_scheduled_task(task)
        LOGGER.info("Scheduled task %s (%s) for %s", task.id, trigger.type, run_at.isoformat())
        return task.id

    def list_schedules(self, conversation_id: str) -> list[ScheduledTask]:
        return self._db.list_scheduled_tasks(conversation_id)

    def cancel_schedule(self, conversation_id: str, task_id: str) -> bool:
        """Delete a task owned by the conversation; False when no such task exists."""

        owned = {task.id for task in self._db.list_scheduled_tasks(conversation_id)}
        if task_id not in owned:
            return False
        return self._db.delete_scheduled_task(task_id)

    async def run_due(self, now: datetime | None = None) -> int:
        """Dispatch every task due at ``now``; returns how many ran."""

        now = now or datetime.now(timezone.utc)
        due_tasks = self._db.get_due_tasks(now)
        for task in due_tasks:
            handler = self._handlers.get(task.callback)
            if handler is None:
                LOGGER.warning("No handler %r registered for task %s", task.callback, task.id)
                self._db.mark_task_status(task.id, "failed")
                continue
            try:
                self._db.mark_task_status(task.id, "running")
                await handler(task)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Scheduled task %s failed", task.id)
                self._db.mark_task_status(task.id, "failed")
                continue
            if task.trigger_type == "cron" and task.cron:
                self._db.reschedule_task(task.id, CronExpression.parse(task.cron).next_after(now))
            else:
                self._db.delete_scheduled_task(task.id)
        return len(due_tasks)

    async def run_forever(self) -> None:
        """Run scheduler loop until stop() is called."""

        while not self._stop_event.is_set():
            await self.run_due()
            await asyncio.sleep(self._poll_interval_seconds)

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()
