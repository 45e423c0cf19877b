"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from learning_assistant.models import Message, ScheduledTask

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS chat_messages (
                conversation_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                message_id TEXT NOT NULL,
                role TEXT NOT NULL,
                message_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY(conversation_id, position)
            );

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS scheduled_tasks (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                callback TEXT NOT NULL,
                payload TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                cron TEXT,
                next_run_at TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )

    def save_messages(self, conversation_id: str, messages: list[Message]) -> None:
        """Replace the stored transcript of a conversation."""

        with self._connect() as conn:
            conn.execute("DELETE FROM chat_messages WHERE conversation_id = ?", (conversation_id,))
            conn.executemany(
                """
                INSERT INTO chat_messages(conversation_id, position, message_id, role, message_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        conversation_id,
                        position,
                        message.id,
                        message.role,
                        json.dumps(message.to_dict(), default=str),
                        message.created_at.isoformat(),
                    )
                    for position, message in enumerate(messages)
                ],
            )

    def load_messages(self, conversation_id: str) -> list[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT message_json FROM chat_messages WHERE conversation_id = ? ORDER BY position ASC",
                (conversation_id,),
            ).fetchall()
        return [Message.from_dict(json.loads(row["message_json"])) for row in rows]

    def clear_history(self, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM chat_messages WHERE conversation_id = ?", (conversation_id,))

    def log_tool_execution(
        self,
        conversation_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(conversation_id, tool_name, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    tool_name,
                    json.dumps(tool_input, default=str),
                    json.dumps(tool_output, default=str),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    def list_tool_executions(self, conversation_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT tool_name, input_json, output_json, succeeded
                FROM tool_executions
                WHERE conversation_id = ?
                ORDER BY id ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def create_scheduled_task(self, task: ScheduledTask) -> None:
        now = _utc_now_iso()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO scheduled_tasks(
                    id, conversation_id, callback, payload, trigger_type, cron, next_run_at, status,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.conversation_id,
                    task.callback,
                    task.payload,
                    task.trigger_type,
                    task.cron,
                    _to_utc_iso(task.next_run_at),
                    task.status,
                    now,
                    now,
                ),
            )

    def list_scheduled_tasks(self, conversation_id: str) -> list[ScheduledTask]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM scheduled_tasks
                WHERE conversation_id = ?
                ORDER BY next_run_at ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def get_due_tasks(self, now: datetime) -> list[ScheduledTask]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM scheduled_tasks
                WHERE status = 'pending' AND next_run_at <= ?
                ORDER BY next_run_at ASC
                """,
                (_to_utc_iso(now),),
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def mark_task_status(self, task_id: str, status: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE scheduled_tasks SET status = ?, updated_at = ? WHERE id = ?",
                (status, _utc_now_iso(), task_id),
            )

    def reschedule_task(self, task_id: str, next_run_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE scheduled_tasks SET status = 'pending', next_run_at = ?, updated_at = ? WHERE id = ?",
                (_to_utc_iso(next_run_at), _utc_now_iso(), task_id),
            )

    def delete_scheduled_task(self, task_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,))
            return cur.rowcount > 0


def _row_to_task(row: sqlite3.Row) -> ScheduledTask:
    return ScheduledTask(
        id=row["id"],
        conversation_id=row["conversation_id"],
        callback=row["callback"],
        payload=row["payload"],
        trigger_type=row["trigger_type"],
        next_run_at=datetime.fromisoformat(row["next_run_at"]),
        cron=row["cron"],
        status=row["status"],
    )


def _to_utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
