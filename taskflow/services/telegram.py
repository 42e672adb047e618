"""
Telegram Reminder Service
=========================

Sends task reminders to a Telegram chat and applies the inline-button
actions users press on them.

Callback data:
    complete:<task_id>        mark the task Done (repeating tasks reschedule)
    delay:<task_id>:<days>    push the due date by <days>

Updates are fetched with ``getUpdates`` and acknowledged through the
``offset`` parameter so the same button press is never applied twice.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional

import httpx
from pydantic import BaseModel

from taskflow.config import Settings
from taskflow.core.errors import (
    ConnectivityError,
    ErrorCodes,
    RemoteError,
    TaskflowError,
    TaskNotFoundError,
    remote_error_for_status,
)
from taskflow.models.task import Task, TaskImportance, TaskStatus

if TYPE_CHECKING:
    from taskflow.services.task_store import TaskStore

logger = logging.getLogger(__name__)

HEADER_TEXT = "🌿 *Garden Tasks Update*\n\nHere are your pending tasks:"
ALLOWED_UPDATES = ["message", "callback_query"]


class TelegramUser(BaseModel):
    """Sender of a message or button press."""

    id: int
    username: Optional[str] = None
    first_name: str = ""


# ---------------------------------------------------------------------------
# Message formatting
# ---------------------------------------------------------------------------

def format_task_message(task: Task) -> str:
    """Markdown body of a task reminder."""
    prefix = "🔥 URGENT: " if task.importance is TaskImportance.URGENT else ""
    done = "✅ " if task.status is TaskStatus.DONE else ""
    description = f"{task.description}\n\n" if task.description else ""
    return (
        f"{prefix}{done}*{task.title}*\n\n"
        f"{description}"
        f"📅 Due: {task.due_date.date().isoformat()}\n"
        f"🔄 Status: {task.status.value}"
    )


def task_keyboard(task: Task) -> dict[str, Any]:
    """Inline keyboard for a reminder; finished tasks get no buttons."""
    if task.status is TaskStatus.DONE:
        return {"inline_keyboard": []}
    return {
        "inline_keyboard": [[
            {"text": "✅ Complete", "callback_data": f"complete:{task.id}"},
            {"text": "⏰ Delay 1 Day", "callback_data": f"delay:{task.id}:1"},
        ]]
    }


def parse_callback_data(data: str) -> tuple[str, str, Optional[int]]:
    """Split ``action:task_id[:days]``."""
    action, _, rest = data.partition(":")
    task_id, _, days = rest.partition(":")
    return action, task_id, int(days) if days.isdigit() else None


# ---------------------------------------------------------------------------
# TelegramNotifier
# ---------------------------------------------------------------------------

class TelegramNotifier:
    """Telegram Bot API client for task reminders."""

    def __init__(
        self,
        bot_token: str,
        authorized_users: Iterable[int] = (),
        *,
        api_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.bot_token = bot_token
        self.authorized_users = set(authorized_users)
        self._base_url = f"{api_url.rstrip('/')}/bot{bot_token}"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._offset: Optional[int] = None

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None,
    ) -> "TelegramNotifier":
        return cls(
            settings.TELEGRAM_BOT_TOKEN,
            settings.authorized_users_list,
            api_url=settings.TELEGRAM_API_URL,
            timeout=settings.REMOTE_TIMEOUT_SECONDS,
            client=client,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def is_authorized(self, user_id: int) -> bool:
        """An empty allow-list lets everyone through."""
        return not self.authorized_users or user_id in self.authorized_users

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send_task_notification(self, chat_id: int | str, tasks: list[Task]) -> bool:
        """
        Send a header plus one message per task with action buttons.

        Returns False if Telegram could not be reached or refused a message.
        """
        if not chat_id:
            raise ValueError("chat_id is required")
        if not tasks:
            raise ValueError("tasks must not be empty")

        try:
            await self._call("sendMessage", {
                "chat_id": chat_id,
                "text": HEADER_TEXT,
                "parse_mode": "Markdown",
            })
            for task in tasks:
                await self._call("sendMessage", {
                    "chat_id": chat_id,
                    "text": format_task_message(task),
                    "parse_mode": "Markdown",
                    "reply_markup": task_keyboard(task),
                })
        except TaskflowError as exc:
            logger.error("Telegram notification to %s failed: %s", chat_id, exc.message)
            return False
        logger.info("Sent %d task reminder(s) to %s", len(tasks), chat_id)
        return True

    async def get_bot_username(self) -> Optional[str]:
        if not self.bot_token:
            return None
        try:
            result = await self._call("getMe")
        except TaskflowError as exc:
            logger.warning("Failed to get bot username: %s", exc.message)
            return None
        return result.get("username")

    # -------------------------------------------------------------------------
    # Receiving
    # -------------------------------------------------------------------------

    async def process_updates(self, store: "TaskStore") -> list[TelegramUser]:
        """
        Fetch pending updates and apply button presses through *store*.

        Returns the distinct users seen in this batch.
        """
        params: dict[str, Any] = {"timeout": 0, "allowed_updates": ALLOWED_UPDATES}
        if self._offset is not None:
            params["offset"] = self._offset
        updates = await self._call("getUpdates", params)

        users: dict[int, TelegramUser] = {}
        for update in updates:
            self._offset = max(self._offset or 0, update["update_id"] + 1)

            message = update.get("message")
            if message and message.get("from"):
                user = TelegramUser.model_validate(message["from"])
                users[user.id] = user

            query = update.get("callback_query")
            if query:
                user = TelegramUser.model_validate(query["from"])
                users[user.id] = user
                await self._handle_callback(store, query, user)

        return list(users.values())

    async def _handle_callback(
        self, store: "TaskStore", query: dict[str, Any], user: TelegramUser,
    ) -> None:
        message = query.get("message")
        if not message:
            return
        if not self.is_authorized(user.id):
            logger.warning("Ignoring callback from unauthorized user %s", user.id)
            await self._answer(query["id"], "You are not allowed to change tasks.")
            return

        action, task_id, days = parse_callback_data(query.get("data", ""))
        try:
            if action == "complete":
                task = await store.complete_task(task_id)
            elif action == "delay" and days:
                task = await store.delay_task(task_id, days)
            else:
                await self._answer(query["id"], "Unknown action.")
                return
        except TaskNotFoundError:
            await self._answer(query["id"], "Task not found.")
            return
        except TaskflowError as exc:
            logger.error("Telegram %s for task %s failed: %s", action, task_id, exc.message)
            await self._answer(query["id"], "Could not update the task, try again later.")
            return

        await self._answer(query["id"], "Done!")
        await self._call("editMessageText", {
            "chat_id": message["chat"]["id"],
            "message_id": message["message_id"],
            "text": format_task_message(task),
            "parse_mode": "Markdown",
            "reply_markup": task_keyboard(task),
        })

    async def _answer(self, query_id: str, text: str) -> None:
        await self._call("answerCallbackQuery", {"callback_query_id": query_id, "text": text})

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    async def _call(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.post(f"{self._base_url}/{method}", json=params or {})
        except httpx.TimeoutException as exc:
            raise ConnectivityError(f"Telegram {method} timed out", code=ErrorCodes.TIMEOUT) from exc
        except httpx.TransportError as exc:
            raise ConnectivityError(f"Telegram unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400:
            raise remote_error_for_status(response.status_code, data.get("description", ""))
        if not data.get("ok"):
            raise RemoteError(
                data.get("error_code"),
                data.get("description") or "Unknown Telegram API error",
            )
        return data["result"]
