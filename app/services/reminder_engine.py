"""
Reminder engine: natural-language extraction, persistence, timers and delivery.

Lifecycle of a reminder row::

    Pending(future) ──timer/sweep──▶ Pending(due) ──claim──▶ Triggered

Delivery is at-most-once. ``deliver()`` claims the row (``is_triggered``
false→true through a conditional UPDATE) *before* sending, so a timer and a
sweep racing for the same reminder produce a single notification. A send that
fails is logged and the reminder stays triggered.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

import db
from app.services.ai.router import AIRouter
from app.types.chat_contract import ExtractedReminder
from app.utils.transport import MessagingTransport

_LOGGER = logging.getLogger(__name__)


class RemovalResult(enum.Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"
    NOT_OWNER = "not_owner"


def compose_notification(reminder: db.Reminder, prefix: str) -> str:
    text = f"{prefix}{reminder.content}"
    if reminder.is_group:
        text = f"@{reminder.user_id} {text}"
    return text


class ReminderEngine:
    def __init__(
        self,
        router: AIRouter,
        transport: MessagingTransport,
        sweep_interval: float = 60.0,
        prefix: str = "⏰ Reminder: ",
        clock: Callable[[], datetime] | None = None,
    ):
        self.router = router
        self.transport = transport
        self.sweep_interval = sweep_interval
        self.prefix = prefix
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._timers: dict[int, asyncio.Task] = {}
        self._in_flight: set[int] = set()
        self._sweep_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Extraction / CRUD
    # ------------------------------------------------------------------
    async def extract(self, text: str) -> Optional[ExtractedReminder]:
        """Structured (time, content) for *text*, or None when the answer is unusable.

        Provider errors propagate (``ProviderError`` / ``PrimaryProviderUnavailable``);
        a malformed or incomplete answer is not an error.
        """
        raw_json = await self.router.extract_reminder_fields(text)
        try:
            return ExtractedReminder.model_validate_json(raw_json or "")
        except ValidationError as exc:
            _LOGGER.info("Reminder text not understood (%s): %r", exc.error_count(), text)
            return None

    async def create(
        self,
        user_id: str,
        chat_id: str,
        content: str,
        time: datetime | None,
        is_group: bool = False,
    ) -> Optional[int]:
        if not user_id or not chat_id or not content or not content.strip() or time is None:
            _LOGGER.warning("Refusing to create incomplete reminder for user %r", user_id)
            return None
        reminder_id = await db.insert_reminder(user_id, chat_id, content.strip(), time, is_group)
        _LOGGER.info("Reminder %s stored for %s at %s", reminder_id, user_id, db.to_utc(time))
        self._schedule(reminder_id, db.to_utc(time))
        return reminder_id

    async def list(self, user_id: str) -> list[db.Reminder]:
        return await db.list_pending_reminders(user_id)

    async def remove_reminder(self, reminder_id: int, user_id: str) -> RemovalResult:
        reminder = await db.get_reminder(reminder_id)
        if reminder is None:
            return RemovalResult.NOT_FOUND
        if reminder.user_id != user_id:
            _LOGGER.warning("User %s tried to remove reminder %s of %s",
                            user_id, reminder_id, reminder.user_id)
            return RemovalResult.NOT_OWNER

        # Cancel first so the timer cannot fire for a row we are about to delete
        self.cancel_timer(reminder_id)
        if not await db.delete_reminder(reminder_id, user_id):
            return RemovalResult.NOT_FOUND
        _LOGGER.info("Reminder %s removed by %s", reminder_id, user_id)
        return RemovalResult.REMOVED

    async def remove(self, reminder_id: int, user_id: str) -> bool:
        return await self.remove_reminder(reminder_id, user_id) is RemovalResult.REMOVED

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def deliver(self, reminder_id: int) -> bool:
        """Fire one reminder. Returns True when a notification attempt was made."""
        if reminder_id in self._in_flight:
            return False
        self._in_flight.add(reminder_id)
        try:
            reminder = await db.get_reminder(reminder_id)
            if reminder is None:
                _LOGGER.info("Reminder %s no longer exists, skipping", reminder_id)
                return False
            if reminder.is_triggered:
                return False
            if not await db.claim_reminder(reminder_id):
                return False

            text = compose_notification(reminder, self.prefix)
            try:
                sent = await self.transport.send_text(reminder.chat_id, text)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Failed to send reminder %s: %s", reminder_id, exc, exc_info=True)
                sent = False
            if sent:
                _LOGGER.info("Reminder %s sent to %s", reminder_id, reminder.chat_id)
            else:
                _LOGGER.error("Reminder %s was not delivered; left marked as triggered", reminder_id)
            return True
        finally:
            self._in_flight.discard(reminder_id)

    async def sweep(self) -> int:
        """Deliver every due, untriggered reminder. Returns the number attempted."""
        due = await db.fetch_due_reminders(self._clock())
        fired = 0
        for reminder in due:
            if await self.deliver(reminder.id):
                fired += 1
        if fired:
            _LOGGER.info("Sweep delivered %d reminder(s)", fired)
        return fired

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    @property
    def scheduled_ids(self) -> set[int]:
        return set(self._timers)

    def _schedule(self, reminder_id: int, trigger_time: datetime) -> None:
        self.cancel_timer(reminder_id)
        task = asyncio.create_task(
            self._wait_and_deliver(reminder_id, trigger_time),
            name=f"reminder-{reminder_id}",
        )
        self._timers[reminder_id] = task

    def cancel_timer(self, reminder_id: int) -> bool:
        task = self._timers.pop(reminder_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def _wait_and_deliver(self, reminder_id: int, trigger_time: datetime) -> None:
        try:
            delay = (trigger_time - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            await self.deliver(reminder_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            # The sweep picks the reminder up again
            _LOGGER.error("Timer for reminder %s failed: %s", reminder_id, exc, exc_info=True)
        finally:
            if self._timers.get(reminder_id) is asyncio.current_task():
                del self._timers[reminder_id]

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Reminder sweep failed: %s", exc, exc_info=True)

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Fire overdue reminders, arm timers for the rest, start the sweep."""
        now = self._clock()
        pending = await db.fetch_pending_reminders()
        due = [r for r in pending if db.to_utc(r.trigger_time) <= now]
        upcoming = [r for r in pending if db.to_utc(r.trigger_time) > now]

        for reminder in due:
            await self.deliver(reminder.id)
        for reminder in upcoming:
            self._schedule(reminder.id, db.to_utc(reminder.trigger_time))

        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="reminder-sweep")
        _LOGGER.info(
            "Reminder engine started: %d overdue fired, %d scheduled", len(due), len(upcoming)
        )

    async def stop(self) -> None:
        tasks = list(self._timers.values())
        if self._sweep_task is not None:
            tasks.append(self._sweep_task)
            self._sweep_task = None
        self._timers.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
