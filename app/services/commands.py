"""Chat commands (``$help``, ``$use``, ``$reminder`` ...) and their handlers.

Every handler returns the reply text; the dispatcher sends it. Failures inside a
handler are logged and replaced with a generic apology so no stack trace
reaches the chat.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict

import db
from app.errors import NoProviderAvailable, PrimaryProviderUnavailable, ProviderError
from app.services.ai.router import AIRouter
from app.services.price_service import PriceService, format_prices
from app.services.reminder_engine import ReminderEngine, RemovalResult
from app.services.search_service import SearchService, format_search_results, is_chinese_search_requested
from app.types.chat_contract import InboundMessage
from app.utils.message_parser import ParsedCommand
from app.utils.transport import MessagingTransport

_LOGGER = logging.getLogger(__name__)

Handler = Callable[[InboundMessage, ParsedCommand], Awaitable[str]]

GENERIC_ERROR = "Sorry, something went wrong while running that command. Please try again later."
NO_PROVIDER_REPLY = "Sorry, no AI engine is configured right now, so I can't answer that."
PROVIDER_ERROR_REPLY = "I'm sorry, I encountered an error processing your request. Please try again later."


def relative_time(target: datetime, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    diff = (db.to_utc(target) - now).total_seconds()
    if diff < 0:
        return "in the past"
    for unit, seconds in (("day", 86400), ("hour", 3600), ("minute", 60)):
        count = int(diff // seconds)
        if count > 0:
            return f"in {count} {unit}{'s' if count > 1 else ''}"
    count = int(diff)
    return f"in {count} second{'s' if count != 1 else ''}"


class CommandDispatcher:
    def __init__(
        self,
        router: AIRouter,
        reminders: ReminderEngine,
        transport: MessagingTransport,
        search: SearchService,
        prices: PriceService,
        prefix: str = "$",
        clock: Callable[[], datetime] | None = None,
    ):
        self.router = router
        self.reminders = reminders
        self.transport = transport
        self.search = search
        self.prices = prices
        self.prefix = prefix
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.handlers: Dict[str, Handler] = {
            "help": self.handle_help,
            "list": self.handle_list,
            "use": self.handle_use,
            "model": self.handle_model,
            "clear": self.handle_clear,
            "price": self.handle_price,
            "reminder": self.handle_reminder,
            "listrem": self.handle_list_reminders,
            "rmrem": self.handle_remove_reminder,
            "search": self.handle_search,
        }

    async def dispatch(self, event: InboundMessage, command: ParsedCommand) -> str:
        handler = self.handlers.get(command.name)
        if handler is None:
            reply = f"Unknown command '{command.name}'. Type {self.prefix}help for the command list."
        else:
            try:
                reply = await handler(event, command)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Command %s failed: %s", command.name, exc, exc_info=True)
                reply = GENERIC_ERROR
        await self.transport.send_text(event.chat_id, reply)
        return reply

    # ------------------------------------------------------------------
    # Engine / model selection
    # ------------------------------------------------------------------
    async def handle_help(self, event: InboundMessage, command: ParsedCommand) -> str:
        p = self.prefix
        return "\n".join([
            "*Available commands*",
            f"{p}help – show this message",
            f"{p}list – list AI engines and models",
            f"{p}use <engine> – switch AI engine",
            f"{p}model <model> – switch model of the current engine",
            f"{p}clear – clear this chat's history",
            f"{p}price [symbols] – cryptocurrency prices",
            f"{p}reminder <text> – set a reminder, e.g. {p}reminder tomorrow 3pm call mom",
            f"{p}listrem – list your reminders",
            f"{p}rmrem <id> – remove a reminder",
            f"{p}search <query> – search the web",
        ])

    async def handle_list(self, event: InboundMessage, command: ParsedCommand) -> str:
        registry = self.router.registry
        try:
            current = await self.router.select_for_user(event.user_id)
        except NoProviderAvailable:
            current = None
        lines = ["*AI engines*", ""]
        for name in registry.names():
            desc = registry.descriptor(name)
            status = "✅" if registry.is_available(name) else "❌ (no API key)"
            marker = " ← current" if current and current.engine == name else ""
            lines.append(f"*{name}* {status}{marker}")
            lines.append("  models: " + ", ".join(desc.models))
        if current:
            lines.extend(["", f"Current: {current.engine} / {current.model}"])
        return "\n".join(lines)

    async def handle_use(self, event: InboundMessage, command: ParsedCommand) -> str:
        if not command.args:
            return f"Please specify an engine, e.g. {self.prefix}use openai"
        engine = command.args[0].lower()
        registry = self.router.registry
        if registry.descriptor(engine) is None:
            return f"Unknown engine '{engine}'. Available: {', '.join(registry.names())}"
        if not registry.is_available(engine):
            return f"Engine '{engine}' is not available (no API key configured)."
        model = registry.default_model(engine)
        await db.set_user_engine(event.user_id, engine, model)
        return f"✅ Switched to {engine} (model {model})."

    async def handle_model(self, event: InboundMessage, command: ParsedCommand) -> str:
        if not command.args:
            return f"Please specify a model, e.g. {self.prefix}model gpt-4o"
        model = command.args[0]
        try:
            current = await self.router.select_for_user(event.user_id)
        except NoProviderAvailable:
            return NO_PROVIDER_REPLY
        registry = self.router.registry
        if not registry.is_model_available(current.engine, model):
            desc = registry.descriptor(current.engine)
            reply = (
                f"Model '{model}' is not available for {current.engine}. "
                f"Choose one of: {', '.join(desc.models)}"
            )
            owner = registry.find_provider_for_model(model)
            if owner and registry.is_available(owner):
                reply += f"\n'{model}' belongs to {owner}: use {self.prefix}use {owner} first."
            return reply
        if current.reason == "engine_fallback":
            # Stored engine is unusable; persist the engine actually serving the user
            await db.set_user_engine(event.user_id, current.engine, model)
        else:
            await db.set_user_model(event.user_id, model, default_engine=current.engine)
        return f"✅ Model set to {model} ({current.engine})."

    async def handle_clear(self, event: InboundMessage, command: ParsedCommand) -> str:
        removed = await db.clear_chat_history(event.chat_id)
        return f"🧹 Chat history cleared ({removed} messages)."

    # ------------------------------------------------------------------
    # Prices / search
    # ------------------------------------------------------------------
    async def handle_price(self, event: InboundMessage, command: ParsedCommand) -> str:
        prices = await self.prices.get_prices(command.args or None)
        return format_prices(prices)

    async def handle_search(self, event: InboundMessage, command: ParsedCommand) -> str:
        if not command.arg_text:
            return f"Please specify a search query, e.g. {self.prefix}search latest news"
        language = "zh-CN" if is_chinese_search_requested(command.arg_text) else "en"
        results = await self.search.search(command.arg_text, language)
        if not results:
            return "No search results found."
        return "*Search results*\n\n" + format_search_results(results, limit=5)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------
    async def handle_reminder(self, event: InboundMessage, command: ParsedCommand) -> str:
        text = command.arg_text
        if not text:
            return (
                f"Please tell me what to remind you about, e.g. "
                f"{self.prefix}reminder tomorrow at 3pm call mom"
            )
        try:
            extracted = await self.reminders.extract(text)
        except PrimaryProviderUnavailable:
            return "Reminders are unavailable right now: the AI service is not configured."
        except ProviderError:
            return "Sorry, I couldn't process your reminder. Please try again later."
        if extracted is None:
            return "I couldn't understand the time for this reminder. Please rephrase with a clearer time."

        reminder_id = await self.reminders.create(
            event.user_id, event.chat_id, extracted.content, extracted.time, event.is_group
        )
        if reminder_id is None:
            return "Sorry, I couldn't set your reminder. Please try different wording."
        when = extracted.relative_time or relative_time(extracted.time, self._clock())
        return f"✅ Reminder set for *{when}*:\n\n{extracted.content}\n\nReminder ID: {reminder_id}"

    async def handle_list_reminders(self, event: InboundMessage, command: ParsedCommand) -> str:
        reminders = await self.reminders.list(event.user_id)
        if not reminders:
            return "You have no active reminders."
        now = self._clock()
        lines = ["*Your active reminders:*", ""]
        for r in reminders:
            at = db.to_utc(r.trigger_time)
            lines.append(f"*ID: {r.id}*")
            lines.append(r.content)
            lines.append(f"Time: {at:%Y-%m-%d %H:%M} UTC ({relative_time(at, now)})")
            lines.append("")
        lines.append(f"To remove a reminder, use {self.prefix}rmrem <id>")
        return "\n".join(lines)

    async def handle_remove_reminder(self, event: InboundMessage, command: ParsedCommand) -> str:
        if not command.args:
            return f"Please give the reminder ID to remove, e.g. {self.prefix}rmrem 123"
        try:
            reminder_id = int(command.args[0])
        except ValueError:
            return f"'{command.args[0]}' is not a valid reminder ID."

        result = await self.reminders.remove_reminder(reminder_id, event.user_id)
        if result is RemovalResult.NOT_FOUND:
            return f"No reminder found with ID {reminder_id}."
        if result is RemovalResult.NOT_OWNER:
            return "You don't have permission to remove this reminder."
        return f"✅ Reminder {reminder_id} removed."
