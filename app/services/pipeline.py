"""Inbound message pipeline: command routing, search augmentation, AI reply."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List

from sqlalchemy.exc import SQLAlchemyError

import db
from app.errors import NoProviderAvailable, ProviderError
from app.services.ai.router import AIRouter
from app.services.commands import NO_PROVIDER_REPLY, PROVIDER_ERROR_REPLY, CommandDispatcher
from app.services.search_service import SearchService, augment_message, is_chinese_search_requested
from app.types.chat_contract import ChatTurn, InboundMessage
from app.utils.message_parser import is_group_chat, parse_command, remove_bot_mention
from app.utils.transport import MessagingTransport

_LOGGER = logging.getLogger(__name__)


class MessagePipeline:
    def __init__(
        self,
        router: AIRouter,
        dispatcher: CommandDispatcher,
        transport: MessagingTransport,
        search: SearchService,
        max_context_messages: int = 10,
        context_expiration_hours: int = 24,
        bot_name: str = "bot",
    ):
        self.router = router
        self.dispatcher = dispatcher
        self.transport = transport
        self.search = search
        self.max_context_messages = max_context_messages
        self.context_max_age = timedelta(hours=context_expiration_hours)
        self.bot_name = bot_name

    async def handle(self, event: InboundMessage) -> str | None:
        """Process one inbound event; returns the reply sent, if any."""
        if event.is_status or event.is_from_self:
            return None

        body = remove_bot_mention(event.body, self.bot_name)
        if not body:
            return None
        update = {"body": body}
        if not event.is_group and is_group_chat(event.chat_id):
            # Bridges that omit isGroup still use group chat ids
            update["is_group"] = True
        event = event.model_copy(update=update)

        command = parse_command(body, self.dispatcher.prefix)
        if command is not None:
            _LOGGER.debug("Command %s from %s", command.name, event.user_id)
            return await self.dispatcher.dispatch(event, command)

        return await self.reply(event)

    async def reply(self, event: InboundMessage) -> str:
        history = await self.history(event.chat_id)
        await self._save(event, event.body, "user")

        message = await self.augment(event.body)
        try:
            reply = await self.router.route(event.user_id, event.chat_id, message, history)
        except NoProviderAvailable:
            _LOGGER.error("No AI providers configured; cannot answer %s", event.chat_id)
            reply = NO_PROVIDER_REPLY
        except ProviderError as exc:
            _LOGGER.error("AI reply for %s failed: %s", event.chat_id, exc)
            reply = PROVIDER_ERROR_REPLY
        else:
            await self._save(event, reply, "assistant")

        if not await self.transport.send_text(event.chat_id, reply):
            _LOGGER.error("Reply to %s was not delivered", event.chat_id)
        return reply

    async def augment(self, text: str) -> str:
        """Add web-search results to *text* when the classifier asks for them."""
        if not await self.router.needs_search(text):
            return text
        chinese = is_chinese_search_requested(text)
        query = await self.router.prepare_search_query(text, chinese)
        results = await self.search.search(query, "zh-CN" if chinese else "en")
        if results:
            _LOGGER.debug("Adding %d search results to AI context", len(results))
        return augment_message(text, results)

    async def history(self, chat_id: str) -> List[ChatTurn]:
        try:
            rows = await db.fetch_chat_history(
                chat_id, self.max_context_messages, self.context_max_age
            )
        except SQLAlchemyError as exc:
            _LOGGER.error("Error loading history for %s: %s", chat_id, exc)
            return []
        return [ChatTurn(role=row.role, content=row.content) for row in rows]

    async def _save(self, event: InboundMessage, content: str, role: str) -> None:
        sender = event.user_id if role == "user" else "assistant"
        try:
            await db.save_message(event.chat_id, sender, content, role, event.is_group)
        except SQLAlchemyError as exc:
            _LOGGER.error("Error saving %s message for %s: %s", role, event.chat_id, exc)
