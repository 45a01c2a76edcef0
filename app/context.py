"""Process-scoped wiring: one ``AppContext`` owns every long-lived collaborator."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Mapping

import db
from app.services.ai.anthropic_adapter import AnthropicAdapter
from app.services.ai.base import ProviderAdapter
from app.services.ai.gemini_adapter import GeminiAdapter
from app.services.ai.openai_adapter import DeepSeekAdapter, OpenAIAdapter
from app.services.ai.registry import DEFAULT_PROVIDERS, ProviderRegistry
from app.services.ai.router import AIRouter
from app.services.commands import CommandDispatcher
from app.services.pipeline import MessagePipeline
from app.services.price_service import PriceService, run_price_broadcasts
from app.services.reminder_engine import ReminderEngine
from app.services.search_service import SearchService
from app.utils.transport import BridgeTransport, MessagingTransport, build_transport
from config import Settings, settings as default_settings

_LOGGER = logging.getLogger(__name__)


def build_adapters(registry: ProviderRegistry) -> dict[str, ProviderAdapter]:
    return {
        "openai": OpenAIAdapter(registry.credential("openai")),
        "anthropic": AnthropicAdapter(registry.credential("anthropic")),
        "gemini": GeminiAdapter(registry.credential("gemini")),
        "deepseek": DeepSeekAdapter(registry.credential("deepseek")),
    }


@dataclass
class AppContext:
    settings: Settings
    registry: ProviderRegistry
    router: AIRouter
    transport: MessagingTransport
    reminders: ReminderEngine
    search: SearchService
    prices: PriceService
    dispatcher: CommandDispatcher
    pipeline: MessagePipeline
    _background: list[asyncio.Task] = field(default_factory=list)

    async def start(self) -> None:
        await self.reminders.start()
        chat_ids = self.settings.CRYPTO_BROADCAST_CHAT_IDS
        if chat_ids:
            self._background.append(asyncio.create_task(
                run_price_broadcasts(
                    self.prices, self.transport, chat_ids,
                    self.settings.CRYPTO_BROADCAST_INTERVAL_HOURS,
                ),
                name="price-broadcasts",
            ))

    async def stop(self) -> None:
        await self.reminders.stop()
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        await self.search.aclose()
        await self.prices.aclose()
        if isinstance(self.transport, BridgeTransport):
            await self.transport.aclose()


def build_context(
    settings: Settings = default_settings,
    environ: Mapping[str, str] | None = None,
    adapters: Mapping[str, ProviderAdapter] | None = None,
    transport: MessagingTransport | None = None,
) -> AppContext:
    registry = ProviderRegistry.from_environment(
        DEFAULT_PROVIDERS, os.environ if environ is None else environ
    )
    _LOGGER.info("AI providers available: %s", ", ".join(registry.list_available()) or "none")

    router = AIRouter(
        registry,
        adapters or build_adapters(registry),
        preferences=db,
        default_engine=settings.DEFAULT_ENGINE,
        default_model=settings.DEFAULT_MODEL,
        primary=settings.PRIMARY_ENGINE,
    )
    transport = transport or build_transport(settings.MESSAGE_TRANSPORT)
    reminders = ReminderEngine(
        router,
        transport,
        sweep_interval=settings.REMINDER_SWEEP_INTERVAL_SECONDS,
        prefix=settings.REMINDER_PREFIX,
    )
    search = SearchService(settings.GOOGLE_API_KEY, settings.GOOGLE_SEARCH_ENGINE_ID,
                           settings.SEARCH_MAX_RESULTS)
    prices = PriceService(default_symbols=settings.CRYPTO_SYMBOLS)
    dispatcher = CommandDispatcher(
        router, reminders, transport, search, prices, prefix=settings.COMMAND_PREFIX
    )
    pipeline = MessagePipeline(
        router,
        dispatcher,
        transport,
        search,
        max_context_messages=settings.MAX_CONTEXT_MESSAGES,
        context_expiration_hours=settings.CONTEXT_EXPIRATION_HOURS,
        bot_name=settings.BOT_NAME,
    )
    return AppContext(
        settings=settings,
        registry=registry,
        router=router,
        transport=transport,
        reminders=reminders,
        search=search,
        prices=prices,
        dispatcher=dispatcher,
        pipeline=pipeline,
    )
