"""
AI router: turns "send this message for this user" into exactly one provider call.

Selection policy, given the user's stored (engine, model):

1. preferred engine unavailable → first available provider (registry order)
   with its default model;
2. preferred model not offered by the engine → keep engine, use its default;
3. otherwise the preference verbatim.

There is no failover once a provider has been picked: an adapter failure
surfaces as ``ProviderError``. Translation, reminder extraction and the
search classifier always go to the primary provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Mapping, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError

from app.errors import NoProviderAvailable, PrimaryProviderUnavailable, ProviderError
from app.services.ai.base import PrimaryCapabilities, ProviderAdapter
from app.services.ai.registry import ProviderRegistry
from app.types.chat_contract import ChatTurn

_LOGGER = logging.getLogger(__name__)


class PreferenceStore(Protocol):
    """The slice of ``db`` the router needs."""

    def get_user_preferences(
        self, user_id: str, default_engine: str, default_model: str
    ) -> Awaitable: ...


@dataclass(frozen=True)
class Selection:
    engine: str
    model: str
    reason: str = "preference"  # preference | engine_fallback | model_fallback


class AIRouter:
    def __init__(
        self,
        registry: ProviderRegistry,
        adapters: Mapping[str, ProviderAdapter],
        preferences: PreferenceStore,
        default_engine: str,
        default_model: str,
        primary: str = "openai",
        clock: Callable[[], datetime] | None = None,
    ):
        missing = [name for name in registry.names() if name not in adapters]
        if missing:
            raise ValueError(f"no adapter registered for provider(s): {', '.join(missing)}")
        if primary not in adapters:
            raise ValueError(f"primary provider {primary!r} has no adapter")
        if not isinstance(adapters[primary], PrimaryCapabilities):
            raise ValueError(
                f"primary provider {primary!r} must implement translate, "
                "extract_reminder_fields and needs_search"
            )
        self.registry = registry
        self._adapters = dict(adapters)
        self._preferences = preferences
        self.default_engine = default_engine
        self.default_model = default_model
        self.primary = primary
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Provider / model selection
    # ------------------------------------------------------------------
    def resolve(self, engine: str, model: str) -> Selection:
        available = self.registry.list_available()
        if not available:
            raise NoProviderAvailable()

        if not self.registry.is_available(engine):
            fallback = available[0]
            _LOGGER.warning("Engine %s not available, falling back to %s", engine, fallback)
            return Selection(fallback, self.registry.default_model(fallback), "engine_fallback")

        if not self.registry.is_model_available(engine, model):
            default = self.registry.default_model(engine)
            _LOGGER.warning("Model %s not available for %s, using %s", model, engine, default)
            return Selection(engine, default, "model_fallback")

        return Selection(engine, model)

    async def select_for_user(self, user_id: str) -> Selection:
        try:
            pref = await self._preferences.get_user_preferences(
                user_id, self.default_engine, self.default_model
            )
            engine, model = pref.engine, pref.model
        except SQLAlchemyError as exc:
            _LOGGER.error("Could not load preferences for %s, using defaults: %s", user_id, exc)
            engine, model = self.default_engine, self.default_model
        return self.resolve(engine, model)

    # ------------------------------------------------------------------
    # Routed completion
    # ------------------------------------------------------------------
    async def route(
        self,
        user_id: str,
        chat_id: str,
        message: str,
        history: Sequence[ChatTurn],
    ) -> str:
        selection = await self.select_for_user(user_id)
        adapter = self._adapters[selection.engine]
        _LOGGER.debug(
            "Routing chat %s for user %s to %s/%s (%s)",
            chat_id, user_id, selection.engine, selection.model, selection.reason,
        )
        try:
            text = await adapter.complete(message, history, selection.model)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Provider %s failed: %s", selection.engine, exc, exc_info=True)
            raise ProviderError(selection.engine, exc) from exc
        if not text or not text.strip():
            raise ProviderError(selection.engine, "empty completion")
        return text

    # ------------------------------------------------------------------
    # Primary-provider operations
    # ------------------------------------------------------------------
    def _primary_adapter(self, operation: str) -> PrimaryCapabilities:
        if not self.registry.is_available(self.primary):
            raise PrimaryProviderUnavailable(self.primary, operation)
        return self._adapters[self.primary]  # type: ignore[return-value]

    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        adapter = self._primary_adapter("translation")
        try:
            return await adapter.translate(text, source_language, target_language)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Translation failed: %s", exc)
            raise ProviderError(self.primary, exc) from exc

    async def extract_reminder_fields(self, text: str) -> str:
        """Raw JSON answer of the extraction prompt, anchored at the current instant."""
        adapter = self._primary_adapter("reminder extraction")
        try:
            return await adapter.extract_reminder_fields(text, self._clock())
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Reminder extraction failed: %s", exc)
            raise ProviderError(self.primary, exc) from exc

    async def needs_search(self, query: str) -> bool:
        """Fails open: any problem means "yes, search"."""
        try:
            adapter = self._primary_adapter("search classification")
            return await adapter.needs_search(query)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Search classification unavailable, defaulting to true: %s", exc)
            return True

    async def prepare_search_query(self, query: str, chinese: bool = False) -> str:
        """Translate the query into the search language; the original on any failure."""
        target = "zh-CN" if chinese else "en"
        try:
            return await self.translate(query, "auto", target)
        except (PrimaryProviderUnavailable, ProviderError) as exc:
            _LOGGER.warning("Using untranslated search query: %s", exc)
            return query
