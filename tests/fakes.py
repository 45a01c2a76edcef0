"""Test doubles shared by the test modules (transport, provider adapters, registries)."""

import json
from datetime import datetime, timezone
from typing import Sequence

from app.services.ai.base import ProviderAdapter
from app.services.ai.registry import DEFAULT_PROVIDERS, ProviderRegistry

NOW = datetime(2025, 5, 20, 12, 0, tzinfo=timezone.utc)

CREDENTIAL_ENV = {d.name: d.credential_env for d in DEFAULT_PROVIDERS}


class FakeTransport:
    def __init__(self):
        self.sent = []

    async def send_text(self, chat_id: str, text: str) -> bool:
        self.sent.append((chat_id, text))
        return True


class FakeAdapter(ProviderAdapter):
    def __init__(self, name: str, reply: str = "hello from {name}"):
        self.name = name
        self.reply = reply
        self.calls = []

    async def complete(self, message: str, history: Sequence, model: str) -> str:
        self.calls.append((message, list(history), model))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply.format(name=self.name)


class FakePrimaryAdapter(FakeAdapter):
    """Fake OpenAI: completion plus the auxiliary operations."""

    def __init__(self, name: str = "openai", reminder_json=None, search: bool = False, **kwargs):
        super().__init__(name, **kwargs)
        self.reminder_json = reminder_json if reminder_json is not None else "{}"
        self.search = search
        self.extract_calls = []
        self.translations = []

    async def translate(self, text, source_language, target_language):
        self.translations.append((text, target_language))
        return text

    async def extract_reminder_fields(self, text, now):
        self.extract_calls.append((text, now))
        if isinstance(self.reminder_json, Exception):
            raise self.reminder_json
        if isinstance(self.reminder_json, dict):
            return json.dumps(self.reminder_json)
        return self.reminder_json

    async def needs_search(self, query):
        if isinstance(self.search, Exception):
            raise self.search
        return self.search


def make_registry(*available: str) -> ProviderRegistry:
    return ProviderRegistry(
        DEFAULT_PROVIDERS, {CREDENTIAL_ENV[name]: f"key-{name}" for name in available}
    )


def make_adapters(primary: FakePrimaryAdapter | None = None) -> dict:
    adapters = {d.name: FakeAdapter(d.name) for d in DEFAULT_PROVIDERS}
    adapters["openai"] = primary or FakePrimaryAdapter()
    return adapters
