"""Anthropic Messages API adapter."""

from __future__ import annotations

import logging
from typing import Sequence

import anthropic
from tenacity import (
    retry,
    stop_after_attempt,
    wait_random_exponential,
    retry_if_exception_type,
)

from app.services.ai.base import ProviderAdapter, carries_search_results, split_system_prompt
from app.types.chat_contract import ChatTurn
from config import settings

_LOGGER = logging.getLogger(__name__)

RETRY_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class AnthropicAdapter(ProviderAdapter):
    name = "anthropic"

    def __init__(
        self,
        api_key: str | None,
        system_prompt: str = settings.SYSTEM_PROMPT,
        timeout: float = settings.AI_TIMEOUT,
        max_tokens: int = settings.AI_MAX_OUTPUT_TOKENS,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, timeout=self._timeout)
        return self._client

    @retry(
        wait=wait_random_exponential(multiplier=1, max=30),
        stop=stop_after_attempt(settings.AI_MAX_ATTEMPTS),
        retry=retry_if_exception_type(RETRY_ERRORS),
        reraise=True,
    )
    async def _create(self, **params):
        return await self.client.messages.create(**params)

    async def complete(self, message: str, history: Sequence[ChatTurn], model: str) -> str:
        _LOGGER.debug("Sending message to anthropic using model %s", model)
        system, turns = split_system_prompt(history, self.system_prompt)
        messages = [{"role": t["role"], "content": t["content"]} for t in turns]
        messages.append({"role": "user", "content": message})
        response = await self._create(
            model=model,
            system=system,
            messages=messages,
            max_tokens=self.max_tokens,
            temperature=0.3 if carries_search_results(message, history) else 0.7,
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise ValueError("Empty completion from anthropic")
        return text

    async def list_models(self) -> list[str]:
        return sorted([m.id async for m in self.client.models.list()])
