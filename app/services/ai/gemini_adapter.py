"""Google Gemini adapter (google-genai SDK)."""

from __future__ import annotations

import logging
from typing import List, Sequence

from google import genai
from google.genai import types
from google.genai.errors import ServerError
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


def to_gemini_contents(history: Sequence[ChatTurn], message: str) -> List[types.Content]:
    """Gemini calls the assistant role "model" and takes the system prompt separately."""
    contents = [
        types.Content(
            role="model" if turn["role"] == "assistant" else "user",
            parts=[types.Part(text=turn["content"])],
        )
        for turn in history
        if turn["role"] != "system"
    ]
    contents.append(types.Content(role="user", parts=[types.Part(text=message)]))
    return contents


class GeminiAdapter(ProviderAdapter):
    name = "gemini"

    def __init__(
        self,
        api_key: str | None,
        system_prompt: str = settings.SYSTEM_PROMPT,
        max_tokens: int = settings.AI_MAX_OUTPUT_TOKENS,
        client: genai.Client | None = None,
    ):
        self._api_key = api_key
        self._client = client
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    @retry(
        wait=wait_random_exponential(multiplier=1, max=30),
        stop=stop_after_attempt(settings.AI_MAX_ATTEMPTS),
        retry=retry_if_exception_type(ServerError),
        reraise=True,
    )
    async def _generate(self, model: str, contents, config: types.GenerateContentConfig):
        return await self.client.aio.models.generate_content(
            model=model, contents=contents, config=config
        )

    async def complete(self, message: str, history: Sequence[ChatTurn], model: str) -> str:
        _LOGGER.debug("Sending message to gemini using model %s", model)
        system, _ = split_system_prompt(history, self.system_prompt)
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=0.3 if carries_search_results(message, history) else 0.7,
            top_p=0.95,
            top_k=40,
            max_output_tokens=self.max_tokens,
        )
        response = await self._generate(model, to_gemini_contents(history, message), config)
        text = response.text or ""
        if not text.strip():
            raise ValueError("Empty completion from gemini")
        return text.strip()

    async def list_models(self) -> list[str]:
        pager = await self.client.aio.models.list()
        return sorted([m.name.removeprefix("models/") async for m in pager])
