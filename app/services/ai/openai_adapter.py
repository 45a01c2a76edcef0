"""
OpenAI-compatible adapters (OpenAI itself and DeepSeek).

OpenAI is the primary provider: besides chat completion it also handles
translation, reminder extraction and the "does this need a web search"
classification.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Sequence

import openai
from openai import AsyncOpenAI
from tenacity import (
    retry,
    stop_after_attempt,
    wait_random_exponential,
    retry_if_exception_type,
)

from app.services.ai.base import (
    ProviderAdapter,
    build_chat_messages,
    carries_search_results,
)
from app.types.chat_contract import ChatTurn
from config import settings

_LOGGER = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────
# Per-model parameter policy
# ──────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ModelPolicy:
    accepts_temperature: bool = True
    token_param: str = "max_tokens"
    temperature: float | None = None  # overrides the adapter default when set


DEFAULT_POLICY = ModelPolicy()

# Reasoning families reject temperature overrides and renamed the length cap.
OPENAI_POLICIES: tuple[tuple[str, ModelPolicy], ...] = (
    ("gpt-5", ModelPolicy(accepts_temperature=False, token_param="max_completion_tokens")),
    ("o1", ModelPolicy(accepts_temperature=False, token_param="max_completion_tokens")),
    ("o3", ModelPolicy(accepts_temperature=False, token_param="max_completion_tokens")),
    ("o4", ModelPolicy(accepts_temperature=False, token_param="max_completion_tokens")),
)

DEEPSEEK_POLICIES: tuple[tuple[str, ModelPolicy], ...] = (
    ("deepseek-reasoner", ModelPolicy(temperature=0.3)),
)


def policy_for(model: str, policies: Sequence[tuple[str, ModelPolicy]]) -> ModelPolicy:
    for prefix, policy in policies:
        if model.startswith(prefix):
            return policy
    return DEFAULT_POLICY


def completion_params(
    model: str,
    messages: List[dict],
    temperature: float,
    max_tokens: int,
    policies: Sequence[tuple[str, ModelPolicy]],
) -> Dict[str, Any]:
    policy = policy_for(model, policies)
    params: Dict[str, Any] = {"model": model, "messages": messages}
    if policy.accepts_temperature:
        params["temperature"] = policy.temperature if policy.temperature is not None else temperature
    params[policy.token_param] = max_tokens
    return params


# ──────────────────────────────────────────────────────────────────────────
# Prompts
# ──────────────────────────────────────────────────────────────────────────

_TRANSLATE_PROMPT = (
    "You are a translator. Translate the text from {source} to {target}. "
    "Only return the translated text without any notes or explanations."
)

_REMINDER_PROMPT = (
    "Extract time and content from reminder text. "
    "The current time is {now_human} (ISO: {now_iso}). "
    "Resolve relative phrases (\"in 2 hours\", \"tomorrow at 3pm\") and any time zone "
    "mentioned in the text against the current time. "
    "Return ONLY a JSON object with keys: "
    "\"time\" (absolute ISO 8601 timestamp with offset; use UTC when no zone is given), "
    "\"content\" (the reminder message) and "
    "\"relativeTime\" (human readable relative time). "
    "If the text has no discernible time, return {{}}.\n\n"
    "Example: {{\"time\": \"2025-05-20T15:30:00Z\", \"content\": \"Call John\", "
    "\"relativeTime\": \"tomorrow at 3:30 PM\"}}"
)

_NEEDS_SEARCH_PROMPT = (
    "Determine if the query requires current information, external search, or "
    "information that might not be in your knowledge. Respond with a JSON object "
    "with a single \"needsSearch\" boolean field. Example: {\"needsSearch\": true}"
)

# Retry only on transport / rate-limit / backend errors
RETRY_ERRORS = (
    openai.APIStatusError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.APITimeoutError,
)


# ──────────────────────────────────────────────────────────────────────────
# Adapters
# ──────────────────────────────────────────────────────────────────────────


class OpenAICompatibleAdapter(ProviderAdapter):
    """Chat Completions adapter for any OpenAI-wire-compatible provider."""

    name = "openai"
    policies: Sequence[tuple[str, ModelPolicy]] = OPENAI_POLICIES
    model_filter = ("gpt", "o1", "o3", "o4")

    def __init__(
        self,
        api_key: str | None,
        base_url: str | None = None,
        system_prompt: str = settings.SYSTEM_PROMPT,
        timeout: float = settings.AI_TIMEOUT,
        max_tokens: int = settings.AI_MAX_OUTPUT_TOKENS,
        client: AsyncOpenAI | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._client = client
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens

    @property
    def client(self) -> AsyncOpenAI:
        # Built on first use: the SDK refuses to construct without a key
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key, base_url=self._base_url, timeout=self._timeout
            )
        return self._client

    @retry(
        wait=wait_random_exponential(multiplier=1, max=30),
        stop=stop_after_attempt(settings.AI_MAX_ATTEMPTS),
        retry=retry_if_exception_type(RETRY_ERRORS),
        reraise=True,
    )
    async def _create(self, **params: Any) -> str:
        response = await self.client.chat.completions.create(**params)
        if not response.choices:
            raise ValueError(f"No response from {self.name}")
        return response.choices[0].message.content or ""

    async def complete(self, message: str, history: Sequence[ChatTurn], model: str) -> str:
        _LOGGER.debug("Sending message to %s using model %s", self.name, model)
        messages = build_chat_messages(message, history, self.system_prompt)
        # Lower temperature keeps answers close to injected search results
        temperature = 0.3 if carries_search_results(message, history) else 0.7
        params = completion_params(model, messages, temperature, self.max_tokens, self.policies)
        text = await self._create(**params)
        if not text.strip():
            raise ValueError(f"Empty completion from {self.name}")
        return text

    async def list_models(self) -> list[str]:
        models = [m.id async for m in self.client.models.list()]
        return sorted(m for m in models if m.startswith(self.model_filter) and "instruct" not in m)


class OpenAIAdapter(OpenAICompatibleAdapter):
    """Primary provider: completion plus the auxiliary assistant tasks."""

    name = "openai"

    def __init__(
        self,
        api_key: str | None,
        utility_model: str = settings.OPENAI_UTILITY_MODEL,
        extraction_model: str = settings.OPENAI_EXTRACTION_MODEL,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self.utility_model = utility_model
        self.extraction_model = extraction_model

    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        messages = [
            {"role": "system", "content": _TRANSLATE_PROMPT.format(
                source=source_language, target=target_language
            )},
            {"role": "user", "content": text},
        ]
        params = completion_params(self.utility_model, messages, 0.3, self.max_tokens, self.policies)
        translated = (await self._create(**params)).strip()
        if not translated:
            raise ValueError("Empty translation from openai")
        return translated

    async def extract_reminder_fields(self, text: str, now: datetime) -> str:
        """Return the model's raw JSON answer; validation is the caller's job."""
        messages = [
            {"role": "system", "content": _REMINDER_PROMPT.format(
                now_human=now.strftime("%A, %d %B %Y %H:%M:%S %Z"),
                now_iso=now.isoformat(),
            )},
            {"role": "user", "content": text},
        ]
        params = completion_params(self.extraction_model, messages, 0.2, self.max_tokens, self.policies)
        params["response_format"] = {"type": "json_object"}
        raw_json = await self._create(**params)
        _LOGGER.info("Reminder extraction raw JSON: %s", raw_json)
        return raw_json

    async def needs_search(self, query: str) -> bool:
        messages = [
            {"role": "system", "content": _NEEDS_SEARCH_PROMPT},
            {"role": "user", "content": query},
        ]
        params = completion_params(self.extraction_model, messages, 0.1, 50, self.policies)
        params["response_format"] = {"type": "json_object"}
        raw_json = await self._create(**params)
        try:
            return json.loads(raw_json).get("needsSearch") is True
        except (json.JSONDecodeError, AttributeError) as exc:
            _LOGGER.warning("Unparseable search classification %r: %s", raw_json, exc)
            return True


class DeepSeekAdapter(OpenAICompatibleAdapter):
    name = "deepseek"
    policies = DEEPSEEK_POLICIES
    model_filter = ("deepseek",)

    def __init__(self, api_key: str | None, base_url: str = settings.DEEPSEEK_BASE_URL, **kwargs: Any):
        super().__init__(api_key, base_url=base_url, **kwargs)
