"""Provider adapter interface and the history shaping shared by adapters."""

from __future__ import annotations

import abc
from datetime import datetime
from typing import List, Protocol, Sequence, runtime_checkable

from app.types.chat_contract import ChatTurn

# Marker the message pipeline puts in front of injected search results
SEARCH_RESULTS_MARKER = "### Search Results"


class ProviderAdapter(abc.ABC):
    """Uniform completion interface over one AI provider."""

    name: str

    @abc.abstractmethod
    async def complete(self, message: str, history: Sequence[ChatTurn], model: str) -> str:
        """Return plain completion text; raise on any failure."""

    async def list_models(self) -> list[str]:
        """Models the provider reports; used by the model listing script."""
        return []


@runtime_checkable
class PrimaryCapabilities(Protocol):
    """Extra operations the primary provider must offer."""

    async def translate(self, text: str, source_language: str, target_language: str) -> str: ...

    async def extract_reminder_fields(self, text: str, now: datetime) -> str: ...

    async def needs_search(self, query: str) -> bool: ...


def has_system_turn(history: Sequence[ChatTurn]) -> bool:
    return any(turn["role"] == "system" for turn in history)


def build_chat_messages(
    message: str, history: Sequence[ChatTurn], system_prompt: str
) -> List[dict]:
    """OpenAI-style message list: system prompt (if missing), history, then *message*."""
    messages: List[dict] = []
    if not has_system_turn(history):
        messages.append({"role": "system", "content": system_prompt})
    messages.extend({"role": turn["role"], "content": turn["content"]} for turn in history)
    messages.append({"role": "user", "content": message})
    return messages


def split_system_prompt(
    history: Sequence[ChatTurn], default_prompt: str
) -> tuple[str, List[ChatTurn]]:
    """Pull system turns out of *history* for APIs that take the prompt separately."""
    system_parts = [turn["content"] for turn in history if turn["role"] == "system"]
    rest = [turn for turn in history if turn["role"] != "system"]
    return ("\n\n".join(system_parts) if system_parts else default_prompt), rest


def carries_search_results(message: str, history: Sequence[ChatTurn]) -> bool:
    if SEARCH_RESULTS_MARKER in message:
        return True
    return any(
        turn["role"] == "system" and "search results" in turn["content"].lower()
        for turn in history
    )
