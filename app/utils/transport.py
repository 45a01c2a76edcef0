"""Outbound messaging transports.

Everything above this module only knows ``send_text(chat_id, text) -> bool``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx
import telnyx

from config import settings

_LOGGER = logging.getLogger(__name__)


class MessagingTransport(Protocol):
    async def send_text(self, chat_id: str, text: str) -> bool: ...


class TelnyxTransport:
    """SMS via Telnyx. Without credentials it only logs (dev mode)."""

    def __init__(self, api_key: str | None = None, from_number: str | None = None):
        self.api_key = api_key
        self.from_number = from_number
        if api_key:
            telnyx.api_key = api_key

    @property
    def dev_mode(self) -> bool:
        return not self.api_key or not self.from_number

    async def send_text(self, chat_id: str, text: str) -> bool:
        if self.dev_mode:
            _LOGGER.info("[SMS] DEV mode: would send to %s: %s", chat_id, text)
            return True
        try:
            await asyncio.to_thread(
                telnyx.Message.create, from_=self.from_number, to=chat_id, text=text
            )
        except telnyx.error.TelnyxError as exc:
            _LOGGER.error("[SMS] send to %s failed: %s", chat_id, exc)
            return False
        return True


class BridgeTransport:
    """POSTs ``{chatId, text}`` to a chat bridge (e.g. a WhatsApp gateway)."""

    def __init__(
        self,
        send_url: str | None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        self.send_url = send_url
        self.token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send_text(self, chat_id: str, text: str) -> bool:
        if not self.send_url:
            _LOGGER.info("[Bridge] DEV mode: would send to %s: %s", chat_id, text)
            return True
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            resp = await self._client.post(
                self.send_url, json={"chatId": chat_id, "text": text}, headers=headers
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            _LOGGER.error("[Bridge] send to %s failed: %s", chat_id, exc)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


def build_transport(kind: str = settings.MESSAGE_TRANSPORT) -> MessagingTransport:
    if kind == "bridge":
        return BridgeTransport(settings.BRIDGE_SEND_URL, settings.BRIDGE_TOKEN)
    if kind == "telnyx":
        return TelnyxTransport(settings.TELNYX_API_KEY, settings.TELNYX_FROM_NUMBER)
    raise ValueError(f"unknown MESSAGE_TRANSPORT {kind!r}")
