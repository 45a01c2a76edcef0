"""Pydantic models and typed dicts shared by the chat pipeline, the AI router
and the reminder engine.

Kept free of FastAPI and database imports so workers, HTTP handlers and tests
can use them directly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant", "system"]


class ChatTurn(TypedDict):
    """One entry of the provider-neutral conversation history."""

    role: Role
    content: str


# ──────────────────────────────
# Inbound transport events
# ──────────────────────────────


class InboundMessage(BaseModel):
    """A chat event as delivered by the messaging transport.

    Field aliases follow the bridge wire format
    (``{from, author?, body, isGroup, isFromSelf, isStatus}``).
    """

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    author: Optional[str] = None
    body: str = ""
    is_group: bool = Field(default=False, alias="isGroup")
    is_from_self: bool = Field(default=False, alias="isFromSelf")
    is_status: bool = Field(default=False, alias="isStatus")

    @field_validator("from_")
    def _non_empty_sender(cls, v: str):  # noqa: N805
        if not v or not v.strip():
            raise ValueError("from must be a non-empty string")
        return v.strip()

    @property
    def chat_id(self) -> str:
        return self.from_

    @property
    def user_id(self) -> str:
        """Group messages carry the real sender in ``author``."""
        if self.author:
            return self.author.split("@")[0]
        return self.from_.split("@")[0]


# ──────────────────────────────
# Reminder extraction
# ──────────────────────────────


class ExtractedReminder(BaseModel):
    """Structured answer of the reminder-extraction prompt."""

    model_config = ConfigDict(populate_by_name=True)

    time: datetime
    content: str
    relative_time: Optional[str] = Field(default=None, alias="relativeTime")

    @field_validator("content")
    def _content_not_blank(cls, v: str):  # noqa: N805
        if not v or not v.strip():
            raise ValueError("content must be a non-empty string")
        return v.strip()

    @field_validator("time")
    def _as_utc(cls, v: datetime):  # noqa: N805
        # The prompt asks for UTC when no zone is given
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


# ──────────────────────────────
# Search & prices
# ──────────────────────────────


class SearchResult(BaseModel):
    title: str
    link: str
    snippet: str = ""
    source: str = "Google"


class CoinPrice(BaseModel):
    symbol: str
    price: float
    change_24h: float = 0.0
    source: str = "coingecko"

