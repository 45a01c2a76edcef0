"""
Async DB helpers for preferences, reminders and chat history.
Uses SQLAlchemy 2.0 with asyncpg (Postgres) or aiosqlite (SQLite) – no raw SQL
strings in app code.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from sqlalchemy import (
    Boolean, DateTime, Index, String, Text, delete, func, select, text, update
)
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column
)
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None
_url_override: str | None = None

def _build_url() -> str:
    url = _url_override or os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    elif "+asyncpg" not in url and url.startswith(("postgres://", "postgresql://")):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def configure(url: str) -> None:
    """Point the lazy engine at *url* (tests, scripts). Call before first use."""
    global _url_override, _engine, _session_maker
    _url_override = url
    _engine = None
    _session_maker = None

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncSession:
    """New session; use as ``async with get_session() as s``."""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class UserPreference(Base):
    __tablename__ = "user_preferences"

    id:         Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id:    Mapped[str] = mapped_column(String, unique=True)
    engine:     Mapped[str]
    model:      Mapped[str]
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Reminder(Base):
    __tablename__ = "reminders"

    id:           Mapped[int]  = mapped_column(primary_key=True, autoincrement=True)
    user_id:      Mapped[str]
    chat_id:      Mapped[str]
    content:      Mapped[str]  = mapped_column(Text)
    trigger_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_triggered: Mapped[bool] = mapped_column(Boolean, default=False)
    is_group:     Mapped[bool] = mapped_column(Boolean, default=False)
    created_at:   Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at:   Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_reminders_user_id", "user_id"),
        Index("idx_reminders_trigger_time", "trigger_time"),
    )


class Message(Base):
    __tablename__ = "messages"

    id:        Mapped[int]  = mapped_column(primary_key=True, autoincrement=True)
    chat_id:   Mapped[str]
    sender_id: Mapped[str]
    content:   Mapped[str]  = mapped_column(Text)
    role:      Mapped[str]  = mapped_column(default="user")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_group:  Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_messages_chat_id", "chat_id"),
    )


# ──────────────────────────────────────────────────────────────────────
# 4. DDL / connectivity helpers
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping() -> None:
    """Raise if the database is unreachable."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


def to_utc(value: datetime) -> datetime:
    """Normalise to an aware UTC datetime (SQLite hands back naive values)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────────────
# 5. CRUD helpers
# ──────────────────────────────────────────────────────────────────────

# 5.1 Preferences ------------------------------------------------------
async def get_user_preferences(
    user_id: str, default_engine: str, default_model: str
) -> UserPreference:
    """Return the user's preference row, creating it with defaults if absent."""
    async with get_session() as s:
        res = await s.execute(select(UserPreference).where(UserPreference.user_id == user_id))
        pref = res.scalar_one_or_none()
        if pref is not None:
            return pref
        pref = UserPreference(user_id=user_id, engine=default_engine, model=default_model)
        s.add(pref)
        await s.commit()
        return pref


async def set_user_engine(user_id: str, engine: str, model: str) -> None:
    """Switch engine; *model* must be a model of *engine* (usually its default)."""
    await _upsert_preference(user_id, engine=engine, model=model)


async def set_user_model(user_id: str, model: str, default_engine: str) -> None:
    await _upsert_preference(user_id, model=model, default_engine=default_engine)


async def _upsert_preference(
    user_id: str,
    engine: str | None = None,
    model: str | None = None,
    default_engine: str | None = None,
) -> None:
    async with get_session() as s:
        res = await s.execute(select(UserPreference).where(UserPreference.user_id == user_id))
        pref = res.scalar_one_or_none()
        if pref is None:
            s.add(UserPreference(
                user_id=user_id,
                engine=engine or default_engine,
                model=model,
            ))
        else:
            if engine is not None:
                pref.engine = engine
            if model is not None:
                pref.model = model
        await s.commit()


# 5.2 Reminders --------------------------------------------------------
async def insert_reminder(
    user_id: str,
    chat_id: str,
    content: str,
    trigger_time: datetime,
    is_group: bool = False,
) -> int:
    reminder = Reminder(
        user_id=user_id,
        chat_id=chat_id,
        content=content,
        trigger_time=to_utc(trigger_time),
        is_triggered=False,
        is_group=is_group,
    )
    async with get_session() as s:
        s.add(reminder)
        await s.commit()
    return reminder.id


async def get_reminder(reminder_id: int) -> Reminder | None:
    async with get_session() as s:
        return await s.get(Reminder, reminder_id)


async def list_pending_reminders(user_id: str) -> list[Reminder]:
    async with get_session() as s:
        stmt = (
            select(Reminder)
            .where(Reminder.user_id == user_id, Reminder.is_triggered.is_(False))
            .order_by(Reminder.trigger_time, Reminder.id)
        )
        res = await s.execute(stmt)
        return list(res.scalars())


async def fetch_pending_reminders() -> list[Reminder]:
    """Every untriggered reminder, soonest first."""
    async with get_session() as s:
        stmt = (
            select(Reminder)
            .where(Reminder.is_triggered.is_(False))
            .order_by(Reminder.trigger_time, Reminder.id)
        )
        res = await s.execute(stmt)
        return list(res.scalars())


async def fetch_due_reminders(now: datetime | None = None, limit: int = 100) -> list[Reminder]:
    async with get_session() as s:
        stmt = (
            select(Reminder)
            .where(
                Reminder.is_triggered.is_(False),
                Reminder.trigger_time <= to_utc(now or _utcnow()),
            )
            .order_by(Reminder.trigger_time, Reminder.id)
            .limit(limit)
        )
        res = await s.execute(stmt)
        return list(res.scalars())


async def claim_reminder(reminder_id: int) -> bool:
    """Flip is_triggered false→true. Only one caller can ever win the claim."""
    async with get_session() as s:
        res = await s.execute(
            update(Reminder)
            .where(Reminder.id == reminder_id, Reminder.is_triggered.is_(False))
            .values(is_triggered=True, updated_at=_utcnow())
        )
        await s.commit()
        return res.rowcount == 1


async def delete_reminder(reminder_id: int, user_id: str) -> bool:
    """Delete only if the reminder belongs to *user_id*."""
    async with get_session() as s:
        res = await s.execute(
            delete(Reminder).where(Reminder.id == reminder_id, Reminder.user_id == user_id)
        )
        await s.commit()
        return res.rowcount == 1


# 5.3 Chat history -----------------------------------------------------
async def save_message(
    chat_id: str,
    sender_id: str,
    content: str,
    role: str = "user",
    is_group: bool = False,
    timestamp: datetime | None = None,
) -> None:
    msg = Message(
        chat_id=chat_id,
        sender_id=sender_id,
        content=content,
        role=role,
        is_group=is_group,
        timestamp=to_utc(timestamp or _utcnow()),
    )
    async with get_session() as s:
        s.add(msg)
        await s.commit()


async def fetch_chat_history(
    chat_id: str, limit: int, max_age: timedelta | None = None
) -> list[Message]:
    """Most recent *limit* messages of a chat, returned oldest first."""
    async with get_session() as s:
        stmt = select(Message).where(Message.chat_id == chat_id)
        if max_age is not None:
            stmt = stmt.where(Message.timestamp >= _utcnow() - max_age)
        stmt = stmt.order_by(Message.timestamp.desc(), Message.id.desc()).limit(limit)
        res = await s.execute(stmt)
        return list(reversed(res.scalars().all()))


async def clear_chat_history(chat_id: str) -> int:
    async with get_session() as s:
        res = await s.execute(delete(Message).where(Message.chat_id == chat_id))
        await s.commit()
        return res.rowcount


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
