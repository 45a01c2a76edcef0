import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio

from app.errors import PrimaryProviderUnavailable
from app.services.reminder_engine import ReminderEngine, RemovalResult, compose_notification
from fakes import FakePrimaryAdapter


def utcnow():
    return datetime.now(timezone.utc)


class FailingTransport:
    def __init__(self):
        self.attempts = 0

    async def send_text(self, chat_id, text):
        self.attempts += 1
        raise ConnectionError("bridge down")


@pytest_asyncio.fixture
async def engine_factory(build_router, transport):
    engines = []

    def _make(primary=None, transport_=None, available=("openai",)):
        router = build_router(*available, primary=primary)
        engine = ReminderEngine(router, transport_ or transport, sweep_interval=3600)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        await engine.stop()


@pytest.mark.asyncio
async def test_create_and_list_in_trigger_order(database, engine_factory):
    engine = engine_factory()
    now = utcnow()
    later = await engine.create("u1", "c1", "second", now + timedelta(hours=2))
    sooner = await engine.create("u1", "c1", "first", now + timedelta(hours=1))
    other = await engine.create("u2", "c2", "someone else", now + timedelta(minutes=5))

    listed = await engine.list("u1")
    assert [r.id for r in listed] == [sooner, later]
    assert [r.content for r in listed] == ["first", "second"]
    assert engine.scheduled_ids == {sooner, later, other}


@pytest.mark.asyncio
async def test_create_refuses_incomplete_input(database, engine_factory):
    engine = engine_factory()
    assert await engine.create("u1", "c1", "  ", utcnow()) is None
    assert await engine.create("u1", "c1", "x", None) is None
    assert await engine.create("", "c1", "x", utcnow()) is None
    assert await engine.list("u1") == []


@pytest.mark.asyncio
async def test_extract_returns_none_for_unusable_answers(engine_factory):
    for raw in ("{}", '{"time": null, "content": "x"}', '{"time": "2025-05-21T15:00:00Z"}', ""):
        engine = engine_factory(primary=FakePrimaryAdapter(reminder_json=raw))
        assert await engine.extract("remind me sometime") is None

    engine = engine_factory(primary=FakePrimaryAdapter(
        reminder_json={"time": "2025-05-21T15:00:00Z", "content": "Call John"}
    ))
    extracted = await engine.extract("tomorrow 3pm call John")
    assert extracted.content == "Call John"


@pytest.mark.asyncio
async def test_extract_without_primary_provider(engine_factory):
    engine = engine_factory(available=("gemini",))
    with pytest.raises(PrimaryProviderUnavailable):
        await engine.extract("tomorrow 3pm")


@pytest.mark.asyncio
async def test_only_owner_can_remove(database, engine_factory):
    engine = engine_factory()
    rid = await engine.create("owner", "c1", "x", utcnow() + timedelta(hours=1))

    assert await engine.remove_reminder(rid, "intruder") is RemovalResult.NOT_OWNER
    assert rid in engine.scheduled_ids
    assert await database.get_reminder(rid) is not None

    assert await engine.remove_reminder(rid + 100, "owner") is RemovalResult.NOT_FOUND
    assert await engine.remove(rid, "owner") is True
    assert rid not in engine.scheduled_ids
    assert await database.get_reminder(rid) is None


@pytest.mark.asyncio
async def test_timer_delivers_at_trigger_time(database, engine_factory, transport):
    engine = engine_factory()
    rid = await engine.create("u1", "c1", "stretch", utcnow() + timedelta(milliseconds=50))
    await asyncio.sleep(0.5)

    assert transport.sent == [("c1", "⏰ Reminder: stretch")]
    assert (await database.get_reminder(rid)).is_triggered
    assert rid not in engine.scheduled_ids
    assert await engine.list("u1") == []


@pytest.mark.asyncio
async def test_removed_reminder_never_fires(database, engine_factory, transport):
    engine = engine_factory()
    rid = await engine.create("u1", "c1", "x", utcnow() + timedelta(milliseconds=100))
    assert await engine.remove(rid, "u1")
    await asyncio.sleep(0.3)
    assert transport.sent == []


@pytest.mark.asyncio
async def test_timer_and_sweep_race_sends_once(database, engine_factory, transport):
    engine = engine_factory()
    rid = await database.insert_reminder("u1", "c1", "once", utcnow() - timedelta(seconds=1))

    await asyncio.gather(engine.deliver(rid), engine.sweep(), engine.deliver(rid))
    assert transport.sent == [("c1", "⏰ Reminder: once")]


@pytest.mark.asyncio
async def test_two_engines_sharing_a_store_send_once(database, engine_factory, transport):
    first, second = engine_factory(), engine_factory()
    rid = await database.insert_reminder("u1", "c1", "shared", utcnow() - timedelta(seconds=1))

    results = await asyncio.gather(first.deliver(rid), second.deliver(rid), second.sweep())
    assert len(transport.sent) == 1
    assert sum(1 for r in results if r) == 1


@pytest.mark.asyncio
async def test_failed_send_still_marks_triggered(database, engine_factory):
    failing = FailingTransport()
    engine = engine_factory(transport_=failing)
    rid = await database.insert_reminder("u1", "c1", "x", utcnow() - timedelta(seconds=1))

    assert await engine.deliver(rid) is True
    assert (await database.get_reminder(rid)).is_triggered
    assert await engine.deliver(rid) is False
    assert await engine.sweep() == 0
    assert failing.attempts == 1


@pytest.mark.asyncio
async def test_start_fires_overdue_and_schedules_upcoming(database, engine_factory, transport):
    overdue = await database.insert_reminder("u1", "c1", "missed", utcnow() - timedelta(hours=1))
    upcoming = await database.insert_reminder("u1", "c1", "soon", utcnow() + timedelta(hours=1))
    done = await database.insert_reminder("u1", "c1", "old", utcnow() - timedelta(hours=2))
    await database.claim_reminder(done)

    engine = engine_factory()
    await engine.start()
    try:
        assert transport.sent == [("c1", "⏰ Reminder: missed")]
        assert engine.scheduled_ids == {upcoming}
        assert (await database.get_reminder(overdue)).is_triggered
    finally:
        await engine.stop()
    assert engine.scheduled_ids == set()


@pytest.mark.asyncio
async def test_start_sends_overdue_in_trigger_order(database, engine_factory, transport):
    now = utcnow()
    await database.insert_reminder("u1", "c1", "third", now - timedelta(minutes=1))
    await database.insert_reminder("u2", "c2", "first", now - timedelta(hours=3))
    await database.insert_reminder("u1", "c1", "second", now - timedelta(hours=1))

    engine = engine_factory()
    await engine.start()
    assert [text for _, text in transport.sent] == [
        "⏰ Reminder: first",
        "⏰ Reminder: second",
        "⏰ Reminder: third",
    ]


@pytest.mark.asyncio
async def test_deliver_skips_deleted_reminder(database, engine_factory, transport):
    engine = engine_factory()
    assert await engine.deliver(424242) is False
    assert transport.sent == []


def test_group_notification_mentions_user():
    reminder = SimpleNamespace(content="standup", user_id="4477", is_group=True)
    assert compose_notification(reminder, "⏰ ") == "@4477 ⏰ standup"
    reminder.is_group = False
    assert compose_notification(reminder, "⏰ ") == "⏰ standup"
