from types import SimpleNamespace

import pytest

from app.errors import NoProviderAvailable, PrimaryProviderUnavailable, ProviderError
from app.services.ai.router import AIRouter
from fakes import NOW, FakeAdapter, FakePrimaryAdapter, make_adapters, make_registry


class FakePreferences:
    def __init__(self, engine="openai", model="gpt-5"):
        self.engine = engine
        self.model = model
        self.calls = 0

    async def get_user_preferences(self, user_id, default_engine, default_model):
        self.calls += 1
        return SimpleNamespace(engine=self.engine, model=self.model)


def test_router_requires_an_adapter_per_provider():
    adapters = make_adapters()
    del adapters["gemini"]
    with pytest.raises(ValueError):
        AIRouter(make_registry("openai"), adapters, FakePreferences(), "openai", "gpt-5")


def test_router_requires_primary_capabilities():
    adapters = make_adapters()
    adapters["openai"] = FakeAdapter("openai")
    with pytest.raises(ValueError):
        AIRouter(make_registry("openai"), adapters, FakePreferences(), "openai", "gpt-5")


def test_resolve_keeps_valid_preference(build_router):
    router = build_router("openai", "anthropic", preferences=FakePreferences())
    sel = router.resolve("anthropic", "claude-opus-4-1")
    assert (sel.engine, sel.model, sel.reason) == ("anthropic", "claude-opus-4-1", "preference")


def test_resolve_substitutes_unknown_model(build_router):
    router = build_router("openai", preferences=FakePreferences())
    sel = router.resolve("openai", "gpt-2")
    assert (sel.engine, sel.model, sel.reason) == ("openai", "gpt-5", "model_fallback")


def test_resolve_falls_back_to_first_available_engine(build_router):
    router = build_router("gemini", "deepseek", preferences=FakePreferences())
    sel = router.resolve("openai", "gpt-5")
    assert (sel.engine, sel.model, sel.reason) == ("gemini", "gemini-2.5-flash", "engine_fallback")


def test_resolve_without_providers(build_router):
    router = build_router(preferences=FakePreferences())
    with pytest.raises(NoProviderAvailable):
        router.resolve("openai", "gpt-5")


@pytest.mark.asyncio
async def test_route_uses_substituted_model(build_router):
    adapters = make_adapters()
    router = build_router(
        "openai", "anthropic",
        preferences=FakePreferences("anthropic", "claude-2"),
        adapters=adapters,
    )
    reply = await router.route("u1", "c1", "hi", [])
    assert reply == "hello from anthropic"
    assert adapters["anthropic"].calls == [("hi", [], "claude-sonnet-4-5")]
    assert adapters["openai"].calls == []


@pytest.mark.asyncio
async def test_route_without_providers_calls_nothing(build_router):
    adapters = make_adapters()
    router = build_router(preferences=FakePreferences(), adapters=adapters)
    with pytest.raises(NoProviderAvailable):
        await router.route("u1", "c1", "hi", [])
    assert all(not a.calls for a in adapters.values())


@pytest.mark.asyncio
async def test_route_wraps_adapter_failure_without_failover(build_router):
    adapters = make_adapters()
    adapters["openai"].reply = RuntimeError("boom")
    router = build_router("openai", "anthropic", preferences=FakePreferences(), adapters=adapters)
    with pytest.raises(ProviderError) as info:
        await router.route("u1", "c1", "hi", [])
    assert info.value.provider == "openai"
    assert adapters["anthropic"].calls == []


@pytest.mark.asyncio
async def test_route_rejects_empty_completion(build_router):
    adapters = make_adapters()
    adapters["openai"].reply = "   "
    router = build_router("openai", preferences=FakePreferences(), adapters=adapters)
    with pytest.raises(ProviderError):
        await router.route("u1", "c1", "hi", [])


@pytest.mark.asyncio
async def test_preferences_are_created_lazily(database, build_router):
    router = build_router("openai")
    sel = await router.select_for_user("+15550001")
    assert (sel.engine, sel.model) == ("openai", "gpt-5")

    pref = await database.get_user_preferences("+15550001", "gemini", "gemini-2.5-pro")
    # The row created on first use keeps its values
    assert (pref.engine, pref.model) == ("openai", "gpt-5")


@pytest.mark.asyncio
async def test_engine_switch_is_honoured(database, build_router):
    router = build_router("openai", "gemini")
    await database.set_user_engine("u1", "gemini", "gemini-2.5-flash")
    await database.set_user_model("u1", "gemini-2.5-pro", default_engine="gemini")
    sel = await router.select_for_user("u1")
    assert (sel.engine, sel.model) == ("gemini", "gemini-2.5-pro")


@pytest.mark.asyncio
async def test_extraction_requires_primary(build_router):
    router = build_router("anthropic", preferences=FakePreferences())
    with pytest.raises(PrimaryProviderUnavailable):
        await router.extract_reminder_fields("tomorrow call mom")
    with pytest.raises(PrimaryProviderUnavailable):
        await router.translate("hola", "auto", "en")


@pytest.mark.asyncio
async def test_extraction_passes_current_instant(build_router):
    primary = FakePrimaryAdapter(reminder_json={"time": "2025-05-21T15:00:00Z", "content": "x"})
    router = build_router("openai", primary=primary, preferences=FakePreferences())
    raw = await router.extract_reminder_fields("tomorrow 3pm x")
    assert '"content": "x"' in raw
    assert primary.extract_calls == [("tomorrow 3pm x", NOW)]


@pytest.mark.asyncio
async def test_extraction_failure_is_provider_error(build_router):
    primary = FakePrimaryAdapter(reminder_json=RuntimeError("timeout"))
    router = build_router("openai", primary=primary, preferences=FakePreferences())
    with pytest.raises(ProviderError):
        await router.extract_reminder_fields("tomorrow")


@pytest.mark.asyncio
async def test_needs_search_fails_open(build_router):
    router = build_router("anthropic", preferences=FakePreferences())
    assert await router.needs_search("weather today") is True

    primary = FakePrimaryAdapter(search=RuntimeError("bad json"))
    router = build_router("openai", primary=primary, preferences=FakePreferences())
    assert await router.needs_search("weather today") is True

    primary = FakePrimaryAdapter(search=False)
    router = build_router("openai", primary=primary, preferences=FakePreferences())
    assert await router.needs_search("tell me a joke") is False


@pytest.mark.asyncio
async def test_search_query_falls_back_to_original(build_router):
    router = build_router("gemini", preferences=FakePreferences())
    assert await router.prepare_search_query("新闻", chinese=True) == "新闻"

    primary = FakePrimaryAdapter()
    router = build_router("openai", primary=primary, preferences=FakePreferences())
    await router.prepare_search_query("news", chinese=True)
    assert primary.translations == [("news", "zh-CN")]
