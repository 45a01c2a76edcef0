import httpx
import pytest

from app.services.price_service import PriceService, format_prices
from app.services.search_service import (
    SearchService,
    augment_message,
    format_search_results,
    is_chinese_search_requested,
)
from app.types.chat_contract import SearchResult
from app.utils.message_parser import is_command, is_group_chat, parse_command, remove_bot_mention
from app.utils.transport import BridgeTransport, TelnyxTransport, build_transport


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ──────────────────────────────
# Command parsing
# ──────────────────────────────

def test_parse_command_prefixes():
    assert parse_command("$Use anthropic") == ("use", ["anthropic"], "anthropic")
    assert parse_command("/reminder  tomorrow at 3pm  call mom").arg_text == "tomorrow at 3pm  call mom"
    assert parse_command("!help").name == "help"
    assert parse_command("$") is None
    assert parse_command("hello there") is None
    assert is_command("  $list")


def test_remove_bot_mention():
    assert remove_bot_mention("@dory what time is it", "dory") == "what time is it"
    assert remove_bot_mention("Hey Dory what's up", "dory") == "what's up"
    assert remove_bot_mention("@15550001 ping", "dory", "15550001") == "ping"
    assert remove_bot_mention("nothing to strip", "dory") == "nothing to strip"


def test_is_group_chat():
    assert is_group_chat("12345@g.us")
    assert not is_group_chat("12345@c.us")


# ──────────────────────────────
# Search
# ──────────────────────────────

def test_chinese_search_detection():
    assert is_chinese_search_requested("用中文搜索天气")
    assert is_chinese_search_requested("Search in Chinese for noodles")
    assert not is_chinese_search_requested("weather in Paris")


@pytest.mark.asyncio
async def test_search_failures_return_empty_list():
    service = SearchService("k", "cx", client=mock_client(lambda r: httpx.Response(500)))
    assert await service.search("anything") == []

    def broken(request):
        raise httpx.ConnectError("offline", request=request)

    service = SearchService("k", "cx", client=mock_client(broken))
    assert await service.search("anything") == []

    service = SearchService(None, None, client=mock_client(lambda r: httpx.Response(200, json={})))
    assert await service.search("anything") == []
    assert await service.search("   ") == []


@pytest.mark.asyncio
async def test_search_parses_items():
    payload = {"items": [
        {"title": "A", "link": "https://a", "snippet": "sa"},
        {"title": "no link"},
    ]}
    service = SearchService("k", "cx", max_results=3,
                            client=mock_client(lambda r: httpx.Response(200, json=payload)))
    results = await service.search("a")
    assert results == [SearchResult(title="A", link="https://a", snippet="sa")]


def test_augment_message_formats_top_results():
    results = [SearchResult(title=f"T{i}", link=f"https://{i}", snippet=f"s{i}") for i in range(5)]
    text = augment_message("question?", results)
    assert text.startswith("question?\n\n### Search Results")
    assert "[3] T2" in text and "[4]" not in text
    assert augment_message("question?", []) == "question?"
    assert format_search_results(results, limit=1) == "[1] T0\ns0\nSource: https://0\n"


# ──────────────────────────────
# Prices
# ──────────────────────────────

@pytest.mark.asyncio
async def test_prices_from_coingecko():
    def handler(request):
        assert request.url.host == "api.coingecko.com"
        return httpx.Response(200, json={
            "bitcoin": {"usd": 65000.5, "usd_24h_change": -1.25},
            "ethereum": {"usd": 3100, "usd_24h_change": 2},
        })

    service = PriceService(client=mock_client(handler), default_symbols=["btc", "eth"])
    prices = await service.get_prices()
    assert list(prices) == ["BTC", "ETH"]
    assert prices["BTC"].price == 65000.5
    assert prices["BTC"].source == "coingecko"
    text = format_prices(prices)
    assert "BTC: $65,000.50 🔻 -1.25%" in text
    assert "placeholder" not in text


@pytest.mark.asyncio
async def test_prices_fall_back_per_symbol():
    def handler(request):
        if request.url.host == "api.coingecko.com":
            return httpx.Response(429)
        return httpx.Response(200, json={"RAW": {"BTC": {"USD": {"PRICE": 64000, "CHANGEPCT24HOUR": 0.5}}}})

    service = PriceService(client=mock_client(handler))
    prices = await service.get_prices(["BTC", "ETH", "ZZZ"])
    assert prices["BTC"].source == "cryptocompare"
    assert prices["ETH"].source == "static"
    assert prices["ETH"].price == 3000.0
    assert prices["ZZZ"].price == 0.0
    assert "placeholder" in format_prices(prices)


# ──────────────────────────────
# Transports
# ──────────────────────────────

@pytest.mark.asyncio
async def test_bridge_transport_posts_chat_id_and_text():
    seen = []

    def handler(request):
        seen.append((request.headers.get("authorization"), request.read()))
        return httpx.Response(200)

    bridge = BridgeTransport("https://bridge.local/send", token="t0k", client=mock_client(handler))
    assert await bridge.send_text("123@c.us", "hi") is True
    assert seen[0][0] == "Bearer t0k"
    assert b'"chatId"' in seen[0][1] and b'"123@c.us"' in seen[0][1]

    down = BridgeTransport("https://bridge.local/send", client=mock_client(lambda r: httpx.Response(502)))
    assert await down.send_text("123@c.us", "hi") is False


@pytest.mark.asyncio
async def test_telnyx_transport_dev_mode_only_logs():
    assert await TelnyxTransport(None, None).send_text("+15550001", "hi") is True


def test_build_transport_rejects_unknown_kind():
    with pytest.raises(ValueError):
        build_transport("pigeon")
