"""Cryptocurrency prices: CoinGecko, then CryptoCompare, then static placeholders.

``get_prices`` never raises; every symbol asked for comes back with a price.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, Sequence

import httpx

from app.types.chat_contract import CoinPrice
from app.utils.transport import MessagingTransport
from config import settings

_LOGGER = logging.getLogger(__name__)

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
CRYPTOCOMPARE_URL = "https://min-api.cryptocompare.com/data/pricemultifull"

COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "SOL": "solana",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "ADA": "cardano",
}

# Shown only when every live source is down
STATIC_PRICES = {
    "BTC": 60000.0,
    "ETH": 3000.0,
    "LTC": 80.0,
    "BCH": 350.0,
    "SOL": 150.0,
    "XRP": 0.5,
    "DOGE": 0.1,
    "ADA": 0.4,
}


class PriceService:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = settings.PRICE_TIMEOUT,
        default_symbols: Sequence[str] = tuple(settings.CRYPTO_SYMBOLS),
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.default_symbols = [s.upper() for s in default_symbols]

    async def get_prices(self, symbols: Iterable[str] | None = None) -> Dict[str, CoinPrice]:
        wanted = [s.upper() for s in (symbols or self.default_symbols)]
        prices: Dict[str, CoinPrice] = {}

        for source in (self._from_coingecko, self._from_cryptocompare):
            missing = [s for s in wanted if s not in prices]
            if not missing:
                break
            try:
                prices.update(await source(missing))
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
                _LOGGER.warning("Price source %s failed: %s", source.__name__, exc)

        for symbol in wanted:
            if symbol not in prices:
                prices[symbol] = CoinPrice(
                    symbol=symbol, price=STATIC_PRICES.get(symbol, 0.0), source="static"
                )
        return {s: prices[s] for s in wanted}

    async def _from_coingecko(self, symbols: Sequence[str]) -> Dict[str, CoinPrice]:
        ids = {COINGECKO_IDS[s]: s for s in symbols if s in COINGECKO_IDS}
        if not ids:
            return {}
        resp = await self._client.get(COINGECKO_URL, params={
            "ids": ",".join(ids),
            "vs_currencies": "usd",
            "include_24hr_change": "true",
        })
        resp.raise_for_status()
        data = resp.json()
        out = {}
        for coin_id, symbol in ids.items():
            row = data.get(coin_id)
            if row and "usd" in row:
                out[symbol] = CoinPrice(
                    symbol=symbol,
                    price=float(row["usd"]),
                    change_24h=float(row.get("usd_24h_change") or 0.0),
                    source="coingecko",
                )
        return out

    async def _from_cryptocompare(self, symbols: Sequence[str]) -> Dict[str, CoinPrice]:
        resp = await self._client.get(CRYPTOCOMPARE_URL, params={
            "fsyms": ",".join(symbols),
            "tsyms": "USD",
        })
        resp.raise_for_status()
        raw = resp.json().get("RAW") or {}
        out = {}
        for symbol in symbols:
            usd = (raw.get(symbol) or {}).get("USD")
            if usd:
                out[symbol] = CoinPrice(
                    symbol=symbol,
                    price=float(usd["PRICE"]),
                    change_24h=float(usd.get("CHANGEPCT24HOUR") or 0.0),
                    source="cryptocompare",
                )
        return out

    async def aclose(self) -> None:
        await self._client.aclose()


def format_prices(prices: Dict[str, CoinPrice]) -> str:
    lines = ["*Crypto prices (USD)*", ""]
    for p in prices.values():
        arrow = "🔺" if p.change_24h >= 0 else "🔻"
        lines.append(f"{p.symbol}: ${p.price:,.2f} {arrow} {p.change_24h:+.2f}%")
    if any(p.source == "static" for p in prices.values()):
        lines.extend(["", "_Live prices unavailable; showing placeholder data._"])
    return "\n".join(lines)


async def run_price_broadcasts(
    prices: PriceService,
    transport: MessagingTransport,
    chat_ids: Sequence[str],
    interval_hours: float,
) -> None:
    """Send the price table to *chat_ids* every *interval_hours* until cancelled."""
    while True:
        text = format_prices(await prices.get_prices())
        for chat_id in chat_ids:
            if not await transport.send_text(chat_id, text):
                _LOGGER.error("Price update to %s not delivered", chat_id)
        await asyncio.sleep(interval_hours * 3600)
