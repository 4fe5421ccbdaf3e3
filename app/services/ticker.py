"""
Ticker Feed Adapter
Normalizes raw exchange ticker payloads into a single {bid, ask, last} shape
and keeps the latest snapshot per symbol for the room engines.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

# Field aliases seen across feed formats, in priority order.
# ask1Price/bid1Price are Bybit's v5 linear ticker names for the top of book.
ASK_FIELDS = ('bestAskPrice', 'ask', 'askPrice', 'ask1Price', 'lastPrice')
BID_FIELDS = ('bestBidPrice', 'bid', 'bidPrice', 'bid1Price', 'lastPrice')


def parse_number(value: Any) -> float:
    """Parse a price field, returning NaN when it is missing or not numeric."""
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if not value:
        return math.nan
    try:
        return float(str(value).replace(',', ''))
    except ValueError:
        return math.nan


def _first_present(raw: Dict[str, Any], fields) -> Any:
    for name in fields:
        value = raw.get(name)
        if value is not None:
            return value
    return None


@dataclass(frozen=True)
class Ticker:
    symbol: str
    bid: float
    ask: float
    last: float

    def has_quotes(self) -> bool:
        return math.isfinite(self.bid) and math.isfinite(self.ask)


def normalize_ticker(symbol: str, raw: Dict[str, Any]) -> Ticker:
    raw = raw or {}
    return Ticker(
        symbol=symbol,
        bid=parse_number(_first_present(raw, BID_FIELDS)),
        ask=parse_number(_first_present(raw, ASK_FIELDS)),
        last=parse_number(raw.get('lastPrice')),
    )


PriceListener = Callable[[Ticker], None]


class TickerFeed:
    """Latest ticker snapshot per symbol, with last-price change listeners."""

    def __init__(self):
        self._tickers: Dict[str, Ticker] = {}
        self._listeners: List[PriceListener] = []

    def get(self, symbol: str) -> Optional[Ticker]:
        return self._tickers.get(symbol)

    def subscribe(self, listener: PriceListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def update(self, symbol: str, raw: Dict[str, Any]) -> Ticker:
        ticker = normalize_ticker(symbol, raw)
        previous = self._tickers.get(symbol)
        self._tickers[symbol] = ticker

        last_changed = previous is None or not _same_price(previous.last, ticker.last)
        if last_changed and math.isfinite(ticker.last):
            for listener in list(self._listeners):
                try:
                    listener(ticker)
                except Exception:
                    logger.exception("Ticker listener failed for %s", symbol)
        return ticker


def _same_price(a: float, b: float) -> bool:
    if math.isnan(a) and math.isnan(b):
        return True
    return a == b


class BybitTickerSource:
    """Polls Bybit linear tickers over REST."""

    def __init__(self, base_url: str = None, timeout: float = None, http: httpx.AsyncClient = None):
        self.http = http or httpx.AsyncClient(
            base_url=base_url or settings.BYBIT_BASE_URL,
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS,
        )

    async def fetch(self, symbol: str) -> Optional[Dict[str, Any]]:
        resp = await self.http.get('/v5/market/tickers', params={'category': 'linear', 'symbol': symbol})
        resp.raise_for_status()
        data = resp.json()
        items = (data.get('result') or {}).get('list') or []
        return items[0] if items else None

    async def last_price(self, symbol: str) -> Optional[float]:
        raw = await self.fetch(symbol)
        if not raw:
            return None
        price = parse_number(raw.get('lastPrice'))
        return price if math.isfinite(price) else None

    async def poll(self, feed: TickerFeed, symbol: str, interval: float = None) -> None:
        interval = interval or settings.TICKER_POLL_SECONDS
        while True:
            try:
                raw = await self.fetch(symbol)
                if raw:
                    feed.update(symbol, raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Ticker poll failed for %s: %s", symbol, e)
            await asyncio.sleep(interval)

    async def aclose(self) -> None:
        await self.http.aclose()
