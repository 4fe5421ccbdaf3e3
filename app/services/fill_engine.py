import asyncio
import logging
import math
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from app.schemas.trading_room import OpenOrderRow
from app.services.order_cache import OpenOrderCache
from app.services.ticker import TickerFeed, parse_number

logger = logging.getLogger(__name__)

FillSubmitter = Callable[[str, float], Awaitable[object]]


def crossing(order: OpenOrderRow, bid: float, ask: float) -> Optional[float]:
    """Return the fill price if the order crosses the market, else None.

    Longs fill at the ask once their limit reaches it; shorts fill at the bid.
    """
    price = parse_number(order.limit_price)
    if not math.isfinite(price):
        return None
    if order.side == "long":
        return ask if price >= ask else None
    return bid if price <= bid else None


class FillDecisionEngine:
    """Matches cached open orders against the current bid/ask on each tick."""

    def __init__(self, cache: OpenOrderCache, feed: TickerFeed, symbol: str, submit_fill: FillSubmitter):
        self.cache = cache
        self.feed = feed
        self.symbol = symbol
        self.submit_fill = submit_fill
        self.filling: Set[str] = set()
        self._pending: Set[asyncio.Task] = set()

    def tick(self) -> List[Tuple[str, float]]:
        """Evaluate every cached order once and fire fill requests for crossed ones.

        Must run on the event loop; requests are scheduled, not awaited.
        """
        ticker = self.feed.get(self.symbol)
        if ticker is None or not ticker.has_quotes():
            return []
        bid, ask = ticker.bid, ticker.ask

        submitted = []
        for order in self.cache.snapshot():
            if order.id in self.filling:
                continue
            fill_price = crossing(order, bid, ask)
            if fill_price is None:
                continue
            self.filling.add(order.id)
            task = asyncio.ensure_future(self._fill(order.id, fill_price))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            submitted.append((order.id, fill_price))
        if submitted:
            logger.info("Fill tick symbol=%s bid=%s ask=%s submitted=%d", self.symbol, bid, ask, len(submitted))
        return submitted

    async def _fill(self, order_id: str, fill_price: float) -> None:
        try:
            await self.submit_fill(order_id, fill_price)
        except Exception as e:
            # Still in the cache, so the next tick retries
            logger.warning("Fill request failed for order %s: %s", order_id, e)
        finally:
            self.filling.discard(order_id)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
