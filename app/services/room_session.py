"""
Room Session
Owns the engine state for one room + symbol activation: the open order cache,
the fill decision loop and the opt-in scheduled order engine. State lives and
dies with the session rather than with the module.
"""

import asyncio
import logging
import math
from typing import Optional

from app.config import settings
from app.services.fill_engine import FillDecisionEngine
from app.services.order_cache import OpenOrderCache
from app.services.realtime import ChangeFeedListener
from app.services.room_client import RoomApiClient
from app.services.scheduled_engine import QueryCache, ScheduledOrderEngine, scheduled_orders_key
from app.services.ticker import Ticker, TickerFeed

logger = logging.getLogger(__name__)


class RoomSession:
    def __init__(
        self,
        room_id: str,
        symbol: str,
        client: RoomApiClient,
        feed: TickerFeed,
        enable_executor: bool = None,
        tick_seconds: float = None,
        scheduled_refresh_seconds: float = None,
        listener: Optional[ChangeFeedListener] = None,
        queries: Optional[QueryCache] = None,
    ):
        self.room_id = room_id
        self.symbol = symbol
        self.client = client
        self.feed = feed
        self.listener = listener
        self.queries = queries or QueryCache()
        self.tick_seconds = tick_seconds or settings.FILL_TICK_SECONDS
        self.scheduled_refresh_seconds = scheduled_refresh_seconds or settings.SCHEDULED_REFRESH_SECONDS
        if enable_executor is None:
            enable_executor = settings.ENABLE_CLIENT_EXECUTOR

        self.cache = OpenOrderCache(room_id, symbol)
        self.fill_engine = FillDecisionEngine(self.cache, feed, symbol, client.fill_order)
        self.scheduled_engine = ScheduledOrderEngine(
            room_id, self.queries, client.execute_scheduled, enabled=enable_executor
        )

        self.visible = True
        self.activated = False
        self.cancelled = False
        self._tick_task: Optional[asyncio.Task] = None
        self._background = set()
        self._evaluations = set()
        self._unsubscribe_price = None

    # -- lifecycle -------------------------------------------------------

    async def activate(self) -> None:
        if self.activated:
            return
        self.activated = True
        self.cancelled = False
        await self.seed()
        if self.scheduled_engine.enabled:
            await self.refresh_scheduled_orders()
            self._spawn(self._refresh_loop())
        self._unsubscribe_price = self.feed.subscribe(self.on_price)
        if self.listener is not None:
            self._spawn(self.listener.run(self.on_change))
        if self.visible:
            self._start_ticking()
        logger.info("Room session active room=%s symbol=%s", self.room_id, self.symbol)

    async def seed(self) -> None:
        try:
            rows = await self.client.list_open_orders(self.symbol)
        except Exception as e:
            logger.warning("Seeding open orders failed for room %s: %s", self.room_id, e)
            rows = []
        if not self.cancelled:
            self.cache.seed(rows)

    async def close(self) -> None:
        self.cancelled = True
        self._stop_ticking()
        if self._unsubscribe_price is not None:
            self._unsubscribe_price()
            self._unsubscribe_price = None
        if self.listener is not None:
            self.listener.stop()
        for task in list(self._background):
            task.cancel()
        self.activated = False
        logger.info("Room session closed room=%s", self.room_id)

    def set_visible(self, visible: bool) -> None:
        """Pause the fill loop while the room is hidden, resume when shown."""
        self.visible = visible
        if not visible:
            self._stop_ticking()
        elif self.activated and not self.cancelled and self._tick_task is None:
            self._start_ticking()

    # -- fill loop ---------------------------------------------------------

    def _start_ticking(self) -> None:
        self._tick_task = asyncio.ensure_future(self._tick_loop())

    def _stop_ticking(self) -> None:
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None

    def tick(self):
        if self.cancelled or not self.visible:
            return []
        return self.fill_engine.tick()

    async def _tick_loop(self) -> None:
        while not self.cancelled:
            await asyncio.sleep(self.tick_seconds)
            try:
                self.tick()
            except Exception:
                logger.exception("Fill tick failed for room %s", self.room_id)

    # -- realtime + prices -------------------------------------------------

    def on_change(self, payload: dict) -> None:
        if self.cancelled:
            return
        try:
            self.cache.apply(payload)
        except Exception:
            logger.exception("Bad change payload for room %s", self.room_id)

    def on_price(self, ticker: Ticker) -> None:
        if self.cancelled or not self.visible or not self.scheduled_engine.enabled:
            return
        if not math.isfinite(ticker.last):
            return
        task = asyncio.ensure_future(self.scheduled_engine.evaluate(ticker.last))
        self._evaluations.add(task)
        task.add_done_callback(self._evaluations.discard)

    async def refresh_scheduled_orders(self) -> None:
        try:
            result = await self.client.list_scheduled_orders()
        except Exception as e:
            logger.warning("Refreshing scheduled orders failed for room %s: %s", self.room_id, e)
            return
        self.queries.set(scheduled_orders_key(self.room_id), result)

    async def _refresh_loop(self) -> None:
        while not self.cancelled:
            await asyncio.sleep(self.scheduled_refresh_seconds)
            await self.refresh_scheduled_orders()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for outstanding fill and execute requests."""
        await self.fill_engine.drain()
        if self._evaluations:
            await asyncio.gather(*list(self._evaluations), return_exceptions=True)
