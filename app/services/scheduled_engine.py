import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Set

from pydantic import ValidationError

from app.schemas.trading_room import ScheduledOrderRow

logger = logging.getLogger(__name__)

ExecuteSubmitter = Callable[[str, str, float], Awaitable[object]]


class QueryCache:
    """Query results keyed by tuple, e.g. ("scheduled-orders", room_id)."""

    def __init__(self):
        self._data: Dict[Hashable, Any] = {}

    def get(self, key: Hashable) -> Any:
        return self._data.get(key)

    def set(self, key: Hashable, value: Any) -> None:
        self._data[key] = value

    def invalidate(self, key: Hashable) -> None:
        self._data.pop(key, None)


def scheduled_orders_key(room_id: str):
    return ("scheduled-orders", room_id)


def should_execute(order: ScheduledOrderRow, current_price: float, now: datetime) -> bool:
    if order.schedule_type == "time_based" and order.scheduled_at:
        return order.scheduled_at <= now
    if order.schedule_type == "price_based" and order.trigger_price and order.trigger_condition:
        if order.trigger_condition == "above":
            return current_price >= order.trigger_price
        return current_price <= order.trigger_price
    return False


class ScheduledOrderEngine:
    """Fires execution requests for pending scheduled orders whose trigger is met.

    Opt-in only: a disabled engine never evaluates anything. ``executed_ids``
    lives for one room activation and is not persisted.
    """

    def __init__(self, room_id: str, queries: QueryCache, submit_execute: ExecuteSubmitter, enabled: bool = False):
        self.room_id = room_id
        self.queries = queries
        self.submit_execute = submit_execute
        self.enabled = enabled
        self.executed_ids: Set[str] = set()

    def pending_orders(self) -> List[ScheduledOrderRow]:
        cached = self.queries.get(scheduled_orders_key(self.room_id))
        if not cached or not cached.get('data'):
            return []
        orders = []
        for raw in cached['data']:
            try:
                order = ScheduledOrderRow.model_validate(raw)
            except ValidationError:
                logger.debug("Skipping malformed scheduled order: %r", raw)
                continue
            if order.status == "pending":
                orders.append(order)
        return orders

    async def evaluate(self, current_price: float, now: Optional[datetime] = None) -> List[str]:
        if not self.enabled or not current_price:
            return []
        now = now or datetime.now(timezone.utc)

        triggered = []
        for order in self.pending_orders():
            if not order.id or not order.schedule_type or order.id in self.executed_ids:
                continue
            if not should_execute(order, current_price, now):
                continue

            self.executed_ids.add(order.id)
            triggered.append(order.id)
            logger.info("Scheduled order %s triggered (type=%s price=%s)", order.id, order.schedule_type, current_price)
            try:
                await self.submit_execute(order.id, now.isoformat(), current_price)
            except Exception as e:
                logger.warning("Execute request failed for scheduled order %s: %s", order.id, e)
                self.executed_ids.discard(order.id)
        return triggered
