from typing import Iterable, List, Optional
import logging

from pydantic import ValidationError

from app.schemas.trading_room import ChangeEvent, OpenOrderRow

logger = logging.getLogger(__name__)

OPEN = "open"


def _parse_row(data) -> Optional[OpenOrderRow]:
    if not data:
        return None
    if isinstance(data, OpenOrderRow):
        return data
    try:
        return OpenOrderRow.model_validate(data)
    except ValidationError:
        logger.debug("Ignoring unparseable open order row: %r", data)
        return None


class OpenOrderCache:
    """In-memory mirror of the open limit orders for one room and symbol.

    Kept current by realtime change events; only a reseed restores full
    consistency after out-of-order delivery.
    """

    def __init__(self, room_id: str, symbol: str):
        self.room_id = room_id
        self.symbol = symbol
        self._orders: List[OpenOrderRow] = []

    def __len__(self):
        return len(self._orders)

    def ids(self) -> List[str]:
        return [o.id for o in self._orders]

    def snapshot(self) -> List[OpenOrderRow]:
        return list(self._orders)

    def seed(self, rows: Iterable) -> None:
        parsed = [_parse_row(r) for r in (rows or [])]
        self._orders = [o for o in parsed if o is not None]
        logger.info("Seeded open order cache room=%s symbol=%s count=%d", self.room_id, self.symbol, len(self._orders))

    def _matches(self, data: Optional[dict]) -> bool:
        return bool(data) and data.get('status') == OPEN and data.get('symbol') == self.symbol

    def _remove(self, order_id) -> None:
        if order_id is None:
            return
        order_id = str(order_id)
        for idx, order in enumerate(self._orders):
            if order.id == order_id:
                del self._orders[idx]
                return

    def _append(self, data: dict) -> None:
        row = _parse_row(data)
        if row is not None:
            self._orders.append(row)

    def apply(self, payload) -> None:
        event = payload if isinstance(payload, ChangeEvent) else ChangeEvent.model_validate(payload or {})
        before = event.old or {}
        after = event.new or {}

        if event.eventType == "INSERT":
            if self._matches(after):
                self._append(after)
        elif event.eventType == "UPDATE":
            # Remove if it left the open set or moved to another symbol
            left_open = before.get('status') == OPEN and after.get('status') != OPEN
            if left_open or before.get('symbol') != after.get('symbol'):
                self._remove(before.get('id'))
            if self._matches(after):
                self._remove(after.get('id'))
                self._append(after)
        elif event.eventType == "DELETE":
            self._remove(before.get('id'))
        else:
            logger.debug("Ignoring change event type=%s", event.eventType)
