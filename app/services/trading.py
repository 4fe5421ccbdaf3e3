from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from app.config import settings
from app.models.open_order import OpenOrder
from app.models.position import Position
from app.models.scheduled_order import ScheduledOrder
import logging

logger = logging.getLogger(__name__)

SIDE_MAP = {'buy': 'long', 'sell': 'short'}


class ScheduledExecutionError(Exception):
    pass


class InvalidEntryPrice(ValueError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def position_terms(side: str, entry_price: float, quantity: float, leverage: float) -> Dict[str, float]:
    """Fee, initial margin and liquidation price for a new position."""
    size = entry_price * quantity
    lev = leverage or 1
    fee = size * settings.TAKER_FEE_RATE
    initial_margin = size / lev if lev > 0 else size
    mmr = settings.MAINTENANCE_MARGIN_RATE
    if side == 'long':
        liquidation = entry_price * (1 - 1 / lev + mmr)
    else:
        liquidation = entry_price * (1 + 1 / lev - mmr)
    return {'fee': fee, 'initial_margin': initial_margin, 'liquidation_price': liquidation}


def _valid_target(enabled, price) -> bool:
    return bool(enabled and price and price > 0)


def open_position(db: Session, room_id: str, user_id: Optional[str], symbol: str, side: str,
                  quantity: float, entry_price: float, leverage: int, order_type: str,
                  tp_enabled=False, sl_enabled=False, take_profit_price=None, stop_loss_price=None) -> Position:
    terms = position_terms(side, entry_price, quantity, leverage)
    has_tp = _valid_target(tp_enabled, take_profit_price)
    has_sl = _valid_target(sl_enabled, stop_loss_price)
    position = Position(
        room_id=room_id,
        user_id=user_id,
        symbol=symbol,
        side=side,
        quantity=quantity,
        entry_price=entry_price,
        leverage=leverage,
        fee=terms['fee'],
        initial_margin=terms['initial_margin'],
        liquidation_price=terms['liquidation_price'],
        order_type=order_type,
        status='filled',
        tp_enabled=has_tp,
        sl_enabled=has_sl,
        take_profit_price=take_profit_price if has_tp else None,
        stop_loss_price=stop_loss_price if has_sl else None,
    )
    db.add(position)
    db.flush()
    return position


def resolve_entry_price(order: OpenOrder, fill_price: Optional[float], bid: Optional[float], ask: Optional[float]) -> float:
    """Prefer the side's quote sent by the matcher, then fillPrice, then the limit."""
    preferred = ask if order.side == 'long' else bid
    fallback = fill_price if fill_price and fill_price > 0 else order.limit_price
    entry = preferred if preferred is not None else fallback
    if not entry or entry <= 0:
        raise InvalidEntryPrice(f"invalid_entry_price ({entry})")
    return float(entry)


def fill_open_order(db: Session, order: OpenOrder, fill_price: Optional[float] = None,
                    bid: Optional[float] = None, ask: Optional[float] = None) -> Tuple[Optional[Position], Dict[str, Any]]:
    """Turn an open limit order into a position.

    Returns (position, before) where ``before`` is the row prior to the fill;
    position is None when the order was no longer open.
    """
    before = order.to_dict()
    if order.status != 'open':
        return None, before

    entry_price = resolve_entry_price(order, fill_price, bid, ask)
    logger.info("Filling limit order %s %s %s limit=%s entry=%s", order.id, order.symbol, order.side, order.limit_price, entry_price)
    position = open_position(
        db, order.room_id, order.user_id, order.symbol, order.side,
        float(order.quantity), entry_price, int(order.leverage or 1), 'limit',
        order.tp_enabled, order.sl_enabled, order.take_profit_price, order.stop_loss_price,
    )
    order.status = 'filled'
    order.filled_at = utcnow()
    order.position_id = position.id
    return position, before


def cancel_open_order(order: OpenOrder) -> Dict[str, Any]:
    before = order.to_dict()
    if order.status == 'open':
        order.status = 'cancelled'
    return before


SCHEDULE_TYPES = ('time_based', 'price_based')
ORDER_TYPES = ('market', 'limit')
SCHEDULE_SIDES = ('buy', 'sell')
MAX_LEVERAGE = 125


def validate_scheduled_order(body) -> List[str]:
    """Return every problem with a scheduled order request (empty when valid)."""
    errors = []
    for field in ('symbol', 'side', 'order_type', 'quantity', 'leverage', 'schedule_type'):
        if not getattr(body, field, None):
            errors.append(f"{field} is required")

    if body.schedule_type not in SCHEDULE_TYPES:
        errors.append("Invalid schedule_type")
    if body.order_type not in ORDER_TYPES:
        errors.append("Invalid order_type")
    if body.side not in SCHEDULE_SIDES:
        errors.append("Invalid side")

    if body.schedule_type == 'time_based' and not body.scheduled_at:
        errors.append("scheduled_at is required for time_based orders")
    if body.schedule_type == 'price_based' and (not body.trigger_condition or not body.trigger_price):
        errors.append("trigger_condition and trigger_price are required for price_based orders")
    if body.trigger_condition and body.trigger_condition not in ('above', 'below'):
        errors.append("Invalid trigger_condition")
    if body.order_type == 'limit' and not body.price:
        errors.append("price is required for limit orders")

    if body.quantity is not None and body.quantity <= 0:
        errors.append("quantity must be greater than 0")
    if body.leverage is not None and body.leverage < 1:
        errors.append("leverage must be at least 1")
    if body.leverage is not None and body.leverage > MAX_LEVERAGE:
        errors.append(f"leverage cannot exceed {MAX_LEVERAGE}")
    return errors


def price_trigger_met(order: ScheduledOrder, price: float) -> bool:
    trigger = order.trigger_price or 0
    if order.trigger_condition == 'above':
        return price >= trigger
    if order.trigger_condition == 'below':
        return price <= trigger
    return False


def is_ready(order: ScheduledOrder, price: Optional[float], now: datetime) -> Tuple[bool, bool]:
    """Return (time_ready, price_ready) for a scheduled order."""
    scheduled_at = order.scheduled_at
    if scheduled_at is not None and scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
    time_ready = order.schedule_type == 'time_based' and scheduled_at is not None and scheduled_at <= now
    price_ready = order.schedule_type == 'price_based' and price is not None and price_trigger_met(order, price)
    return time_ready, price_ready


def execute_scheduled_order(db: Session, order: ScheduledOrder, price: Optional[float]) -> Dict[str, Any]:
    """Carry out a triggered scheduled order.

    Market orders open a position at ``price``; limit orders rest a new open
    order at the scheduled limit price.
    """
    side = SIDE_MAP.get(order.side, order.side)
    leverage = max(1, int(order.leverage or 1))

    if order.order_type == 'market':
        if price is None or price <= 0:
            raise ScheduledExecutionError("market order needs a current price")
        position = open_position(
            db, order.room_id, order.user_id, order.symbol, side,
            float(order.quantity or 0), float(price), leverage, 'market',
            order.tp_enabled, order.sl_enabled, order.take_profit_price, order.stop_loss_price,
        )
        return {'price': float(price), 'positionId': position.id}

    if order.order_type == 'limit':
        has_tp = _valid_target(order.tp_enabled, order.take_profit_price)
        has_sl = _valid_target(order.sl_enabled, order.stop_loss_price)
        open_order = OpenOrder(
            room_id=order.room_id,
            user_id=order.user_id,
            symbol=order.symbol,
            side=side,
            order_type='limit',
            limit_price=order.price,
            quantity=order.quantity,
            leverage=order.leverage,
            time_in_force='GTC',
            status='open',
            tp_enabled=bool(order.tp_enabled),
            sl_enabled=bool(order.sl_enabled),
            take_profit_price=order.take_profit_price if has_tp else None,
            stop_loss_price=order.stop_loss_price if has_sl else None,
        )
        db.add(open_order)
        db.flush()
        return {'price': order.price, 'orderId': open_order.id, 'openOrder': open_order}

    raise ScheduledExecutionError(f"invalid_order_type ({order.order_type})")
