from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import BaseModel, field_validator


class OpenOrderCreate(BaseModel):
    symbol: Optional[str] = None
    side: Optional[str] = None
    limitPrice: Optional[float] = None
    quantity: Optional[float] = None
    leverage: Optional[int] = 1
    timeInForce: str = "GTC"
    userId: Optional[str] = None
    tpEnabled: bool = False
    slEnabled: bool = False
    takeProfitPrice: Optional[float] = None
    stopLossPrice: Optional[float] = None


class OpenOrderAction(BaseModel):
    action: Optional[str] = None
    orderId: Optional[str] = None
    fillPrice: Optional[float] = None
    bid: Optional[float] = None
    ask: Optional[float] = None


class ScheduledOrderCreate(BaseModel):
    symbol: Optional[str] = None
    side: Optional[str] = None
    order_type: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    leverage: Optional[int] = None
    schedule_type: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    trigger_condition: Optional[str] = None
    trigger_price: Optional[float] = None
    user_id: Optional[str] = None
    tp_enabled: bool = False
    sl_enabled: bool = False
    take_profit_price: Optional[float] = None
    stop_loss_price: Optional[float] = None

    @field_validator('scheduled_at')
    @classmethod
    def _to_naive_utc(cls, v):
        # stored as naive UTC; sqlite drops the offset
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class ScheduledOrderAction(BaseModel):
    action: Optional[str] = None


class ExecuteRequest(BaseModel):
    client_time: Optional[str] = None
    current_price: Optional[float] = None


class ChangeEvent(BaseModel):
    """Realtime notification for a row of the open-orders table."""
    eventType: Optional[str] = None
    old: Optional[dict] = None
    new: Optional[dict] = None


def _as_id(value):
    if value is None:
        return None
    return str(value)


class OpenOrderRow(BaseModel):
    """Open order as mirrored by the engine cache.

    ``limit_price`` is kept as delivered; the fill engine decides whether it
    is numeric.
    """
    id: str
    symbol: Optional[str] = None
    side: Optional[str] = None
    order_type: Optional[str] = None
    limit_price: Any = None
    quantity: Any = None
    status: Optional[str] = None

    @field_validator('id', mode='before')
    @classmethod
    def _coerce_id(cls, v):
        return _as_id(v)


class ScheduledOrderRow(BaseModel):
    id: Optional[str] = None
    symbol: Optional[str] = None
    side: Optional[str] = None
    order_type: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    leverage: Optional[int] = 1
    schedule_type: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    trigger_condition: Optional[str] = None
    trigger_price: Optional[float] = None
    status: Optional[str] = None

    @field_validator('id', mode='before')
    @classmethod
    def _coerce_id(cls, v):
        return _as_id(v)

    @field_validator('scheduled_at')
    @classmethod
    def _assume_utc(cls, v):
        # sqlite hands back naive UTC timestamps
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v
