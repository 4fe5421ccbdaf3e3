from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime
from sqlalchemy.sql import func
from app.database import Base
from app.models.open_order import new_id


class ScheduledOrder(Base):
    """Orders queued for execution at a future time or price trigger."""
    __tablename__ = "trading_room_scheduled_orders"

    id = Column(String, primary_key=True, default=new_id)
    room_id = Column(String, index=True)
    user_id = Column(String, nullable=True)
    symbol = Column(String, index=True)
    side = Column(String)  # buy/sell or long/short
    order_type = Column(String, default="market")  # market or limit
    quantity = Column(Float)
    price = Column(Float, nullable=True, doc="Limit price for limit orders")
    leverage = Column(Integer, default=1)

    schedule_type = Column(String)  # time_based or price_based
    scheduled_at = Column(DateTime, nullable=True)
    trigger_condition = Column(String, nullable=True)  # above or below
    trigger_price = Column(Float, nullable=True)

    status = Column(String, default="pending", index=True)
    executed_at = Column(DateTime, nullable=True)
    execution_price = Column(Float, nullable=True)

    tp_enabled = Column(Boolean, default=False)
    sl_enabled = Column(Boolean, default=False)
    take_profit_price = Column(Float, nullable=True)
    stop_loss_price = Column(Float, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'room_id': self.room_id,
            'user_id': self.user_id,
            'symbol': self.symbol,
            'side': self.side,
            'order_type': self.order_type,
            'quantity': self.quantity,
            'price': self.price,
            'leverage': self.leverage,
            'schedule_type': self.schedule_type,
            'scheduled_at': self.scheduled_at.isoformat() if self.scheduled_at else None,
            'trigger_condition': self.trigger_condition,
            'trigger_price': self.trigger_price,
            'status': self.status,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None,
            'execution_price': self.execution_price,
        }
