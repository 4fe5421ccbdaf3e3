import uuid
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime
from sqlalchemy.sql import func
from app.database import Base


def new_id() -> str:
    return uuid.uuid4().hex


class OpenOrder(Base):
    """Resting limit orders for a trading room."""
    __tablename__ = "trading_room_open_orders"

    id = Column(String, primary_key=True, default=new_id)
    room_id = Column(String, index=True)
    user_id = Column(String, nullable=True)
    symbol = Column(String, index=True)
    side = Column(String)  # long or short
    order_type = Column(String, default="limit")
    limit_price = Column(Float)
    quantity = Column(Float)
    leverage = Column(Integer, default=1)
    time_in_force = Column(String, default="GTC")
    status = Column(String, default="open", index=True)
    position_id = Column(String, nullable=True, doc="Position created when the order filled")

    tp_enabled = Column(Boolean, default=False)
    sl_enabled = Column(Boolean, default=False)
    take_profit_price = Column(Float, nullable=True)
    stop_loss_price = Column(Float, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), index=True)
    filled_at = Column(DateTime, nullable=True, doc="When order was filled")

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'room_id': self.room_id,
            'user_id': self.user_id,
            'symbol': self.symbol,
            'side': self.side,
            'order_type': self.order_type,
            'limit_price': self.limit_price,
            'quantity': self.quantity,
            'leverage': self.leverage,
            'time_in_force': self.time_in_force,
            'status': self.status,
            'position_id': self.position_id,
            'tp_enabled': self.tp_enabled,
            'sl_enabled': self.sl_enabled,
            'take_profit_price': self.take_profit_price,
            'stop_loss_price': self.stop_loss_price,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'filled_at': self.filled_at.isoformat() if self.filled_at else None,
        }
