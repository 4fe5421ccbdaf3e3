from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime
from sqlalchemy.sql import func
from app.database import Base
from app.models.open_order import new_id


class Position(Base):
    __tablename__ = "trading_room_positions"

    id = Column(String, primary_key=True, default=new_id)
    room_id = Column(String, index=True)
    user_id = Column(String, nullable=True)
    symbol = Column(String)
    side = Column(String)  # long or short
    quantity = Column(Float)
    entry_price = Column(Float)
    leverage = Column(Integer, default=1)
    fee = Column(Float, default=0.0)
    initial_margin = Column(Float)
    liquidation_price = Column(Float)
    order_type = Column(String)  # limit or market
    status = Column(String, default="filled")

    tp_enabled = Column(Boolean, default=False)
    sl_enabled = Column(Boolean, default=False)
    take_profit_price = Column(Float, nullable=True)
    stop_loss_price = Column(Float, nullable=True)

    opened_at = Column(DateTime, server_default=func.now())
    closed_at = Column(DateTime, nullable=True)
