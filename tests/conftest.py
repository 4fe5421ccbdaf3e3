import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_trading_room.db")
os.environ.setdefault("ENABLE_CLIENT_EXECUTOR", "false")

import pytest
from app.database import Base, engine, SessionLocal
# Register models
from app.models.open_order import OpenOrder
from app.models.position import Position
from app.models.scheduled_order import ScheduledOrder


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
