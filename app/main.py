from fastapi import FastAPI
from app.database import Base, engine
from app.routes import trading_room
from app.config import settings
from app.logging_setup import configure_logging
# Import all models to ensure they're registered with SQLAlchemy
from app.models.open_order import OpenOrder
from app.models.position import Position
from app.models.scheduled_order import ScheduledOrder

configure_logging()

Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.APP_NAME)

app.include_router(trading_room.router)

@app.get("/")
def root():
    return {"message": "Trading Room Order Engine API is running"}
