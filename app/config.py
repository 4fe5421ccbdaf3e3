import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in ("1", "true", "yes", "y")


class Settings:
    APP_NAME = "Trading Room Order Engine"
    ENV = os.getenv("ENV", "development")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./trading_room.db")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Engine -> API endpoints
    API_BASE_URL = os.getenv("API_BASE_URL", "http://127.0.0.1:8000")
    WS_BASE_URL = os.getenv("WS_BASE_URL", "ws://127.0.0.1:8000")
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

    # Engine cadence
    FILL_TICK_SECONDS = float(os.getenv("FILL_TICK_SECONDS", "1.0"))
    TICKER_POLL_SECONDS = float(os.getenv("TICKER_POLL_SECONDS", "1.0"))
    SCHEDULED_REFRESH_SECONDS = float(os.getenv("SCHEDULED_REFRESH_SECONDS", "5.0"))

    # Scheduled orders only run client-side when explicitly enabled
    ENABLE_CLIENT_EXECUTOR = _env_flag("ENABLE_CLIENT_EXECUTOR")

    # Market data
    BYBIT_BASE_URL = os.getenv("BYBIT_BASE_URL", "https://api.bybit.com")

    # Position terms
    TAKER_FEE_RATE = float(os.getenv("TAKER_FEE_RATE", "0.0005"))
    MAINTENANCE_MARGIN_RATE = float(os.getenv("MAINTENANCE_MARGIN_RATE", "0.005"))

settings = Settings()
