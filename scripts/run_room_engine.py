"""Run the room order engine against a live trading-room API.

Usage: python scripts/run_room_engine.py ROOM_ID SYMBOL [--api URL] [--ws URL] [--enable-executor]
"""
import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
import argparse
import asyncio
import logging

from app.config import settings
from app.logging_setup import configure_logging
from app.services.realtime import ChangeFeedListener, change_feed_url
from app.services.room_client import RoomApiClient
from app.services.room_session import RoomSession
from app.services.ticker import BybitTickerSource, TickerFeed

logger = logging.getLogger("room_engine")


async def run(room_id: str, symbol: str, api_url: str, ws_url: str, enable_executor: bool):
    feed = TickerFeed()
    source = BybitTickerSource()
    client = RoomApiClient(room_id, base_url=api_url)
    listener = ChangeFeedListener(change_feed_url(ws_url, room_id))
    session = RoomSession(room_id, symbol, client, feed, enable_executor=enable_executor, listener=listener)

    poller = asyncio.ensure_future(source.poll(feed, symbol))
    try:
        await session.activate()
        logger.info("Engine running for room=%s symbol=%s (executor=%s)", room_id, symbol, enable_executor)
        await asyncio.Event().wait()
    finally:
        poller.cancel()
        await session.close()
        await client.aclose()
        await source.aclose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Trading room order engine")
    parser.add_argument("room_id")
    parser.add_argument("symbol")
    parser.add_argument("--api", default=settings.API_BASE_URL)
    parser.add_argument("--ws", default=settings.WS_BASE_URL)
    parser.add_argument("--enable-executor", action="store_true", default=settings.ENABLE_CLIENT_EXECUTOR)
    args = parser.parse_args(argv)

    configure_logging()
    try:
        asyncio.run(run(args.room_id, args.symbol.upper(), args.api, args.ws, args.enable_executor))
    except KeyboardInterrupt:
        logger.info("Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
