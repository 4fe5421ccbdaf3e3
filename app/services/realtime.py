"""Websocket listener for the open-order change feed, with auto-reconnect."""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional, Union

import websockets

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[dict], Union[Awaitable[None], None]]


def change_feed_url(ws_base_url: str, room_id: str) -> str:
    return f"{ws_base_url.rstrip('/')}/api/trading-room/{room_id}/ws/open-orders"


class ChangeFeedListener:
    def __init__(self, url: str, max_backoff: float = 30):
        self.url = url
        self.max_backoff = max_backoff
        self._stop = asyncio.Event()

    async def run(self, handler: ChangeHandler) -> None:
        # fresh event per run so a stopped listener can be started again
        self._stop = asyncio.Event()
        backoff = 1
        while not self._stop.is_set():
            try:
                logger.info("Connecting change feed %s", self.url)
                async with websockets.connect(self.url, ping_interval=20, ping_timeout=20) as ws:
                    backoff = 1
                    while not self._stop.is_set():
                        message = await self._recv_or_stop(ws)
                        if message is None:
                            break
                        try:
                            payload = json.loads(message)
                        except ValueError:
                            logger.warning("Dropping non-JSON change message")
                            continue
                        result = handler(payload)
                        if asyncio.iscoroutine(result):
                            await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._stop.is_set():
                    break
                logger.warning("Change feed disconnected: %s (retry in %ss)", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.max_backoff)

    async def _recv_or_stop(self, ws) -> Optional[str]:
        recv_task = asyncio.ensure_future(ws.recv())
        stop_task = asyncio.ensure_future(self._stop.wait())
        done, _ = await asyncio.wait({recv_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if stop_task in done:
            recv_task.cancel()
            return None
        stop_task.cancel()
        return recv_task.result()

    def stop(self) -> None:
        self._stop.set()
