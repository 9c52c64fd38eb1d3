import asyncio
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        class _Sub:
            async def run(self):
                await asyncio.Future()

            async def cancel(self):
                return
        return _Sub()

    async def set_presence(self, account_id: str, ttl_seconds: int = 60) -> None:
        return

    async def clear_presence(self, account_id: str) -> None:
        return

    async def is_online(self, account_id: str) -> bool:
        return False

    async def close(self) -> None:
        return


class RedisBus:
    """Redis pub/sub fanout so every API process can reach every socket."""

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                        if msg and msg.get("type") == "message":
                            data = msg.get("data")
                            if isinstance(data, bytes):
                                data = data.decode("utf-8")
                            await on_message(data)
                    except redis.RedisError:
                        logger.warning("Redis subscription on %s failed, retrying", channel, exc_info=True)
                        await asyncio.sleep(0.5)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except redis.RedisError:
                    logger.debug("Unsubscribe from %s failed", channel, exc_info=True)

        return _Sub()

    async def set_presence(self, account_id: str, ttl_seconds: int = 60) -> None:
        await self._redis.set(f"presence:{account_id}", "online", ex=ttl_seconds)

    async def clear_presence(self, account_id: str) -> None:
        await self._redis.delete(f"presence:{account_id}")

    async def is_online(self, account_id: str) -> bool:
        ttl = await self._redis.ttl(f"presence:{account_id}")
        return bool(ttl and ttl > 0)

    async def close(self) -> None:
        await self._redis.aclose()


def create_bus(url: Optional[str]):
    if not url:
        return NoopBus()
    return RedisBus(url)
