"""
Redis pub/sub relay for live events.

When enabled, every emit is published on ``<prefix>:<target>`` and each
process subscribed to ``<prefix>:*`` hands the event to its own registry, so
a user connected to another worker still receives it.

If the subscription drops, the listener re-subscribes with exponential
backoff. While it is down ``listening`` is False and the gateway delivers to
its own sessions directly.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

from app.core.config import settings
from app.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class RedisBackplane:
    def __init__(
        self,
        registry: ConnectionRegistry,
        client: redis.Redis,
        prefix: str = "live",
        min_delay: float = 1.0,
        max_delay: float = 30.0,
    ):
        self.registry = registry
        self.client = client
        self.prefix = prefix
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.listening = False
        self._listener: Optional[asyncio.Task] = None
        self._pubsub = None

    @classmethod
    def from_settings(cls, registry: ConnectionRegistry) -> "RedisBackplane":
        client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_keepalive=True,
            health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL,
        )
        return cls(
            registry,
            client,
            prefix=settings.LIVE_CHANNEL_PREFIX,
            min_delay=settings.REDIS_RECONNECT_MIN_DELAY,
            max_delay=settings.REDIS_RECONNECT_MAX_DELAY,
        )

    def channel_for(self, target: str) -> str:
        return f"{self.prefix}:{target}"

    async def _subscribe(self) -> None:
        pubsub = self.client.pubsub()
        await pubsub.psubscribe(f"{self.prefix}:*")
        self._pubsub = pubsub
        self.listening = True

    async def start(self) -> None:
        await self.client.ping()
        await self._subscribe()
        self._listener = asyncio.create_task(self._listen())
        logger.info(f"Redis backplane subscribed to {self.prefix}:*")

    async def publish(self, target: str, payload: Dict[str, Any], exclude: Optional[str] = None) -> int:
        """Returns the number of processes that received the event."""
        body = {"event": payload, "exclude": exclude}
        return await self.client.publish(self.channel_for(target), json.dumps(body))

    async def dispatch(self, message: Dict[str, Any]) -> int:
        """Hand one pub/sub message to the local registry."""
        if message.get("type") != "pmessage":
            return 0
        channel = message["channel"]
        target = channel[len(self.prefix) + 1:]
        try:
            body = json.loads(message["data"])
            payload = body["event"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error(f"Failed to decode live event on {channel}: {e}")
            return 0
        return await self.registry.deliver(target, payload, exclude=body.get("exclude"))

    async def _drop_subscription(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except Exception as e:
            logger.debug(f"Error discarding Redis subscription: {e}")

    async def _listen(self) -> None:
        delay = self.min_delay
        while True:
            try:
                if self._pubsub is None:
                    await self._subscribe()
                    logger.info(f"Redis backplane re-subscribed to {self.prefix}:*")
                async for message in self._pubsub.listen():
                    delay = self.min_delay
                    await self.dispatch(message)
                logger.warning("Redis backplane subscription ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Redis backplane listener failed, retrying in {delay:.0f}s: {e}")

            self.listening = False
            await self._drop_subscription()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_delay)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Redis backplane ping failed: {e}")
            return False

    async def close(self) -> None:
        self.listening = False
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            try:
                await self._pubsub.punsubscribe(f"{self.prefix}:*")
                await self._pubsub.aclose()
            except Exception as e:
                logger.error(f"Error closing Redis subscription: {e}")
            self._pubsub = None
        await self.client.aclose()
        logger.info("Redis backplane closed")
