"""
Redis client factory and Pub/Sub wrappers for job lifecycle events.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import orjson
import redis.asyncio as redis
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.config import settings

logger = logging.getLogger(__name__)


def create_client(redis_url: Optional[str] = None) -> redis.Redis:
    """Create a pooled redis.asyncio client returning raw bytes (for orjson)."""
    return redis.from_url(
        redis_url or settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=False,
    )


class RedisPublisher:
    """Redis publisher for Pub/Sub events with connection pooling and retries."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None) -> None:
        """Initialize Redis publisher.

        Args:
            redis_url: Redis connection URL, defaults to settings.REDIS_URL
            client: Existing client to share; the publisher will not close it
        """
        self.redis_url = redis_url or settings.REDIS_URL
        self.client: Optional[redis.Redis] = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Establish Redis connection with connection pooling."""
        if self.client is None:
            self.client = create_client(self.redis_url)

    @retry(
        retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    async def publish(self, channel: str, message: dict[str, Any]) -> None:
        """Publish message to Redis channel with retry logic.

        Args:
            channel: Redis channel name
            message: Message payload dict (will be JSON-serialized)

        Raises:
            redis.RedisError: If publishing fails after retries
        """
        if self.client is None:
            await self.connect()

        await self.client.publish(channel, orjson.dumps(message))

    async def close(self) -> None:
        """Close Redis connection and cleanup resources."""
        if self.client and self._owns_client:
            await self.client.aclose()
        self.client = None


class RedisSubscriber:
    """Redis subscriber for Pub/Sub events with async message handling."""

    def __init__(self, channels: list[str], redis_url: Optional[str] = None) -> None:
        """Initialize Redis subscriber.

        Args:
            channels: List of channels to subscribe to
            redis_url: Redis connection URL, defaults to settings.REDIS_URL
        """
        self.redis_url = redis_url or settings.REDIS_URL
        self.channels = channels
        self.client: Optional[redis.Redis] = None
        self.pubsub: Optional[redis.client.PubSub] = None
        self._stop_event = asyncio.Event()

    async def connect(self) -> None:
        """Establish Redis connection and subscribe to channels."""
        if self.client is None:
            self.client = create_client(self.redis_url)

        self.pubsub = self.client.pubsub()
        await self.pubsub.subscribe(*self.channels)

    async def subscribe(self, handler: Callable[[str, dict[str, Any]], Awaitable[None]]) -> None:
        """Subscribe to channels and process messages with handler.

        Args:
            handler: Async callback function(channel, message_dict)
        """
        if self.pubsub is None:
            await self.connect()

        while not self._stop_event.is_set():
            try:
                message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)

                if message and message["type"] == "message":
                    try:
                        channel = message["channel"].decode("utf-8")
                        payload = orjson.loads(message["data"])
                    except (orjson.JSONDecodeError, UnicodeDecodeError, KeyError) as e:
                        logger.warning(
                            "Failed to decode message, skipping",
                            extra={"error": str(e), "raw_data": message.get("data")},
                        )
                        continue

                    await handler(channel, payload)

            except redis.RedisError as e:
                logger.error("Redis error during subscription", extra={"error": str(e)})
                await asyncio.sleep(1)

            # Small sleep to prevent busy waiting
            await asyncio.sleep(0.01)

    def stop(self) -> None:
        """Signal the subscription loop to stop."""
        self._stop_event.set()

    async def close(self) -> None:
        """Close Redis connection and cleanup resources."""
        try:
            if self.pubsub:
                await self.pubsub.unsubscribe(*self.channels)
                await self.pubsub.aclose()
                self.pubsub = None
        finally:
            if self.client:
                await self.client.aclose()
                self.client = None
