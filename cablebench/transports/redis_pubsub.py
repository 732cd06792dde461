import logging
from typing import AsyncIterator, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import PublishError, TransportError
from ..models.state import ConnectionState
from .base import Delivery, TransportAdapter

logger = logging.getLogger(__name__)

DEFAULT_REDIS_PORT = 6379

_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisTransport(TransportAdapter):
    """
    Key-value store pub/sub channel (Redis PUBLISH / SUBSCRIBE).

    Used by the ActionCable benchmark: the broadcaster publishes straight
    into the Redis channel the cable server relays from.
    """

    name = "redis"

    def __init__(self, host: str = "127.0.0.1", port: int = DEFAULT_REDIS_PORT, db: int = 0, **kwargs):
        super().__init__(**kwargs)
        self.host = host
        self.port = port
        self.db = db
        self._client: Optional[Redis] = None

    def describe(self) -> str:
        return f"redis://{self.host}:{self.port}/{self.db}"

    def _create_client(self) -> Redis:
        return Redis(host=self.host, port=self.port, db=self.db, decode_responses=True)

    async def connect(self) -> None:
        await self._release_client()
        self._closed = False
        self._set_state(ConnectionState.CONNECTING)
        client = self._create_client()
        try:
            await client.ping()
        except _CONNECTION_ERRORS as e:
            self._set_state(ConnectionState.DISCONNECTED)
            await client.aclose()
            raise TransportError(f"Cannot connect to {self.describe()}: {e}") from e

        self._client = client
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to Redis at {self.host}:{self.port}")

    async def publish(self, channel: str, payload: str) -> None:
        if self._client is None or self._state != ConnectionState.CONNECTED:
            raise TransportError(f"Not connected to {self.describe()}")

        try:
            await self._client.publish(channel, payload)
        except _CONNECTION_ERRORS as e:
            self._connection_lost(e)
            raise TransportError(f"Connection to {self.describe()} lost: {e}") from e
        except RedisError as e:
            raise PublishError(f"Error publishing to {channel}: {e}") from e

    async def subscribe(self, channel: str) -> AsyncIterator[Delivery]:
        if self._client is None or self._state != ConnectionState.CONNECTED:
            raise TransportError(f"Not connected to {self.describe()}")

        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(channel)
        except _CONNECTION_ERRORS as e:
            await pubsub.aclose()
            self._connection_lost(e)
            raise TransportError(f"Cannot subscribe to {channel}: {e}") from e

        return self._stream(pubsub, channel)

    async def _stream(self, pubsub, channel: str) -> AsyncIterator[Delivery]:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                yield Delivery(payload=message["data"], received_at=self._clock())
        except _CONNECTION_ERRORS as e:
            self._connection_lost(e)
            raise TransportError(f"Subscription to {channel} lost: {e}") from e
        finally:
            try:
                await pubsub.aclose()
            except Exception as e:
                logger.debug(f"Error closing pubsub for {channel}: {e}")

        # listen() only returns once every channel is unsubscribed
        self._connection_lost()
        raise TransportError(f"Subscription to {channel} ended")

    async def _release_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except Exception as e:
                logger.debug(f"Error closing client for {self.describe()}: {e}")

    async def _close(self) -> None:
        await self._release_client()
