"""
Redis pub/sub fan-out for match traffic.

Participants of one match can live in different processes. When one of
them appends an intent or the host publishes a snapshot, every other
process needs a prompt notice so it can react without polling.

This module provides:
- Pub/sub channels per match
- Message types for appended intents, published snapshots and match closure
- Async listener loop dispatching incoming messages to handlers
- Echo filtering by server id

Redis pub/sub can drop messages (e.g. during a reconnect). Consumers treat
notices as hints and converge through the intent log sequence and snapshot
version.

Usage:
    pubsub = MatchPubSub(redis_client, server_id="host-1")
    await pubsub.start()

    async def handle_message(msg: PubSubMessage):
        print(f"Received: {msg.type} for match {msg.match_id}")

    await pubsub.subscribe("match-42", handle_message)

    await pubsub.publish(PubSubMessage(
        type=MessageType.SNAPSHOT_PUBLISHED,
        match_id="match-42",
        data={"snapshot": {...}},
    ))

    await pubsub.stop()
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Awaitable, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """Types of messages that can be published via pub/sub."""

    # An intent was appended to the match log
    INTENT_APPENDED = "intent_appended"

    # The host published a new canonical snapshot
    SNAPSHOT_PUBLISHED = "snapshot_published"

    # Match is being closed (finished or abandoned)
    MATCH_CLOSED = "match_closed"


@dataclass
class PubSubMessage:
    """
    Message sent via Redis pub/sub.

    Attributes:
        type: Message type (determines how handlers process it).
        match_id: Match this message is for.
        data: Message payload (type-specific).
        sender_id: Optional server ID of sender (to avoid echo).
    """

    type: MessageType
    match_id: str
    data: dict
    sender_id: Optional[str] = None

    def to_json(self) -> str:
        """Serialize to JSON for Redis."""
        return json.dumps({
            "type": self.type.value,
            "match_id": self.match_id,
            "data": self.data,
            "sender_id": self.sender_id,
        })

    @classmethod
    def from_json(cls, raw: str) -> "PubSubMessage":
        """Deserialize from JSON."""
        d = json.loads(raw)
        return cls(
            type=MessageType(d["type"]),
            match_id=d["match_id"],
            data=d.get("data", {}),
            sender_id=d.get("sender_id"),
        )


# Type alias for message handlers
MessageHandler = Callable[[PubSubMessage], Awaitable[None]]


class MatchPubSub:
    """
    Redis pub/sub for cross-process match traffic.

    Manages subscriptions to match channels and dispatches incoming
    messages to registered handlers.
    """

    CHANNEL_PREFIX = "shithead:match:"

    def __init__(
        self,
        redis_client: redis.Redis,
        server_id: str = "default",
    ):
        """
        Initialize pub/sub with Redis client.

        Args:
            redis_client: Async Redis client.
            server_id: Unique ID for this process.
        """
        self.redis = redis_client
        self.server_id = server_id
        self.pubsub = redis_client.pubsub()
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def _channel(self, match_id: str) -> str:
        """Get Redis channel name for a match."""
        return f"{self.CHANNEL_PREFIX}{match_id}"

    async def subscribe(
        self,
        match_id: str,
        handler: MessageHandler,
    ) -> None:
        """
        Subscribe to match messages.

        Args:
            match_id: Match to subscribe to.
            handler: Async function to call on each message.
        """
        channel = self._channel(match_id)
        if channel not in self._handlers:
            self._handlers[channel] = []
            await self.pubsub.subscribe(channel)
            logger.debug(f"Subscribed to channel {channel}")
        self._handlers[channel].append(handler)

    async def unsubscribe(self, match_id: str) -> None:
        """
        Unsubscribe from match messages.

        Args:
            match_id: Match to unsubscribe from.
        """
        channel = self._channel(match_id)
        if channel in self._handlers:
            del self._handlers[channel]
            await self.pubsub.unsubscribe(channel)
            logger.debug(f"Unsubscribed from channel {channel}")

    async def publish(self, message: PubSubMessage) -> int:
        """
        Publish a message to a match's channel.

        Args:
            message: Message to publish.

        Returns:
            Number of subscribers that received the message.
        """
        # Add sender ID so we can filter out our own messages
        message.sender_id = self.server_id
        channel = self._channel(message.match_id)
        count = await self.redis.publish(channel, message.to_json())
        logger.debug(f"Published {message.type.value} to {channel} ({count} receivers)")
        return count

    async def start(self) -> None:
        """Start listening for messages."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._listen())
        logger.info("MatchPubSub listener started")

    async def stop(self) -> None:
        """Stop listening and clean up."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self.pubsub.close()
        self._handlers.clear()
        logger.info("MatchPubSub listener stopped")

    async def _listen(self) -> None:
        """Main listener loop."""
        while self._running:
            try:
                message = await self.pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message and message["type"] == "message":
                    await self._handle_message(message)

            except asyncio.CancelledError:
                break
            except redis.ConnectionError as e:
                logger.error(f"PubSub connection error: {e}")
                await asyncio.sleep(1)
            except Exception as e:
                logger.error(f"PubSub listener error: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def _handle_message(self, raw_message: dict) -> None:
        """Handle an incoming Redis message."""
        try:
            channel = raw_message["channel"]
            if isinstance(channel, bytes):
                channel = channel.decode()

            data = raw_message["data"]
            if isinstance(data, bytes):
                data = data.decode()

            msg = PubSubMessage.from_json(data)

            # Skip messages from ourselves
            if msg.sender_id == self.server_id:
                return

            handlers = self._handlers.get(channel, [])
            for handler in handlers:
                try:
                    await handler(msg)
                except Exception as e:
                    logger.error(f"Error in pubsub handler: {e}", exc_info=True)

        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in pubsub message: {e}")
        except Exception as e:
            logger.error(f"Error processing pubsub message: {e}", exc_info=True)
