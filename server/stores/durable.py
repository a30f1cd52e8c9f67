"""
Durable multi-process match transport.

Composes the three stores:

    IntentStore (PostgreSQL)  -> authoritative intent log
    SnapshotCache (Redis)     -> latest canonical snapshot per match
    MatchPubSub (Redis)       -> prompt notices to other processes

Subscribers in this process are fed directly; other processes learn about
new intents and snapshots through pub/sub. Pub/sub notices can be lost, so
readers fall back on read_intents() and latest_snapshot().
"""

import logging
from collections import defaultdict
from typing import Optional

import redis.asyncio as redis

from config import ServerConfig, config
from models.intents import Intent, IntentEnvelope
from models.snapshot import MatchSnapshot
from stores.intent_store import IntentStore
from stores.pubsub import MatchPubSub, MessageType, PubSubMessage
from stores.snapshot_cache import SnapshotCache
from stores.transport import MatchTransport, Subscription, TransportError

logger = logging.getLogger(__name__)


class DurableTransport(MatchTransport):
    """PostgreSQL + Redis backed transport."""

    def __init__(
        self,
        intent_store: IntentStore,
        snapshot_cache: SnapshotCache,
        pubsub: MatchPubSub,
    ):
        self.intent_store = intent_store
        self.snapshot_cache = snapshot_cache
        self.pubsub = pubsub
        self._intent_subs: dict[str, list[Subscription]] = defaultdict(list)
        self._snapshot_subs: dict[str, list[Subscription]] = defaultdict(list)
        self._channels: set[str] = set()

    @classmethod
    async def create(cls, cfg: Optional[ServerConfig] = None) -> "DurableTransport":
        """
        Connect all three stores.

        Args:
            cfg: Server configuration (global config if omitted).
        """
        cfg = cfg or config
        if not cfg.POSTGRES_URL:
            raise ValueError("POSTGRES_URL is required for the durable transport")

        intent_store = await IntentStore.create(cfg.POSTGRES_URL)
        snapshot_cache = await SnapshotCache.create(cfg.REDIS_URL, cfg.SNAPSHOT_TTL_HOURS)
        pubsub = MatchPubSub(snapshot_cache.redis, server_id=cfg.SERVER_ID)
        await pubsub.start()
        logger.info(f"Durable transport ready (server {cfg.SERVER_ID})")
        return cls(intent_store, snapshot_cache, pubsub)

    async def _ensure_channel(self, match_id: str) -> None:
        if match_id in self._channels:
            return
        try:
            await self.pubsub.subscribe(match_id, self._on_message)
        except redis.RedisError as e:
            raise TransportError(f"Failed to subscribe to {match_id}: {e}") from e
        self._channels.add(match_id)

    async def _notify(self, message: PubSubMessage) -> None:
        try:
            await self.pubsub.publish(message)
        except redis.RedisError as e:
            raise TransportError(f"Failed to publish {message.type.value} for {message.match_id}: {e}") from e

    # -------------------------------------------------------------------------
    # Intent log
    # -------------------------------------------------------------------------

    async def append_intent(self, match_id: str, intent: Intent) -> IntentEnvelope:
        envelope = await self.intent_store.append(match_id, intent)
        self._deliver(self._intent_subs, match_id, envelope)

        try:
            await self._notify(PubSubMessage(
                type=MessageType.INTENT_APPENDED,
                match_id=match_id,
                data={"envelope": envelope.to_dict()},
            ))
        except TransportError as e:
            # The intent is durable; the host picks it up on its next log read
            logger.warning(f"Intent {envelope.sequence} stored but notice not sent: {e}")
        return envelope

    async def read_intents(self, match_id: str, after_sequence: int = 0) -> list[IntentEnvelope]:
        return await self.intent_store.get_intents(match_id, after_sequence)

    async def subscribe_intents(self, match_id: str) -> Subscription[IntentEnvelope]:
        await self._ensure_channel(match_id)
        sub: Subscription[IntentEnvelope] = Subscription(
            on_close=lambda s: self._discard(self._intent_subs, match_id, s)
        )
        self._intent_subs[match_id].append(sub)
        return sub

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    async def publish_snapshot(self, snapshot: MatchSnapshot) -> None:
        await self.snapshot_cache.save_snapshot(snapshot)
        self._deliver(self._snapshot_subs, snapshot.match_id, snapshot)
        await self._notify(PubSubMessage(
            type=MessageType.SNAPSHOT_PUBLISHED,
            match_id=snapshot.match_id,
            data={"snapshot": snapshot.to_dict()},
        ))

    async def latest_snapshot(self, match_id: str) -> Optional[MatchSnapshot]:
        return await self.snapshot_cache.get_snapshot(match_id)

    async def subscribe_snapshots(self, match_id: str) -> Subscription[MatchSnapshot]:
        await self._ensure_channel(match_id)
        sub: Subscription[MatchSnapshot] = Subscription(
            on_close=lambda s: self._discard(self._snapshot_subs, match_id, s)
        )
        self._snapshot_subs[match_id].append(sub)
        return sub

    async def close_match(self, match_id: str) -> None:
        """Tell other processes the match is over and stop listening to it."""
        await self._notify(PubSubMessage(type=MessageType.MATCH_CLOSED, match_id=match_id, data={}))
        await self.pubsub.unsubscribe(match_id)
        self._channels.discard(match_id)

    # -------------------------------------------------------------------------
    # Incoming notices
    # -------------------------------------------------------------------------

    async def _on_message(self, msg: PubSubMessage) -> None:
        if msg.type == MessageType.INTENT_APPENDED:
            envelope = IntentEnvelope.from_dict(msg.data["envelope"])
            self._deliver(self._intent_subs, msg.match_id, envelope)
        elif msg.type == MessageType.SNAPSHOT_PUBLISHED:
            snapshot = MatchSnapshot.from_dict(msg.data["snapshot"])
            self._deliver(self._snapshot_subs, msg.match_id, snapshot)
        elif msg.type == MessageType.MATCH_CLOSED:
            for registry in (self._intent_subs, self._snapshot_subs):
                for sub in list(registry.get(msg.match_id, [])):
                    sub.close()

    @staticmethod
    def _deliver(registry: dict[str, list[Subscription]], match_id: str, item) -> None:
        for sub in list(registry.get(match_id, [])):
            sub.deliver(item)

    @staticmethod
    def _discard(registry: dict[str, list[Subscription]], match_id: str, sub: Subscription) -> None:
        subs = registry.get(match_id, [])
        if sub in subs:
            subs.remove(sub)

    async def close(self) -> None:
        for registry in (self._intent_subs, self._snapshot_subs):
            for subs in list(registry.values()):
                for sub in list(subs):
                    sub.close()
        await self.pubsub.stop()
        await self.snapshot_cache.close()
        await self.intent_store.close()
