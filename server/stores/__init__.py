"""Stores package for Shithead match transport and persistence."""

from .transport import MatchTransport, Subscription, TransportError, ConcurrencyError
from .memory import InMemoryTransport
from .intent_store import IntentStore
from .snapshot_cache import SnapshotCache
from .pubsub import MatchPubSub, PubSubMessage, MessageType
from .durable import DurableTransport

__all__ = [
    # Boundary
    "MatchTransport",
    "Subscription",
    "TransportError",
    "ConcurrencyError",
    "InMemoryTransport",
    "DurableTransport",
    # Intent log
    "IntentStore",
    # Snapshot cache
    "SnapshotCache",
    # Pub/sub
    "MatchPubSub",
    "PubSubMessage",
    "MessageType",
]
