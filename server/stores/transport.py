"""
Persistence/transport boundary between match participants.

Every participant talks to the others through a MatchTransport:

    append_intent(match_id, intent)     -> durably log an intent, get its sequence
    read_intents(match_id, after)       -> log entries after a sequence (catch-up)
    subscribe_intents(match_id)         -> stream of newly appended entries
    publish_snapshot(snapshot)          -> make a canonical snapshot visible
    latest_snapshot(match_id)           -> newest stored snapshot (refetch)
    subscribe_snapshots(match_id)       -> stream of published snapshots

Delivery through subscriptions is at-least-once and may reorder or drop
notices; callers rely on log sequences and snapshot versions, plus
read_intents/latest_snapshot, to converge.

Failures of the boundary itself are reported as TransportError, never
silently swallowed.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Generic, Optional, TypeVar

from models.intents import Intent, IntentEnvelope
from models.snapshot import MatchSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransportError(Exception):
    """Raised when publishing, appending or reading through a transport fails."""
    pass


class ConcurrencyError(TransportError):
    """Raised when optimistic concurrency check fails."""
    pass


_CLOSED = object()


class Subscription(Generic[T]):
    """
    Queue-backed stream of items for one subscriber.

    Registered as soon as it is created, so nothing published after
    subscribe_* returns is missed. Iterate with `async for`; iteration ends
    once the subscription is closed.
    """

    def __init__(self, on_close: Optional[Callable[["Subscription[T]"], None]] = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self.closed = False

    def deliver(self, item: T) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close:
            self._on_close(self)


class MatchTransport(ABC):
    """Abstract intent log + snapshot channel for matches."""

    @abstractmethod
    async def append_intent(self, match_id: str, intent: Intent) -> IntentEnvelope:
        """
        Durably append an intent to the match log.

        Returns:
            The stored envelope, carrying its assigned sequence.

        Raises:
            TransportError: If the intent could not be stored.
        """

    @abstractmethod
    async def read_intents(self, match_id: str, after_sequence: int = 0) -> list[IntentEnvelope]:
        """Log entries with sequence greater than `after_sequence`, in order."""

    @abstractmethod
    async def subscribe_intents(self, match_id: str) -> Subscription[IntentEnvelope]:
        """Stream of entries appended to the match log from now on."""

    @abstractmethod
    async def publish_snapshot(self, snapshot: MatchSnapshot) -> None:
        """
        Store and fan out a canonical snapshot.

        Raises:
            TransportError: If the snapshot could not be stored.
        """

    @abstractmethod
    async def latest_snapshot(self, match_id: str) -> Optional[MatchSnapshot]:
        """Newest stored snapshot for the match, if any."""

    @abstractmethod
    async def subscribe_snapshots(self, match_id: str) -> Subscription[MatchSnapshot]:
        """Stream of snapshots published from now on."""

    async def close(self) -> None:
        """Release transport resources."""
