"""
In-process match transport.

Holds every match's intent log and latest snapshot in memory and fans out
to subscriptions directly. Used for single-process multiplayer (host and
clients sharing one event loop) and in tests.

Payloads are copied through their dict form on the way in and out, so
participants never share mutable objects.
"""

import logging
from collections import defaultdict
from typing import Optional

from models.intents import Intent, IntentEnvelope
from models.snapshot import MatchSnapshot
from stores.transport import MatchTransport, Subscription, TransportError

logger = logging.getLogger(__name__)


class InMemoryTransport(MatchTransport):
    """Dictionary-backed transport for a single process."""

    def __init__(self):
        self._logs: dict[str, list[IntentEnvelope]] = defaultdict(list)
        self._snapshots: dict[str, MatchSnapshot] = {}
        self._intent_subs: dict[str, list[Subscription]] = defaultdict(list)
        self._snapshot_subs: dict[str, list[Subscription]] = defaultdict(list)
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise TransportError("Transport is closed")

    # -------------------------------------------------------------------------
    # Intent log
    # -------------------------------------------------------------------------

    async def append_intent(self, match_id: str, intent: Intent) -> IntentEnvelope:
        self._check_open()
        log = self._logs[match_id]
        envelope = IntentEnvelope(match_id=match_id, intent=intent, sequence=len(log) + 1)
        log.append(envelope)
        logger.debug(f"Appended intent {envelope.sequence} to {match_id}")

        for sub in list(self._intent_subs[match_id]):
            sub.deliver(IntentEnvelope.from_dict(envelope.to_dict()))
        return envelope

    async def read_intents(self, match_id: str, after_sequence: int = 0) -> list[IntentEnvelope]:
        self._check_open()
        return [
            IntentEnvelope.from_dict(e.to_dict())
            for e in self._logs.get(match_id, [])
            if e.sequence > after_sequence
        ]

    async def subscribe_intents(self, match_id: str) -> Subscription[IntentEnvelope]:
        self._check_open()
        sub: Subscription[IntentEnvelope] = Subscription(
            on_close=lambda s: self._discard(self._intent_subs, match_id, s)
        )
        self._intent_subs[match_id].append(sub)
        return sub

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    async def publish_snapshot(self, snapshot: MatchSnapshot) -> None:
        self._check_open()
        current = self._snapshots.get(snapshot.match_id)
        if snapshot.is_newer_than(current):
            self._snapshots[snapshot.match_id] = MatchSnapshot.from_dict(snapshot.to_dict())

        for sub in list(self._snapshot_subs[snapshot.match_id]):
            sub.deliver(MatchSnapshot.from_dict(snapshot.to_dict()))

    async def latest_snapshot(self, match_id: str) -> Optional[MatchSnapshot]:
        self._check_open()
        snapshot = self._snapshots.get(match_id)
        return MatchSnapshot.from_dict(snapshot.to_dict()) if snapshot else None

    async def subscribe_snapshots(self, match_id: str) -> Subscription[MatchSnapshot]:
        self._check_open()
        sub: Subscription[MatchSnapshot] = Subscription(
            on_close=lambda s: self._discard(self._snapshot_subs, match_id, s)
        )
        self._snapshot_subs[match_id].append(sub)
        return sub

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @staticmethod
    def _discard(registry: dict[str, list[Subscription]], match_id: str, sub: Subscription) -> None:
        subs = registry.get(match_id, [])
        if sub in subs:
            subs.remove(sub)

    async def close(self) -> None:
        self._closed = True
        for registry in (self._intent_subs, self._snapshot_subs):
            for subs in list(registry.values()):
                for sub in list(subs):
                    sub.close()
