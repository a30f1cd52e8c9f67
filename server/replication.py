"""
Host-authoritative replication for multiplayer Shithead.

One participant is the host. Every participant, the host's own player
included, submits intents by appending them to the match's intent log.
Only the HostReplicator consumes that log: it applies each entry through
its Match in sequence order, re-validating everything against its own
state, and publishes the resulting MatchSnapshot as the canonical state.

Non-host participants run a ClientReplica: they submit intents, keep the
newest snapshot they have received, and track their own card selection
locally until they submit it.

Delivery from the transport is at-least-once and may skip notices, so:

    - the host skips log entries at or below its applied_sequence
    - a gap in sequences triggers a catch-up read from the log
    - a quiet subscription is topped up by periodic log reads
    - clients ignore snapshots that are not newer than the one they hold
"""

import asyncio
import logging
from typing import Callable, Optional

import rules
from config import config
from game import Card, GameState, GamePhase, Player
from match import Match
from models.intents import (
    ConfirmFaceUp,
    DealCards,
    Intent,
    IntentEnvelope,
    JumpIn,
    PickupPile,
    PlayCards,
    RevealFaceDown,
    StartGame,
    SwapCards,
    ToggleFaceUp,
)
from models.snapshot import MatchSnapshot
from stores.transport import MatchTransport, Subscription, TransportError

logger = logging.getLogger(__name__)

# Seconds a quiet subscription waits before re-reading the log or stored snapshot
DEFAULT_POLL_SECONDS = 5.0


class HostReplicator:
    """
    Consumes a match's intent log and publishes canonical snapshots.

    Args:
        match: The match this host owns.
        transport: Boundary to the other participants.
        retry_seconds: Back-off between failed snapshot publishes.
        poll_seconds: Idle time after which the log is re-read.
    """

    def __init__(
        self,
        match: Match,
        transport: MatchTransport,
        retry_seconds: Optional[float] = None,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
    ):
        self.match = match
        self.transport = transport
        self.retry_seconds = retry_seconds if retry_seconds is not None else config.timing.PUBLISH_RETRY_SECONDS
        self.poll_seconds = poll_seconds

        self.published_version = -1
        self._dirty = asyncio.Event()
        self._subscription: Optional[Subscription[IntentEnvelope]] = None
        self._consume_task: Optional[asyncio.Task] = None
        self._publish_task: Optional[asyncio.Task] = None
        self._running = False

        match.on_change(lambda _m: self._dirty.set())

    @property
    def match_id(self) -> str:
        return self.match.match_id

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def recover(self) -> bool:
        """
        Resume from the newest published snapshot, if there is one.

        The consumer then continues the log after the snapshot's
        applied_sequence.

        Returns:
            True if a snapshot was restored.
        """
        snapshot = await self.transport.latest_snapshot(self.match_id)
        if snapshot is None or snapshot.state is None:
            logger.info(f"No snapshot to recover for match {self.match_id}")
            return False
        self.match.restore(snapshot)
        self.published_version = snapshot.version
        return True

    async def start(self) -> None:
        """Subscribe, catch up on the log and start the consume/publish loops."""
        if self._running:
            return
        self._running = True

        # Subscribe before reading the backlog so nothing falls in between
        self._subscription = await self.transport.subscribe_intents(self.match_id)
        await self.catch_up()

        self._dirty.set()
        self._publish_task = asyncio.create_task(self._publish_loop())
        self._consume_task = asyncio.create_task(self._consume_loop())
        logger.info(f"Host started for match {self.match_id} at sequence {self.match.applied_sequence}")

    async def stop(self) -> None:
        """Stop consuming and publishing. Pending timers in the match keep their state."""
        self._running = False
        if self._subscription:
            self._subscription.close()
        for task in (self._consume_task, self._publish_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._consume_task = None
        self._publish_task = None
        logger.info(f"Host stopped for match {self.match_id}")

    # -------------------------------------------------------------------------
    # Consuming intents
    # -------------------------------------------------------------------------

    async def catch_up(self) -> int:
        """
        Apply every log entry after applied_sequence.

        Returns:
            Number of entries applied.
        """
        envelopes = await self.transport.read_intents(self.match_id, self.match.applied_sequence)
        applied = 0
        for envelope in envelopes:
            if self.handle(envelope):
                applied += 1
        return applied

    def handle(self, envelope: IntentEnvelope) -> bool:
        """
        Apply one log entry if it is the next expected sequence.

        Returns:
            True if the entry was consumed (accepted or dropped), False if
            it was a duplicate or arrived ahead of a gap.
        """
        expected = self.match.applied_sequence + 1
        if envelope.sequence < expected:
            logger.debug(f"Skipping redelivered intent {envelope.sequence} (applied {expected - 1})")
            return False
        if envelope.sequence > expected:
            logger.debug(f"Intent {envelope.sequence} ahead of {expected}, catch-up needed")
            return False

        self.match.applied_sequence = envelope.sequence
        result = self.match.apply(envelope.intent)
        if not result.accepted:
            # Still publish so the consumed sequence survives a host restart
            self.match.touch()
        return True

    async def _consume_loop(self) -> None:
        while self._running:
            try:
                envelope = await asyncio.wait_for(self._subscription.__anext__(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                await self._safe_catch_up()
                continue
            except StopAsyncIteration:
                logger.info(f"Intent subscription for {self.match_id} closed")
                break

            if envelope.sequence > self.match.applied_sequence + 1:
                await self._safe_catch_up()
            else:
                self.handle(envelope)

    async def _safe_catch_up(self) -> None:
        try:
            await self.catch_up()
        except TransportError as e:
            logger.warning(f"Catch-up for {self.match_id} failed: {e}")

    # -------------------------------------------------------------------------
    # Publishing snapshots
    # -------------------------------------------------------------------------

    async def publish(self) -> MatchSnapshot:
        """
        Publish the current snapshot once.

        Raises:
            TransportError: If the transport rejected the publish.
        """
        snapshot = self.match.snapshot()
        await self.transport.publish_snapshot(snapshot)
        self.published_version = snapshot.version
        return snapshot

    async def _publish_loop(self) -> None:
        while self._running:
            await self._dirty.wait()
            self._dirty.clear()
            try:
                await self.publish()
            except TransportError as e:
                # State is still valid in memory; try again with the newest snapshot
                logger.warning(f"Snapshot publish for {self.match_id} failed, retrying: {e}")
                self._dirty.set()
                await asyncio.sleep(self.retry_seconds)


SnapshotListener = Callable[[MatchSnapshot], None]


class ClientReplica:
    """
    A participant's view of a match.

    Follows published snapshots (newest version wins), submits intents for
    its own player, and keeps the player's pending card selection locally.

    Args:
        match_id: Match to follow.
        player_id: The local participant's player id.
        transport: Boundary to the host.
        poll_seconds: Idle time after which the stored snapshot is re-read.
    """

    def __init__(
        self,
        match_id: str,
        player_id: str,
        transport: MatchTransport,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
    ):
        self.match_id = match_id
        self.player_id = player_id
        self.transport = transport
        self.poll_seconds = poll_seconds

        self.snapshot: Optional[MatchSnapshot] = None
        self.state: Optional[GameState] = None
        self.selected: list[str] = []

        self._listeners: list[SnapshotListener] = []
        self._subscription: Optional[Subscription[MatchSnapshot]] = None
        self._task: Optional[asyncio.Task] = None

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Following snapshots
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to snapshots and fetch the latest one."""
        if self._task:
            return
        self._subscription = await self.transport.subscribe_snapshots(self.match_id)
        await self.refresh()
        self._task = asyncio.create_task(self._follow())

    async def stop(self) -> None:
        if self._subscription:
            self._subscription.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def refresh(self) -> bool:
        """Refetch the latest stored snapshot (reconnect path)."""
        snapshot = await self.transport.latest_snapshot(self.match_id)
        return snapshot is not None and self.receive(snapshot)

    async def _follow(self) -> None:
        while True:
            try:
                snapshot = await asyncio.wait_for(self._subscription.__anext__(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                # Notices can be lost; the stored snapshot is authoritative
                try:
                    await self.refresh()
                except TransportError as e:
                    logger.warning(f"Snapshot refresh for {self.match_id} failed: {e}")
                continue
            except StopAsyncIteration:
                break
            self.receive(snapshot)

    def receive(self, snapshot: MatchSnapshot) -> bool:
        """
        Adopt `snapshot` if it is newer than the one held.

        Returns:
            True if adopted.
        """
        if snapshot.match_id != self.match_id or not snapshot.is_newer_than(self.snapshot):
            return False

        self.snapshot = snapshot
        self.state = snapshot.game_state()
        self._prune_selection()

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed")
        return True

    # -------------------------------------------------------------------------
    # Derived view
    # -------------------------------------------------------------------------

    @property
    def me(self) -> Optional[Player]:
        return self.state.get_player(self.player_id) if self.state else None

    @property
    def is_host(self) -> bool:
        return self.snapshot is not None and self.snapshot.host_id == self.player_id

    def is_my_turn(self) -> bool:
        if not self.state or self.state.phase != GamePhase.PLAYING:
            return False
        current = self.state.current_player()
        return current is not None and current.id == self.player_id

    def _active_cards(self) -> list[Card]:
        me = self.me
        if not me:
            return []
        return me.hand or me.face_up

    def selected_cards(self) -> list[Card]:
        by_id = {c.id: c for c in self._active_cards()}
        return [by_id[card_id] for card_id in self.selected if card_id in by_id]

    def _prune_selection(self) -> None:
        active = {c.id for c in self._active_cards()}
        self.selected = [card_id for card_id in self.selected if card_id in active]

    def toggle_select(self, card_id: str) -> bool:
        """
        Add or remove a card from the local selection.

        Only active-zone cards can be selected, and a selection holds one
        rank: picking a different rank starts a new selection.

        Returns:
            True if the card is selected afterwards.
        """
        if card_id in self.selected:
            self.selected.remove(card_id)
            return False

        card = next((c for c in self._active_cards() if c.id == card_id), None)
        if card is None:
            return False
        current = self.selected_cards()
        if current and current[0].rank != card.rank:
            self.selected = []
        self.selected.append(card_id)
        return True

    def can_play_selection(self) -> bool:
        if not self.state or not self.is_my_turn():
            return False
        return rules.can_play_selected(self.selected_cards(), self.state.pile)

    def can_pick_up(self) -> bool:
        me = self.me
        if not me or not self.is_my_turn() or not self.state.pile:
            return False
        return not rules.can_play_any(me, self.state.pile)

    # -------------------------------------------------------------------------
    # Submitting intents
    # -------------------------------------------------------------------------

    async def submit(self, intent: Intent) -> IntentEnvelope:
        """
        Append an intent for the local player.

        Raises:
            ValueError: If the intent is for another player.
            TransportError: If the intent could not be appended.
        """
        if intent.player_id != self.player_id:
            raise ValueError(f"Replica for {self.player_id} cannot submit for {intent.player_id}")
        return await self.transport.append_intent(self.match_id, intent)

    async def play_selected(self) -> IntentEnvelope:
        """Submit the current selection as a play and clear it."""
        envelope = await self.submit(PlayCards(player_id=self.player_id, card_ids=tuple(self.selected)))
        self.selected = []
        return envelope

    async def deal(self) -> IntentEnvelope:
        return await self.submit(DealCards(player_id=self.player_id))

    async def toggle_face_up(self, card_id: str) -> IntentEnvelope:
        return await self.submit(ToggleFaceUp(player_id=self.player_id, card_id=card_id))

    async def confirm_face_up(self) -> IntentEnvelope:
        return await self.submit(ConfirmFaceUp(player_id=self.player_id))

    async def swap(self, hand_card_id: str, face_up_card_id: str) -> IntentEnvelope:
        return await self.submit(SwapCards(
            player_id=self.player_id,
            hand_card_id=hand_card_id,
            face_up_card_id=face_up_card_id,
        ))

    async def start_game(self) -> IntentEnvelope:
        return await self.submit(StartGame(player_id=self.player_id))

    async def pickup(self) -> IntentEnvelope:
        return await self.submit(PickupPile(player_id=self.player_id))

    async def reveal(self, index: int) -> IntentEnvelope:
        return await self.submit(RevealFaceDown(player_id=self.player_id, index=index))

    async def jump_in(self) -> Optional[IntentEnvelope]:
        """Jump in on the window shown in the current snapshot, if any."""
        window = self.snapshot.jump_in if self.snapshot else None
        if not window:
            return None
        return await self.submit(JumpIn(
            player_id=self.player_id,
            rank=window["rank"],
            generation=window["generation"],
        ))
