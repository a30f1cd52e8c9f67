"""
Tests for host-authoritative replication.

These tests cover:
- InMemoryTransport: intent log, snapshots and subscriptions
- HostReplicator: ordered consumption, duplicates, gaps, idle catch-up,
  publish retry and recovery
- ClientReplica: newest-snapshot-wins, local selection, submissions
"""

import asyncio
import pytest

from game import Card, GamePhase, GameState, Player, Suit
from match import Match, MatchOptions
from models.intents import DealCards, IntentEnvelope, JumpIn, PickupPile, PlayCards
from models.snapshot import MatchSnapshot
from replication import ClientReplica, HostReplicator
from stores.memory import InMemoryTransport
from stores.transport import TransportError


# =============================================================================
# Helpers
# =============================================================================

async def eventually(condition, timeout: float = 2.0):
    """Poll until condition() is truthy or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def two_seats() -> list[Player]:
    return [Player(id="alice", name="Alice"), Player(id="bob", name="Bob")]


def make_match(match_id: str = "m1") -> Match:
    return Match(match_id, two_seats(), host_id="alice", options=MatchOptions(drive_cpu=False, seed=5))


def card(rank: int, suit: Suit = Suit.HEARTS, tag: str = "") -> Card:
    return Card(suit, rank, f"{suit.value}-{rank}{tag}")


def snapshot_with(version: int, players: list[Player], pile=None, jump_in=None) -> MatchSnapshot:
    state = GameState(players=players, pile=pile or [], phase=GamePhase.PLAYING)
    return MatchSnapshot(
        match_id="m1",
        version=version,
        host_id="alice",
        state=state.to_dict(),
        jump_in=jump_in,
    )


class FlakyTransport(InMemoryTransport):
    """Fails the first `failures` snapshot publishes."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def publish_snapshot(self, snapshot):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise TransportError("redis unavailable")
        await super().publish_snapshot(snapshot)


@pytest.fixture
def transport():
    return InMemoryTransport()


# =============================================================================
# InMemoryTransport
# =============================================================================

class TestInMemoryTransport:

    @pytest.mark.asyncio
    async def test_sequences_are_dense(self, transport):
        first = await transport.append_intent("m1", DealCards(player_id="alice"))
        second = await transport.append_intent("m1", PickupPile(player_id="bob"))
        other = await transport.append_intent("m2", DealCards(player_id="carol"))
        assert (first.sequence, second.sequence, other.sequence) == (1, 2, 1)

        entries = await transport.read_intents("m1", after_sequence=1)
        assert [e.sequence for e in entries] == [2]
        assert entries[0].intent == PickupPile(player_id="bob")

    @pytest.mark.asyncio
    async def test_subscription_receives_appends(self, transport):
        sub = await transport.subscribe_intents("m1")
        await transport.append_intent("m1", DealCards(player_id="alice"))
        envelope = await asyncio.wait_for(sub.__anext__(), timeout=1)
        assert envelope.sequence == 1
        sub.close()
        with pytest.raises(StopAsyncIteration):
            await sub.__anext__()

    @pytest.mark.asyncio
    async def test_latest_snapshot_keeps_newest(self, transport):
        await transport.publish_snapshot(MatchSnapshot(match_id="m1", version=3))
        await transport.publish_snapshot(MatchSnapshot(match_id="m1", version=2))
        latest = await transport.latest_snapshot("m1")
        assert latest.version == 3

    @pytest.mark.asyncio
    async def test_closed_transport_raises(self, transport):
        await transport.close()
        with pytest.raises(TransportError):
            await transport.append_intent("m1", DealCards(player_id="alice"))


# =============================================================================
# HostReplicator
# =============================================================================

class TestHostReplicator:

    @pytest.mark.asyncio
    async def test_applies_log_and_publishes(self, transport):
        match = make_match()
        host = HostReplicator(match, transport, retry_seconds=0.01)
        await host.start()

        await transport.append_intent("m1", DealCards(player_id="alice"))
        await eventually(lambda: host.published_version == match.version and match.state is not None)

        latest = await transport.latest_snapshot("m1")
        assert latest.applied_sequence == 1
        assert latest.game_state() == match.state
        await host.stop()

    @pytest.mark.asyncio
    async def test_rejected_intent_still_consumed(self, transport):
        match = make_match()
        host = HostReplicator(match, transport, retry_seconds=0.01)
        await host.start()

        await transport.append_intent("m1", DealCards(player_id="bob"))
        await eventually(lambda: match.applied_sequence == 1)
        await eventually(lambda: host.published_version == match.version)

        assert match.state is None
        latest = await transport.latest_snapshot("m1")
        assert latest.applied_sequence == 1
        await host.stop()

    @pytest.mark.asyncio
    async def test_duplicates_and_gaps(self, transport):
        match = make_match()
        host = HostReplicator(match, transport)
        deal = IntentEnvelope(match_id="m1", intent=DealCards(player_id="alice"), sequence=1)

        assert host.handle(deal)
        version = match.version
        assert not host.handle(deal)
        assert match.version == version

        ahead = IntentEnvelope(match_id="m1", intent=PickupPile(player_id="alice"), sequence=3)
        assert not host.handle(ahead)
        assert match.applied_sequence == 1

    @pytest.mark.asyncio
    async def test_catch_up_reads_backlog(self, transport):
        await transport.append_intent("m1", DealCards(player_id="alice"))
        await transport.append_intent("m1", DealCards(player_id="alice"))

        match = make_match()
        host = HostReplicator(match, transport)
        assert await host.catch_up() == 2
        assert match.applied_sequence == 2
        assert match.state.phase == GamePhase.SETUP

    @pytest.mark.asyncio
    async def test_idle_poll_picks_up_missed_notice(self, transport):
        match = make_match()
        host = HostReplicator(match, transport, retry_seconds=0.01, poll_seconds=0.02)
        await host.start()

        # Logged without any subscription notice
        transport._logs["m1"].append(
            IntentEnvelope(match_id="m1", intent=DealCards(player_id="alice"), sequence=1)
        )
        await eventually(lambda: match.applied_sequence == 1)
        assert match.state is not None
        await host.stop()

    @pytest.mark.asyncio
    async def test_publish_retries_after_failure(self):
        transport = FlakyTransport(failures=2)
        match = make_match()
        host = HostReplicator(match, transport, retry_seconds=0.01)
        await host.start()

        await transport.append_intent("m1", DealCards(player_id="alice"))
        await eventually(lambda: host.published_version == match.version and match.version > 0)
        assert transport.attempts >= 3
        latest = await transport.latest_snapshot("m1")
        assert latest.version == match.version
        await host.stop()

    @pytest.mark.asyncio
    async def test_recovery_resumes_after_snapshot(self, transport):
        match = make_match()
        host = HostReplicator(match, transport, retry_seconds=0.01)
        await host.start()
        await transport.append_intent("m1", DealCards(player_id="alice"))
        await eventually(lambda: host.published_version == match.version and match.applied_sequence == 1)
        await host.stop()
        match.shutdown()

        # Written while no host was running
        await transport.append_intent("m1", DealCards(player_id="bob"))

        successor = make_match()
        new_host = HostReplicator(successor, transport, retry_seconds=0.01)
        assert await new_host.recover()
        assert successor.state == match.state
        await new_host.start()
        await eventually(lambda: successor.applied_sequence == 2)
        # Bob is not the host: state is unchanged, but the entry is consumed
        assert successor.state == match.state
        await new_host.stop()

    @pytest.mark.asyncio
    async def test_recover_without_snapshot(self, transport):
        host = HostReplicator(make_match(), transport)
        assert not await host.recover()


# =============================================================================
# ClientReplica
# =============================================================================

class TestClientReplica:

    @pytest.mark.asyncio
    async def test_keeps_newest_snapshot(self, transport):
        client = ClientReplica("m1", "bob", transport)
        players = two_seats()
        assert client.receive(snapshot_with(5, players))
        assert not client.receive(snapshot_with(4, players))
        assert not client.receive(snapshot_with(5, players))
        assert client.snapshot.version == 5
        assert not client.receive(MatchSnapshot(match_id="other", version=9))

    @pytest.mark.asyncio
    async def test_idle_poll_picks_up_lost_snapshot_notice(self, transport):
        players = two_seats()
        await transport.publish_snapshot(snapshot_with(1, players))
        client = ClientReplica("m1", "bob", transport, poll_seconds=0.02)
        await client.start()
        assert client.snapshot.version == 1

        # Stored without notifying subscribers
        transport._snapshots["m1"] = snapshot_with(2, players)
        await eventually(lambda: client.snapshot.version == 2)
        await client.stop()

    def test_selection_holds_one_rank(self, transport):
        client = ClientReplica("m1", "bob", transport)
        hand = [card(5), card(5, Suit.CLUBS), card(9)]
        players = [Player(id="alice", name="Alice", hand=[card(3)]), Player(id="bob", name="Bob", hand=hand)]
        client.receive(snapshot_with(1, players))

        assert client.toggle_select(hand[0].id)
        assert client.toggle_select(hand[1].id)
        assert client.selected == [hand[0].id, hand[1].id]
        assert client.toggle_select(hand[2].id)
        assert client.selected == [hand[2].id]
        assert not client.toggle_select(hand[2].id)
        assert client.selected == []
        assert not client.toggle_select("not-mine")

    def test_selection_pruned_by_new_snapshot(self, transport):
        client = ClientReplica("m1", "bob", transport)
        five, nine = card(5), card(9)
        players = [Player(id="alice", name="Alice"), Player(id="bob", name="Bob", hand=[five, nine])]
        client.receive(snapshot_with(1, players))
        client.toggle_select(five.id)

        players = [Player(id="alice", name="Alice"), Player(id="bob", name="Bob", hand=[nine])]
        client.receive(snapshot_with(2, players))
        assert client.selected == []

    def test_turn_helpers(self, transport):
        client = ClientReplica("m1", "alice", transport)
        players = [
            Player(id="alice", name="Alice", hand=[card(3), card(12)]),
            Player(id="bob", name="Bob", hand=[card(4)]),
        ]
        client.receive(snapshot_with(1, players, pile=[card(9, Suit.SPADES)]))
        assert client.is_host
        assert client.is_my_turn()
        assert not client.can_pick_up()

        client.toggle_select(players[0].hand[0].id)
        assert not client.can_play_selection()
        client.toggle_select(players[0].hand[1].id)
        assert client.can_play_selection()

    @pytest.mark.asyncio
    async def test_submit_only_for_self(self, transport):
        client = ClientReplica("m1", "bob", transport)
        with pytest.raises(ValueError):
            await client.submit(PickupPile(player_id="alice"))

    @pytest.mark.asyncio
    async def test_play_selected_clears_selection(self, transport):
        client = ClientReplica("m1", "bob", transport)
        five = card(5)
        players = [Player(id="alice", name="Alice"), Player(id="bob", name="Bob", hand=[five])]
        client.receive(snapshot_with(1, players))
        client.toggle_select(five.id)

        envelope = await client.play_selected()
        assert envelope.intent == PlayCards(player_id="bob", card_ids=(five.id,))
        assert client.selected == []

    @pytest.mark.asyncio
    async def test_jump_in_quotes_window(self, transport):
        client = ClientReplica("m1", "bob", transport)
        players = two_seats()
        client.receive(snapshot_with(1, players))
        assert await client.jump_in() is None

        client.receive(snapshot_with(2, players, jump_in={"rank": 7, "generation": 4}))
        envelope = await client.jump_in()
        assert envelope.intent == JumpIn(player_id="bob", rank=7, generation=4)

    @pytest.mark.asyncio
    async def test_follows_published_snapshots(self, transport):
        match = make_match()
        host = HostReplicator(match, transport, retry_seconds=0.01)
        alice = ClientReplica("m1", "alice", transport)
        bob = ClientReplica("m1", "bob", transport)
        await host.start()
        await alice.start()
        await bob.start()

        await alice.deal()
        await eventually(lambda: all(
            r.state is not None and r.snapshot.version == match.version for r in (alice, bob)
        ))
        assert bob.state == match.state
        assert alice.is_host and not bob.is_host

        for client in (alice, bob):
            for c in list(client.me.hand[:3]):
                await client.toggle_face_up(c.id)
            await client.confirm_face_up()
        await eventually(lambda: alice.state.phase == bob.state.phase == GamePhase.SWAPPING)

        await alice.start_game()
        await eventually(lambda: alice.state.phase == bob.state.phase == GamePhase.PLAYING)
        assert alice.is_my_turn() and not bob.is_my_turn()

        for task in (alice.stop(), bob.stop(), host.stop()):
            await task
