"""
Game logic for Shithead.

This module implements the core game mechanics for the Shithead shedding
card game: card/deck management, player zones, the deal, and the turn/phase
state machine that every move (human, AI or jump-in) goes through.

Shithead Rules Summary:
    - Each player is dealt 6 hand cards and 3 face-down cards
    - Before play, each player places 3 hand cards face-up on their face-down cards
    - On your turn: play one or more cards of one rank that beat the pile,
      or pick the whole pile up
    - Hands are topped back up to 3 from the deck while it lasts
    - Face-up cards are played once the hand is empty, then face-down
      cards are revealed blind
    - First player to get rid of every card wins

Player zones:
    hand       -> private, played first
    face_up    -> visible, played once hand is empty
    face_down  -> hidden, revealed one at a time once face_up is empty

Phase flow: SETUP -> SWAPPING -> PLAYING -> FINISHED
"""

import logging
import random
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Any

import rules
from constants import (
    FACE_DOWN_COUNT,
    FACE_UP_COUNT,
    HAND_DEAL_SIZE,
    HAND_REFILL_SIZE,
    MAX_PLAYERS,
    MAX_RANK,
    MIN_PLAYERS,
    MIN_RANK,
    rank_label,
)
from models.events import GameEvent, EventType

logger = logging.getLogger(__name__)


class Suit(Enum):
    """Card suits for a standard deck."""

    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    SPADES = "spades"


@dataclass(frozen=True)
class Card:
    """
    An immutable playing card.

    Cards are removed from zones by id, never by value, so `id` must be
    unique within a deck and stable for the card's lifetime.

    Attributes:
        suit: The card's suit.
        rank: 2-14 (11=J, 12=Q, 13=K, 14=A).
        id: Unique identifier within the deck.
    """

    suit: Suit
    rank: int
    id: str

    @property
    def label(self) -> str:
        return rank_label(self.rank)

    def to_dict(self) -> dict:
        return {"suit": self.suit.value, "rank": self.rank, "id": self.id}

    @classmethod
    def from_dict(cls, d: dict) -> "Card":
        return cls(suit=Suit(d["suit"]), rank=int(d["rank"]), id=d["id"])


# =============================================================================
# Deck Generator
# =============================================================================

def shuffle_deck(cards: list[Card], rng: Optional[random.Random] = None) -> list[Card]:
    """
    Return a shuffled copy of `cards` (uniform Fisher-Yates).

    Iterates from the last index down to 1, swapping each position with a
    uniformly chosen index in [0, i].

    Args:
        cards: Cards to shuffle (not modified).
        rng: Random source. A fresh OS-seeded generator is used if omitted.
    """
    rng = rng or random.Random()
    deck = list(cards)
    for i in range(len(deck) - 1, 0, -1):
        j = rng.randint(0, i)
        deck[i], deck[j] = deck[j], deck[i]
    return deck


def build_deck(rng: Optional[random.Random] = None) -> list[Card]:
    """
    Build and shuffle a standard 52-card deck.

    Every (suit, rank) pair appears exactly once with a fresh unique id.
    Passing a seeded `rng` makes both the order and the ids reproducible.
    """
    rng = rng or random.Random()
    cards = [
        Card(suit, rank, f"{suit.value}-{rank}-{rng.getrandbits(32):08x}")
        for suit in Suit
        for rank in range(MIN_RANK, MAX_RANK + 1)
    ]
    return shuffle_deck(cards, rng)


# =============================================================================
# Players and State
# =============================================================================

@dataclass
class Player:
    """
    A player at the Shithead table.

    Attributes:
        id: Unique identifier for the player.
        name: Display name.
        hand: Private cards (order only matters for display).
        face_down: Hidden cards; order is position, fixed at deal time.
        face_up: Visible cards, playable once the hand is empty.
        is_ai: Whether the opponent policy controls this player.
    """

    id: str
    name: str
    hand: list[Card] = field(default_factory=list)
    face_down: list[Card] = field(default_factory=list)
    face_up: list[Card] = field(default_factory=list)
    is_ai: bool = False

    def card_count(self) -> int:
        return len(self.hand) + len(self.face_up) + len(self.face_down)

    def is_out(self) -> bool:
        """A player is out once hand, face-up and face-down are all empty."""
        return self.card_count() == 0

    def active_zone(self) -> str:
        """Name of the zone the player currently plays from."""
        if self.hand:
            return "hand"
        if self.face_up:
            return "face_up"
        if self.face_down:
            return "face_down"
        return ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "hand": [c.to_dict() for c in self.hand],
            "face_down": [c.to_dict() for c in self.face_down],
            "face_up": [c.to_dict() for c in self.face_up],
            "is_ai": self.is_ai,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Player":
        return cls(
            id=d["id"],
            name=d["name"],
            hand=[Card.from_dict(c) for c in d.get("hand", [])],
            face_down=[Card.from_dict(c) for c in d.get("face_down", [])],
            face_up=[Card.from_dict(c) for c in d.get("face_up", [])],
            is_ai=d.get("is_ai", False),
        )


class GamePhase(Enum):
    """
    Phases of a Shithead game.

    Flow is linear and never regresses: SETUP -> SWAPPING -> PLAYING -> FINISHED
    """

    SETUP = "setup"          # Players choosing their three face-up cards
    SWAPPING = "swapping"    # Optional hand <-> face-up exchanges
    PLAYING = "playing"      # Normal turns
    FINISHED = "finished"    # Someone went out


@dataclass
class GameState:
    """
    The unit of truth for one game.

    A new game always gets a new GameState; nothing is reset in place.

    Attributes:
        players: Players in turn order (fixed for the game).
        current_player_index: Index of the player whose turn it is.
        pile: Discard pile, last element on top.
        deck: Draw pile, first element drawn next.
        burned: Cards removed from play by burns, in burn order.
        phase: Current game phase.
        winner: ID of the player who went out, once finished.
        loser: ID of the loser in a two-player game, once finished.
        confirmed: IDs of players who confirmed their face-up cards.
    """

    players: list[Player] = field(default_factory=list)
    current_player_index: int = 0
    pile: list[Card] = field(default_factory=list)
    deck: list[Card] = field(default_factory=list)
    burned: list[Card] = field(default_factory=list)
    phase: GamePhase = GamePhase.SETUP
    winner: Optional[str] = None
    loser: Optional[str] = None
    confirmed: list[str] = field(default_factory=list)

    def current_player(self) -> Optional[Player]:
        if self.players:
            return self.players[self.current_player_index]
        return None

    def player_index(self, player_id: str) -> Optional[int]:
        for i, player in enumerate(self.players):
            if player.id == player_id:
                return i
        return None

    def get_player(self, player_id: str) -> Optional[Player]:
        index = self.player_index(player_id)
        return self.players[index] if index is not None else None

    def all_card_ids(self) -> list[str]:
        """Every card id in every zone, pile, deck and burned stack (duplicates preserved)."""
        ids = [c.id for c in self.pile] + [c.id for c in self.deck] + [c.id for c in self.burned]
        for player in self.players:
            ids.extend(c.id for c in player.hand)
            ids.extend(c.id for c in player.face_up)
            ids.extend(c.id for c in player.face_down)
        return ids

    def to_dict(self) -> dict:
        return {
            "players": [p.to_dict() for p in self.players],
            "current_player_index": self.current_player_index,
            "pile": [c.to_dict() for c in self.pile],
            "deck": [c.to_dict() for c in self.deck],
            "burned": [c.to_dict() for c in self.burned],
            "phase": self.phase.value,
            "winner": self.winner,
            "loser": self.loser,
            "confirmed": list(self.confirmed),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "GameState":
        return cls(
            players=[Player.from_dict(p) for p in d["players"]],
            current_player_index=d.get("current_player_index", 0),
            pile=[Card.from_dict(c) for c in d.get("pile", [])],
            deck=[Card.from_dict(c) for c in d.get("deck", [])],
            burned=[Card.from_dict(c) for c in d.get("burned", [])],
            phase=GamePhase(d.get("phase", GamePhase.SETUP.value)),
            winner=d.get("winner"),
            loser=d.get("loser"),
            confirmed=list(d.get("confirmed", [])),
        )


def lowest_cards(cards: list[Card], count: int) -> list[Card]:
    """The `count` lowest-rank cards, ties broken by original order."""
    return sorted(cards, key=lambda c: c.rank)[:count]


def deal(seats: list[Player], deck: list[Card]) -> GameState:
    """
    Deal a fresh game from a shuffled deck.

    Six hand cards go round-robin to every player, then three face-down
    cards round-robin; the rest of the deck becomes the draw pile. AI
    players immediately move their three lowest hand cards face-up and
    count as confirmed; humans choose during SETUP.

    Args:
        seats: Players in turn order (only id/name/is_ai are used).
        deck: Shuffled deck, front dealt first.

    Returns:
        New GameState in SETUP phase.

    Raises:
        ValueError: If the player count is out of range or the deck is too small.
    """
    if not MIN_PLAYERS <= len(seats) <= MAX_PLAYERS:
        raise ValueError(f"Shithead needs {MIN_PLAYERS}-{MAX_PLAYERS} players, got {len(seats)}")
    needed = len(seats) * (HAND_DEAL_SIZE + FACE_DOWN_COUNT)
    if len(deck) < needed:
        raise ValueError(f"Deck has {len(deck)} cards, {needed} needed to deal")

    players = [Player(id=s.id, name=s.name, is_ai=s.is_ai) for s in seats]

    cursor = 0
    for _ in range(HAND_DEAL_SIZE):
        for player in players:
            player.hand.append(deck[cursor])
            cursor += 1
    for _ in range(FACE_DOWN_COUNT):
        for player in players:
            player.face_down.append(deck[cursor])
            cursor += 1

    state = GameState(players=players, deck=list(deck[cursor:]))

    for player in players:
        if player.is_ai:
            chosen = lowest_cards(player.hand, FACE_UP_COUNT)
            chosen_ids = {c.id for c in chosen}
            player.hand = [c for c in player.hand if c.id not in chosen_ids]
            player.face_up = chosen
            state.confirmed.append(player.id)

    return state


# =============================================================================
# Turn / Phase State Machine
# =============================================================================

@dataclass
class Game:
    """
    Turn and phase state machine for one Shithead match.

    Every operation validates against the current state and either applies
    completely or not at all. Illegal moves return False and record the
    reason in `last_rejection`; they never raise.

    Notifications are buffered while an operation runs and handed out by
    drain_events() once it has finished.

    Attributes:
        state: The current GameState (None until dealt).
        match_id: Identifier stamped on emitted events.
        last_rejection: Reason the most recent operation was refused.
        pending_jump_in: Rank of a jump-in window requested by the last play.
    """

    state: Optional[GameState] = None
    match_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    last_rejection: Optional[str] = None
    pending_jump_in: Optional[int] = None

    _pending_events: list[GameEvent] = field(default_factory=list, repr=False, compare=False)
    _sequence_num: int = field(default=0, repr=False, compare=False)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def emit(self, event_type: EventType, player_id: Optional[str] = None, **data: Any) -> None:
        """Buffer a notification until the current operation completes."""
        self._sequence_num += 1
        self._pending_events.append(GameEvent(
            event_type=event_type,
            match_id=self.match_id,
            sequence_num=self._sequence_num,
            player_id=player_id,
            data=data,
        ))

    def drain_events(self) -> list[GameEvent]:
        """Return and clear buffered notifications."""
        events, self._pending_events = self._pending_events, []
        return events

    def _reject(self, reason: str, player_id: Optional[str] = None) -> bool:
        self.last_rejection = reason
        logger.debug(f"Rejected move: {reason}", extra={"match_id": self.match_id, "player_id": player_id})
        return False

    def _accept(self) -> bool:
        self.last_rejection = None
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def current_player(self) -> Optional[Player]:
        return self.state.current_player() if self.state else None

    def effective_top(self) -> Optional[Card]:
        return rules.effective_top(self.state.pile) if self.state else None

    def can_play_selected(self, cards: list[Card]) -> bool:
        return self.state is not None and rules.can_play_selected(cards, self.state.pile)

    def can_play_any(self, player_id: str) -> bool:
        player = self.state.get_player(player_id) if self.state else None
        return player is not None and rules.can_play_any(player, self.state.pile)

    def eligible_jumpers(self, rank: int) -> list[Player]:
        """Players holding at least one hand card of `rank`."""
        if not self.state:
            return []
        return [p for p in self.state.players if any(c.rank == rank for c in p.hand)]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def deal(
        self,
        seats: list[Player],
        deck: Optional[list[Card]] = None,
        rng: Optional[random.Random] = None,
    ) -> GameState:
        """
        Start a brand-new game, discarding any previous state.

        Args:
            seats: Players in turn order.
            deck: Pre-shuffled deck (built and shuffled if omitted).
            rng: Random source used when building the deck.
        """
        if deck is None:
            deck = build_deck(rng)
        self.state = deal(seats, deck)
        self.pending_jump_in = None
        self.emit(
            EventType.DEALT,
            player_order=[p.id for p in self.state.players],
            deck_remaining=len(self.state.deck),
        )
        # All-CPU tables have nobody left to choose face-up cards
        if all(p.id in self.state.confirmed for p in self.state.players):
            self._set_phase(GamePhase.SWAPPING)
        self._accept()
        return self.state

    def _set_phase(self, phase: GamePhase) -> None:
        self.state.phase = phase
        self.emit(EventType.PHASE_CHANGED, phase=phase.value)

    def toggle_face_up(self, player_id: str, card_id: str) -> bool:
        """
        Move a card between hand and face-up during SETUP.

        A hand card goes face-up while fewer than three are designated; a
        face-up card goes back to the hand. Either direction may be repeated
        any number of times until the player confirms.
        """
        if not self.state or self.state.phase != GamePhase.SETUP:
            return self._reject("wrong_phase", player_id)

        player = self.state.get_player(player_id)
        if not player:
            return self._reject("unknown_player", player_id)
        if player_id in self.state.confirmed:
            return self._reject("already_confirmed", player_id)

        for i, card in enumerate(player.hand):
            if card.id == card_id:
                if len(player.face_up) >= FACE_UP_COUNT:
                    return self._reject("face_up_full", player_id)
                player.face_up.append(player.hand.pop(i))
                return self._accept()

        for i, card in enumerate(player.face_up):
            if card.id == card_id:
                player.hand.append(player.face_up.pop(i))
                return self._accept()

        return self._reject("unknown_card", player_id)

    def confirm_face_up(self, player_id: str) -> bool:
        """
        Lock in a player's three face-up cards.

        Once every player has confirmed, the game moves to SWAPPING.
        """
        if not self.state or self.state.phase != GamePhase.SETUP:
            return self._reject("wrong_phase", player_id)

        player = self.state.get_player(player_id)
        if not player:
            return self._reject("unknown_player", player_id)
        if player_id in self.state.confirmed:
            return self._reject("already_confirmed", player_id)
        if len(player.face_up) != FACE_UP_COUNT:
            return self._reject("need_three_face_up", player_id)

        self.state.confirmed.append(player_id)
        if all(p.id in self.state.confirmed for p in self.state.players):
            self._set_phase(GamePhase.SWAPPING)
        return self._accept()

    def swap_cards(self, player_id: str, hand_card_id: str, face_up_card_id: str) -> bool:
        """Exchange one hand card with one face-up card during SWAPPING."""
        if not self.state or self.state.phase != GamePhase.SWAPPING:
            return self._reject("wrong_phase", player_id)

        player = self.state.get_player(player_id)
        if not player:
            return self._reject("unknown_player", player_id)

        hand_idx = next((i for i, c in enumerate(player.hand) if c.id == hand_card_id), None)
        up_idx = next((i for i, c in enumerate(player.face_up) if c.id == face_up_card_id), None)
        if hand_idx is None or up_idx is None:
            return self._reject("unknown_card", player_id)

        player.hand[hand_idx], player.face_up[up_idx] = player.face_up[up_idx], player.hand[hand_idx]
        return self._accept()

    def start_game(self) -> bool:
        """Leave SWAPPING and begin play with the first seat."""
        if not self.state or self.state.phase != GamePhase.SWAPPING:
            return self._reject("wrong_phase")
        self.state.current_player_index = 0
        self._set_phase(GamePhase.PLAYING)
        return self._accept()

    # -------------------------------------------------------------------------
    # Turn helpers
    # -------------------------------------------------------------------------

    def _turn_player(self, player_id: str) -> Optional[Player]:
        """Resolve the acting player for a turn move, rejecting if not allowed."""
        if not self.state:
            self._reject("no_game", player_id)
            return None
        if self.state.phase == GamePhase.FINISHED:
            self._reject("game_finished", player_id)
            return None
        if self.state.phase != GamePhase.PLAYING:
            self._reject("wrong_phase", player_id)
            return None
        index = self.state.player_index(player_id)
        if index is None:
            self._reject("unknown_player", player_id)
            return None
        if index != self.state.current_player_index:
            self._reject("not_your_turn", player_id)
            return None
        return self.state.players[index]

    def _replenish(self, player: Player) -> int:
        """Draw from the deck until the hand holds three cards or the deck runs out."""
        drawn = 0
        while len(player.hand) < HAND_REFILL_SIZE and self.state.deck:
            player.hand.append(self.state.deck.pop(0))
            drawn += 1
        return drawn

    def _burn_pile(self) -> int:
        """Move the whole pile onto the burned stack. Returns the card count."""
        count = len(self.state.pile)
        self.state.burned.extend(self.state.pile)
        self.state.pile.clear()
        return count

    def _resolve_pile(self, player: Player, played: list[Card]) -> bool:
        """Burn the pile on four-of-a-kind or a ten. Returns True if burned."""
        if rules.should_burn(self.state.pile):
            reason = "four_of_a_kind"
        elif rules.contains_ten(played):
            reason = "ten"
        else:
            return False
        burned = self._burn_pile()
        self.emit(EventType.BURNED, player_id=player.id, reason=reason, cards=burned)
        return True

    def _check_win(self, player: Player) -> bool:
        """Finish the game if `player` has no cards left anywhere."""
        if not player.is_out():
            return False
        self.state.phase = GamePhase.FINISHED
        self.state.winner = player.id
        if len(self.state.players) == 2:
            self.state.loser = next(p.id for p in self.state.players if p.id != player.id)
        self.pending_jump_in = None
        self.emit(EventType.GAME_FINISHED, player_id=player.id, winner=player.id, loser=self.state.loser)
        logger.info(f"Game finished, winner {player.name}", extra={"match_id": self.match_id})
        return True

    def _advance_turn(self) -> None:
        self.state.current_player_index = (self.state.current_player_index + 1) % len(self.state.players)

    # -------------------------------------------------------------------------
    # Turn moves
    # -------------------------------------------------------------------------

    def play_cards(self, player_id: str, card_ids: list[str]) -> bool:
        """
        Play one or more same-rank cards from the active zone.

        Cards come from the hand while it has any, otherwise from face-up.
        After appending to the pile the hand is refilled to three, then the
        pile burns on four-of-a-kind or a ten (player keeps the turn). A
        player left with no cards wins immediately, burn or not. Otherwise
        the turn passes on, and three of a kind on top requests a jump-in
        window via `pending_jump_in`.

        Args:
            player_id: The acting player.
            card_ids: IDs of the cards to play, in pile order.

        Returns:
            True if the play was applied, False if rejected.
        """
        self.pending_jump_in = None
        player = self._turn_player(player_id)
        if not player:
            return False
        if not card_ids or len(set(card_ids)) != len(card_ids):
            return self._reject("bad_selection", player_id)

        zone_name = "hand" if player.hand else "face_up"
        zone = player.hand if player.hand else player.face_up
        by_id = {c.id: c for c in zone}
        if any(card_id not in by_id for card_id in card_ids):
            return self._reject("unknown_card", player_id)

        cards = [by_id[card_id] for card_id in card_ids]
        if not rules.same_rank(cards):
            return self._reject("mixed_ranks", player_id)
        if not rules.can_play(cards[0], rules.effective_top(self.state.pile)):
            return self._reject("unplayable", player_id)

        played_ids = set(card_ids)
        zone[:] = [c for c in zone if c.id not in played_ids]
        self.state.pile.extend(cards)
        drawn = self._replenish(player)

        self.emit(
            EventType.PLAYED,
            player_id=player.id,
            cards=[c.to_dict() for c in cards],
            source=zone_name,
            drawn=drawn,
        )

        burned = self._resolve_pile(player, cards)
        if self._check_win(player):
            return self._accept()
        if not burned:
            self._advance_turn()
            self.pending_jump_in = rules.jump_in_rank(self.state.pile)
        return self._accept()

    def reveal_face_down(self, player_id: str, card_index: int) -> bool:
        """
        Reveal the face-down card at `card_index`.

        Only allowed once hand and face-up are both empty. A playable card is
        played like a single-card play (no refill); an unplayable one is
        picked up together with the whole pile and the turn passes.
        """
        self.pending_jump_in = None
        player = self._turn_player(player_id)
        if not player:
            return False
        if player.hand or player.face_up:
            return self._reject("zone_not_active", player_id)
        if not 0 <= card_index < len(player.face_down):
            return self._reject("bad_index", player_id)

        card = player.face_down.pop(card_index)
        playable = rules.can_play(card, rules.effective_top(self.state.pile))
        self.emit(
            EventType.FACE_DOWN_REVEALED,
            player_id=player.id,
            card=card.to_dict(),
            index=card_index,
            playable=playable,
        )

        if not playable:
            picked_up = self.state.pile + [card]
            player.hand.extend(picked_up)
            self.state.pile.clear()
            self.emit(EventType.PICKED_UP, player_id=player.id, cards=len(picked_up), forced=True)
            self._advance_turn()
            return self._accept()

        self.state.pile.append(card)
        self.emit(EventType.PLAYED, player_id=player.id, cards=[card.to_dict()], source="face_down", drawn=0)
        burned = self._resolve_pile(player, [card])
        if self._check_win(player):
            return self._accept()
        if not burned:
            self._advance_turn()
        return self._accept()

    def pickup_pile(self, player_id: str) -> bool:
        """
        Take the whole pile into the hand and pass the turn.

        Only allowed when the pile is non-empty and the player has nothing
        legal to play from their active zone.
        """
        self.pending_jump_in = None
        player = self._turn_player(player_id)
        if not player:
            return False
        if not self.state.pile:
            return self._reject("empty_pile", player_id)
        if rules.can_play_any(player, self.state.pile):
            return self._reject("has_playable_card", player_id)

        count = len(self.state.pile)
        player.hand.extend(self.state.pile)
        self.state.pile.clear()
        self.emit(EventType.PICKED_UP, player_id=player.id, cards=count, forced=False)
        self._advance_turn()
        return self._accept()

    def jump_in(self, player_id: str, rank: int) -> bool:
        """
        Complete a four-of-a-kind out of turn.

        The jumping player plays every hand card of `rank`, refills to three,
        the pile burns unconditionally and the jumper takes the turn. Window
        bookkeeping (which rank is open, stale attempts) belongs to the
        caller; this only checks the pile still ends in three of `rank`.
        """
        self.pending_jump_in = None
        if not self.state:
            return self._reject("no_game", player_id)
        if self.state.phase != GamePhase.PLAYING:
            return self._reject("wrong_phase", player_id)
        index = self.state.player_index(player_id)
        if index is None:
            return self._reject("unknown_player", player_id)
        if rules.jump_in_rank(self.state.pile) != rank:
            return self._reject("pile_mismatch", player_id)

        player = self.state.players[index]
        matching = [c for c in player.hand if c.rank == rank]
        if not matching:
            return self._reject("no_matching_cards", player_id)

        player.hand = [c for c in player.hand if c.rank != rank]
        self.state.pile.extend(matching)
        drawn = self._replenish(player)
        burned = self._burn_pile()
        self.state.current_player_index = index

        self.emit(
            EventType.JUMPED_IN,
            player_id=player.id,
            cards=[c.to_dict() for c in matching],
            rank=rank,
            drawn=drawn,
        )
        self.emit(EventType.BURNED, player_id=player.id, reason="jump_in", cards=burned)
        self._check_win(player)
        return self._accept()
