"""
Test suite for the Shithead turn/phase state machine.

Verifies:
- Deck generation and the round-robin deal
- Setup (face-up choice) and swapping phases
- Plays, hand refill, burns and turn retention
- Face-down reveals and pickups
- Jump-ins, win precedence and the two-player loser
- Card conservation through whole games

Run with: pytest test_game.py -v
"""

import itertools
import random

import pytest

from ai import ShitheadAI
from constants import FACE_DOWN_COUNT, HAND_DEAL_SIZE
from game import (
    Card, Game, GamePhase, GameState, Player, Suit,
    build_deck, deal, shuffle_deck,
)
from models.events import EventType
from models.intents import PickupPile, PlayCards, RevealFaceDown

_ids = itertools.count()


def c(rank: int, suit: Suit = Suit.HEARTS) -> Card:
    """Card with a fresh unique id."""
    return Card(suit, rank, f"t-{rank}-{next(_ids)}")


def ranks(cards: list[Card]) -> list[int]:
    return [card.rank for card in cards]


def seats(count: int, ai: bool = False) -> list[Player]:
    return [Player(id=f"p{i}", name=f"P{i}", is_ai=ai) for i in range(count)]


def playing_game(players: list[Player], pile=None, deck=None, current: int = 0) -> Game:
    """Game already in PLAYING with hand-built zones."""
    game = Game(match_id="test")
    game.state = GameState(
        players=players,
        pile=pile or [],
        deck=deck or [],
        phase=GamePhase.PLAYING,
        current_player_index=current,
    )
    return game


# =============================================================================
# Deck Tests
# =============================================================================

class TestDeck:

    def test_full_deck(self):
        deck = build_deck()
        assert len(deck) == 52
        assert len({card.id for card in deck}) == 52
        assert {(card.suit, card.rank) for card in deck} == {
            (suit, rank) for suit in Suit for rank in range(2, 15)
        }

    def test_seeded_deck_reproducible(self):
        assert build_deck(random.Random(7)) == build_deck(random.Random(7))

    def test_shuffle_is_permutation_and_copy(self):
        cards = [c(rank) for rank in range(2, 15)]
        original = list(cards)
        shuffled = shuffle_deck(cards, random.Random(3))
        assert cards == original
        assert sorted(x.id for x in shuffled) == sorted(x.id for x in cards)


# =============================================================================
# Deal Tests
# =============================================================================

class TestDeal:

    def test_round_robin_deal_is_deterministic(self):
        """Four players from a known deck: zones rebuild the deck prefix in order."""
        deck = build_deck(random.Random(11))
        state = deal(seats(4), deck)

        for i, player in enumerate(state.players):
            assert player.hand == [deck[i + 4 * k] for k in range(HAND_DEAL_SIZE)]
            assert player.face_down == [deck[24 + i + 4 * k] for k in range(FACE_DOWN_COUNT)]
            assert player.face_up == []
        assert state.deck == deck[36:]
        assert state.phase == GamePhase.SETUP

    def test_ai_moves_lowest_three_face_up(self):
        ranks_dealt = [9, 3, 14, 3, 2, 7]
        deck = []
        # Two players: player 0 gets even positions in the first 12 cards
        for r in ranks_dealt:
            deck.append(c(r))
            deck.append(c(13, Suit.SPADES))
        deck += [c(5, Suit.CLUBS) for _ in range(10)]

        state = deal([Player(id="cpu", name="CPU", is_ai=True), Player(id="me", name="Me")], deck)
        cpu = state.players[0]
        assert sorted(ranks(cpu.face_up)) == [2, 3, 3]
        assert sorted(ranks(cpu.hand)) == [7, 9, 14]
        assert state.confirmed == ["cpu"]

    def test_lowest_ties_keep_hand_order(self):
        hand = [c(3, Suit.HEARTS), c(3, Suit.SPADES), c(3, Suit.CLUBS), c(3, Suit.DIAMONDS)]
        assert ShitheadAI.choose_face_up(hand) == hand[:3]

    @pytest.mark.parametrize("count", [1, 5])
    def test_player_count_bounds(self, count):
        with pytest.raises(ValueError):
            deal(seats(count), build_deck())

    def test_all_ai_table_skips_setup(self):
        game = Game()
        game.deal(seats(3, ai=True), rng=random.Random(1))
        assert game.state.phase == GamePhase.SWAPPING
        types = [e.event_type for e in game.drain_events()]
        assert types == [EventType.DEALT, EventType.PHASE_CHANGED]


# =============================================================================
# Setup and Swapping
# =============================================================================

class TestSetupPhase:

    def setup_method(self):
        self.game = Game()
        self.game.deal(
            [Player(id="me", name="Me"), Player(id="cpu", name="CPU", is_ai=True)],
            rng=random.Random(5),
        )
        self.me = self.game.state.get_player("me")

    def test_toggle_moves_card_both_ways(self):
        card = self.me.hand[0]
        assert self.game.toggle_face_up("me", card.id)
        assert card in self.me.face_up and card not in self.me.hand
        assert self.game.toggle_face_up("me", card.id)
        assert card in self.me.hand and card not in self.me.face_up

    def test_face_up_limited_to_three(self):
        for card in list(self.me.hand[:3]):
            assert self.game.toggle_face_up("me", card.id)
        assert not self.game.toggle_face_up("me", self.me.hand[0].id)
        assert self.game.last_rejection == "face_up_full"

    def test_confirm_requires_three(self):
        self.game.toggle_face_up("me", self.me.hand[0].id)
        assert not self.game.confirm_face_up("me")
        assert self.game.last_rejection == "need_three_face_up"

    def test_confirm_moves_to_swapping(self):
        for card in list(self.me.hand[:3]):
            self.game.toggle_face_up("me", card.id)
        assert self.game.confirm_face_up("me")
        assert self.game.state.phase == GamePhase.SWAPPING

    def test_no_toggle_after_confirm(self):
        for card in list(self.me.hand[:3]):
            self.game.toggle_face_up("me", card.id)
        self.game.confirm_face_up("me")
        assert not self.game.toggle_face_up("me", self.me.face_up[0].id)

    def test_swap_and_start(self):
        for card in list(self.me.hand[:3]):
            self.game.toggle_face_up("me", card.id)
        self.game.confirm_face_up("me")

        hand_card, up_card = self.me.hand[0], self.me.face_up[1]
        assert self.game.swap_cards("me", hand_card.id, up_card.id)
        assert self.me.hand[0] == up_card
        assert self.me.face_up[1] == hand_card

        assert self.game.start_game()
        assert self.game.state.phase == GamePhase.PLAYING
        assert self.game.state.current_player_index == 0

    def test_swap_outside_swapping_rejected(self):
        assert not self.game.swap_cards("me", self.me.hand[0].id, self.me.hand[1].id)
        assert self.game.last_rejection == "wrong_phase"

    def test_play_during_setup_rejected(self):
        assert not self.game.play_cards("me", [self.me.hand[0].id])
        assert self.game.last_rejection == "wrong_phase"


# =============================================================================
# Plays
# =============================================================================

class TestPlayCards:

    def test_not_your_turn(self):
        players = [Player(id="a", name="A", hand=[c(5)]), Player(id="b", name="B", hand=[c(6)])]
        game = playing_game(players)
        assert not game.play_cards("b", [players[1].hand[0].id])
        assert game.last_rejection == "not_your_turn"

    def test_unplayable_rejected_without_change(self):
        low = c(4)
        players = [Player(id="a", name="A", hand=[low]), Player(id="b", name="B", hand=[c(6)])]
        game = playing_game(players, pile=[c(9)])
        assert not game.play_cards("a", [low.id])
        assert game.last_rejection == "unplayable"
        assert players[0].hand == [low]
        assert len(game.state.pile) == 1

    def test_mixed_ranks_rejected(self):
        hand = [c(5), c(6)]
        game = playing_game([Player(id="a", name="A", hand=hand), Player(id="b", name="B")])
        assert not game.play_cards("a", [card.id for card in hand])
        assert game.last_rejection == "mixed_ranks"

    def test_duplicate_ids_rejected(self):
        five = c(5)
        game = playing_game([Player(id="a", name="A", hand=[five]), Player(id="b", name="B")])
        assert not game.play_cards("a", [five.id, five.id])

    def test_face_up_not_playable_while_hand_has_cards(self):
        up = c(12)
        players = [Player(id="a", name="A", hand=[c(3)], face_up=[up]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players)
        assert not game.play_cards("a", [up.id])
        assert game.last_rejection == "unknown_card"

    def test_play_from_face_up_once_hand_empty(self):
        up = c(12)
        players = [Player(id="a", name="A", face_up=[up], face_down=[c(3)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players)
        assert game.play_cards("a", [up.id])
        assert game.state.pile == [up]
        assert players[0].face_up == []
        assert game.state.current_player_index == 1

    def test_refill_to_three_and_rotate(self):
        hand = [c(8), c(8, Suit.SPADES), c(3)]
        deck = [c(11), c(12), c(13)]
        players = [Player(id="a", name="A", hand=hand), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, deck=list(deck))

        assert game.play_cards("a", [hand[0].id, hand[1].id])
        assert ranks(game.state.pile) == [8, 8]
        assert ranks(players[0].hand) == [3, 11, 12]
        assert game.state.deck == deck[2:]
        assert game.state.current_player_index == 1

    def test_empty_deck_skips_refill(self):
        hand = [c(8), c(3)]
        players = [Player(id="a", name="A", hand=hand), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players)
        assert game.play_cards("a", [hand[0].id])
        assert ranks(players[0].hand) == [3]

    def test_rotation_wraps(self):
        players = [Player(id=f"p{i}", name=f"P{i}", hand=[c(5), c(6)]) for i in range(3)]
        game = playing_game(players, current=2)
        assert game.play_cards("p2", [players[2].hand[0].id])
        assert game.state.current_player_index == 0

    def test_events_buffered_until_drained(self):
        five = c(5)
        game = playing_game([Player(id="a", name="A", hand=[five, c(9)]), Player(id="b", name="B", hand=[c(4)])])
        game.play_cards("a", [five.id])
        events = game.drain_events()
        assert [e.event_type for e in events] == [EventType.PLAYED]
        assert events[0].data["cards"][0]["id"] == five.id
        assert game.drain_events() == []


# =============================================================================
# Burns and Wins
# =============================================================================

class TestBurns:

    def test_ten_burns_and_keeps_turn(self):
        ten = c(10)
        players = [Player(id="a", name="A", hand=[ten, c(3)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[c(13), c(14)])

        assert game.play_cards("a", [ten.id])
        assert game.state.pile == []
        assert game.state.current_player_index == 0
        burned = [e for e in game.drain_events() if e.event_type == EventType.BURNED]
        assert burned[0].data == {"reason": "ten", "cards": 3}

    def test_burn_moves_pile_to_burned_stack(self):
        ten, p1, p2 = c(10), c(9), c(11)
        players = [Player(id="a", name="A", hand=[ten, c(3)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[p1, p2])
        before = sorted(game.state.all_card_ids())

        assert game.play_cards("a", [ten.id])
        assert game.state.burned == [p1, p2, ten]
        assert sorted(game.state.all_card_ids()) == before

    def test_four_of_a_kind_burns_and_keeps_turn(self):
        six = c(6, Suit.SPADES)
        players = [Player(id="a", name="A", hand=[six, c(3)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[c(6), c(6, Suit.CLUBS), c(6, Suit.DIAMONDS)])

        assert game.play_cards("a", [six.id])
        assert game.state.pile == []
        assert game.state.current_player_index == 0
        assert game.pending_jump_in is None

    def test_four_of_a_kind_in_one_play(self):
        sixes = [c(6, suit) for suit in Suit]
        players = [Player(id="a", name="A", hand=sixes + [c(3)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[c(5)])
        assert game.play_cards("a", [card.id for card in sixes])
        assert game.state.pile == []
        assert game.state.current_player_index == 0

    def test_win_takes_precedence_over_burn(self):
        ten = c(10)
        players = [Player(id="a", name="A", face_up=[ten]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[c(13)])

        assert game.play_cards("a", [ten.id])
        assert game.state.phase == GamePhase.FINISHED
        assert game.state.winner == "a"
        assert game.state.current_player_index == 0

    def test_two_player_loser(self):
        five = c(5)
        players = [Player(id="a", name="A", hand=[five]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players)
        game.play_cards("a", [five.id])
        assert game.state.loser == "b"

    def test_no_loser_with_more_players(self):
        five = c(5)
        players = [Player(id="a", name="A", hand=[five])] + [
            Player(id=f"x{i}", name="X", hand=[c(4)]) for i in range(2)
        ]
        game = playing_game(players)
        game.play_cards("a", [five.id])
        assert game.state.winner == "a"
        assert game.state.loser is None

    def test_finished_game_accepts_nothing(self):
        five = c(5)
        players = [Player(id="a", name="A", hand=[five]), Player(id="b", name="B", hand=[c(6)])]
        game = playing_game(players)
        game.play_cards("a", [five.id])
        assert not game.play_cards("b", [players[1].hand[0].id])
        assert game.last_rejection == "game_finished"

    def test_three_of_a_kind_requests_jump_in(self):
        five = c(5, Suit.CLUBS)
        players = [Player(id="a", name="A", hand=[five, c(9)]), Player(id="b", name="B", hand=[c(5, Suit.SPADES)])]
        game = playing_game(players, pile=[c(5), c(5, Suit.DIAMONDS)])
        assert game.play_cards("a", [five.id])
        assert game.pending_jump_in == 5
        assert game.state.current_player_index == 1


# =============================================================================
# Face-down reveals and pickups
# =============================================================================

class TestRevealAndPickup:

    def test_reveal_only_with_empty_hand_and_face_up(self):
        players = [Player(id="a", name="A", hand=[c(3)], face_down=[c(9)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players)
        assert not game.reveal_face_down("a", 0)
        assert game.last_rejection == "zone_not_active"

    def test_reveal_bad_index(self):
        players = [Player(id="a", name="A", face_down=[c(9)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players)
        assert not game.reveal_face_down("a", 3)
        assert game.last_rejection == "bad_index"

    def test_playable_reveal(self):
        down = [c(3), c(12)]
        players = [Player(id="a", name="A", face_down=list(down)), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[c(9)], deck=[c(8)])

        assert game.reveal_face_down("a", 1)
        assert game.state.pile[-1] == down[1]
        assert players[0].face_down == [down[0]]
        assert players[0].hand == []
        assert game.state.current_player_index == 1

    def test_unplayable_reveal_picks_up_pile(self):
        low = c(3)
        pile = [c(9), c(11)]
        players = [Player(id="a", name="A", face_down=[low, c(4)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=list(pile))

        assert game.reveal_face_down("a", 0)
        assert players[0].hand == pile + [low]
        assert game.state.pile == []
        assert game.state.current_player_index == 1
        types = [e.event_type for e in game.drain_events()]
        assert types == [EventType.FACE_DOWN_REVEALED, EventType.PICKED_UP]

    def test_reveal_last_card_wins(self):
        players = [Player(id="a", name="A", face_down=[c(12)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[c(9)])
        assert game.reveal_face_down("a", 0)
        assert game.state.winner == "a"

    def test_reveal_opens_no_jump_in(self):
        players = [Player(id="a", name="A", face_down=[c(5, Suit.CLUBS), c(3)]), Player(id="b", name="B", hand=[c(5, Suit.SPADES)])]
        game = playing_game(players, pile=[c(5), c(5, Suit.DIAMONDS)])
        assert game.reveal_face_down("a", 0)
        assert game.pending_jump_in is None

    def test_pickup_refused_with_playable_card(self):
        players = [Player(id="a", name="A", hand=[c(12)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[c(9)])
        assert not game.pickup_pile("a")
        assert game.last_rejection == "has_playable_card"

    def test_pickup_refused_on_empty_pile(self):
        players = [Player(id="a", name="A", hand=[c(3)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players)
        assert not game.pickup_pile("a")
        assert game.last_rejection == "empty_pile"

    def test_pickup_refused_with_only_face_down(self):
        players = [Player(id="a", name="A", face_down=[c(3)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=[c(14)])
        assert not game.pickup_pile("a")

    def test_pickup(self):
        pile = [c(9), c(13)]
        players = [Player(id="a", name="A", hand=[c(3)]), Player(id="b", name="B", hand=[c(4)])]
        game = playing_game(players, pile=list(pile))
        assert game.pickup_pile("a")
        assert ranks(players[0].hand) == [3, 9, 13]
        assert game.state.pile == []
        assert game.state.current_player_index == 1


# =============================================================================
# Jump-ins
# =============================================================================

class TestJumpIn:

    def test_scenario_fours_player_jump_in(self):
        """Third 5 opens a window; another player's single 5 completes the burn."""
        fives = [c(5, Suit.HEARTS), c(5, Suit.CLUBS), c(5, Suit.DIAMONDS)]
        spare = c(5, Suit.SPADES)
        players = [
            Player(id="p0", name="P0", hand=[fives[2], c(9)]),
            Player(id="p1", name="P1", hand=[c(3), c(4), c(6)]),
            Player(id="p2", name="P2", hand=[spare, c(12)]),
            Player(id="p3", name="P3", hand=[c(13), c(14), c(11)]),
        ]
        game = playing_game(players, pile=fives[:2], deck=[c(8), c(7), c(6, Suit.SPADES), c(11, Suit.SPADES)])

        assert game.play_cards("p0", [fives[2].id])
        assert game.pending_jump_in == 5

        assert game.jump_in("p2", 5)
        assert game.state.pile == []
        assert game.state.current_player_index == 2
        assert spare not in players[2].hand
        assert len(players[2].hand) == 3
        assert game.state.burned == fives + [spare]

    def test_jump_in_plays_all_matching(self):
        pile = [c(8), c(8, Suit.SPADES), c(8, Suit.CLUBS)]
        mine = [c(8, Suit.DIAMONDS), c(3)]
        players = [Player(id="a", name="A", hand=[c(4)]), Player(id="b", name="B", hand=list(mine))]
        game = playing_game(players, pile=pile)
        assert game.jump_in("b", 8)
        assert ranks(players[1].hand) == [3]
        types = [e.event_type for e in game.drain_events()]
        assert types == [EventType.JUMPED_IN, EventType.BURNED]

    def test_jump_in_requires_matching_card(self):
        pile = [c(8), c(8, Suit.SPADES), c(8, Suit.CLUBS)]
        players = [Player(id="a", name="A", hand=[c(4)]), Player(id="b", name="B", hand=[c(3)])]
        game = playing_game(players, pile=pile)
        assert not game.jump_in("b", 8)
        assert game.last_rejection == "no_matching_cards"

    def test_jump_in_requires_pile_suffix(self):
        players = [Player(id="a", name="A", hand=[c(4)]), Player(id="b", name="B", hand=[c(8)])]
        game = playing_game(players, pile=[c(8), c(8, Suit.SPADES), c(9)])
        assert not game.jump_in("b", 8)
        assert game.last_rejection == "pile_mismatch"

    def test_jump_in_can_win(self):
        pile = [c(8), c(8, Suit.SPADES), c(8, Suit.CLUBS)]
        players = [Player(id="a", name="A", hand=[c(4)]), Player(id="b", name="B", hand=[c(8, Suit.DIAMONDS)])]
        game = playing_game(players, pile=pile)
        assert game.jump_in("b", 8)
        assert game.state.winner == "b"


# =============================================================================
# Conservation
# =============================================================================

class TestConservation:

    @pytest.mark.parametrize("seed,num_players", [(1, 2), (2, 3), (3, 4), (4, 4)])
    def test_52_cards_through_whole_game(self, seed, num_players):
        rng = random.Random(seed)
        game = Game()
        game.deal(seats(num_players, ai=True), rng=rng)
        game.start_game()

        def check():
            ids = game.state.all_card_ids()
            assert len(ids) == 52
            assert len(set(ids)) == 52

        check()
        for _ in range(2000):
            if game.state.phase != GamePhase.PLAYING:
                break
            player = game.current_player()
            intent = ShitheadAI.choose_move(game.state, player, rng)
            if isinstance(intent, PlayCards):
                assert game.play_cards(player.id, list(intent.card_ids))
            elif isinstance(intent, RevealFaceDown):
                assert game.reveal_face_down(player.id, intent.index)
            elif isinstance(intent, PickupPile):
                assert game.pickup_pile(player.id)
            check()

            rank = game.pending_jump_in
            if rank is not None:
                jumpers = game.eligible_jumpers(rank)
                if jumpers:
                    assert game.jump_in(jumpers[0].id, rank)
                    check()

    def test_state_round_trips_through_dict(self):
        game = Game()
        game.deal(seats(3), rng=random.Random(9))
        restored = GameState.from_dict(game.state.to_dict())
        assert restored == game.state

    def test_burned_stack_round_trips(self):
        burned = [c(10), c(7)]
        game = playing_game(seats(2), pile=[c(3)])
        game.state.burned = list(burned)
        restored = GameState.from_dict(game.state.to_dict())
        assert restored.burned == burned
