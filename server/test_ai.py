"""
Tests for the CPU opponent policy.

Run with: pytest test_ai.py -v
"""

import random

import pytest

from ai import ShitheadAI, effective_rank, jump_in_delay
from game import Card, GamePhase, GameState, Player, Suit
from models.intents import JumpIn, PickupPile, PlayCards, RevealFaceDown

_count = 0


def c(rank: int, suit: Suit = Suit.HEARTS) -> Card:
    global _count
    _count += 1
    return Card(suit, rank, f"ai-{rank}-{_count}")


def state_with(player: Player, pile=None) -> GameState:
    other = Player(id="other", name="Other", hand=[c(4)])
    return GameState(players=[player, other], pile=pile or [], phase=GamePhase.PLAYING)


class TestEffectiveRank:

    def test_specials_sort_last(self):
        assert effective_rank(c(14)) < effective_rank(c(2)) < effective_rank(c(10))

    def test_plain_rank(self):
        assert effective_rank(c(7)) == 7


class TestChooseMove:

    def test_plays_lowest_legal(self):
        player = Player(id="cpu", name="CPU", hand=[c(13), c(9), c(2), c(5)], is_ai=True)
        state = state_with(player, pile=[c(8)])
        intent = ShitheadAI.choose_move(state, player, random.Random(0), play_all_chance=0.0)
        assert isinstance(intent, PlayCards)
        assert [card.rank for card in player.hand if card.id in intent.card_ids] == [9]

    def test_keeps_two_and_ten_for_later(self):
        player = Player(id="cpu", name="CPU", hand=[c(10), c(2), c(12)], is_ai=True)
        state = state_with(player, pile=[c(11)])
        intent = ShitheadAI.choose_move(state, player, random.Random(0), play_all_chance=0.0)
        assert intent.card_ids == (player.hand[2].id,)

    def test_play_all_of_rank(self):
        sixes = [c(6), c(6, Suit.CLUBS)]
        player = Player(id="cpu", name="CPU", hand=sixes + [c(9)], is_ai=True)
        state = state_with(player)
        intent = ShitheadAI.choose_move(state, player, random.Random(0), play_all_chance=1.0)
        assert set(intent.card_ids) == {card.id for card in sixes}

    def test_single_card_when_not_playing_all(self):
        sixes = [c(6), c(6, Suit.CLUBS)]
        player = Player(id="cpu", name="CPU", hand=list(sixes), is_ai=True)
        state = state_with(player)
        intent = ShitheadAI.choose_move(state, player, random.Random(0), play_all_chance=0.0)
        assert len(intent.card_ids) == 1

    def test_picks_up_when_stuck(self):
        player = Player(id="cpu", name="CPU", hand=[c(3), c(4)], is_ai=True)
        state = state_with(player, pile=[c(14)])
        assert isinstance(ShitheadAI.choose_move(state, player, random.Random(0)), PickupPile)

    def test_plays_face_up_after_hand(self):
        up = c(12)
        player = Player(id="cpu", name="CPU", face_up=[up], face_down=[c(3)], is_ai=True)
        state = state_with(player, pile=[c(9)])
        intent = ShitheadAI.choose_move(state, player, random.Random(0))
        assert intent.card_ids == (up.id,)

    def test_reveals_face_down(self):
        player = Player(id="cpu", name="CPU", face_down=[c(3), c(9)], is_ai=True)
        state = state_with(player, pile=[c(14)])
        intent = ShitheadAI.choose_move(state, player, random.Random(0))
        assert isinstance(intent, RevealFaceDown)
        assert 0 <= intent.index < 2

    def test_no_cards(self):
        player = Player(id="cpu", name="CPU", is_ai=True)
        assert ShitheadAI.choose_move(state_with(player), player) is None


class TestShouldJumpIn:

    def test_needs_matching_hand_card(self):
        player = Player(id="cpu", name="CPU", hand=[c(4)], face_up=[c(5)], is_ai=True)
        assert ShitheadAI.should_jump_in(player, 5, random.Random(0), chance=1.0) is None

    def test_always_when_chance_is_one(self):
        player = Player(id="cpu", name="CPU", hand=[c(5)], is_ai=True)
        intent = ShitheadAI.should_jump_in(player, 5, random.Random(0), chance=1.0, generation=3)
        assert intent == JumpIn(player_id="cpu", rank=5, generation=3)

    def test_never_when_chance_is_zero(self):
        player = Player(id="cpu", name="CPU", hand=[c(5)], is_ai=True)
        assert ShitheadAI.should_jump_in(player, 5, random.Random(0), chance=0.0) is None


@pytest.mark.parametrize("seed", range(5))
def test_jump_in_delay_in_range(seed):
    from ai import CPU_TIMING

    low, high = CPU_TIMING["jump_in_delay"]
    assert low <= jump_in_delay(random.Random(seed)) <= high
