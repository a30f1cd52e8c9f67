"""Opponent policy for CPU players in Shithead."""

import logging
import random
from typing import Optional

import rules
from config import config
from constants import ACE, CLEAR_RANK, FACE_UP_COUNT, WILD_RANK, rank_label
from game import Card, GameState, Player, lowest_cards
from models.intents import Intent, JumpIn, PickupPile, PlayCards, RevealFaceDown


# Debug logging configuration
# Set AI_DEBUG=1 environment variable to enable detailed AI decision logging
AI_DEBUG = config.AI_DEBUG

# Create a dedicated logger for AI decisions
ai_logger = logging.getLogger("shithead.ai")
if AI_DEBUG:
    ai_logger.setLevel(logging.DEBUG)
    # Add console handler if not already present
    if not ai_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [AI] %(message)s", datefmt="%H:%M:%S"
        ))
        ai_logger.addHandler(handler)


def ai_log(message: str):
    """Log AI decision info when AI_DEBUG is enabled."""
    if AI_DEBUG:
        ai_logger.debug(message)


# =============================================================================
# CPU Turn Timing Configuration (seconds)
# =============================================================================
# Defaults for the delays a live match waits before acting for a CPU player.
# Simulations run without them.

CPU_TIMING = {
    # Fixed "thinking" pause before a CPU takes its turn
    "think": config.timing.CPU_THINK_SECONDS,
    # Random pause before a CPU attempts a jump-in
    "jump_in_delay": (config.timing.CPU_JUMP_IN_DELAY_MIN, config.timing.CPU_JUMP_IN_DELAY_MAX),
}

# Policy probabilities
PLAY_ALL_CHANCE = config.policy.CPU_PLAY_ALL_CHANCE
JUMP_IN_CHANCE = config.policy.CPU_JUMP_IN_CHANCE


def effective_rank(card: Card) -> int:
    """
    Rank used to order candidate plays.

    2s and 10s play on anything, so the CPU holds on to them: both sort
    above an Ace, 10 last of all since it burns the pile.
    """
    if card.rank == WILD_RANK:
        return ACE + 1
    if card.rank == CLEAR_RANK:
        return ACE + 2
    return card.rank


def jump_in_delay(rng: Optional[random.Random] = None) -> float:
    """Random pause before a CPU jump-in attempt."""
    rng = rng or random
    low, high = CPU_TIMING["jump_in_delay"]
    return rng.uniform(low, high)


class ShitheadAI:
    """AI decision-making for Shithead."""

    @staticmethod
    def choose_face_up(hand: list[Card]) -> list[Card]:
        """The three lowest hand cards, ties in hand order."""
        return lowest_cards(hand, FACE_UP_COUNT)

    @staticmethod
    def choose_move(
        state: GameState,
        player: Player,
        rng: Optional[random.Random] = None,
        play_all_chance: float = PLAY_ALL_CHANCE,
    ) -> Optional[Intent]:
        """
        Decide a CPU player's move on its turn.

        Plays the lowest effective rank legal in the active zone (hand, then
        face-up). Usually plays every card of that rank at once. With nothing
        legal it picks up the pile; with only face-down cards left it reveals
        one at random.

        Returns:
            The intent to submit, or None if the player has no cards.
        """
        rng = rng or random
        zone = player.hand or player.face_up

        if zone:
            legal = rules.playable_cards(zone, state.pile)
            if not legal:
                ai_log(f"{player.name}: nothing playable on {len(state.pile)}-card pile, picking up")
                return PickupPile(player_id=player.id)

            choice = min(legal, key=effective_rank)
            if rng.random() < play_all_chance:
                cards = [c for c in legal if c.rank == choice.rank]
            else:
                cards = [choice]
            zone_name = "hand" if player.hand else "face-up"
            ai_log(f"{player.name}: playing {len(cards)}x {rank_label(choice.rank)} from {zone_name}")
            return PlayCards(player_id=player.id, card_ids=tuple(c.id for c in cards))

        if player.face_down:
            index = rng.randrange(len(player.face_down))
            ai_log(f"{player.name}: revealing face-down card {index}")
            return RevealFaceDown(player_id=player.id, index=index)

        return None

    @staticmethod
    def should_jump_in(
        player: Player,
        rank: int,
        rng: Optional[random.Random] = None,
        chance: float = JUMP_IN_CHANCE,
        generation: Optional[int] = None,
    ) -> Optional[JumpIn]:
        """
        Decide whether a CPU jumps in on an open window for `rank`.

        Returns:
            The JumpIn intent, or None if the player holds no card of the
            rank or decides to let the window pass.
        """
        if not any(c.rank == rank for c in player.hand):
            return None
        rng = rng or random
        if rng.random() >= chance:
            ai_log(f"{player.name}: could jump in with {rank_label(rank)}, passing")
            return None
        ai_log(f"{player.name}: jumping in with {rank_label(rank)}")
        return JumpIn(player_id=player.id, rank=rank, generation=generation)
