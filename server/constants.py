"""
Card and table constants for Shithead.

This module is the single source of truth for rank numbering, the special
ranks and the deal layout. Timing and AI tuning values live in config.py
because they are environment-configurable.

Rank numbering:
    - 2-10: Face value
    - Jack=11, Queen=12, King=13, Ace=14

Special ranks:
    - 2: Wild. Playable on anything, and the next play is unconstrained.
    - 7: Caps the next play at 7 or lower.
    - 10: Playable on anything and clears (burns) the pile.
"""

# =============================================================================
# Ranks
# =============================================================================

MIN_RANK = 2
MAX_RANK = 14

JACK = 11
QUEEN = 12
KING = 13
ACE = 14

WILD_RANK = 2
LOW_CAP_RANK = 7
CLEAR_RANK = 10

RANK_LABELS: dict[int, str] = {
    JACK: "J",
    QUEEN: "Q",
    KING: "K",
    ACE: "A",
}


def rank_label(rank: int) -> str:
    """Display label for a rank (J/Q/K/A for court cards, digits otherwise)."""
    return RANK_LABELS.get(rank, str(rank))


# =============================================================================
# Pile thresholds
# =============================================================================

# Four cards of one rank on top of the pile burn it
BURN_COUNT = 4

# Three cards of one rank on top of the pile open a jump-in window
JUMP_IN_COUNT = 3


# =============================================================================
# Deal layout
# =============================================================================

HAND_DEAL_SIZE = 6
FACE_DOWN_COUNT = 3
FACE_UP_COUNT = 3

# Hands are topped back up to this size from the deck after a play
HAND_REFILL_SIZE = 3

MIN_PLAYERS = 2
MAX_PLAYERS = 4

DEFAULT_PLAYER_NAMES = ["You", "Bob", "Alice", "Carol"]
