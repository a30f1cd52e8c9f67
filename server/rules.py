"""
Legality and pile evaluation for Shithead.

These are pure functions over cards and piles. The Game state machine, the
opponent policy and presentation layers all consult the same functions, so a
move is judged identically no matter who proposes it.

Play rules:
    - Anything goes on an empty pile.
    - A 2 is wild: it can be played on anything, and the next play is
      unconstrained (the 2 erases every card beneath it as a constraint).
    - A 10 can be played on anything and burns the pile.
    - On a 7 only 7 or lower may be played.
    - Otherwise the played rank must be equal or higher than the top.

Pile rules:
    - Four cards of one rank on top of the pile burn it.
    - Three cards of one rank on top of the pile open a jump-in window.
"""

from typing import Iterable, Optional, Sequence, TYPE_CHECKING

from constants import (
    BURN_COUNT,
    CLEAR_RANK,
    JUMP_IN_COUNT,
    LOW_CAP_RANK,
    WILD_RANK,
)

if TYPE_CHECKING:
    from game import Card, Player


# =============================================================================
# Legality Evaluator
# =============================================================================

def effective_top(pile: Sequence["Card"]) -> Optional["Card"]:
    """
    Get the card that constrains the next play.

    Trailing 2s reset the pile: if the top card is a 2 (or a run of 2s),
    there is no constraint and None is returned. Otherwise the top card
    itself is the constraint.

    Args:
        pile: Discard pile, last element on top.

    Returns:
        The constraining card, or None when anything may be played.
    """
    # A wild on top erases everything beneath it, however many 2s are stacked
    if not pile or pile[-1].rank == WILD_RANK:
        return None
    return pile[-1]


def can_play_rank(rank: int, top: Optional["Card"]) -> bool:
    """Check whether a card of `rank` may be placed on effective top `top`."""
    if top is None:
        return True
    if rank == WILD_RANK:
        return True
    if rank == CLEAR_RANK:
        return True
    if top.rank == LOW_CAP_RANK:
        return rank <= LOW_CAP_RANK
    return rank >= top.rank


def can_play(card: "Card", top: Optional["Card"]) -> bool:
    """Check whether `card` may be placed on effective top `top`."""
    return can_play_rank(card.rank, top)


def same_rank(cards: Sequence["Card"]) -> bool:
    """True if `cards` is non-empty and every card shares one rank."""
    if not cards:
        return False
    first = cards[0].rank
    return all(card.rank == first for card in cards)


def can_play_selected(cards: Sequence["Card"], pile: Sequence["Card"]) -> bool:
    """
    Check whether a selected group may be played on `pile`.

    A group is legal iff it is non-empty, all cards share one rank, and that
    rank is playable on the current effective top. Group size never matters.
    """
    if not same_rank(cards):
        return False
    return can_play(cards[0], effective_top(pile))


def playable_cards(cards: Iterable["Card"], pile: Sequence["Card"]) -> list["Card"]:
    """Filter `cards` down to those playable on `pile`."""
    top = effective_top(pile)
    return [card for card in cards if can_play(card, top)]


def can_play_any(player: "Player", pile: Sequence["Card"]) -> bool:
    """
    Check whether a player has any legal move other than picking up.

    Only the player's active zone counts: the hand while it has cards, then
    face-up cards. A player down to face-down cards can always reveal one,
    so they always have a move.
    """
    if player.hand:
        return bool(playable_cards(player.hand, pile))
    if player.face_up:
        return bool(playable_cards(player.face_up, pile))
    return bool(player.face_down)


# =============================================================================
# Pile Evaluator
# =============================================================================

def _suffix_rank(pile: Sequence["Card"], count: int) -> Optional[int]:
    """Rank shared by the last `count` cards of the pile, or None."""
    if len(pile) < count:
        return None
    suffix = pile[-count:]
    rank = suffix[0].rank
    if all(card.rank == rank for card in suffix):
        return rank
    return None


def should_burn(pile: Sequence["Card"]) -> bool:
    """True iff the pile has at least four cards and the last four share a rank."""
    return _suffix_rank(pile, BURN_COUNT) is not None


def contains_ten(played: Iterable["Card"]) -> bool:
    """True iff any card just played is a 10."""
    return any(card.rank == CLEAR_RANK for card in played)


def jump_in_rank(pile: Sequence["Card"]) -> Optional[int]:
    """
    Rank eligible for a jump-in, if any.

    Returns the rank shared by the last three cards of the pile. A pile that
    would burn (four of a kind) never opens a window, but callers evaluate
    this only on piles that did not burn.
    """
    return _suffix_rank(pile, JUMP_IN_COUNT)
