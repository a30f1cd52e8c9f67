"""Models package for the Shithead engine."""

from .events import EventType, GameEvent
from .intents import (
    Intent,
    IntentType,
    IntentEnvelope,
    DealCards,
    ToggleFaceUp,
    ConfirmFaceUp,
    SwapCards,
    StartGame,
    PlayCards,
    PickupPile,
    RevealFaceDown,
    JumpIn,
    parse_intent,
)
from .snapshot import MatchSnapshot

__all__ = [
    "EventType",
    "GameEvent",
    "Intent",
    "IntentType",
    "IntentEnvelope",
    "DealCards",
    "ToggleFaceUp",
    "ConfirmFaceUp",
    "SwapCards",
    "StartGame",
    "PlayCards",
    "PickupPile",
    "RevealFaceDown",
    "JumpIn",
    "parse_intent",
    "MatchSnapshot",
]
