"""
Player intents for Shithead.

An intent is a request to perform one action, tagged with the acting
player's id. Intents are the only way anything changes the canonical
match: they are appended to the match's intent log, and the host applies
them in log order, re-validating each one against its own state. An
intent never carries a legality claim; a stale or illegal intent is simply
dropped by the host.

Each intent kind is its own frozen dataclass carrying exactly the fields
that kind needs. Wire format:

    {"type": "play_cards", "player_id": "p1", "card_ids": ["hearts-5-..."]}
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional


class IntentType(str, Enum):
    """All intent kinds a participant may submit."""

    DEAL_CARDS = "deal_cards"
    TOGGLE_FACE_UP = "toggle_face_up"
    CONFIRM_FACE_UP = "confirm_face_up"
    SWAP_CARDS = "swap_cards"
    START_GAME = "start_game"
    PLAY_CARDS = "play_cards"
    PICKUP_PILE = "pickup_pile"
    REVEAL_FACE_DOWN = "reveal_face_down"
    JUMP_IN = "jump_in"


@dataclass(frozen=True)
class Intent:
    """Base for all intents. Subclasses set `intent_type` and their payload."""

    player_id: str

    intent_type: ClassVar[IntentType]

    def payload(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {"type": self.intent_type.value, "player_id": self.player_id, **self.payload()}

    @classmethod
    def from_payload(cls, player_id: str, payload: dict) -> "Intent":
        return cls(player_id=player_id)


@dataclass(frozen=True)
class DealCards(Intent):
    """Shuffle a fresh deck and deal a new game."""

    intent_type: ClassVar[IntentType] = IntentType.DEAL_CARDS


@dataclass(frozen=True)
class ToggleFaceUp(Intent):
    """Move a card between hand and face-up during setup."""

    card_id: str = ""

    intent_type: ClassVar[IntentType] = IntentType.TOGGLE_FACE_UP

    def payload(self) -> dict:
        return {"card_id": self.card_id}

    @classmethod
    def from_payload(cls, player_id: str, payload: dict) -> "ToggleFaceUp":
        return cls(player_id=player_id, card_id=str(payload["card_id"]))


@dataclass(frozen=True)
class ConfirmFaceUp(Intent):
    intent_type: ClassVar[IntentType] = IntentType.CONFIRM_FACE_UP


@dataclass(frozen=True)
class SwapCards(Intent):
    """Exchange one hand card with one face-up card during swapping."""

    hand_card_id: str = ""
    face_up_card_id: str = ""

    intent_type: ClassVar[IntentType] = IntentType.SWAP_CARDS

    def payload(self) -> dict:
        return {"hand_card_id": self.hand_card_id, "face_up_card_id": self.face_up_card_id}

    @classmethod
    def from_payload(cls, player_id: str, payload: dict) -> "SwapCards":
        return cls(
            player_id=player_id,
            hand_card_id=str(payload["hand_card_id"]),
            face_up_card_id=str(payload["face_up_card_id"]),
        )


@dataclass(frozen=True)
class StartGame(Intent):
    intent_type: ClassVar[IntentType] = IntentType.START_GAME


@dataclass(frozen=True)
class PlayCards(Intent):
    """Play same-rank cards, in this order, from the active zone."""

    card_ids: tuple[str, ...] = ()

    intent_type: ClassVar[IntentType] = IntentType.PLAY_CARDS

    def payload(self) -> dict:
        return {"card_ids": list(self.card_ids)}

    @classmethod
    def from_payload(cls, player_id: str, payload: dict) -> "PlayCards":
        card_ids = payload["card_ids"]
        if not isinstance(card_ids, (list, tuple)):
            raise ValueError("card_ids must be a list")
        return cls(player_id=player_id, card_ids=tuple(str(c) for c in card_ids))


@dataclass(frozen=True)
class PickupPile(Intent):
    intent_type: ClassVar[IntentType] = IntentType.PICKUP_PILE


@dataclass(frozen=True)
class RevealFaceDown(Intent):
    """Reveal the face-down card at `index`."""

    index: int = 0

    intent_type: ClassVar[IntentType] = IntentType.REVEAL_FACE_DOWN

    def payload(self) -> dict:
        return {"index": self.index}

    @classmethod
    def from_payload(cls, player_id: str, payload: dict) -> "RevealFaceDown":
        return cls(player_id=player_id, index=int(payload["index"]))


@dataclass(frozen=True)
class JumpIn(Intent):
    """
    Jump in with every hand card of `rank`.

    `generation` optionally names the window the player saw open; when set
    it must still be the open window.
    """

    rank: int = 0
    generation: Optional[int] = None

    intent_type: ClassVar[IntentType] = IntentType.JUMP_IN

    def payload(self) -> dict:
        return {"rank": self.rank, "generation": self.generation}

    @classmethod
    def from_payload(cls, player_id: str, payload: dict) -> "JumpIn":
        generation = payload.get("generation")
        return cls(
            player_id=player_id,
            rank=int(payload["rank"]),
            generation=int(generation) if generation is not None else None,
        )


INTENT_TYPES: dict[IntentType, type[Intent]] = {
    cls.intent_type: cls
    for cls in (
        DealCards,
        ToggleFaceUp,
        ConfirmFaceUp,
        SwapCards,
        StartGame,
        PlayCards,
        PickupPile,
        RevealFaceDown,
        JumpIn,
    )
}


def parse_intent(d: dict) -> Intent:
    """
    Build an intent from its wire dict.

    Raises:
        ValueError: If the type is unknown or the payload is malformed.
    """
    try:
        intent_type = IntentType(d["type"])
        player_id = d["player_id"]
        return INTENT_TYPES[intent_type].from_payload(str(player_id), d)
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed intent {d!r}: {e}") from e


@dataclass
class IntentEnvelope:
    """
    One entry in a match's intent log.

    Attributes:
        match_id: Match the intent belongs to.
        sequence: Dense per-match log position, starting at 1 (0 until appended).
        intent: The submitted intent.
        submitted_at: When the intent was submitted (UTC).
    """

    match_id: str
    intent: Intent
    sequence: int = 0
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "sequence": self.sequence,
            "intent": self.intent.to_dict(),
            "submitted_at": self.submitted_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> "IntentEnvelope":
        submitted_at = d.get("submitted_at")
        if isinstance(submitted_at, str):
            submitted_at = datetime.fromisoformat(submitted_at)
        return cls(
            match_id=d["match_id"],
            intent=parse_intent(d["intent"]),
            sequence=int(d.get("sequence", 0)),
            submitted_at=submitted_at or datetime.now(timezone.utc),
        )
