"""
Notification events for Shithead.

Events describe what a completed transition did (a play, a burn, a pickup,
a jump-in window opening, ...). They are produced by the Game state machine
and the jump-in window and handed to listeners only after the transition
has been fully applied, so a presentation layer can trigger rendering or
sound from them without ever observing a half-applied state.

Events are informational: nothing flows back from a listener into the
engine.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """All notification types emitted by a match."""

    # Lifecycle events
    DEALT = "dealt"
    PHASE_CHANGED = "phase_changed"
    GAME_FINISHED = "game_finished"

    # Gameplay events
    PLAYED = "played"
    FACE_DOWN_REVEALED = "face_down_revealed"
    BURNED = "burned"
    PICKED_UP = "picked_up"
    JUMPED_IN = "jumped_in"

    # Jump-in window
    JUMP_IN_OPENED = "jump_in_opened"
    JUMP_IN_CLOSED = "jump_in_closed"


@dataclass
class GameEvent:
    """
    A single notification.

    Attributes:
        event_type: The type of event (from EventType enum).
        match_id: Match this event belongs to.
        sequence_num: Monotonically increasing sequence number within the match.
        timestamp: When the event occurred (UTC).
        player_id: ID of player who triggered the event (if applicable).
        data: Event-specific payload data.
    """

    event_type: EventType
    match_id: str
    sequence_num: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    player_id: Optional[str] = None
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize event to dictionary."""
        return {
            "event_type": self.event_type.value,
            "match_id": self.match_id,
            "sequence_num": self.sequence_num,
            "timestamp": self.timestamp.isoformat(),
            "player_id": self.player_id,
            "data": self.data,
        }

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> "GameEvent":
        """Deserialize event from dictionary."""
        timestamp = d["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)

        return cls(
            event_type=EventType(d["event_type"]),
            match_id=d["match_id"],
            sequence_num=d["sequence_num"],
            timestamp=timestamp,
            player_id=d.get("player_id"),
            data=d.get("data", {}),
        )
