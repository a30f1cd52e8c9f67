"""
Published canonical state of a match.

The host publishes a MatchSnapshot after every transition it applies.
Non-host participants render the newest snapshot they have seen and never
mutate it. `version` increases with every published change, so a client
receiving snapshots out of order (at-least-once delivery) keeps only the
newest one. `applied_sequence` records how far into the intent log the
host had consumed, which is what a recovering host resumes from.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from game import GameState


@dataclass
class MatchSnapshot:
    """
    Canonical match state at one version.

    Attributes:
        match_id: Match identifier.
        version: Monotonic per-match publish counter.
        applied_sequence: Last intent log sequence the host consumed.
        host_id: Player id of the host participant.
        connected_players: Player ids currently connected to the match.
        state: Serialized GameState (None before the first deal).
        jump_in: Open jump-in window as {"rank", "generation"}, if any.
        published_at: When the snapshot was produced (UTC).
    """

    match_id: str
    version: int = 0
    applied_sequence: int = 0
    host_id: Optional[str] = None
    connected_players: list[str] = field(default_factory=list)
    state: Optional[dict] = None
    jump_in: Optional[dict] = None
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def game_state(self) -> Optional["GameState"]:
        """Decode the embedded GameState."""
        from game import GameState

        if self.state is None:
            return None
        return GameState.from_dict(self.state)

    def is_newer_than(self, other: Optional["MatchSnapshot"]) -> bool:
        return other is None or self.version > other.version

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "version": self.version,
            "applied_sequence": self.applied_sequence,
            "host_id": self.host_id,
            "connected_players": list(self.connected_players),
            "state": self.state,
            "jump_in": self.jump_in,
            "published_at": self.published_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> "MatchSnapshot":
        published_at = d.get("published_at")
        if isinstance(published_at, str):
            published_at = datetime.fromisoformat(published_at)
        return cls(
            match_id=d["match_id"],
            version=int(d.get("version", 0)),
            applied_sequence=int(d.get("applied_sequence", 0)),
            host_id=d.get("host_id"),
            connected_players=list(d.get("connected_players", [])),
            state=d.get("state"),
            jump_in=d.get("jump_in"),
            published_at=published_at or datetime.now(timezone.utc),
        )

    @classmethod
    def from_json(cls, data: str) -> "MatchSnapshot":
        return cls.from_dict(json.loads(data))
