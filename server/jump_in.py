"""
Jump-in window for Shithead.

When three cards of one rank land on top of the pile, any player holding a
card of that rank may complete the four-of-a-kind out of turn for a short
real-time interval. At most one window is open at a time; opening a new one
supersedes the old, and a superseded, consumed or expired window's timer can
never act again (see timers.GenerationTimer).

Only the first valid jump-in consumes the window. Later attempts against the
same window are rejected as stale.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from timers import GenerationTimer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenWindow:
    """
    An open jump-in window.

    Attributes:
        rank: Rank that may be jumped in with.
        generation: Window identity; jump-in attempts may quote it.
        deadline: Event-loop time at which the window expires.
    """

    rank: int
    generation: int
    deadline: float

    def to_dict(self) -> dict:
        return {"rank": self.rank, "generation": self.generation}


class JumpInWindow:
    """
    Holds the optional open window and its expiry timer.

    Args:
        duration: Window length in seconds.
        on_close: Called with (window, reason) whenever a window closes.
            Reasons: "expired", "superseded", "jumped_in", "pile_changed",
            "game_finished".
    """

    def __init__(
        self,
        duration: float,
        on_close: Optional[Callable[[OpenWindow, str], None]] = None,
    ):
        self.duration = duration
        self._on_close = on_close
        self._timer = GenerationTimer("jump_in")
        self._current: Optional[OpenWindow] = None

    @property
    def current(self) -> Optional[OpenWindow]:
        return self._current

    @property
    def is_open(self) -> bool:
        return self._current is not None

    def open(self, rank: int) -> OpenWindow:
        """Open a window for `rank`, superseding any window still pending."""
        if self._current:
            self.close("superseded")

        generation = self._timer.schedule(self.duration, self._expire)
        deadline = asyncio.get_running_loop().time() + self.duration
        self._current = OpenWindow(rank=rank, generation=generation, deadline=deadline)
        logger.debug(f"Jump-in window {generation} opened for rank {rank}")
        return self._current

    def check(self, rank: int, generation: Optional[int] = None) -> Optional[str]:
        """
        Validate a jump-in attempt against the open window.

        Returns:
            None if the attempt targets the open window, otherwise the
            rejection reason ("no_window" or "stale_window").
        """
        if not self._current:
            return "no_window"
        if rank != self._current.rank:
            return "stale_window"
        if generation is not None and generation != self._current.generation:
            return "stale_window"
        return None

    def consume(self) -> None:
        """Close the window because a jump-in succeeded."""
        self.close("jumped_in")

    def close(self, reason: str) -> None:
        """Close the open window (if any) and cancel its timer."""
        window = self._current
        if not window:
            return
        self._current = None
        self._timer.cancel()
        logger.debug(f"Jump-in window {window.generation} closed: {reason}")
        if self._on_close:
            self._on_close(window, reason)

    def shutdown(self) -> None:
        """Drop the window and cancel its timer without notifying."""
        self._current = None
        self._timer.cancel()

    def _expire(self, generation: int) -> None:
        if self._current and self._current.generation == generation:
            self.close("expired")
