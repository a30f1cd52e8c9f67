"""
Single-writer owner of one Shithead match.

A Match wraps the Game state machine with everything that happens in real
time around it:

    - applying Intents (the only way state changes), returning ApplyResult
    - the jump-in window and its expiry timer
    - CPU players' thinking and jump-in timers
    - delivering notifications to listeners after each transition
    - versioned snapshots of the canonical state

All mutation happens on the event loop thread, one intent at a time, so a
listener or timer always observes a fully-applied state. Timers re-check
the state they were scheduled against and quietly do nothing when it has
moved on.
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

import rules
from ai import CPU_TIMING, JUMP_IN_CHANCE, PLAY_ALL_CHANCE, ShitheadAI
from config import config
from game import Game, GamePhase, Player
from jump_in import JumpInWindow, OpenWindow
from logging_config import get_logger
from models.events import EventType, GameEvent
from models.intents import (
    ConfirmFaceUp,
    DealCards,
    Intent,
    JumpIn,
    PickupPile,
    PlayCards,
    RevealFaceDown,
    StartGame,
    SwapCards,
    ToggleFaceUp,
)
from models.snapshot import MatchSnapshot
from timers import GenerationTimer

logger = get_logger(__name__)


@dataclass
class MatchOptions:
    """
    Real-time tuning for a running match.

    Attributes:
        jump_in_window_seconds: How long a jump-in window stays open.
        cpu_think_seconds: Fixed delay before a CPU takes its turn.
        cpu_jump_in_delay: (min, max) random delay before a CPU jump-in.
        play_all_chance: Chance a CPU plays every card of its chosen rank.
        jump_in_chance: Chance a CPU takes an open jump-in window.
        drive_cpu: Schedule CPU turns and jump-ins automatically.
        seed: Seed for the match's random source (shuffles and CPU choices).
    """

    jump_in_window_seconds: float = 2.0
    cpu_think_seconds: float = 1.0
    cpu_jump_in_delay: tuple[float, float] = (0.2, 1.2)
    play_all_chance: float = 0.9
    jump_in_chance: float = 0.7
    drive_cpu: bool = True
    seed: Optional[int] = None

    @classmethod
    def from_config(cls) -> "MatchOptions":
        return cls(
            jump_in_window_seconds=config.timing.JUMP_IN_WINDOW_SECONDS,
            cpu_think_seconds=CPU_TIMING["think"],
            cpu_jump_in_delay=CPU_TIMING["jump_in_delay"],
            play_all_chance=PLAY_ALL_CHANCE,
            jump_in_chance=JUMP_IN_CHANCE,
        )


@dataclass
class ApplyResult:
    """
    Outcome of applying one intent.

    A rejected intent left the match untouched; `reason` says why.
    """

    accepted: bool
    reason: Optional[str] = None
    events: list[GameEvent] = field(default_factory=list)

    @classmethod
    def rejected(cls, reason: str) -> "ApplyResult":
        return cls(accepted=False, reason=reason)


EventListener = Callable[[GameEvent], None]
ChangeListener = Callable[["Match"], None]


class Match:
    """
    One match: seats, the Game, and the timers around it.

    Args:
        match_id: Match identifier.
        seats: Players in turn order (only id/name/is_ai are used).
        host_id: Player allowed to deal and start. None lets any seat do it.
        options: Real-time tuning (defaults from config).
        rng: Random source. Built from `options.seed` if omitted.

    Raises:
        ValueError: If the seat count is outside the allowed range or seat
            ids repeat.
    """

    def __init__(
        self,
        match_id: str,
        seats: list[Player],
        host_id: Optional[str] = None,
        options: Optional[MatchOptions] = None,
        rng: Optional[random.Random] = None,
    ):
        if not config.MIN_PLAYERS <= len(seats) <= config.MAX_PLAYERS:
            raise ValueError(
                f"Match needs {config.MIN_PLAYERS}-{config.MAX_PLAYERS} players, got {len(seats)}"
            )
        if len({s.id for s in seats}) != len(seats):
            raise ValueError("Seat ids must be unique")
        if host_id is not None and host_id not in {s.id for s in seats}:
            raise ValueError(f"Host {host_id} is not seated")

        self.match_id = match_id
        self.seats = [Player(id=s.id, name=s.name, is_ai=s.is_ai) for s in seats]
        self.host_id = host_id
        self.options = options or MatchOptions.from_config()
        self.rng = rng or random.Random(self.options.seed)

        self.game = Game(match_id=match_id)
        self.version = 0
        self.applied_sequence = 0
        self.connected_players: list[str] = [s.id for s in self.seats if s.is_ai]

        self.window = JumpInWindow(self.options.jump_in_window_seconds, on_close=self._on_window_closed)
        self._cpu_turn_timer = GenerationTimer("cpu_turn")
        # (phase, current player, transition) the pending CPU turn was scheduled for
        self._cpu_turn_key: Optional[tuple] = None
        self._transitions = 0
        self._cpu_jump_timers: dict[str, GenerationTimer] = {
            s.id: GenerationTimer(f"cpu_jump_in:{s.id}") for s in self.seats if s.is_ai
        }
        # Window generation each CPU jump-in timer was scheduled for
        self._jump_targets: dict[str, int] = {}
        self._event_listeners: list[EventListener] = []
        self._change_listeners: list[ChangeListener] = []
        self._applying = False
        self._closed = False

        self.log = logger.with_context(match_id=match_id)

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, listener: EventListener) -> None:
        """Receive every notification after its transition completed."""
        self._event_listeners.append(listener)

    def on_change(self, listener: ChangeListener) -> None:
        """Be called with the match after every committed change."""
        self._change_listeners.append(listener)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def state(self):
        return self.game.state

    @property
    def is_closed(self) -> bool:
        return self._closed

    def seat(self, player_id: str) -> Optional[Player]:
        return next((s for s in self.seats if s.id == player_id), None)

    def snapshot(self) -> MatchSnapshot:
        """Canonical state at the current version."""
        window = self.window.current
        return MatchSnapshot(
            match_id=self.match_id,
            version=self.version,
            applied_sequence=self.applied_sequence,
            host_id=self.host_id,
            connected_players=list(self.connected_players),
            state=self.game.state.to_dict() if self.game.state else None,
            jump_in=window.to_dict() if window else None,
        )

    def restore(self, snapshot: MatchSnapshot) -> None:
        """
        Adopt a published snapshot as the current state.

        Used by a host taking over a match. An open jump-in window is not
        carried over since its timer did not survive.
        """
        self.window.shutdown()
        self.game.state = snapshot.game_state()
        self.game.pending_jump_in = None
        self.version = snapshot.version
        self.applied_sequence = snapshot.applied_sequence
        self.connected_players = list(snapshot.connected_players)
        if snapshot.host_id:
            self.host_id = snapshot.host_id
        self._transitions += 1
        self.log.info(f"Restored match at version {self.version}, sequence {self.applied_sequence}")
        self._schedule_cpu()

    # -------------------------------------------------------------------------
    # Presence
    # -------------------------------------------------------------------------

    def connect(self, player_id: str) -> bool:
        if not self.seat(player_id) or player_id in self.connected_players:
            return False
        self.connected_players.append(player_id)
        self._commit()
        return True

    def disconnect(self, player_id: str) -> bool:
        if player_id not in self.connected_players:
            return False
        self.connected_players.remove(player_id)
        self._commit()
        return True

    # -------------------------------------------------------------------------
    # Applying intents
    # -------------------------------------------------------------------------

    def apply(self, intent: Intent) -> ApplyResult:
        """
        Validate and apply one intent against the current state.

        Illegal intents are dropped: the state is untouched and the result
        carries the reason. Nothing here raises for a bad intent.
        """
        if self._closed:
            return self._rejected(intent, "match_closed")
        if not self.seat(intent.player_id):
            return self._rejected(intent, "unknown_player")

        self._applying = True
        try:
            reason = self._dispatch(intent)
        finally:
            self._applying = False

        if reason:
            return self._rejected(intent, reason)

        self._transitions += 1
        self.log.debug(
            f"Applied {intent.intent_type.value}",
            extra={"player_id": intent.player_id, "intent": intent.intent_type.value},
        )
        events = self._commit()
        return ApplyResult(accepted=True, events=events)

    def _rejected(self, intent: Intent, reason: str) -> ApplyResult:
        self.log.debug(
            f"Dropped {intent.intent_type.value}: {reason}",
            extra={"player_id": intent.player_id, "intent": intent.intent_type.value},
        )
        return ApplyResult.rejected(reason)

    def _dispatch(self, intent: Intent) -> Optional[str]:
        """Apply `intent` to the game. Returns a rejection reason or None."""
        game = self.game

        if isinstance(intent, DealCards):
            if not self._may_direct(intent.player_id):
                return "not_host"
            if game.state and game.state.phase != GamePhase.FINISHED:
                return "game_in_progress"
            try:
                game.deal(self.seats, rng=self.rng)
            except ValueError as e:
                self.log.warning(f"Deal refused: {e}")
                return "bad_seat_count"
            self._cancel_timers()
            self.window.shutdown()
            self.log.info(f"Dealt {len(self.seats)}-player game")
            return None

        if isinstance(intent, StartGame):
            if not self._may_direct(intent.player_id):
                return "not_host"
            ok = game.start_game()
        elif isinstance(intent, ToggleFaceUp):
            ok = game.toggle_face_up(intent.player_id, intent.card_id)
        elif isinstance(intent, ConfirmFaceUp):
            ok = game.confirm_face_up(intent.player_id)
        elif isinstance(intent, SwapCards):
            ok = game.swap_cards(intent.player_id, intent.hand_card_id, intent.face_up_card_id)
        elif isinstance(intent, PlayCards):
            ok = game.play_cards(intent.player_id, list(intent.card_ids))
        elif isinstance(intent, RevealFaceDown):
            ok = game.reveal_face_down(intent.player_id, intent.index)
        elif isinstance(intent, PickupPile):
            ok = game.pickup_pile(intent.player_id)
        elif isinstance(intent, JumpIn):
            if game.state and game.state.phase == GamePhase.FINISHED:
                return "game_finished"
            stale = self.window.check(intent.rank, intent.generation)
            if stale:
                return stale
            ok = game.jump_in(intent.player_id, intent.rank)
            if ok:
                self.window.consume()
        else:
            return "unknown_intent"

        return None if ok else (game.last_rejection or "rejected")

    def _may_direct(self, player_id: str) -> bool:
        return self.host_id is None or player_id == self.host_id

    # -------------------------------------------------------------------------
    # Committing transitions
    # -------------------------------------------------------------------------

    def _update_window(self) -> None:
        """Open, keep or close the jump-in window to match the new state."""
        state = self.game.state
        rank, self.game.pending_jump_in = self.game.pending_jump_in, None

        if not state or state.phase != GamePhase.PLAYING:
            if self.window.is_open:
                self.window.close("game_finished" if state and state.phase == GamePhase.FINISHED else "pile_changed")
            return

        if rank is not None:
            window = self.window.open(rank)
            self.game.emit(
                EventType.JUMP_IN_OPENED,
                rank=window.rank,
                generation=window.generation,
                seconds=self.window.duration,
            )
        elif self.window.is_open and rules.jump_in_rank(state.pile) != self.window.current.rank:
            self.window.close("pile_changed")

    def _commit(self) -> list[GameEvent]:
        """Bump the version, deliver notifications and reschedule CPU players."""
        self._update_window()
        events = self.game.drain_events()

        for event in events:
            for listener in list(self._event_listeners):
                try:
                    listener(event)
                except Exception:
                    self.log.exception(f"Event listener failed on {event.event_type.value}")
        self.touch()

        self._schedule_cpu()
        return events

    def touch(self) -> None:
        """Publish-worthy change with no game transition (e.g. a consumed but dropped intent)."""
        self.version += 1
        for listener in list(self._change_listeners):
            try:
                listener(self)
            except Exception:
                self.log.exception("Change listener failed")

    def _on_window_closed(self, window: OpenWindow, reason: str) -> None:
        self.game.emit(
            EventType.JUMP_IN_CLOSED,
            rank=window.rank,
            generation=window.generation,
            reason=reason,
        )
        # Expiry fires from the timer, outside any intent
        if reason == "expired" and not self._applying and not self._closed:
            self._commit()

    # -------------------------------------------------------------------------
    # CPU players
    # -------------------------------------------------------------------------

    def _schedule_cpu(self) -> None:
        if self._closed or not self.options.drive_cpu:
            return
        state = self.game.state
        if not state or state.phase == GamePhase.FINISHED:
            self._cancel_timers()
            return

        if state.phase == GamePhase.SWAPPING and all(s.is_ai for s in self.seats):
            self._schedule_cpu_turn(self._run_cpu_start)
        elif state.phase == GamePhase.PLAYING and state.current_player().is_ai:
            self._schedule_cpu_turn(self._run_cpu_turn)
        else:
            self._cpu_turn_key = None
            self._cpu_turn_timer.cancel()

        window = self.window.current
        if not window:
            return
        low, high = self.options.cpu_jump_in_delay
        for player in self.game.eligible_jumpers(window.rank):
            timer = self._cpu_jump_timers.get(player.id)
            if timer is None or self._jump_targets.get(player.id) == window.generation:
                continue
            self._jump_targets[player.id] = window.generation
            delay = self.rng.uniform(low, high)
            timer.schedule(
                delay,
                lambda _gen, pid=player.id, wgen=window.generation: self._run_cpu_jump_in(pid, wgen),
            )

    def _schedule_cpu_turn(self, callback) -> None:
        """Start the thinking delay unless it is already running for this turn."""
        state = self.game.state
        key = (state.phase, state.current_player_index, self._transitions)
        if self._cpu_turn_timer.pending and self._cpu_turn_key == key:
            return
        self._cpu_turn_key = key
        self._cpu_turn_timer.schedule(self.options.cpu_think_seconds, callback)

    def _run_cpu_start(self, _generation: int) -> None:
        self.apply(StartGame(player_id=self.host_id or self.seats[0].id))

    def _run_cpu_turn(self, _generation: int) -> None:
        state = self.game.state
        if not state or state.phase != GamePhase.PLAYING:
            return
        player = state.current_player()
        if not player.is_ai:
            return

        intent = ShitheadAI.choose_move(state, player, self.rng, self.options.play_all_chance)
        if intent is None:
            return
        result = self.apply(intent)
        if not result.accepted:
            self.log.warning(
                f"CPU move rejected: {result.reason}",
                extra={"player_id": player.id, "intent": intent.intent_type.value},
            )

    def _run_cpu_jump_in(self, player_id: str, window_generation: int) -> None:
        window = self.window.current
        if not window or window.generation != window_generation:
            return
        player = self.game.state.get_player(player_id)
        intent = ShitheadAI.should_jump_in(
            player,
            window.rank,
            self.rng,
            self.options.jump_in_chance,
            generation=window.generation,
        )
        if intent:
            self.apply(intent)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def _cancel_timers(self) -> None:
        self._cpu_turn_key = None
        self._cpu_turn_timer.cancel()
        for timer in self._cpu_jump_timers.values():
            timer.cancel()

    def shutdown(self) -> None:
        """Cancel every pending timer. The match accepts nothing afterwards."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timers()
        self.window.shutdown()
        self.log.info("Match closed")
