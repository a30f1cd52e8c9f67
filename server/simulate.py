"""
Shithead AI Simulation Runner

Runs AI-vs-AI games and reports statistics.
No timers, transport or host needed - runs games directly on the state machine.

Usage:
    python simulate.py [num_games] [num_players] [seed]
    python simulate.py detail [num_players] [seed]

Examples:
    python simulate.py 10        # Run 10 games with 4 players each
    python simulate.py 50 2      # Run 50 games with 2 players each
    python simulate.py detail 3  # Play one 3-player game turn by turn
"""

import random
import sys
from typing import Optional

from ai import JUMP_IN_CHANCE, PLAY_ALL_CHANCE, ShitheadAI
from constants import DEFAULT_PLAYER_NAMES, rank_label
from game import Game, GamePhase, Player
from models.events import EventType, GameEvent
from models.intents import Intent, PickupPile, PlayCards, RevealFaceDown

# Safety limit per game
MAX_TURNS = 1000


class SimulationStats:
    """Track simulation statistics."""

    def __init__(self):
        self.games_played = 0
        self.games_stalled = 0
        self.total_turns = 0
        self.player_wins: dict[str, int] = {}
        self.decisions: dict[str, dict] = {}  # player -> {action: count}
        self.burns: dict[str, int] = {}       # reason -> count
        self.pickups = 0
        self.forced_pickups = 0
        self.jump_ins = 0

    def record_game(self, winner_name: Optional[str], turns: int):
        self.games_played += 1
        self.total_turns += turns
        if winner_name is None:
            self.games_stalled += 1
            return
        self.player_wins[winner_name] = self.player_wins.get(winner_name, 0) + 1

    def record_turn(self, player_name: str, action: str):
        actions = self.decisions.setdefault(player_name, {})
        actions[action] = actions.get(action, 0) + 1

    def record_events(self, events: list[GameEvent]):
        for event in events:
            if event.event_type == EventType.BURNED:
                reason = event.data.get("reason", "unknown")
                self.burns[reason] = self.burns.get(reason, 0) + 1
            elif event.event_type == EventType.PICKED_UP:
                if event.data.get("forced"):
                    self.forced_pickups += 1
                else:
                    self.pickups += 1
            elif event.event_type == EventType.JUMPED_IN:
                self.jump_ins += 1

    def report(self) -> str:
        lines = [
            "=" * 50,
            "SIMULATION RESULTS",
            "=" * 50,
            f"Games played: {self.games_played}",
            f"Games stalled (hit {MAX_TURNS} turns): {self.games_stalled}",
            f"Total turns: {self.total_turns}",
            f"Avg turns/game: {self.total_turns / max(1, self.games_played):.1f}",
            "",
            "WIN RATES:",
        ]

        total_wins = sum(self.player_wins.values())
        for name, wins in sorted(self.player_wins.items(), key=lambda x: -x[1]):
            pct = wins / max(1, total_wins) * 100
            lines.append(f"  {name}: {wins} wins ({pct:.1f}%)")

        lines.append("")
        lines.append("PILE:")
        for reason, count in sorted(self.burns.items()):
            lines.append(f"  Burns ({reason}): {count}")
        lines.append(f"  Pickups: {self.pickups}")
        lines.append(f"  Forced pickups (bad reveal): {self.forced_pickups}")
        lines.append(f"  Jump-ins: {self.jump_ins}")

        lines.append("")
        lines.append("DECISION BREAKDOWN:")
        for name, actions in sorted(self.decisions.items()):
            total = sum(actions.values())
            lines.append(f"  {name}:")
            for action, count in sorted(actions.items()):
                pct = count / max(1, total) * 100
                lines.append(f"    {action}: {count} ({pct:.1f}%)")

        return "\n".join(lines)


def create_cpu_players(num_players: int) -> list[Player]:
    """Create CPU seats with default names."""
    return [
        Player(id=f"cpu_{i}", name=DEFAULT_PLAYER_NAMES[i], is_ai=True)
        for i in range(num_players)
    ]


def describe(intent: Intent) -> str:
    if isinstance(intent, PlayCards):
        return f"play {len(intent.card_ids)} card(s)"
    if isinstance(intent, RevealFaceDown):
        return "reveal"
    if isinstance(intent, PickupPile):
        return "pickup"
    return intent.intent_type.value


def apply_move(game: Game, intent: Intent) -> bool:
    if isinstance(intent, PlayCards):
        return game.play_cards(intent.player_id, list(intent.card_ids))
    if isinstance(intent, RevealFaceDown):
        return game.reveal_face_down(intent.player_id, intent.index)
    if isinstance(intent, PickupPile):
        return game.pickup_pile(intent.player_id)
    return False


def resolve_jump_in(game: Game, rng: random.Random, chance: float) -> Optional[str]:
    """
    Give every eligible CPU one chance at an open jump-in, in seat order.

    Returns:
        Name of the player who jumped in, if anyone did.
    """
    rank, game.pending_jump_in = game.pending_jump_in, None
    if rank is None:
        return None
    for player in game.eligible_jumpers(rank):
        intent = ShitheadAI.should_jump_in(player, rank, rng, chance)
        if intent and game.jump_in(player.id, rank):
            return player.name
    return None


def run_game(
    players: list[Player],
    stats: SimulationStats,
    rng: random.Random,
    play_all_chance: float = PLAY_ALL_CHANCE,
    jump_in_chance: float = JUMP_IN_CHANCE,
    verbose: bool = False,
) -> Optional[str]:
    """Run a complete game. Returns the winner's name (None if stalled)."""

    game = Game(match_id="simulation")
    game.deal(players, rng=rng)
    game.start_game()
    stats.record_events(game.drain_events())

    turn = 0
    while game.state.phase == GamePhase.PLAYING and turn < MAX_TURNS:
        current = game.current_player()
        intent = ShitheadAI.choose_move(game.state, current, rng, play_all_chance)
        if intent is None or not apply_move(game, intent):
            raise RuntimeError(f"CPU move rejected for {current.name}: {game.last_rejection}")

        action = describe(intent)
        stats.record_turn(current.name, action.split(" ")[0])

        jumper = resolve_jump_in(game, rng, jump_in_chance)
        if verbose:
            pile = game.state.pile
            top = rank_label(pile[-1].rank) if pile else "empty"
            print(f"  Turn {turn + 1}: {current.name} - {action} (pile top: {top}, {len(pile)} cards)")
            if jumper:
                print(f"    >>> {jumper} jumped in!")

        stats.record_events(game.drain_events())
        turn += 1

    winner = game.state.get_player(game.state.winner) if game.state.winner else None
    stats.record_game(winner.name if winner else None, turn)
    return winner.name if winner else None


def run_simulation(
    num_games: int = 10,
    num_players: int = 4,
    seed: Optional[int] = None,
    verbose: bool = True,
) -> SimulationStats:
    """Run multiple games and report statistics."""

    print(f"\nRunning {num_games} games with {num_players} players each...")
    print("=" * 50)

    rng = random.Random(seed)
    stats = SimulationStats()

    for i in range(num_games):
        players = create_cpu_players(num_players)
        winner = run_game(players, stats, rng)
        if verbose:
            print(f"Game {i + 1}/{num_games}: winner {winner or '(stalled)'}")

    print("\n")
    print(stats.report())
    return stats


def run_detailed_game(num_players: int = 4, seed: Optional[int] = None):
    """Run a single game with detailed output."""

    print(f"\nRunning detailed game with {num_players} players...")
    print("=" * 50)

    rng = random.Random(seed)
    stats = SimulationStats()
    players = create_cpu_players(num_players)
    winner = run_game(players, stats, rng, verbose=True)

    print("\n" + "=" * 50)
    print(f"Winner: {winner or '(stalled)'}")
    print(stats.report())


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "detail":
        # Detailed single game
        num_players = int(sys.argv[2]) if len(sys.argv) > 2 else 4
        seed = int(sys.argv[3]) if len(sys.argv) > 3 else None
        run_detailed_game(num_players, seed)
    else:
        # Batch simulation
        num_games = int(sys.argv[1]) if len(sys.argv) > 1 else 10
        num_players = int(sys.argv[2]) if len(sys.argv) > 2 else 4
        seed = int(sys.argv[3]) if len(sys.argv) > 3 else None
        run_simulation(num_games, num_players, seed)
