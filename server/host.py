#!/usr/bin/env python3
"""
Run the authoritative host for one Shithead match.

The host consumes the match's intent log (PostgreSQL), applies every intent
through its Match, drives CPU players and the jump-in window, and publishes
canonical snapshots (Redis). If a snapshot for the match already exists the
host resumes from it.

Seats are given in turn order. The first seat is the host player. Prefix a
name with "cpu:" for a CPU seat.

Usage:
    python host.py <match_id> <seat> [<seat> ...]

Example:
    python host.py friday-night alice bob cpu:Carol
"""

import asyncio
import sys

from config import config
from game import GamePhase, Player
from logging_config import get_logger, match_id_var, setup_logging
from match import Match, MatchOptions
from models.events import GameEvent
from replication import HostReplicator
from stores.durable import DurableTransport
from stores.transport import TransportError

logger = get_logger(__name__)


def parse_seats(args: list[str]) -> list[Player]:
    """Turn "name" / "cpu:Name" arguments into seats."""
    seats = []
    for i, arg in enumerate(args):
        if arg.startswith("cpu:"):
            name = arg[len("cpu:"):] or f"CPU {i}"
            seats.append(Player(id=f"cpu_{i}", name=name, is_ai=True))
        else:
            seats.append(Player(id=arg.lower(), name=arg))
    return seats


def log_event(event: GameEvent) -> None:
    logger.info(
        f"{event.event_type.value} {event.data}",
        extra={"player_id": event.player_id},
    )


async def run_host(match_id: str, seats: list[Player]) -> None:
    """Host one match until it finishes or the process is interrupted."""
    if not config.POSTGRES_URL:
        print("Error: POSTGRES_URL not configured in environment or .env file")
        sys.exit(1)

    match_id_var.set(match_id)
    transport = await DurableTransport.create(config)
    match = Match(match_id, seats, host_id=seats[0].id, options=MatchOptions.from_config())
    match.add_listener(log_event)
    replicator = HostReplicator(match, transport)

    try:
        await transport.intent_store.create_match(match_id, match.host_id, [s.id for s in seats])
        if await replicator.recover():
            logger.info(f"Resumed match at version {match.version}")
        await replicator.start()

        while not (match.state and match.state.phase == GamePhase.FINISHED):
            await asyncio.sleep(1)

        winner = match.state.winner
        logger.info(f"Match finished, winner {winner}")
        # Let the final snapshot go out before closing
        while replicator.published_version < match.version:
            await asyncio.sleep(0.1)
        await transport.intent_store.complete_match(match_id, winner)
        await transport.close_match(match_id)
    except TransportError as e:
        logger.error(f"Transport failure, host stopping: {e}")
        raise
    finally:
        await replicator.stop()
        match.shutdown()
        await transport.close()


def main():
    if len(sys.argv) < 4:
        print(__doc__)
        sys.exit(1)

    match_id = sys.argv[1]
    seats = parse_seats(sys.argv[2:])
    if not config.MIN_PLAYERS <= len(seats) <= config.MAX_PLAYERS:
        print(f"Error: need {config.MIN_PLAYERS}-{config.MAX_PLAYERS} seats")
        sys.exit(1)

    setup_logging(config.LOG_LEVEL, config.ENVIRONMENT)
    try:
        asyncio.run(run_host(match_id, seats))
    except KeyboardInterrupt:
        print("\nHost stopped")


if __name__ == "__main__":
    main()
