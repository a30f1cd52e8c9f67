"""
PostgreSQL-backed intent log for Shithead matches.

The intent log is an append-only record of every intent submitted to a
match. Entries are immutable and numbered densely per match starting at 1;
the host consumes them strictly in sequence order.

Features:
- Optimistic concurrency via unique constraint on (match_id, sequence)
- Automatic retry when two participants race for the same sequence
- Match metadata table recording who hosted and who won
"""

import json
import logging
from datetime import timezone
from typing import Optional

import asyncpg

from models.intents import Intent, IntentEnvelope, parse_intent
from stores.transport import ConcurrencyError, TransportError

logger = logging.getLogger(__name__)

# Attempts at claiming the next sequence before giving up
APPEND_ATTEMPTS = 5


# SQL schema for intent log
SCHEMA_SQL = """
-- Intents table (append-only log)
CREATE TABLE IF NOT EXISTS match_intents (
    id BIGSERIAL PRIMARY KEY,
    match_id VARCHAR(64) NOT NULL,
    sequence INT NOT NULL,
    intent_type VARCHAR(50) NOT NULL,
    player_id VARCHAR(50) NOT NULL,
    intent_data JSONB NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW(),

    -- Ensure intents are ordered and unique per match
    UNIQUE(match_id, sequence)
);

-- Match metadata (denormalized history, not source of truth)
CREATE TABLE IF NOT EXISTS matches (
    id VARCHAR(64) PRIMARY KEY,
    status VARCHAR(20) DEFAULT 'active',  -- active, completed, abandoned
    host_id VARCHAR(50),
    created_at TIMESTAMPTZ DEFAULT NOW(),
    completed_at TIMESTAMPTZ,
    winner_id VARCHAR(50),
    player_ids VARCHAR(50)[] DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_intents_match_seq ON match_intents(match_id, sequence);
CREATE INDEX IF NOT EXISTS idx_intents_player ON match_intents(player_id);
"""


class IntentStore:
    """
    PostgreSQL-backed intent log.

    Uses asyncpg for async database access. Database failures surface as
    TransportError.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @classmethod
    async def create(cls, postgres_url: str) -> "IntentStore":
        """
        Create an IntentStore with a new connection pool.

        Args:
            postgres_url: PostgreSQL connection URL.

        Returns:
            Configured IntentStore instance.
        """
        pool = await asyncpg.create_pool(postgres_url, min_size=2, max_size=10)
        store = cls(pool)
        await store.initialize_schema()
        return store

    async def initialize_schema(self) -> None:
        """Create database tables if they don't exist."""
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Intent store schema initialized")

    async def close(self) -> None:
        """Close the connection pool."""
        await self.pool.close()

    # -------------------------------------------------------------------------
    # Intent Writes
    # -------------------------------------------------------------------------

    async def _insert(self, conn: asyncpg.Connection, envelope: IntentEnvelope) -> None:
        try:
            await conn.execute(
                """
                INSERT INTO match_intents (match_id, sequence, intent_type, player_id, intent_data)
                VALUES ($1, $2, $3, $4, $5)
                """,
                envelope.match_id,
                envelope.sequence,
                envelope.intent.intent_type.value,
                envelope.intent.player_id,
                json.dumps(envelope.intent.to_dict()),
            )
        except asyncpg.UniqueViolationError:
            raise ConcurrencyError(
                f"Intent {envelope.sequence} already exists for match {envelope.match_id}"
            )

    async def append(self, match_id: str, intent: Intent) -> IntentEnvelope:
        """
        Append an intent at the next free sequence.

        Two participants appending at once may race for the same sequence;
        the loser retries with the next one.

        Args:
            match_id: Match identifier.
            intent: The intent to append.

        Returns:
            The stored envelope with its sequence.

        Raises:
            ConcurrencyError: If no sequence could be claimed after retrying.
            TransportError: On any other database failure.
        """
        for attempt in range(1, APPEND_ATTEMPTS + 1):
            try:
                sequence = await self.get_latest_sequence(match_id) + 1
                envelope = IntentEnvelope(match_id=match_id, intent=intent, sequence=sequence)
                async with self.pool.acquire() as conn:
                    await self._insert(conn, envelope)
                return envelope
            except ConcurrencyError as e:
                logger.debug(f"Sequence race on {match_id} (attempt {attempt}): {e}")
            except (asyncpg.PostgresError, OSError) as e:
                raise TransportError(f"Failed to append intent to {match_id}: {e}") from e

        raise ConcurrencyError(f"Could not claim a sequence for match {match_id}")

    # -------------------------------------------------------------------------
    # Intent Reads
    # -------------------------------------------------------------------------

    async def get_intents(self, match_id: str, after_sequence: int = 0) -> list[IntentEnvelope]:
        """
        Get log entries after a sequence.

        Args:
            match_id: Match identifier.
            after_sequence: Exclusive lower bound.

        Returns:
            Entries in sequence order.
        """
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT match_id, sequence, intent_data, created_at
                    FROM match_intents
                    WHERE match_id = $1 AND sequence > $2
                    ORDER BY sequence
                    """,
                    match_id,
                    after_sequence,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise TransportError(f"Failed to read intents for {match_id}: {e}") from e

        return [self._row_to_envelope(row) for row in rows]

    async def get_latest_sequence(self, match_id: str) -> int:
        """
        Get the latest sequence for a match.

        Returns:
            Latest sequence, or 0 if the log is empty.
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT COALESCE(MAX(sequence), 0) as seq
                    FROM match_intents
                    WHERE match_id = $1
                    """,
                    match_id,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise TransportError(f"Failed to read latest sequence for {match_id}: {e}") from e
        return row["seq"]

    # -------------------------------------------------------------------------
    # Match Metadata
    # -------------------------------------------------------------------------

    async def create_match(self, match_id: str, host_id: Optional[str], player_ids: list[str]) -> None:
        """Create a match metadata record (no-op if it exists)."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO matches (id, host_id, player_ids)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    match_id,
                    host_id,
                    player_ids,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise TransportError(f"Failed to record match {match_id}: {e}") from e

    async def complete_match(self, match_id: str, winner_id: Optional[str] = None) -> None:
        """Mark a match as completed."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE matches
                    SET status = 'completed', completed_at = NOW(), winner_id = $2
                    WHERE id = $1
                    """,
                    match_id,
                    winner_id,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise TransportError(f"Failed to complete match {match_id}: {e}") from e

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _row_to_envelope(self, row: asyncpg.Record) -> IntentEnvelope:
        """Convert a database row to an IntentEnvelope."""
        data = row["intent_data"]
        if isinstance(data, str):
            data = json.loads(data)
        return IntentEnvelope(
            match_id=row["match_id"],
            intent=parse_intent(data),
            sequence=row["sequence"],
            submitted_at=row["created_at"].replace(tzinfo=timezone.utc),
        )
