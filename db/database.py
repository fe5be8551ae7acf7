import asyncio
import aiosqlite
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Any, Union
import logging

from models import ImageRating, PlayerRating, RoundRecord

logger = logging.getLogger(__name__)

PLAYER = "player"
IMAGE = "image"

# kind -> (table, key column, counter column)
_RATING_TABLES = {
    PLAYER: ("player_ratings", "player_id", "games_played"),
    IMAGE: ("image_ratings", "image_id", "attempts"),
}


def _rating_table(kind: str) -> tuple[str, str, str]:
    try:
        return _RATING_TABLES[kind]
    except KeyError:
        raise ValueError(f"Unknown rating kind: {kind!r}") from None


class Database:
    """Async SQLite database wrapper.

    All statements share one connection. A task inside ``transaction()``
    has it to itself; every other task waits until that transaction has
    committed or rolled back.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._transaction_owner: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _run_migrations(self) -> None:
        """Run all SQL migration files."""
        # Create migrations tracking table
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS _migrations (
                name TEXT PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await self._connection.commit()

        migrations_dir = Path(__file__).parent / "migrations"

        for migration_file in sorted(migrations_dir.glob("*.sql")):
            cursor = await self._connection.execute(
                "SELECT 1 FROM _migrations WHERE name = ?",
                (migration_file.name,)
            )
            if await cursor.fetchone():
                logger.debug(f"Skipping already applied migration: {migration_file.name}")
                continue

            logger.info(f"Running migration: {migration_file.name}")
            sql = migration_file.read_text()
            await self._connection.executescript(sql)
            await self._connection.execute(
                "INSERT INTO _migrations (name) VALUES (?)",
                (migration_file.name,)
            )
            await self._connection.commit()

    def _in_transaction(self) -> bool:
        return self._transaction_owner is not None and self._transaction_owner is asyncio.current_task()

    @asynccontextmanager
    async def _access(self) -> AsyncIterator[bool]:
        """Yield whether the caller should commit its own writes."""
        if self._in_transaction():
            yield False
            return
        async with self._lock:
            try:
                yield True
            except Exception:
                # Don't leave a failed statement's implicit transaction open
                await self._connection.rollback()
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed statements as one write transaction.

        ``BEGIN IMMEDIATE`` takes SQLite's write lock up front, so other
        connections can't interleave a write between our reads and writes.
        Any exception, cancellation included, rolls everything back.
        """
        async with self._lock:
            self._transaction_owner = asyncio.current_task()
            try:
                await self._connection.execute("BEGIN IMMEDIATE")
                yield
                await self._connection.commit()
            except BaseException:
                await self._connection.rollback()
                raise
            finally:
                self._transaction_owner = None

    async def execute(
        self, query: str, params: tuple = ()
    ) -> aiosqlite.Cursor:
        """Execute a query and return the cursor."""
        async with self._access() as autocommit:
            cursor = await self._connection.execute(query, params)
            if autocommit:
                await self._connection.commit()
        return cursor

    async def fetch_one(
        self, query: str, params: tuple = ()
    ) -> Optional[aiosqlite.Row]:
        """Fetch a single row."""
        async with self._access():
            cursor = await self._connection.execute(query, params)
            return await cursor.fetchone()

    async def fetch_all(
        self, query: str, params: tuple = ()
    ) -> list[aiosqlite.Row]:
        """Fetch all rows."""
        async with self._access():
            cursor = await self._connection.execute(query, params)
            return await cursor.fetchall()

    async def fetch_value(
        self, query: str, params: tuple = ()
    ) -> Optional[Any]:
        """Fetch a single value from the first column of the first row."""
        row = await self.fetch_one(query, params)
        return row[0] if row else None

    # Round history methods

    async def fetch_recent_durations(
        self,
        image_id: Optional[str],
        limit: int,
        exclude_null: bool = True,
    ) -> list[aiosqlite.Row]:
        """Fetch recent used durations, newest first.

        Passing ``image_id=None`` reads across all images. Rows carry
        ``duration_ms`` and ``created_at``.
        """
        clauses = []
        params: list[Any] = []
        if image_id is not None:
            clauses.append("image_id = ?")
            params.append(image_id)
        if exclude_null:
            clauses.append("used_duration_ms IS NOT NULL")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        return await self.fetch_all(
            f"""
            SELECT used_duration_ms AS duration_ms, created_at FROM round_records
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            tuple(params),
        )

    async def has_prior_success(self, player_id: str, image_id: str) -> bool:
        """Check whether a player has already solved an image."""
        result = await self.fetch_value(
            """
            SELECT 1 FROM round_records
            WHERE player_id = ? AND image_id = ? AND outcome = 'success'
            LIMIT 1
            """,
            (player_id, image_id),
        )
        return result is not None

    async def append_round_record(self, record: RoundRecord) -> int:
        """Append a round record. Returns the record ID."""
        cursor = await self.execute(
            """
            INSERT INTO round_records
            (image_id, player_id, display_name, raw_duration_ms, used_duration_ms,
             miss_count, outcome, rated, player_rating_before, player_rating_after,
             image_rating_before, image_rating_after)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.image_id,
                record.player_id,
                record.display_name,
                record.raw_duration_ms,
                record.used_duration_ms,
                record.miss_count,
                record.outcome.value,
                record.rated,
                record.player_rating_before,
                record.player_rating_after,
                record.image_rating_before,
                record.image_rating_after,
            ),
        )
        return cursor.lastrowid

    async def get_round_records(
        self,
        player_id: Optional[str] = None,
        image_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[RoundRecord]:
        """Get round records, newest first, optionally filtered."""
        clauses = []
        params: list[Any] = []
        if player_id is not None:
            clauses.append("player_id = ?")
            params.append(player_id)
        if image_id is not None:
            clauses.append("image_id = ?")
            params.append(image_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        rows = await self.fetch_all(
            f"""
            SELECT * FROM round_records
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            tuple(params),
        )
        return [RoundRecord(**dict(row)) for row in rows]

    # Rating methods

    async def fetch_rating(
        self, kind: str, entity_id: str
    ) -> Optional[Union[PlayerRating, ImageRating]]:
        """Fetch a player or image rating, or None if it doesn't exist yet."""
        table, key, _ = _rating_table(kind)
        row = await self.fetch_one(f"SELECT * FROM {table} WHERE {key} = ?", (entity_id,))
        if row is None:
            return None
        model = PlayerRating if kind == PLAYER else ImageRating
        return model(**dict(row))

    async def insert_rating(
        self,
        kind: str,
        entity_id: str,
        initial: float,
        display_name: Optional[str] = None,
    ) -> None:
        """Create a rating row. A row that already exists is left untouched."""
        table, key, _ = _rating_table(kind)
        if kind == PLAYER:
            await self.execute(
                f"INSERT OR IGNORE INTO {table} ({key}, display_name, rating) VALUES (?, ?, ?)",
                (entity_id, display_name, initial),
            )
        else:
            await self.execute(
                f"INSERT OR IGNORE INTO {table} ({key}, rating) VALUES (?, ?)",
                (entity_id, initial),
            )

    async def update_rating(
        self,
        kind: str,
        entity_id: str,
        delta: float,
        counter_delta: int = 1,
    ) -> Optional[float]:
        """Atomically add ``delta`` to a rating and bump its counter.

        The arithmetic is evaluated by SQLite, so concurrent settlements
        never overwrite each other. Returns the rating after the update,
        or None if the row doesn't exist.
        """
        table, key, counter = _rating_table(kind)
        async with self._access() as autocommit:
            cursor = await self._connection.execute(
                f"""
                UPDATE {table}
                SET rating = rating + ?,
                    {counter} = {counter} + ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE {key} = ?
                RETURNING rating
                """,
                (delta, counter_delta, entity_id),
            )
            row = await cursor.fetchone()
            await cursor.close()
            if autocommit:
                await self._connection.commit()
        return row[0] if row else None

    async def set_display_name(self, player_id: str, display_name: str) -> None:
        """Create or rename a player without touching their rating."""
        await self.execute(
            """
            INSERT INTO player_ratings (player_id, display_name)
            VALUES (?, ?)
            ON CONFLICT(player_id) DO UPDATE SET
                display_name = excluded.display_name,
                updated_at = CURRENT_TIMESTAMP
            WHERE display_name IS NOT excluded.display_name
            """,
            (player_id, display_name),
        )

    # Leaderboard methods

    async def get_leaderboard(self, limit: int = 10) -> list[PlayerRating]:
        """Get the top rated players."""
        rows = await self.fetch_all(
            """
            SELECT * FROM player_ratings
            WHERE games_played > 0
            ORDER BY rating DESC, games_played DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [PlayerRating(**dict(row)) for row in rows]

    async def get_image_leaderboard(
        self, image_id: str, limit: int = 10
    ) -> list[aiosqlite.Row]:
        """Get each player's fastest success on an image, fastest first."""
        return await self.fetch_all(
            """
            SELECT player_id, MAX(display_name) AS display_name,
                   MIN(used_duration_ms) AS best_ms, COUNT(*) AS successes
            FROM round_records
            WHERE image_id = ? AND outcome = 'success'
            GROUP BY player_id
            ORDER BY best_ms ASC
            LIMIT ?
            """,
            (image_id, limit),
        )

    async def get_player_stats(self, player_id: str) -> Optional[PlayerRating]:
        """Get a player's rating row."""
        return await self.fetch_rating(PLAYER, player_id)

    async def get_player_rank(self, player_id: str) -> int:
        """Get a player's rank in the leaderboard."""
        result = await self.fetch_value(
            """
            SELECT COUNT(*) + 1 FROM player_ratings
            WHERE games_played > 0 AND rating > (
                SELECT COALESCE(MAX(rating), 0) FROM player_ratings
                WHERE player_id = ?
            )
            """,
            (player_id,),
        )
        return result or 1

    # Experience methods

    async def award_xp(self, player_id: str, amount: int) -> Optional[int]:
        """Add experience to a player. Returns their new total, or None if unknown."""
        async with self._access() as autocommit:
            cursor = await self._connection.execute(
                """
                UPDATE player_ratings
                SET xp = xp + ?, updated_at = CURRENT_TIMESTAMP
                WHERE player_id = ?
                RETURNING xp
                """,
                (amount, player_id),
            )
            row = await cursor.fetchone()
            await cursor.close()
            if autocommit:
                await self._connection.commit()
        return row[0] if row else None
