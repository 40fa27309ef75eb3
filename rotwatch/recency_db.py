from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator

import aiosqlite

from rotwatch.errors import CacheStorageError
from rotwatch.filters import SkipFilter
from rotwatch.identity import FileIdentity
from rotwatch.models import RecencyEntry


TABLE_NAME = "file_verification"
DEFAULT_DB_FILENAME = f"{TABLE_NAME}.db"
DEFAULT_SKIP_WINDOW = timedelta(days=90)
DEFAULT_RETENTION = timedelta(days=365)

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    absolute_file_path TEXT PRIMARY KEY,
    modified_time_s INTEGER,
    last_verified TIMESTAMP
);
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise CacheStorageError(f"Recency database error while {action}: {exc}") from exc


class RecencyCache:
    """Local record of when each absolute path last passed verification.

    ``last_verified`` is stored as integer epoch milliseconds.
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        *,
        skip_filter: SkipFilter | None = None,
        skip_window: timedelta = DEFAULT_SKIP_WINDOW,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = connection
        self._skip_filter = skip_filter or SkipFilter()
        self._skip_window = skip_window
        self._retention = retention
        self._clock = clock
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, db_path: Path | str, **kwargs) -> "RecencyCache":
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with _storage_errors("opening the database"):
            connection = await aiosqlite.connect(db_path)
            await connection.execute(SCHEMA_SQL)
            await connection.commit()
        return cls(connection, **kwargs)

    async def close(self) -> None:
        await self._db.close()

    async def __aenter__(self) -> "RecencyCache":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def count(self) -> int:
        with _storage_errors("counting rows"):
            cursor = await self._db.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}")
            row = await cursor.fetchone()
            await cursor.close()
        return int(row[0]) if row else 0

    async def get(self, absolute_path: Path | str) -> RecencyEntry | None:
        with _storage_errors(f"reading {absolute_path}"):
            cursor = await self._db.execute(
                f"""
                SELECT absolute_file_path, modified_time_s, last_verified
                FROM {TABLE_NAME}
                WHERE absolute_file_path = ?
                """,
                (str(absolute_path),),
            )
            row = await cursor.fetchone()
            await cursor.close()
        if row is None:
            return None
        return RecencyEntry(
            absolute_path=str(row[0]),
            modified_time_s=int(row[1]),
            last_verified=_from_millis(int(row[2])),
        )

    async def should_skip(self, identity: FileIdentity) -> bool:
        if self._skip_filter.matches(str(identity.absolute_path)):
            return True

        entry = await self.get(identity.absolute_path)
        if entry is None:
            return False
        # A changed file is re-checked no matter how recently it last passed.
        if entry.modified_time_s != identity.mtime_s:
            return False
        return entry.last_verified > self._clock() - self._skip_window

    async def record_verification(self, identity: FileIdentity) -> None:
        async with self._write_lock:
            with _storage_errors(f"recording {identity.absolute_path}"):
                await self._db.execute(
                    f"""
                    INSERT OR REPLACE INTO {TABLE_NAME} (absolute_file_path, modified_time_s, last_verified)
                    VALUES (?, ?, ?)
                    """,
                    (str(identity.absolute_path), identity.mtime_s, _to_millis(self._clock())),
                )
                await self._db.commit()

    async def cleanup(self) -> int:
        threshold = _to_millis(self._clock() - self._retention)
        async with self._write_lock:
            with _storage_errors("removing expired rows"):
                cursor = await self._db.execute(
                    f"DELETE FROM {TABLE_NAME} WHERE last_verified < ?",
                    (threshold,),
                )
                await self._db.commit()
                deleted = cursor.rowcount
                await cursor.close()
        return deleted

    async def remove(self, absolute_path: Path | str) -> int:
        async with self._write_lock:
            with _storage_errors(f"removing {absolute_path}"):
                cursor = await self._db.execute(
                    f"DELETE FROM {TABLE_NAME} WHERE absolute_file_path = ?",
                    (str(absolute_path),),
                )
                await self._db.commit()
                deleted = cursor.rowcount
                await cursor.close()
        return deleted
