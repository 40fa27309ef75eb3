from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from rotwatch.errors import CacheStorageError
from rotwatch.filters import SkipFilter
from rotwatch.recency_db import RecencyCache, TABLE_NAME

from conftest import identity_for, shift_mtime, write_file


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.mark.asyncio
async def test_unknown_file_is_not_skipped(recency: RecencyCache, tmp_path: Path):
    identity = identity_for(write_file(tmp_path / "a.txt", b"abc"), tmp_path)
    assert await recency.should_skip(identity) is False


@pytest.mark.asyncio
async def test_recently_verified_file_is_skipped(recency: RecencyCache, tmp_path: Path):
    identity = identity_for(write_file(tmp_path / "a.txt", b"abc"), tmp_path)

    await recency.record_verification(identity)

    assert await recency.should_skip(identity) is True
    entry = await recency.get(identity.absolute_path)
    assert entry is not None
    assert entry.modified_time_s == identity.mtime_s
    assert datetime.now(timezone.utc) - entry.last_verified < timedelta(seconds=60)


@pytest.mark.asyncio
async def test_modified_file_is_rechecked(recency: RecencyCache, tmp_path: Path):
    path = write_file(tmp_path / "a.txt", b"abc")
    await recency.record_verification(identity_for(path, tmp_path))

    shift_mtime(path, 5)

    assert await recency.should_skip(identity_for(path, tmp_path)) is False


@pytest.mark.asyncio
async def test_file_outside_skip_window_is_rechecked(tmp_path: Path):
    clock = Clock(datetime(2024, 1, 1, tzinfo=timezone.utc))
    cache = await RecencyCache.open(":memory:", skip_window=timedelta(days=90), clock=clock)
    try:
        identity = identity_for(write_file(tmp_path / "a.txt", b"abc"), tmp_path)
        await cache.record_verification(identity)

        clock.now += timedelta(days=89)
        assert await cache.should_skip(identity) is True

        clock.now += timedelta(days=2)
        assert await cache.should_skip(identity) is False
    finally:
        await cache.close()


@pytest.mark.asyncio
async def test_filtered_paths_skip_without_cache_row(recency: RecencyCache, tmp_path: Path):
    staged = identity_for(write_file(tmp_path / ".stversions" / "a.txt", b"abc"), tmp_path)
    temporary = identity_for(write_file(tmp_path / "docs" / "upload.tmp", b"abc"), tmp_path)

    assert await recency.should_skip(staged) is True
    assert await recency.should_skip(temporary) is True
    assert await recency.count() == 0


@pytest.mark.asyncio
async def test_custom_filter_replaces_defaults(tmp_path: Path):
    cache = await RecencyCache.open(":memory:", skip_filter=SkipFilter(prefixes=("@eaDir",), suffixes=()))
    try:
        synology = identity_for(write_file(tmp_path / "@eaDir" / "thumb.jpg", b"x"), tmp_path)
        temporary = identity_for(write_file(tmp_path / "docs" / "upload.tmp", b"x"), tmp_path)
        assert await cache.should_skip(synology) is True
        assert await cache.should_skip(temporary) is False
    finally:
        await cache.close()


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_rows(tmp_path: Path):
    clock = Clock(datetime(2024, 1, 1, tzinfo=timezone.utc))
    cache = await RecencyCache.open(":memory:", retention=timedelta(days=365), clock=clock)
    try:
        old = identity_for(write_file(tmp_path / "old.txt", b"old"), tmp_path)
        await cache.record_verification(old)

        clock.now += timedelta(days=300)
        fresh = identity_for(write_file(tmp_path / "fresh.txt", b"fresh"), tmp_path)
        await cache.record_verification(fresh)

        clock.now += timedelta(days=100)
        assert await cache.cleanup() == 1
        assert await cache.get(old.absolute_path) is None
        assert await cache.get(fresh.absolute_path) is not None
        assert await cache.count() == 1
    finally:
        await cache.close()


@pytest.mark.asyncio
async def test_remove_single_row(recency: RecencyCache, tmp_path: Path):
    identity = identity_for(write_file(tmp_path / "a.txt", b"abc"), tmp_path)
    await recency.record_verification(identity)

    assert await recency.remove(identity.absolute_path) == 1
    assert await recency.remove(identity.absolute_path) == 0
    assert await recency.should_skip(identity) is False


@pytest.mark.asyncio
async def test_rows_persist_across_connections(tmp_path: Path):
    db_path = tmp_path / "state" / "file_verification.db"
    identity = identity_for(write_file(tmp_path / "data" / "a.txt", b"abc"), tmp_path / "data")

    async with await RecencyCache.open(db_path) as cache:
        await cache.record_verification(identity)

    async with await RecencyCache.open(db_path) as cache:
        assert await cache.should_skip(identity) is True


@pytest.mark.asyncio
async def test_storage_errors_are_raised(recency: RecencyCache, tmp_path: Path):
    identity = identity_for(write_file(tmp_path / "a.txt", b"abc"), tmp_path)
    await recency._db.execute(f"DROP TABLE {TABLE_NAME}")

    with pytest.raises(CacheStorageError):
        await recency.should_skip(identity)
    with pytest.raises(CacheStorageError):
        await recency.record_verification(identity)
