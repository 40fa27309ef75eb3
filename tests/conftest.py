"""Shared fixtures: an in-memory recency cache and a mongomock-backed record store."""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

import mongomock
import pytest
import pytest_asyncio

from rotwatch.identity import FileIdentity
from rotwatch.recency_db import RecencyCache
from rotwatch.record_store import MONGO_COLLECTION_NAME, MONGO_DB_NAME, RecordStore
from rotwatch.run_log import RunLog


OLD_CREATION_TIME = datetime(2000, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


def write_file(path: Path, content: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def shift_mtime(path: Path, seconds: int) -> None:
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


def identity_for(path: Path, root: Path) -> FileIdentity:
    return FileIdentity.from_root(path, root, preload=True)


@pytest.fixture
def collection():
    client = mongomock.MongoClient()
    return client[MONGO_DB_NAME][MONGO_COLLECTION_NAME]


@pytest.fixture
def store(collection) -> RecordStore:
    return RecordStore(collection)


@pytest_asyncio.fixture
async def recency():
    cache = await RecencyCache.open(":memory:")
    yield cache
    await cache.close()


@pytest.fixture
def run_log() -> RunLog:
    logger = logging.getLogger("tests.rotwatch")
    return RunLog(logger, logger.getChild("run"))


@pytest.fixture
def old_creation_time(monkeypatch):
    """Pretend every file was created long ago so immutable files are not 'too new'."""
    monkeypatch.setattr("rotwatch.identity._creation_time", lambda st: OLD_CREATION_TIME)
    return OLD_CREATION_TIME
