"""Baseline records kept in MongoDB and the reconciliation rules around them.

Every document is one known-good snapshot of a file::

    {_id, file_id, mtime_s, mtime_ns, size, checksum, last_accessed}

``(file_id, mtime_s, mtime_ns)`` is unique. ``last_accessed`` is refreshed each
time a snapshot is matched again, and a TTL index drops snapshots that nobody
has matched for a year. A file on a mutable root collects one snapshot per
modification time; a file on an immutable root is expected to keep its first.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, TypeVar

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import AutoReconnect, DuplicateKeyError

from rotwatch.errors import InvariantViolation
from rotwatch.identity import FileIdentity
from rotwatch.models import BaselineRecord, FileOutcome, Result


MONGO_DB_NAME = "bitrot"
MONGO_COLLECTION_NAME = "files"

ID_KEY = "_id"
FILE_ID_KEY = "file_id"
MTIME_S_KEY = "mtime_s"
MTIME_NS_KEY = "mtime_ns"
SIZE_KEY = "size"
CHECKSUM_KEY = "checksum"
LAST_ACCESSED_KEY = "last_accessed"

BASELINE_TTL_SECONDS = 366 * 24 * 60 * 60
DEFAULT_TOO_NEW = timedelta(days=1)
# Parity sets are regenerated when files are added to an archive folder.
IMMUTABILITY_EXEMPT_SUFFIXES: tuple[str, ...] = (".par2",)

logger = logging.getLogger(__name__)
T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _retry_on_network_error(
    func: Callable[[], T],
    *,
    operation: str,
    max_attempts: int = 3,
    base_delay_seconds: float = 1.0,
) -> T:
    attempt = 1
    while True:
        try:
            return func()
        except AutoReconnect as exc:
            if attempt >= max_attempts:
                raise
            sleep_seconds = base_delay_seconds * (2 ** (attempt - 1))
            logger.warning(
                "%s failed (%s); retrying in %.1fs (attempt %d/%d)",
                operation,
                exc,
                sleep_seconds,
                attempt + 1,
                max_attempts,
            )
            time.sleep(sleep_seconds)
            attempt += 1


def baseline_from_document(document: dict[str, Any]) -> BaselineRecord:
    mtime_ns = document.get(MTIME_NS_KEY)
    return BaselineRecord(
        object_id=document[ID_KEY],
        file_id=str(document[FILE_ID_KEY]),
        mtime_s=int(document[MTIME_S_KEY]),
        mtime_ns=None if mtime_ns is None else int(mtime_ns),
        size=int(document[SIZE_KEY]),
        checksum=int(document[CHECKSUM_KEY]),
        last_accessed=_as_utc(document.get(LAST_ACCESSED_KEY)),
    )


class RecordStore:
    def __init__(
        self,
        collection: Collection,
        *,
        too_new_threshold: timedelta = DEFAULT_TOO_NEW,
        clock: Callable[[], datetime] = _utcnow,
        client: MongoClient | None = None,
        create_indexes: bool = True,
    ) -> None:
        self._collection = collection
        self._too_new_threshold = too_new_threshold
        self._clock = clock
        self._client = client
        if create_indexes:
            self.ensure_indexes()

    @classmethod
    def connect(cls, connection_string: str, **kwargs) -> "RecordStore":
        if not connection_string or not connection_string.strip():
            raise ValueError("MongoDB connection string cannot be empty")
        client: MongoClient = MongoClient(connection_string, tz_aware=True)
        collection = client[MONGO_DB_NAME][MONGO_COLLECTION_NAME]
        return cls(collection, client=client, **kwargs)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def ensure_indexes(self) -> None:
        self._collection.create_index(
            [(FILE_ID_KEY, ASCENDING), (MTIME_S_KEY, ASCENDING), (MTIME_NS_KEY, ASCENDING)],
            unique=True,
        )
        self._collection.create_index(
            [(LAST_ACCESSED_KEY, ASCENDING)],
            expireAfterSeconds=BASELINE_TTL_SECONDS,
        )

    def _find_one(self, query: dict[str, Any]) -> BaselineRecord | None:
        document = _retry_on_network_error(
            lambda: self._collection.find_one(query),
            operation=f"find {query}",
        )
        return None if document is None else baseline_from_document(document)

    def _find_exact(self, identity: FileIdentity) -> BaselineRecord | None:
        base_query = {FILE_ID_KEY: identity.file_id, MTIME_S_KEY: identity.mtime_s}
        exact = self._find_one({**base_query, MTIME_NS_KEY: identity.mtime_ns})
        if exact is not None:
            return exact
        return self._find_one({**base_query, MTIME_NS_KEY: {"$exists": False}})

    def _find_latest(self, file_id: str) -> BaselineRecord | None:
        def _call():
            cursor = self._collection.find({FILE_ID_KEY: file_id}).sort(MTIME_S_KEY, DESCENDING).limit(1)
            return next(iter(cursor), None)

        document = _retry_on_network_error(_call, operation=f"find latest {file_id}")
        return None if document is None else baseline_from_document(document)

    @staticmethod
    def _must_not_change(identity: FileIdentity, is_immutable: bool) -> bool:
        return is_immutable and not identity.relative_path.endswith(IMMUTABILITY_EXEMPT_SUFFIXES)

    def _locate(self, identity: FileIdentity, is_immutable: bool) -> tuple[BaselineRecord | None, bool]:
        """Return the baseline to compare against and whether it matched exactly."""
        exact = self._find_exact(identity)
        if exact is not None:
            return exact, True

        stale = self._find_latest(identity.file_id)
        if stale is None:
            return None, False
        if self._must_not_change(identity, is_immutable):
            logger.info("Immutable file has been modified: %s", identity.absolute_path)
            return stale, False
        logger.info("File has been seen before but has been modified: %s", identity.absolute_path)
        return None, False

    def find_baseline(self, identity: FileIdentity, is_immutable: bool) -> BaselineRecord | None:
        """Look up the baseline ``reconcile`` would compare against, without touching it."""
        baseline, _ = self._locate(identity, is_immutable)
        return baseline

    def _touch(self, baseline: BaselineRecord, identity: FileIdentity) -> None:
        fields: dict[str, Any] = {LAST_ACCESSED_KEY: self._clock()}
        if baseline.mtime_ns is None:
            fields[MTIME_NS_KEY] = identity.mtime_ns

        result = _retry_on_network_error(
            lambda: self._collection.update_one({ID_KEY: baseline.object_id}, {"$set": fields}, upsert=False),
            operation=f"refresh {baseline.file_id}",
        )
        # matched_count, not modified_count: identical timestamps may be a no-op write.
        if result.matched_count != 1:
            raise InvariantViolation(
                f"Could not update last accessed time for {baseline.file_id}: "
                f"matched {result.matched_count} documents"
            )
        if baseline.mtime_ns is None:
            baseline.mtime_ns = identity.mtime_ns
            logger.info("Backfilled %s for %s", MTIME_NS_KEY, baseline.file_id)

    def _is_too_new(self, identity: FileIdentity) -> bool:
        return identity.created > self._clock() - self._too_new_threshold

    def _compare(self, identity: FileIdentity, baseline: BaselineRecord, *, exact: bool) -> FileOutcome:
        if identity.file_id != baseline.file_id:
            raise InvariantViolation(
                "Fatal error! File ID mismatch! "
                f"Local File={identity.file_id} but Database File={baseline.file_id}"
            )

        prefix = "" if exact else f"Immutable file {identity.absolute_path} has been modified. "
        if identity.mtime_s != baseline.mtime_s or (
            baseline.mtime_ns is not None and identity.mtime_ns != baseline.mtime_ns
        ):
            local_ns = "" if baseline.mtime_ns is None else f".{identity.mtime_ns:09d}"
            stored_ns = "" if baseline.mtime_ns is None else f".{baseline.mtime_ns:09d}"
            return FileOutcome(
                Result.FAIL,
                f"{prefix}File mtime mismatch! Local File={identity.mtime_s}{local_ns} "
                f"but Database={baseline.mtime_s}{stored_ns}",
            )
        if identity.size != baseline.size:
            return FileOutcome(
                Result.FAIL,
                f"{prefix}File size mismatch! Local File={identity.size} but Database={baseline.size}",
            )
        if identity.checksum != baseline.checksum:
            return FileOutcome(
                Result.FAIL,
                f"{prefix}File CRC mismatch! Local File={identity.checksum} but Database={baseline.checksum}",
            )
        return FileOutcome(Result.PASS, f"File {identity.absolute_path} passed verification")

    def _save_new_baseline(self, identity: FileIdentity) -> FileOutcome:
        key = {
            FILE_ID_KEY: identity.file_id,
            MTIME_S_KEY: identity.mtime_s,
            MTIME_NS_KEY: identity.mtime_ns,
        }
        update = {
            "$setOnInsert": {SIZE_KEY: identity.size, CHECKSUM_KEY: identity.checksum},
            "$set": {LAST_ACCESSED_KEY: self._clock()},
        }

        # Another machine may be creating the same baseline right now; the upsert
        # converges on one document and a lost insert race is retried as an update.
        attempts = 2
        for attempt in range(1, attempts + 1):
            try:
                result = _retry_on_network_error(
                    lambda: self._collection.update_one(key, update, upsert=True),
                    operation=f"save {identity.file_id}",
                )
                break
            except DuplicateKeyError:
                if attempt == attempts:
                    raise
                logger.info("Concurrent baseline insert for %s; retrying", identity.absolute_path)

        if result.upserted_id is None:
            existing = self._find_exact(identity)
            if existing is not None:
                return self._compare(identity, existing, exact=True)

        return FileOutcome(
            Result.PASS,
            f"New file record saved to database: {identity.absolute_path} "
            f"({FILE_ID_KEY}={identity.file_id}, {SIZE_KEY}={identity.size}, {CHECKSUM_KEY}={identity.checksum})",
        )

    def reconcile(self, identity: FileIdentity, is_immutable: bool) -> FileOutcome:
        baseline, exact = self._locate(identity, is_immutable)

        if baseline is None:
            # A slow archival job (e.g. par2 generation) may still be writing a new
            # immutable file; freezing its checksum now would record a wrong baseline.
            if is_immutable and self._is_too_new(identity):
                return FileOutcome(
                    Result.SKIP,
                    f"Immutable file {identity.absolute_path} skipped because it was created recently",
                )
            return self._save_new_baseline(identity)

        if exact:
            self._touch(baseline, identity)
        return self._compare(identity, baseline, exact=exact)

    def delete_by_file_id(self, file_id: str) -> int:
        if not file_id or not file_id.strip():
            raise ValueError("File ID cannot be empty")
        result = _retry_on_network_error(
            lambda: self._collection.delete_many({FILE_ID_KEY: file_id.strip()}),
            operation=f"delete {file_id}",
        )
        return result.deleted_count
