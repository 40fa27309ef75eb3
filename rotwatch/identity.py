"""File identity and checksum helpers.

The relative path (root prefix removed) identifies a file across machines, so the
same archive mounted at ``D:\\Photos`` on one host and ``/mnt/photos`` on another
maps onto the same baseline records. The absolute path is only used for disk I/O
and as the key of the local recency cache.
"""

from __future__ import annotations

import hashlib
import os
import threading
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import cached_property
from pathlib import Path

from rotwatch.errors import InvalidPathError


CHUNK_SIZE = 8 * 1024
NANOS_PER_SECOND = 1_000_000_000

# One reader at a time: concurrent sequential reads thrash rotational disks.
_DISK_LOCK = threading.Lock()


def compute_checksum(path: Path, chunk_size: int = CHUNK_SIZE) -> int:
    crc = 0
    with _DISK_LOCK:
        with path.open("rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    break
                crc = zlib.crc32(chunk, crc)
    return crc & 0xFFFFFFFF


def compute_file_id(relative_path: str) -> str:
    return hashlib.sha256(relative_path.encode("utf-8")).hexdigest()


def relativize(absolute_path: Path | str, root: Path | str) -> str:
    """Strip ``root`` from ``absolute_path``.

    The result keeps a leading separator (``/dir1/file1.txt``) because baseline
    records written by earlier versions hashed paths in that form.
    """
    absolute = Path(absolute_path)
    prefix = Path(root)
    try:
        relative = absolute.relative_to(prefix)
    except ValueError as exc:
        raise InvalidPathError(f"Absolute path {absolute} does not start with {prefix}") from exc
    return os.sep + os.sep.join(relative.parts)


def _creation_time(st: os.stat_result) -> datetime:
    # st_birthtime is missing on most Linux filesystems; ctime is the closest stand-in.
    birth = getattr(st, "st_birthtime", None)
    seconds = birth if birth is not None else st.st_ctime
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class FileStat:
    size: int
    mtime_s: int
    mtime_ns: int
    created: datetime

    @classmethod
    def capture(cls, path: Path) -> "FileStat":
        st = path.stat()
        mtime_s, mtime_ns = divmod(st.st_mtime_ns, NANOS_PER_SECOND)
        return cls(
            size=st.st_size,
            mtime_s=mtime_s,
            mtime_ns=mtime_ns,
            created=_creation_time(st),
        )


class FileIdentity:
    """One file as seen during a single run.

    Disk-derived values are read once and kept for the lifetime of the object. If
    the file changes after they were read the run works with the stale values.
    """

    def __init__(self, absolute_path: Path, relative_path: str, *, preload: bool = False) -> None:
        self.absolute_path = absolute_path
        self.relative_path = relative_path
        if preload:
            _ = self.stat

    @classmethod
    def from_root(cls, absolute_path: Path, root: Path, *, preload: bool = False) -> "FileIdentity":
        return cls(absolute_path, relativize(absolute_path, root), preload=preload)

    @cached_property
    def file_id(self) -> str:
        return compute_file_id(self.relative_path)

    @cached_property
    def stat(self) -> FileStat:
        return FileStat.capture(self.absolute_path)

    @cached_property
    def checksum(self) -> int:
        return compute_checksum(self.absolute_path)

    @property
    def size(self) -> int:
        return self.stat.size

    @property
    def mtime_s(self) -> int:
        return self.stat.mtime_s

    @property
    def mtime_ns(self) -> int:
        return self.stat.mtime_ns

    @property
    def created(self) -> datetime:
        return self.stat.created

    def __repr__(self) -> str:
        return f"FileIdentity({str(self.absolute_path)!r}, {self.relative_path!r})"
