from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Result(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclass(slots=True)
class FileOutcome:
    result: Result
    message: str


@dataclass(slots=True)
class RecencyEntry:
    absolute_path: str
    modified_time_s: int
    last_verified: datetime


@dataclass(slots=True)
class BaselineRecord:
    object_id: Any
    file_id: str
    mtime_s: int
    # None means the document predates the nanosecond field.
    mtime_ns: int | None
    size: int
    checksum: int
    last_accessed: datetime | None
