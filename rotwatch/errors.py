from __future__ import annotations


class RotwatchError(Exception):
    pass


class InvalidPathError(RotwatchError, ValueError):
    """A file path does not live under the root it was enumerated from."""


class CacheStorageError(RotwatchError):
    """The local recency database could not be read or written."""


class InvariantViolation(RotwatchError):
    """The baseline store returned data its own keys say is impossible.

    Continuing past one of these could hide corruption, so the run is aborted.
    """
