from __future__ import annotations

import os
from dataclasses import dataclass


# Syncthing keeps `.stfolder`, `.stversions` and in-flight `.syncthing.*.tmp` files.
DEFAULT_SKIP_PREFIXES: tuple[str, ...] = (".st",)
DEFAULT_SKIP_SUFFIXES: tuple[str, ...] = (".tmp",)


def _normalize_patterns(patterns: list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    return tuple(pattern.strip() for pattern in (patterns or ()) if pattern and pattern.strip())


def _path_segments(path: str, separator: str) -> list[str]:
    return [part for part in path.split(separator) if part]


@dataclass(slots=True)
class SkipFilter:
    prefixes: tuple[str, ...] = DEFAULT_SKIP_PREFIXES
    suffixes: tuple[str, ...] = DEFAULT_SKIP_SUFFIXES
    separator: str = os.sep

    def matches(self, path: str) -> bool:
        """True when any segment of ``path`` starts with a prefix or ends with a suffix."""
        for part in _path_segments(path, self.separator):
            if self.prefixes and part.startswith(self.prefixes):
                return True
            if self.suffixes and part.endswith(self.suffixes):
                return True
        return False


def build_skip_filter(
    prefixes: list[str] | tuple[str, ...] | None = None,
    suffixes: list[str] | tuple[str, ...] | None = None,
) -> SkipFilter:
    return SkipFilter(
        prefixes=DEFAULT_SKIP_PREFIXES if prefixes is None else _normalize_patterns(prefixes),
        suffixes=DEFAULT_SKIP_SUFFIXES if suffixes is None else _normalize_patterns(suffixes),
    )
