from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Iterator


def iter_regular_files(
    root: Path,
    *,
    on_error: Callable[[str, OSError], None] | None = None,
) -> Iterator[Path]:
    """Walk ``root`` depth-first in name order, yielding regular files only.

    Symlinks are neither followed nor yielded. A ``root`` that cannot be listed
    raises ``OSError``; directories or entries below it that cannot be read are
    reported to ``on_error`` and left out.
    """
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda entry: entry.name)
        except OSError as exc:
            if current == root:
                raise
            if on_error is not None:
                on_error(str(current), exc)
            continue

        subdirs: list[Path] = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    yield Path(entry.path)
            except OSError as exc:
                if on_error is not None:
                    on_error(entry.path, exc)
        stack.extend(reversed(subdirs))
