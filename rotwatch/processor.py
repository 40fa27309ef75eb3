from __future__ import annotations

import asyncio
import os
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterator

from rotwatch.errors import InvalidPathError
from rotwatch.identity import FileIdentity
from rotwatch.models import Result
from rotwatch.recency_db import RecencyCache
from rotwatch.record_store import RecordStore
from rotwatch.run_log import RunLog
from rotwatch.scanner import iter_regular_files


DEFAULT_WORKERS = os.cpu_count() or 4


class FileProcessor:
    """Walks roots, verifies every file and keeps PASS/FAIL/SKIP totals.

    The walk runs on the event loop and only enqueues work. Worker tasks pull
    files from a bounded queue; recency lookups go through aiosqlite while store
    calls and checksum reads run in a thread pool, so network latency overlaps
    across files.
    """

    def __init__(
        self,
        recency: RecencyCache,
        store: RecordStore,
        run_log: RunLog,
        *,
        workers: int = DEFAULT_WORKERS,
    ) -> None:
        self._recency = recency
        self._store = store
        self._log = run_log
        self._workers = max(1, workers)
        self.run_totals: Counter[Result] = Counter()

    def _identities(self, root: Path) -> Iterator[FileIdentity]:
        def _skip_entry(path: str, exc: OSError) -> None:
            self._log.warning("Skipping unreadable entry %s: %s", path, exc)

        for path in iter_regular_files(root, on_error=_skip_entry):
            try:
                yield FileIdentity.from_root(path, root, preload=True)
            except InvalidPathError as exc:
                self._log.exception(exc)
            except OSError as exc:
                _skip_entry(str(path), exc)

    async def _verify(
        self,
        identity: FileIdentity,
        is_immutable: bool,
        executor: ThreadPoolExecutor,
    ) -> Result:
        if await self._recency.should_skip(identity):
            self._log.info("Skipping file %s", identity.absolute_path)
            return Result.SKIP

        loop = asyncio.get_running_loop()
        outcome = await loop.run_in_executor(executor, self._store.reconcile, identity, is_immutable)
        message = f"{outcome.result.value}: {outcome.message}"

        if outcome.result is Result.PASS:
            self._log.info(message)
            # Only a PASS may delay the next check; a FAIL must keep being reported.
            await self._recency.record_verification(identity)
        elif outcome.result is Result.FAIL:
            self._log.failure(message)
        else:
            self._log.info(message)
        return outcome.result

    async def _consume(
        self,
        queue: asyncio.Queue[FileIdentity | None],
        executor: ThreadPoolExecutor,
        is_immutable: bool,
        totals: Counter[Result],
        errors: list[BaseException],
    ) -> None:
        while True:
            identity = await queue.get()
            try:
                if identity is None:
                    return
                totals[await self._verify(identity, is_immutable, executor)] += 1
            except Exception as exc:
                self._log.exception(exc, f"Error verifying {identity.absolute_path}: {exc}")
                errors.append(exc)
            finally:
                queue.task_done()

    async def process_files(self, root: Path | str, is_immutable: bool) -> Counter[Result]:
        root = Path(root).resolve()
        self._log.info("Processing %s path %s", "immutable" if is_immutable else "mutable", root)

        queue: asyncio.Queue[FileIdentity | None] = asyncio.Queue(maxsize=self._workers * 4)
        totals: Counter[Result] = Counter()
        errors: list[BaseException] = []

        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="rotwatch-verify") as executor:
            consumers = [
                asyncio.create_task(self._consume(queue, executor, is_immutable, totals, errors))
                for _ in range(self._workers)
            ]
            try:
                for identity in self._identities(root):
                    # Stop dispatching after an unrecoverable error; queued work still drains.
                    if errors:
                        break
                    await queue.put(identity)
            except OSError as exc:
                # A root that cannot be listed is an error, not an empty tree.
                self._log.exception(exc, f"Could not scan {root}: {exc}")
            finally:
                for _ in consumers:
                    await queue.put(None)
                await asyncio.gather(*consumers)

        self.run_totals.update(totals)
        if errors:
            raise errors[0]
        return totals

    def no_failures(self) -> bool:
        return self.run_totals[Result.FAIL] == 0

    def log_run_totals(self) -> None:
        self._log.log("--------------------------")
        self._log.log("Totals:")
        for result in Result:
            self._log.log(f"{result.value}: {self.run_totals[result]} files")
