"""Console and on-disk logging for a verification run.

Routine progress goes to the console only. Failures, exceptions and the run
summary are also written to ``latest.txt`` and a timestamped file in the log
directory so they can be triaged after an unattended run.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


LOGGER_NAME = "rotwatch"
LATEST_LOG_FILENAME = "latest.txt"
DATED_LOG_FORMAT = "%Y-%m-%d_%H-%M-%S"
FILE_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class RunLog:
    """Logger handed to the processor; remembers whether anything raised."""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        durable: logging.Logger | None = None,
    ) -> None:
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._durable = durable or self._logger.getChild("run")
        self._lock = threading.Lock()
        self._encountered_exception = False

    @property
    def encountered_exception(self) -> bool:
        with self._lock:
            return self._encountered_exception

    def info(self, message: str, *args: object) -> None:
        self._logger.info(message, *args)

    def warning(self, message: str, *args: object) -> None:
        self._logger.warning(message, *args)

    def log(self, message: str, *args: object) -> None:
        self._durable.info(message, *args)

    def failure(self, message: str, *args: object) -> None:
        self._durable.warning(message, *args)

    def exception(self, exc: BaseException, message: str | None = None) -> None:
        with self._lock:
            self._encountered_exception = True
        self._durable.error(message or str(exc), exc_info=(type(exc), exc, exc.__traceback__))


def _file_handler(path: Path) -> logging.FileHandler:
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
    return handler


def configure_logging(
    log_dir: Path | None = None,
    *,
    verbose: bool = False,
    console: Console | None = None,
) -> RunLog:
    level = logging.DEBUG if verbose else logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(RichHandler(console=console, show_path=False, rich_tracebacks=True))

    durable = logger.getChild("run")
    for handler in list(durable.handlers):
        durable.removeHandler(handler)
        handler.close()
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        durable.addHandler(_file_handler(log_dir / LATEST_LOG_FILENAME))
        durable.addHandler(_file_handler(log_dir / f"{datetime.now().strftime(DATED_LOG_FORMAT)}.txt"))

    return RunLog(logger, durable)
