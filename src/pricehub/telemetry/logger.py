"""
Queue-based logging.

Request handlers and the refresh loop only enqueue records; a listener
thread does the console and file writes. Timestamps are UTC so they
line up with the epoch-millisecond `updatedAt` fields in the cache.
"""

import logging
import sys
import time
from logging.handlers import QueueHandler, QueueListener
from pathlib import Path
from queue import Queue

from pricehub.config.constants import (
    LOG_DATE_FORMAT,
    LOG_FORMAT,
    MAX_LOG_QUEUE_SIZE,
    QUIET_LOGGERS,
)


class UtcFormatter(logging.Formatter):
    """Formatter stamping records in UTC."""

    converter = time.gmtime


class QueueLogging:
    """
    Routes every record of the root logger through a bounded queue.

    Usable as a context manager; `stop()` flushes what is still queued.
    """

    def __init__(self, level: int = logging.INFO, log_file: Path | None = None) -> None:
        self.level = level
        self.log_file = log_file
        self._queue: Queue[logging.LogRecord] = Queue(maxsize=MAX_LOG_QUEUE_SIZE)
        self._handler = QueueHandler(self._queue)
        self._listener: QueueListener | None = None

    def _sinks(self) -> list[logging.Handler]:
        formatter = UtcFormatter(LOG_FORMAT, LOG_DATE_FORMAT)

        console = logging.StreamHandler(sys.stdout)
        console.setLevel(self.level)
        sinks: list[logging.Handler] = [console]

        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            # The file keeps DEBUG lines the console drops
            sinks.append(logging.FileHandler(self.log_file))

        for sink in sinks:
            sink.setFormatter(formatter)
        return sinks

    def start(self, *sinks: logging.Handler) -> None:
        """
        Attach the queue to the root logger and start the listener.

        Args:
            sinks: Output handlers; console (and file if set) when empty.
        """
        if self._listener is not None:
            return

        root = logging.getLogger()
        root.setLevel(min(self.level, logging.DEBUG) if self.log_file else self.level)
        root.addHandler(self._handler)

        self._listener = QueueListener(
            self._queue,
            *(sinks or self._sinks()),
            respect_handler_level=True,
        )
        self._listener.start()

    def stop(self) -> None:
        """Detach from the root logger and drain the queue."""
        logging.getLogger().removeHandler(self._handler)
        if self._listener is not None:
            self._listener.stop()
            self._listener = None

    def __enter__(self) -> "QueueLogging":
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> QueueLogging:
    """
    Replace the root handlers with queue-based output.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional log file path.

    Returns:
        The running QueueLogging; call `stop()` on shutdown.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    queue_logging = QueueLogging(getattr(logging, level.upper(), logging.INFO), log_file)
    queue_logging.start()

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return queue_logging
