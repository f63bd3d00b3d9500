# logging_utils.py
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import IO, Optional, Tuple

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class _Run:
    """A streak of identical records currently shown on one output line."""

    key: Tuple[int, str, str]
    count: int
    first_at: float
    last_at: float


class DedupStreamHandler(logging.StreamHandler):
    """
    Stream handler that folds identical consecutive records onto one line.

    A controller busy-waiting on a long move repeats the same status line every
    couple of seconds. The first occurrence is printed normally, each repeat
    adds a dot, and when a different record arrives the line is closed with a
    "(repeated N times over Ts)" summary.
    """

    terminator = "\n"

    def __init__(self, stream: Optional[IO[str]] = None) -> None:
        super().__init__(stream)
        self._run: Optional[_Run] = None

    def emit(self, record: logging.LogRecord) -> None:
        try:
            key = (record.levelno, record.name, record.getMessage())
            run = self._run
            if run is not None and run.key == key:
                run.count += 1
                run.last_at = record.created
                self.stream.write(".")
                self.flush()
                return

            rendered = self.format(record)
            self._end_run()
            self._run = _Run(key=key, count=1, first_at=record.created, last_at=record.created)
            self.stream.write(rendered)
            self.flush()
        except Exception:
            self.handleError(record)

    def _end_run(self) -> None:
        run = self._run
        if run is None:
            return
        if run.count > 1:
            self.stream.write(
                f" (repeated {run.count} times over {run.last_at - run.first_at:.2f}s)"
            )
        self.stream.write(self.terminator)
        self.flush()
        self._run = None

    def close(self) -> None:
        try:
            self._end_run()
        finally:
            super().close()


def setup_logging(level: str = "INFO", stream: Optional[IO[str]] = None) -> None:
    """
    Route root logging through a :class:`DedupStreamHandler`.

    Args:
        level: Level name, case-insensitive; unknown names fall back to INFO.
        stream: Output stream; defaults to stdout.
    """
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    handler = DedupStreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=log_level, handlers=[handler], force=True)
