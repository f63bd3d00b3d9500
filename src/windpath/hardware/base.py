# hardware/base.py
from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

log = logging.getLogger(__name__)

LineHandler = Callable[[str], None]

LINE_TERMINATOR = "\n"


class LineTransport(ABC):
    """Line-oriented duplex channel to a motion controller."""

    @abstractmethod
    def open(self, on_line: LineHandler) -> None:
        """
        Open the channel and start delivering received lines to ``on_line``.

        Raises:
            OSError: If the channel cannot be opened.
        """

    @abstractmethod
    def write_line(self, line: str) -> None:
        """Transmit ``line`` followed by the line terminator."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivering lines and release the channel."""


class SimulatedController(LineTransport):
    """
    In-process stand-in for the winder firmware.

    Acknowledges every command with ``ok`` and answers the pause and resume
    commands with the firmware's notification lines. Replies are delivered
    from a worker thread, like a real reader thread would.
    """

    def __init__(
        self,
        response_delay_s: float = 0.0,
        pause_command: str = "M0",
        resume_command: str = "M108",
    ) -> None:
        """
        Args:
            response_delay_s: Sleep before each reply to mimic motion time.
            pause_command: Line treated as the pause request.
            resume_command: Line treated as the resume request.
        """
        self.response_delay_s = response_delay_s
        self.pause_command = pause_command
        self.resume_command = resume_command
        self.written: List[str] = []
        self._replies: "queue.Queue[Optional[str]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._on_line: Optional[LineHandler] = None

    @property
    def is_open(self) -> bool:
        return self._worker is not None

    def open(self, on_line: LineHandler) -> None:
        self._on_line = on_line
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._deliver, name="sim-controller", daemon=True)
        self._worker.start()
        log.info("[SIM] controller online")

    def write_line(self, line: str) -> None:
        if self._worker is None:
            raise OSError("simulated controller is not open")
        self.written.append(line)
        log.debug("[SIM] <- %s", line)
        if line == self.pause_command:
            self._replies.put("//action:notification Click to Resume...")
        elif line == self.resume_command:
            self._replies.put("//action:notification 3D Printer Ready.")
        else:
            self._replies.put("ok")

    def close(self) -> None:
        worker = self._worker
        if worker is None:
            return
        self._replies.put(None)
        if worker is not threading.current_thread():
            worker.join(timeout=1.0)
        self._worker = None
        log.info("[SIM] controller offline")

    def _deliver(self) -> None:
        while True:
            reply = self._replies.get()
            if reply is None:
                return
            if self.response_delay_s > 0:
                time.sleep(self.response_delay_s)
            handler = self._on_line
            if handler is None:
                continue
            try:
                handler(reply)
            except Exception:
                log.exception("[SIM] line handler failed for %r", reply)
