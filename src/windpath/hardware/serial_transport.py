from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import serial

from .base import LINE_TERMINATOR, LineHandler, LineTransport

log = logging.getLogger(__name__)


class SerialLineTransport(LineTransport):
    """
    pyserial-backed line channel.

    A daemon reader thread splits incoming bytes on newlines and hands each
    non-empty, stripped line to the handler given to :meth:`open`.
    """

    def __init__(
        self,
        port: str,
        baud_rate: int = 115200,
        *,
        timeout_s: float = 0.1,
        encoding: str = "ascii",
        serial_factory: Callable[..., serial.Serial] = serial.Serial,
    ) -> None:
        """
        Args:
            port: Device path, e.g. ``/dev/ttyUSB0`` or ``COM3``.
            baud_rate: Line speed.
            timeout_s: Read timeout; bounds how quickly close() stops the reader.
            encoding: Text encoding for lines on the wire.
            serial_factory: Serial constructor, replaceable in tests.
        """
        self.port = port
        self.baud_rate = baud_rate
        self.timeout_s = timeout_s
        self.encoding = encoding
        self._serial_factory = serial_factory
        self._serial: Optional[serial.Serial] = None
        self._reader: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._write_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._serial is not None

    def open(self, on_line: LineHandler) -> None:
        """
        Open the port and start the reader thread.

        Raises:
            serial.SerialException: If the port cannot be opened (an OSError).
        """
        if self._serial is not None:
            return
        log.info('Opening "%s" at %d baud', self.port, self.baud_rate)
        self._serial = self._serial_factory(
            port=self.port, baudrate=self.baud_rate, timeout=self.timeout_s
        )
        self._stop.clear()
        self._reader = threading.Thread(
            target=self._read_loop, args=(self._serial, on_line), name="serial-reader", daemon=True
        )
        self._reader.start()
        log.info("Port opened.")

    def write_line(self, line: str) -> None:
        if self._serial is None:
            raise serial.SerialException(f"Port {self.port} is not open")
        with self._write_lock:
            self._serial.write((line + LINE_TERMINATOR).encode(self.encoding))

    def close(self) -> None:
        if self._serial is None:
            return
        self._stop.set()
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=max(1.0, self.timeout_s * 10))
        try:
            self._serial.close()
        finally:
            self._serial = None
            self._reader = None
            log.info("Port %s closed", self.port)

    def _read_loop(self, port: serial.Serial, on_line: LineHandler) -> None:
        while not self._stop.is_set():
            try:
                raw = port.readline()
            except serial.SerialException as e:
                if not self._stop.is_set():
                    log.error("Serial read failed on %s: %s", self.port, e)
                return
            if not raw:
                continue
            line = raw.decode(self.encoding, errors="replace").strip()
            if not line:
                continue
            try:
                on_line(line)
            except Exception:
                log.exception("Line handler failed for %r", line)
