# hardware/marlin.py
from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum, auto
from typing import Callable, Deque, Dict, Optional

from ..events import Event, EventKind, EventSink, resolve_sink
from .base import LineTransport
from .responses import Response, ResponseKind, decode_response

log = logging.getLogger(__name__)

PAUSE_COMMAND = "M0"
RESUME_COMMAND = "M108"
COMMENT_PREFIX = ";"


class LinkConnectionError(ConnectionError):
    """The transport could not be opened or written."""


class InvalidStateError(RuntimeError):
    """Pause or resume was requested from a state that does not allow it."""


class ConnectionState(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    READY = auto()


class PauseState(Enum):
    IDLE = auto()
    PAUSING = auto()
    PAUSED = auto()
    # Resume sent but not confirmed; still paused for dispatch purposes.
    RESUMING = auto()


class MarlinLink:
    """
    Flow-controlled command stream to a Marlin-style controller.

    At most one command is outstanding: the next queued line is only written
    after the controller answers ``ok``. Pause (``M0``) and resume (``M108``)
    are written immediately, outside the queue, and dispatch stays halted from
    the pause confirmation until the resume confirmation.

    Received lines and operator calls may arrive on different threads; every
    state change happens under one re-entrant lock.
    """

    def __init__(self, transport: LineTransport, sink: Optional[EventSink] = None) -> None:
        """
        Args:
            transport: Line channel to the controller; owned by this link.
            sink: Event sink; defaults to logging on this module's logger.
        """
        self.transport = transport
        self._sink = resolve_sink(sink, log)
        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._queue: Deque[str] = deque()
        self._has_command_waiting = False
        # Set when a reset drops unacknowledged work; cleared by initialize().
        self._aborted = False
        self.connection_state = ConnectionState.DISCONNECTED
        self.pause_state = PauseState.IDLE
        self._handlers: Dict[ResponseKind, Callable[[Response], None]] = {
            ResponseKind.ACK: self._on_ack,
            ResponseKind.BUSY: self._on_busy,
            ResponseKind.PAUSE_CONFIRMED: self._on_pause_confirmed,
            ResponseKind.RESUME_CONFIRMED: self._on_resume_confirmed,
            ResponseKind.UNEXPECTED: self._on_unexpected,
        }

    # ------------------------------------------------------------------
    # State queries

    def is_ready(self) -> bool:
        return self.connection_state is ConnectionState.READY

    def is_paused(self) -> bool:
        return self.pause_state in (PauseState.PAUSED, PauseState.RESUMING)

    def has_command_waiting(self) -> bool:
        return self._has_command_waiting

    def pending_count(self) -> int:
        with self._lock:
            return len(self._queue)

    # ------------------------------------------------------------------
    # Session lifecycle

    def initialize(self) -> None:
        """
        Open the transport and start dispatching. No-op once ready.

        Raises:
            LinkConnectionError: If the transport cannot be opened. The link
                stays disconnected and queued commands are kept.
        """
        with self._lock:
            if self.connection_state is ConnectionState.READY:
                return
            self.connection_state = ConnectionState.CONNECTING
            self._has_command_waiting = False
            self._aborted = False
            try:
                self.transport.open(self.handle_line)
            except OSError as e:
                self.connection_state = ConnectionState.DISCONNECTED
                raise LinkConnectionError(f"Error opening transport: {e}") from e
            self.connection_state = ConnectionState.READY
            self._emit(EventKind.CONNECTED, "Link ready")
            self._try_next_command()

    def reset(self) -> None:
        """
        Drop queued work and require initialize() again.

        The transport stays open and the pause state is kept: a controller
        halted on ``M0`` is still halted, so resume() remains available after
        the next initialize().
        """
        with self._lock:
            dropped = len(self._queue)
            self._aborted = dropped > 0 or self._has_command_waiting
            self._queue.clear()
            self._has_command_waiting = False
            self.connection_state = ConnectionState.DISCONNECTED
            self._emit(EventKind.RESET, f"Link reset, {dropped} queued command(s) dropped")
            self._idle.notify_all()

    def close(self) -> None:
        """Release the transport."""
        with self._lock:
            self.connection_state = ConnectionState.DISCONNECTED
        # Outside the lock: closing may join a reader thread blocked in handle_line.
        self.transport.close()

    # ------------------------------------------------------------------
    # Commands

    def queue_command(self, line: str) -> None:
        """
        Append ``line`` to the queue and dispatch if the slot is free.

        Lines starting with ``;`` are reported in order but never sent.
        Blank lines are dropped. Never waits for the controller.
        """
        line = line.strip()
        if not line:
            log.debug("Dropping blank command line")
            return
        with self._lock:
            self._queue.append(line)
            self._try_next_command()

    def pause(self) -> None:
        """
        Ask the controller to pause now, ahead of anything queued.

        Raises:
            InvalidStateError: Unless ready and not already pausing/paused.
        """
        with self._lock:
            if not self.is_ready() or self.pause_state is not PauseState.IDLE:
                self._reject("pause")
            self.pause_state = PauseState.PAUSING
            self._write_out_of_band(PAUSE_COMMAND, PauseState.IDLE)
            self._emit(EventKind.PAUSE_REQUESTED, "Pausing...")

    def resume(self) -> None:
        """
        Ask a paused controller to continue.

        Raises:
            InvalidStateError: Unless the pause has been confirmed and no
                resume is already in flight.
        """
        with self._lock:
            if not self.is_ready() or self.pause_state is not PauseState.PAUSED:
                self._reject("resume")
            self.pause_state = PauseState.RESUMING
            self._write_out_of_band(RESUME_COMMAND, PauseState.PAUSED)
            self._emit(EventKind.RESUME_REQUESTED, "Resuming...")

    def wait_until_drained(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the queue is empty and nothing is outstanding.

        Returns:
            True if drained, False on timeout or if the link was reset with
            work still pending.
        """
        with self._idle:
            self._idle.wait_for(
                lambda: self._is_drained()
                or self.connection_state is ConnectionState.DISCONNECTED,
                timeout,
            )
            return self._is_drained() and not self._aborted

    # ------------------------------------------------------------------
    # Responses

    def handle_line(self, line: str) -> None:
        """Feed one line received from the controller."""
        response = decode_response(line)
        with self._lock:
            self._handlers[response.kind](response)

    def _on_ack(self, response: Response) -> None:
        self._has_command_waiting = False
        self._emit(EventKind.ACK, "ok")
        self._try_next_command()

    def _on_busy(self, response: Response) -> None:
        self._emit(EventKind.BUSY, f"Controller: {response.text}")

    def _on_pause_confirmed(self, response: Response) -> None:
        if self.pause_state is not PauseState.PAUSING:
            self._on_unexpected(response)
            return
        self.pause_state = PauseState.PAUSED
        self._emit(EventKind.PAUSED, "Paused")

    def _on_resume_confirmed(self, response: Response) -> None:
        if self.pause_state is not PauseState.RESUMING:
            self._on_unexpected(response)
            return
        self.pause_state = PauseState.IDLE
        self._emit(EventKind.RESUMED, "Resumed")
        self._try_next_command()

    def _on_unexpected(self, response: Response) -> None:
        self._emit(
            EventKind.UNEXPECTED_RESPONSE,
            f"Got back unexpected '{response.text}'",
            text=response.text,
        )

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)

    def _is_drained(self) -> bool:
        return not self._queue and not self._has_command_waiting

    def _try_next_command(self) -> None:
        while (
            self.connection_state is ConnectionState.READY
            and not self._has_command_waiting
            and not self.is_paused()
            and self._queue
        ):
            command = self._queue.popleft()
            if command.startswith(COMMENT_PREFIX):
                self._emit(EventKind.COMMENT, command, text=command)
                continue
            self._has_command_waiting = True
            try:
                self.transport.write_line(command)
            except OSError as e:
                self._queue.appendleft(command)
                self._has_command_waiting = False
                self.connection_state = ConnectionState.DISCONNECTED
                self._idle.notify_all()
                raise LinkConnectionError(f"Error writing '{command}': {e}") from e
            self._emit(EventKind.COMMAND_SENT, f'Sending "{command}"', command=command)
        if self._is_drained():
            self._idle.notify_all()

    def _write_out_of_band(self, command: str, previous: PauseState) -> None:
        try:
            self.transport.write_line(command)
        except OSError as e:
            self.pause_state = previous
            self.connection_state = ConnectionState.DISCONNECTED
            self._idle.notify_all()
            raise LinkConnectionError(f"Error writing '{command}': {e}") from e

    def _reject(self, action: str) -> None:
        message = (
            f"Cannot {action} while {self.connection_state.name.lower()} "
            f"and {self.pause_state.name.lower()}"
        )
        self._emit(EventKind.INVALID_STATE, message, action=action)
        raise InvalidStateError(message)

    def _emit(self, kind: EventKind, message: str, **data) -> None:
        self._sink(Event(kind, message, data))
