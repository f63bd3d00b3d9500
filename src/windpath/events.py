"""Structured events emitted by the planner and the machine link.

Planning and link code never print; they hand an :class:`Event` to an injected
sink. The default sink forwards to :mod:`logging` so command-line runs still
see everything, while tests can collect events in a list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional


class EventKind(Enum):
    # planner
    LAYER_STARTED = auto()
    LAYER_PLANNED = auto()
    WIND_PLANNED = auto()
    PLANNING_WARNING = auto()
    # link
    CONNECTED = auto()
    COMMAND_SENT = auto()
    COMMENT = auto()
    ACK = auto()
    BUSY = auto()
    PAUSE_REQUESTED = auto()
    PAUSED = auto()
    RESUME_REQUESTED = auto()
    RESUMED = auto()
    INVALID_STATE = auto()
    UNEXPECTED_RESPONSE = auto()
    RESET = auto()


@dataclass(frozen=True)
class Event:
    kind: EventKind
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


EventSink = Callable[[Event], None]

_LEVELS: Dict[EventKind, int] = {
    EventKind.PLANNING_WARNING: logging.WARNING,
    EventKind.INVALID_STATE: logging.WARNING,
    EventKind.UNEXPECTED_RESPONSE: logging.WARNING,
    EventKind.COMMAND_SENT: logging.DEBUG,
    EventKind.ACK: logging.DEBUG,
    EventKind.LAYER_STARTED: logging.DEBUG,
}


def logging_sink(logger: logging.Logger) -> EventSink:
    """
    Build a sink that logs each event on ``logger``.

    Warnings-class events log at WARNING, chatty protocol traffic at DEBUG and
    everything else at INFO.
    """

    def sink(event: Event) -> None:
        logger.log(_LEVELS.get(event.kind, logging.INFO), event.message)

    return sink


def resolve_sink(sink: Optional[EventSink], logger: logging.Logger) -> EventSink:
    return sink if sink is not None else logging_sink(logger)
