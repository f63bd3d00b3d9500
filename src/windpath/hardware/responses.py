"""Decoding of controller response lines into a closed set of kinds."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict


class ResponseKind(Enum):
    ACK = auto()
    BUSY = auto()
    PAUSE_CONFIRMED = auto()
    RESUME_CONFIRMED = auto()
    UNEXPECTED = auto()


@dataclass(frozen=True)
class Response:
    kind: ResponseKind
    text: str


ACK_LINE = "ok"
BUSY_PROCESSING_LINE = "echo:busy: processing"
BUSY_PAUSED_LINE = "echo:busy: paused for user"
PAUSE_CONFIRMED_LINE = "//action:notification Click to Resume..."
RESUME_CONFIRMED_LINE = "//action:notification 3D Printer Ready."

SENTINELS: Dict[str, ResponseKind] = {
    ACK_LINE: ResponseKind.ACK,
    BUSY_PROCESSING_LINE: ResponseKind.BUSY,
    BUSY_PAUSED_LINE: ResponseKind.BUSY,
    PAUSE_CONFIRMED_LINE: ResponseKind.PAUSE_CONFIRMED,
    RESUME_CONFIRMED_LINE: ResponseKind.RESUME_CONFIRMED,
}


def decode_response(line: str) -> Response:
    """
    Classify one received line. Surrounding whitespace (including a stray
    carriage return) is ignored; anything unrecognised is UNEXPECTED.
    """
    text = line.strip()
    return Response(SENTINELS.get(text, ResponseKind.UNEXPECTED), text)
