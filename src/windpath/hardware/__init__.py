from .base import LineTransport, SimulatedController
from .marlin import (
    ConnectionState,
    InvalidStateError,
    LinkConnectionError,
    MarlinLink,
    PauseState,
)
from .responses import Response, ResponseKind, decode_response
from .serial_transport import SerialLineTransport

__all__ = [
    "LineTransport",
    "SimulatedController",
    "SerialLineTransport",
    "MarlinLink",
    "ConnectionState",
    "PauseState",
    "LinkConnectionError",
    "InvalidStateError",
    "Response",
    "ResponseKind",
    "decode_response",
]
