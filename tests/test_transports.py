import threading

import pytest
import serial

from windpath.hardware.base import SimulatedController
from windpath.hardware.marlin import LinkConnectionError, MarlinLink
from windpath.hardware.responses import (
    PAUSE_CONFIRMED_LINE,
    RESUME_CONFIRMED_LINE,
    ResponseKind,
    decode_response,
)
from windpath.hardware.serial_transport import SerialLineTransport


class FakeSerial:
    """Replays canned bytes from readline() and records writes."""

    def __init__(self, lines=(), **kwargs):
        self.kwargs = kwargs
        self.lines = list(lines)
        self.written = []
        self.closed = False

    def readline(self):
        if self.lines:
            return self.lines.pop(0)
        return b""

    def write(self, data):
        self.written.append(data)
        return len(data)

    def close(self):
        self.closed = True


@pytest.mark.parametrize(
    "line,kind",
    [
        ("ok", ResponseKind.ACK),
        ("ok\r", ResponseKind.ACK),
        ("echo:busy: processing", ResponseKind.BUSY),
        ("echo:busy: paused for user", ResponseKind.BUSY),
        (PAUSE_CONFIRMED_LINE, ResponseKind.PAUSE_CONFIRMED),
        (RESUME_CONFIRMED_LINE, ResponseKind.RESUME_CONFIRMED),
        ("ok T:21.0", ResponseKind.UNEXPECTED),
        ("", ResponseKind.UNEXPECTED),
    ],
)
def test_decode_response(line, kind):
    response = decode_response(line)
    assert response.kind is kind
    assert response.text == line.strip()


def test_serial_transport_opens_with_settings_and_writes_lines():
    created = []

    def factory(**kwargs):
        port = FakeSerial(**kwargs)
        created.append(port)
        return port

    transport = SerialLineTransport("/dev/ttyUSB0", 250000, timeout_s=0.05, serial_factory=factory)
    transport.open(lambda line: None)
    try:
        assert created[0].kwargs == {"port": "/dev/ttyUSB0", "baudrate": 250000, "timeout": 0.05}
        transport.write_line("G0 X1")
        assert created[0].written == [b"G0 X1\n"]
    finally:
        transport.close()
    assert created[0].closed is True
    assert not transport.is_open


def test_serial_transport_delivers_stripped_lines():
    received = []
    done = threading.Event()

    def on_line(line):
        received.append(line)
        if len(received) == 2:
            done.set()

    lines = [b"ok\r\n", b"\r\n", b"echo:busy: processing\n"]
    transport = SerialLineTransport(
        "COM3", serial_factory=lambda **kwargs: FakeSerial(lines, **kwargs), timeout_s=0.01
    )
    transport.open(on_line)
    try:
        assert done.wait(timeout=2.0)
    finally:
        transport.close()
    assert received == ["ok", "echo:busy: processing"]


def test_serial_transport_write_before_open_fails():
    transport = SerialLineTransport("/dev/null", serial_factory=FakeSerial)
    with pytest.raises(serial.SerialException):
        transport.write_line("G0 X1")
    assert issubclass(serial.SerialException, OSError)


def test_link_surfaces_serial_open_failure():
    def factory(**kwargs):
        raise serial.SerialException("could not open port")

    link = MarlinLink(SerialLineTransport("/dev/missing", serial_factory=factory), sink=lambda e: None)
    with pytest.raises(LinkConnectionError):
        link.initialize()
    assert not link.is_ready()


def test_simulated_controller_drains_queue_through_link(recorder):
    controller = SimulatedController()
    link = MarlinLink(controller, sink=recorder)
    commands = ["G0 F1000", "; comment", "G0 X1 Y0 Z0", "G0 X2 Y0 Z0"]
    for command in commands:
        link.queue_command(command)
    link.initialize()
    try:
        assert link.wait_until_drained(timeout=5.0)
    finally:
        link.close()
    assert controller.written == ["G0 F1000", "G0 X1 Y0 Z0", "G0 X2 Y0 Z0"]


def test_simulated_controller_answers_pause_and_resume():
    replies = []
    controller = SimulatedController()
    got_two = threading.Event()

    def on_line(line):
        replies.append(line)
        if len(replies) == 2:
            got_two.set()

    controller.open(on_line)
    try:
        controller.write_line("M0")
        controller.write_line("M108")
        assert got_two.wait(timeout=2.0)
    finally:
        controller.close()
    assert replies == [PAUSE_CONFIRMED_LINE, RESUME_CONFIRMED_LINE]


def test_simulated_controller_rejects_writes_when_closed():
    with pytest.raises(OSError):
        SimulatedController().write_line("G0 X1")
