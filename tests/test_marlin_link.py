import pytest

from windpath.events import EventKind
from windpath.hardware.marlin import (
    ConnectionState,
    InvalidStateError,
    LinkConnectionError,
    MarlinLink,
    PauseState,
)
from windpath.hardware.responses import PAUSE_CONFIRMED_LINE, RESUME_CONFIRMED_LINE


class FakeTransport:
    def __init__(self, fail_open=False, fail_write=False):
        self.fail_open = fail_open
        self.fail_write = fail_write
        self.written = []
        self.on_line = None
        self.opened = 0
        self.closed = False

    def open(self, on_line):
        if self.fail_open:
            raise OSError("no such port")
        self.opened += 1
        self.on_line = on_line

    def write_line(self, line):
        if self.fail_write:
            raise OSError("write failed")
        self.written.append(line)

    def close(self):
        self.closed = True

    def reply(self, line):
        self.on_line(line)


def make_link(recorder, **kwargs):
    transport = FakeTransport(**kwargs)
    return MarlinLink(transport, sink=recorder), transport


def test_commands_queued_before_initialize_dispatch_one_per_ok(recorder):
    link, transport = make_link(recorder)
    for command in ("G0 X1", "G0 X2", "G0 X3"):
        link.queue_command(command)
    assert transport.written == []

    link.initialize()
    assert transport.written == ["G0 X1"]
    assert link.has_command_waiting()

    transport.reply("ok")
    assert transport.written == ["G0 X1", "G0 X2"]
    transport.reply("ok")
    transport.reply("ok")
    assert transport.written == ["G0 X1", "G0 X2", "G0 X3"]
    assert not link.has_command_waiting()
    assert link.pending_count() == 0


def test_only_one_command_outstanding(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.queue_command("G0 X1")
    link.queue_command("G0 X2")
    assert transport.written == ["G0 X1"]
    assert link.pending_count() == 1


def test_initialize_is_idempotent(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.initialize()
    assert transport.opened == 1
    assert link.connection_state is ConnectionState.READY


def test_initialize_failure_raises_and_stays_disconnected(recorder):
    link, transport = make_link(recorder, fail_open=True)
    link.queue_command("G0 X1")
    with pytest.raises(LinkConnectionError):
        link.initialize()
    assert isinstance(LinkConnectionError("x"), ConnectionError)
    assert link.connection_state is ConnectionState.DISCONNECTED
    assert link.pending_count() == 1


def test_comments_are_never_sent(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.queue_command("; Layer 1 of 1: hoop")
    link.queue_command("G0 X1")
    link.queue_command("; between")
    link.queue_command("G0 X2")

    assert transport.written == ["G0 X1"]
    transport.reply("ok")
    assert transport.written == ["G0 X1", "G0 X2"]
    comments = [event.data["text"] for event in recorder.of_kind(EventKind.COMMENT)]
    assert comments == ["; Layer 1 of 1: hoop", "; between"]


def test_blank_lines_are_dropped(recorder):
    link, transport = make_link(recorder)
    link.queue_command("   ")
    assert link.pending_count() == 0


def test_busy_lines_only_report(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.queue_command("G0 X1")
    transport.reply("echo:busy: processing")
    transport.reply("echo:busy: paused for user")
    assert link.has_command_waiting()
    assert len(recorder.of_kind(EventKind.BUSY)) == 2


def test_unexpected_line_is_reported_without_transition(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.queue_command("G0 X1")
    transport.reply("Error:Printer halted")
    assert link.has_command_waiting()
    assert link.pause_state is PauseState.IDLE
    unexpected = recorder.of_kind(EventKind.UNEXPECTED_RESPONSE)
    assert [event.data["text"] for event in unexpected] == ["Error:Printer halted"]


def test_pause_and_resume_cycle_keeps_queue_order(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    for index in range(1, 5):
        link.queue_command(f"G0 X{index}")

    link.pause()
    # Out of band: written even though G0 X1 is still outstanding.
    assert transport.written == ["G0 X1", "M0"]
    assert link.pause_state is PauseState.PAUSING
    assert not link.is_paused()

    transport.reply("ok")  # acknowledges G0 X1; dispatch continues until the pause lands
    assert transport.written[-1] == "G0 X2"
    transport.reply(PAUSE_CONFIRMED_LINE)
    assert link.is_paused()

    transport.reply("ok")  # acknowledges G0 X2
    assert transport.written == ["G0 X1", "M0", "G0 X2"]
    assert link.pending_count() == 2

    link.resume()
    assert transport.written[-1] == "M108"
    assert link.pause_state is PauseState.RESUMING
    assert link.is_paused()

    transport.reply(RESUME_CONFIRMED_LINE)
    assert link.pause_state is PauseState.IDLE
    transport.reply("ok")
    transport.reply("ok")
    assert transport.written == ["G0 X1", "M0", "G0 X2", "M108", "G0 X3", "G0 X4"]


def test_pause_while_paused_is_rejected(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.pause()
    transport.reply(PAUSE_CONFIRMED_LINE)

    with pytest.raises(InvalidStateError):
        link.pause()
    assert link.pause_state is PauseState.PAUSED
    assert transport.written == ["M0"]
    assert len(recorder.of_kind(EventKind.INVALID_STATE)) == 1


def test_resume_requires_confirmed_pause(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    with pytest.raises(InvalidStateError):
        link.resume()

    link.pause()
    with pytest.raises(InvalidStateError):
        link.resume()  # still pausing
    transport.reply(PAUSE_CONFIRMED_LINE)
    link.resume()
    with pytest.raises(InvalidStateError):
        link.resume()  # already resuming
    assert transport.written == ["M0", "M108"]


def test_pause_before_initialize_is_rejected(recorder):
    link, transport = make_link(recorder)
    with pytest.raises(InvalidStateError):
        link.pause()
    assert transport.written == []
    assert link.pause_state is PauseState.IDLE


def test_confirmations_outside_their_state_are_unexpected(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    transport.reply(PAUSE_CONFIRMED_LINE)
    transport.reply(RESUME_CONFIRMED_LINE)
    assert link.pause_state is PauseState.IDLE
    assert len(recorder.of_kind(EventKind.UNEXPECTED_RESPONSE)) == 2


def test_reset_clears_queue_and_requires_initialize(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.queue_command("G0 X1")
    link.queue_command("G0 X2")

    link.reset()
    assert link.pending_count() == 0
    assert not link.has_command_waiting()
    assert link.connection_state is ConnectionState.DISCONNECTED
    assert transport.closed is False

    link.queue_command("G0 X9")
    assert transport.written == ["G0 X1"]
    link.initialize()
    assert transport.written == ["G0 X1", "G0 X9"]


def test_write_failure_keeps_command_and_raises(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    transport.fail_write = True
    with pytest.raises(LinkConnectionError):
        link.queue_command("G0 X1")
    assert link.pending_count() == 1
    assert not link.has_command_waiting()


def test_wait_until_drained(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    assert link.wait_until_drained(timeout=0.01) is True

    link.queue_command("G0 X1")
    assert link.wait_until_drained(timeout=0.01) is False
    transport.reply("ok")
    assert link.wait_until_drained(timeout=0.01) is True


def test_close_releases_transport(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.close()
    assert transport.closed is True
    assert not link.is_ready()


def test_wait_until_drained_is_false_after_reset_drops_work(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    for index in range(5):
        link.queue_command(f"G0 X{index}")

    link.reset()

    assert link.wait_until_drained(timeout=0.01) is False


def test_wait_until_drained_recovers_after_reinitialize(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.queue_command("G0 X1")
    link.reset()
    assert link.wait_until_drained(timeout=0.01) is False

    link.initialize()
    link.queue_command("G0 X2")
    transport.reply("ok")
    assert link.wait_until_drained(timeout=0.01) is True


def test_reset_with_nothing_pending_still_counts_as_drained(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.reset()
    assert link.wait_until_drained(timeout=0.01) is True


def test_reset_while_paused_keeps_controller_paused(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.pause()
    transport.reply(PAUSE_CONFIRMED_LINE)

    link.reset()
    assert link.pause_state is PauseState.PAUSED

    link.initialize()
    link.queue_command("G0 X1")
    # The controller is still halted on M0, so nothing new goes out yet.
    assert transport.written == ["M0"]

    link.resume()
    transport.reply(RESUME_CONFIRMED_LINE)
    assert transport.written == ["M0", "M108", "G0 X1"]
    assert link.pause_state is PauseState.IDLE


def test_pause_write_failure_disconnects(recorder):
    link, transport = make_link(recorder)
    link.initialize()
    link.queue_command("G0 X1")
    transport.fail_write = True

    with pytest.raises(LinkConnectionError):
        link.pause()

    assert link.pause_state is PauseState.IDLE
    assert link.connection_state is ConnectionState.DISCONNECTED
    assert not link.is_ready()
    assert link.wait_until_drained(timeout=0.01) is False
