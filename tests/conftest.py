# tests/conftest.py
from pathlib import Path
import sys
from typing import List

import pytest

# Ensure src/ is importable when running pytest from a checkout without installing.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from windpath.events import Event, EventKind  # noqa: E402


class EventRecorder:
    """Sink that keeps every event for assertions."""

    def __init__(self) -> None:
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> List[Event]:
        return [event for event in self.events if event.kind is kind]


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()
