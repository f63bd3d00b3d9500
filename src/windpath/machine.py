# machine.py
from __future__ import annotations

import logging
import math
from typing import List

from .geometry import (
    format_number,
    interpolate_coordinates,
    mandrel_arc_length_mm,
    serialize_coordinate,
)
from .model import AXES, ORIGIN, Axis, Coordinate, PartialCoordinate

log = logging.getLogger(__name__)

FEED_RATE_PLACES = 6


class WinderMachine:
    """
    Stateful G-code emitter for one wind.

    Tracks the last commanded position, feed rate and mandrel diameter, and
    keeps running estimates of machine time and tow consumed. Carriage moves
    are chopped into roughly 1 mm steps: the controller only reacts to a pause
    between whole commands, so short commands keep pause latency bounded.
    """

    def __init__(self, mandrel_diameter: float, verbose: bool = False) -> None:
        """
        Args:
            mandrel_diameter: Mandrel diameter (mm), used for tow arc length.
            verbose: Log every emitted move at DEBUG with its full coordinate.
        """
        self.mandrel_diameter = mandrel_diameter
        self.verbose = verbose
        self.last_position: Coordinate = ORIGIN
        self.feed_rate_mm_per_min: float = 0.0
        self.cumulative_time_s: float = 0.0
        self.cumulative_tow_length_mm: float = 0.0
        self._gcode: List[str] = []

    def get_gcode(self) -> List[str]:
        return list(self._gcode)

    def get_gcode_time_s(self) -> float:
        return self.cumulative_time_s

    def get_tow_length_m(self) -> float:
        return self.cumulative_tow_length_mm / 1000.0

    def insert_comment(self, text: str) -> None:
        self._gcode.append(f"; {text}")

    def add_raw_gcode(self, line: str) -> None:
        self._gcode.append(line)

    def set_feed_rate(self, feed_rate_mm_per_min: float) -> None:
        self.feed_rate_mm_per_min = feed_rate_mm_per_min
        rounded = round(feed_rate_mm_per_min, FEED_RATE_PLACES)
        self._gcode.append(f"G0 F{format_number(rounded, FEED_RATE_PLACES)}")

    def move(self, partial: PartialCoordinate) -> None:
        """
        Move to ``partial`` merged over the last position.

        A move that leaves the carriage where it is goes out as one command
        carrying only the requested axes. Otherwise the move is split into
        ``round(|carriage delta|) + 1`` interpolated full-coordinate steps.
        """
        start = self.last_position
        end = start.merged(partial)

        if end.carriage == start.carriage:
            self._emit_move(partial, end)
            return

        segments = round(abs(end.carriage - start.carriage)) + 1
        for step in interpolate_coordinates(start, end, segments):
            self._emit_move(step.as_partial(), step)

    def set_position(self, partial: PartialCoordinate) -> None:
        """Redefine the listed axes' current position without moving (G92)."""
        self._gcode.append(f"G92 {self._axis_words(partial)}")
        self.last_position = self.last_position.merged(partial)

    def zero_axes(self, current_angle_degrees: float) -> None:
        """
        Bring the mandrel back to a canonical zero with one full forward turn.

        The mandrel is redefined to ``current_angle_degrees % 360``, swept
        forward 360 degrees, then redefined to 0. Carriage and head read 0.
        """
        wrapped = current_angle_degrees % 360.0
        self.set_position(PartialCoordinate(carriage=0.0, mandrel=wrapped, delivery_head=0.0))
        self.move(PartialCoordinate(mandrel=wrapped + 360.0))
        self.set_position(PartialCoordinate(mandrel=0.0))

    def _emit_move(self, words: PartialCoordinate, destination: Coordinate) -> None:
        self._account(self.last_position, destination)
        self._gcode.append(f"G0 {self._axis_words(words)}")
        self.last_position = destination
        if self.verbose:
            log.debug("Move to %s", serialize_coordinate(destination))

    def _account(self, start: Coordinate, end: Coordinate) -> None:
        deltas = {axis: end.get(axis) - start.get(axis) for axis in AXES}

        # Instantaneous acceleration: time is the straight-line axis distance at feed rate.
        if self.feed_rate_mm_per_min > 0:
            distance = math.sqrt(sum(delta * delta for delta in deltas.values()))
            self.cumulative_time_s += distance / self.feed_rate_mm_per_min * 60.0

        # Head tilt lays no tow.
        arc_mm = mandrel_arc_length_mm(deltas[Axis.MANDREL], self.mandrel_diameter)
        self.cumulative_tow_length_mm += math.hypot(deltas[Axis.CARRIAGE], arc_mm)

    @staticmethod
    def _axis_words(partial: PartialCoordinate) -> str:
        return " ".join(f"{axis.letter}{format_number(value)}" for axis, value in partial.items())
