from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List

from .model import Coordinate, HelicalLayer, MandrelParameters, TowParameters

# Head angle held at each end of a helical pass while the tow is turned around.
DELIVERY_HEAD_PASS_START_DEG = -10.0
HOOP_LOCK_DEGREES = 180.0


def format_number(value: float, places: int = 6) -> str:
    """
    Render a value for a G-code word: fixed point, at most ``places`` decimals,
    no trailing zeros and never scientific notation.
    """
    text = f"{value:.{places}f}".rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


def serialize_coordinate(coordinate: Coordinate) -> str:
    """Compact ``{X Y Z}`` rendering used in verbose logs."""
    return "{%s %s %s}" % (
        format_number(coordinate.carriage),
        format_number(coordinate.mandrel),
        format_number(coordinate.delivery_head),
    )


def interpolate_coordinates(start: Coordinate, end: Coordinate, steps: int) -> List[Coordinate]:
    """
    Evenly spaced coordinates from ``start`` to ``end`` inclusive.

    Args:
        start: First coordinate.
        end: Last coordinate.
        steps: Number of coordinates to produce; 1 yields just ``end``.

    Returns:
        List of ``steps`` coordinates with a constant per-axis delta.

    Raises:
        ValueError: If steps is less than 1.
    """
    if steps < 1:
        raise ValueError("steps cannot be less than 1")
    if steps == 1:
        return [end]

    carriage_step = (end.carriage - start.carriage) / (steps - 1)
    mandrel_step = (end.mandrel - start.mandrel) / (steps - 1)
    head_step = (end.delivery_head - start.delivery_head) / (steps - 1)

    coordinates = [
        Coordinate(
            carriage=start.carriage + step * carriage_step,
            mandrel=start.mandrel + step * mandrel_step,
            delivery_head=start.delivery_head + step * head_step,
        )
        for step in range(steps - 1)
    ]
    # Pin the final point so accumulated float error never overshoots the target.
    coordinates.append(end)
    return coordinates


def mandrel_arc_length_mm(delta_degrees: float, diameter_mm: float) -> float:
    """Surface distance swept by rotating a mandrel of ``diameter_mm`` through ``delta_degrees``."""
    return abs(delta_degrees) / 360.0 * math.pi * diameter_mm


@dataclass(frozen=True)
class HoopGeometry:
    wind_angle_deg: float
    mandrel_rotations: float
    lock_degrees: float
    far_mandrel_deg: float
    far_lock_deg: float
    near_mandrel_deg: float
    near_lock_deg: float


def compute_hoop_geometry(mandrel: MandrelParameters, tow: TowParameters) -> HoopGeometry:
    """
    Derive head angle and mandrel targets for one hoop there-and-back.

    The head tilts so the tow lies at the helix angle produced by advancing one
    tow width per mandrel revolution. Mandrel targets are running totals: each
    end gets a lock of ``HOOP_LOCK_DEGREES`` and each pass turns the mandrel
    ``wind_length / tow_width`` times.
    """
    lock = HOOP_LOCK_DEGREES
    wind_angle = 90.0 - math.degrees(math.atan(mandrel.diameter / tow.width))
    rotations = mandrel.wind_length / tow.width
    far_mandrel = lock + rotations * 360.0
    far_lock = far_mandrel + lock
    near_mandrel = far_lock + rotations * 360.0
    near_lock = near_mandrel + lock
    return HoopGeometry(
        wind_angle_deg=wind_angle,
        mandrel_rotations=rotations,
        lock_degrees=lock,
        far_mandrel_deg=far_mandrel,
        far_lock_deg=far_lock,
        near_mandrel_deg=near_mandrel,
        near_lock_deg=near_lock,
    )


@dataclass(frozen=True)
class HelicalGeometry:
    mandrel_circumference_mm: float
    tow_arc_length_mm: float
    num_circuits: int
    pattern_step_deg: float
    pass_rotation_deg: float
    pass_degrees_per_mm: float
    lead_in_deg: float
    main_pass_deg: float
    delivery_head_angle_deg: float


def compute_helical_geometry(
    layer: HelicalLayer,
    mandrel: MandrelParameters,
    tow: TowParameters,
) -> HelicalGeometry:
    """
    Derive circuit count and per-pass mandrel rotation for a helical layer.

    The circuit count rounds up so adjacent bands overlap slightly rather than
    leave a gap. Callers check that ``num_circuits`` divides evenly by the
    pattern number before planning.
    """
    wind_angle_rad = math.radians(layer.wind_angle)
    circumference = math.pi * mandrel.diameter
    tow_arc_length = tow.width / math.cos(wind_angle_rad)
    num_circuits = math.ceil(circumference / tow_arc_length)
    pass_rotation_mm = mandrel.wind_length * math.tan(wind_angle_rad)
    pass_rotation_deg = 360.0 * (pass_rotation_mm / circumference)
    degrees_per_mm = pass_rotation_deg / mandrel.wind_length
    return HelicalGeometry(
        mandrel_circumference_mm=circumference,
        tow_arc_length_mm=tow_arc_length,
        num_circuits=num_circuits,
        pattern_step_deg=360.0 / num_circuits,
        pass_rotation_deg=pass_rotation_deg,
        pass_degrees_per_mm=degrees_per_mm,
        lead_in_deg=degrees_per_mm * layer.lead_in_mm,
        main_pass_deg=degrees_per_mm * (mandrel.wind_length - layer.lead_in_mm),
        delivery_head_angle_deg=-1.0 * (90.0 - layer.wind_angle),
    )
