# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union


class Axis(Enum):
    """Machine axes with their controller letter and unit."""

    CARRIAGE = ("X", "mm")
    MANDREL = ("Y", "deg")
    DELIVERY_HEAD = ("Z", "deg")

    @property
    def letter(self) -> str:
        return self.value[0]

    @property
    def unit(self) -> str:
        return self.value[1]


AXES: Tuple[Axis, ...] = (Axis.CARRIAGE, Axis.MANDREL, Axis.DELIVERY_HEAD)


@dataclass(frozen=True)
class Coordinate:
    """Fully specified machine position."""

    carriage: float
    mandrel: float
    delivery_head: float

    def get(self, axis: Axis) -> float:
        return getattr(self, axis.name.lower())

    def merged(self, partial: "PartialCoordinate") -> "Coordinate":
        """Return this position with every axis present in ``partial`` overridden."""
        return Coordinate(
            carriage=self.carriage if partial.carriage is None else partial.carriage,
            mandrel=self.mandrel if partial.mandrel is None else partial.mandrel,
            delivery_head=(
                self.delivery_head if partial.delivery_head is None else partial.delivery_head
            ),
        )

    def as_partial(self) -> "PartialCoordinate":
        return PartialCoordinate(self.carriage, self.mandrel, self.delivery_head)


ORIGIN = Coordinate(0.0, 0.0, 0.0)


@dataclass(frozen=True)
class PartialCoordinate:
    """
    A move or position statement that touches only the axes it carries.

    At least one axis must be present; this is checked at construction.
    """

    carriage: Optional[float] = None
    mandrel: Optional[float] = None
    delivery_head: Optional[float] = None

    def __post_init__(self) -> None:
        if self.carriage is None and self.mandrel is None and self.delivery_head is None:
            raise ValueError("PartialCoordinate needs at least one axis")

    def get(self, axis: Axis) -> Optional[float]:
        return getattr(self, axis.name.lower())

    def items(self) -> Iterator[Tuple[Axis, float]]:
        """Yield (axis, value) for present axes in X, Y, Z order."""
        for axis in AXES:
            value = self.get(axis)
            if value is not None:
                yield axis, value


@dataclass(frozen=True)
class MandrelParameters:
    diameter: float  # mm
    wind_length: float  # mm; carriage travel covered by tow


@dataclass(frozen=True)
class TowParameters:
    width: float  # mm
    thickness: float  # mm


class LayerType(Enum):
    HOOP = "hoop"
    HELICAL = "helical"
    SKIP = "skip"


@dataclass(frozen=True)
class HoopLayer:
    """Near-perpendicular wrap, one there-and-back per layer."""

    terminal: bool = False
    wind_type: LayerType = field(default=LayerType.HOOP, init=False)


@dataclass(frozen=True)
class HelicalLayer:
    """Shallow-angle diagonal circuits tiled around the mandrel."""

    wind_angle: float  # deg from the mandrel axis
    pattern_number: int  # evenly spaced start positions per pattern
    skip_index: int
    lock_degrees: float  # mandrel rotation at each pass end
    lead_in_mm: float  # carriage travel while the head tilts into angle
    lead_out_degrees: float  # lock portion during which the head levels out
    skip_initial_near_lock: bool = False
    wind_type: LayerType = field(default=LayerType.HELICAL, init=False)


@dataclass(frozen=True)
class SkipLayer:
    """Index the mandrel between layers without laying tow."""

    mandrel_rotation: float  # deg
    wind_type: LayerType = field(default=LayerType.SKIP, init=False)


LayerSpec = Union[HoopLayer, HelicalLayer, SkipLayer]


@dataclass(frozen=True)
class WindParameters:
    """Complete wind definition, read-only for the planner."""

    layers: Tuple[LayerSpec, ...]
    mandrel: MandrelParameters
    tow: TowParameters
    default_feed_rate: float  # mm/min


@dataclass(frozen=True)
class LayerMetrics:
    index: int  # 0-based position in WindParameters.layers
    wind_type: LayerType
    planned: bool
    time_s: float
    tow_m: float


@dataclass(frozen=True)
class WindPlan:
    """Planner output; ``commands`` is the ordered G-code line sequence."""

    commands: Tuple[str, ...]
    layers: Tuple[LayerMetrics, ...]
    total_time_s: float
    total_tow_m: float

    @property
    def layer_summary(self) -> List[Dict[str, object]]:
        return [
            {
                "layer": metrics.index + 1,
                "type": metrics.wind_type.value,
                "planned": metrics.planned,
                "time_s": metrics.time_s,
                "tow_m": metrics.tow_m,
            }
            for metrics in self.layers
        ]
