# planner.py
from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Callable, Dict, List, Optional

from .events import Event, EventKind, EventSink, resolve_sink
from .geometry import (
    DELIVERY_HEAD_PASS_START_DEG,
    compute_helical_geometry,
    compute_hoop_geometry,
)
from .machine import WinderMachine
from .model import (
    HelicalLayer,
    HoopLayer,
    LayerMetrics,
    LayerSpec,
    LayerType,
    MandrelParameters,
    PartialCoordinate,
    SkipLayer,
    TowParameters,
    WindParameters,
    WindPlan,
)

log = logging.getLogger(__name__)

# Every layer planner performs a there-and-back and leaves the machine at
# (0, 0, 0). A terminal hoop layer may stop after the "there" pass.


def plan_hoop_layer(
    machine: WinderMachine,
    layer: HoopLayer,
    mandrel: MandrelParameters,
    tow: TowParameters,
    sink: Optional[EventSink] = None,
) -> None:
    """
    Plan one hoop layer: near lock, wind out, far lock, wind back, near lock.

    Args:
        machine: Emitter to append moves to.
        layer: Hoop settings; ``terminal`` parks the carriage at the far end.
        mandrel: Mandrel diameter and wind length.
        tow: Tow width drives the per-revolution advance.
        sink: Unused; accepted so every layer planner shares one signature.
    """
    geometry = compute_hoop_geometry(mandrel, tow)

    # Small near lock
    machine.move(PartialCoordinate(carriage=0.0, mandrel=geometry.lock_degrees, delivery_head=0.0))
    machine.move(PartialCoordinate(delivery_head=-geometry.wind_angle_deg))
    # Wind to the far end
    machine.move(PartialCoordinate(carriage=mandrel.wind_length, mandrel=geometry.far_mandrel_deg))
    machine.move(PartialCoordinate(mandrel=geometry.far_lock_deg, delivery_head=0.0))

    if layer.terminal:
        return

    machine.move(PartialCoordinate(delivery_head=geometry.wind_angle_deg))
    # Wind back to the near end
    machine.move(PartialCoordinate(carriage=0.0, mandrel=geometry.near_mandrel_deg))
    machine.move(PartialCoordinate(mandrel=geometry.near_lock_deg, delivery_head=0.0))
    machine.zero_axes(geometry.near_lock_deg)


def plan_helical_layer(
    machine: WinderMachine,
    layer: HelicalLayer,
    mandrel: MandrelParameters,
    tow: TowParameters,
    sink: Optional[EventSink] = None,
) -> bool:
    """
    Plan a helical layer as repeated diagonal circuits.

    ``pattern_number`` start positions are spread evenly around the mandrel
    and the whole pattern repeats until ``num_circuits`` circuits cover the
    surface. After each pass the mandrel advances by the lock minus the
    lead-out and the pass's own rotation, which steps each circuit over by one
    band and produces the diamond tiling.

    Returns:
        False if the layer was rejected and nothing was emitted, else True.
    """
    sink = resolve_sink(sink, log)

    if layer.pattern_number < 1:
        _warn(sink, f"Pattern number {layer.pattern_number} must be at least 1; skipping layer")
        return False
    if not 0.0 <= layer.lead_in_mm <= mandrel.wind_length:
        _warn(
            sink,
            f"Lead-in of {layer.lead_in_mm} mm does not fit in wind length "
            f"{mandrel.wind_length} mm; skipping layer",
        )
        return False

    geometry = compute_helical_geometry(layer, mandrel, tow)
    num_circuits = geometry.num_circuits
    pattern_number = layer.pattern_number

    log.info("Doing helical wind, %d circuits", num_circuits)
    if num_circuits % pattern_number != 0:
        _warn(
            sink,
            f"Circuit number of {num_circuits} not divisible by pattern number of {pattern_number}",
            num_circuits=num_circuits,
            pattern_number=pattern_number,
        )
        return False

    lock_degrees = layer.lock_degrees
    lead_out_degrees = layer.lead_out_degrees
    number_of_patterns = num_circuits // pattern_number
    passes = (
        # (head sign, carriage at lead-in end, carriage at pass end)
        (1.0, layer.lead_in_mm, mandrel.wind_length),
        (-1.0, mandrel.wind_length - layer.lead_in_mm, 0.0),
    )

    if not layer.skip_initial_near_lock:
        machine.move(PartialCoordinate(carriage=0.0, mandrel=lock_degrees, delivery_head=0.0))
        machine.set_position(PartialCoordinate(mandrel=0.0))

    mandrel_position = 0.0
    for pattern_index in range(number_of_patterns):
        for in_pattern_index in range(pattern_number):
            machine.insert_comment(
                f"\tPattern: {pattern_index + 1}/{number_of_patterns} "
                f"Circuit: {in_pattern_index + 1}/{pattern_number}"
            )

            for head_sign, lead_in_end, pass_end in passes:
                # Back to the start point, levelling the head from the last pass
                machine.move(PartialCoordinate(mandrel=mandrel_position, delivery_head=0.0))
                machine.move(
                    PartialCoordinate(delivery_head=head_sign * DELIVERY_HEAD_PASS_START_DEG)
                )

                # Lead in, tilting the head into its winding angle
                mandrel_position += geometry.lead_in_deg
                machine.move(
                    PartialCoordinate(
                        carriage=lead_in_end,
                        mandrel=mandrel_position,
                        delivery_head=head_sign * geometry.delivery_head_angle_deg,
                    )
                )

                mandrel_position += geometry.main_pass_deg
                machine.move(PartialCoordinate(carriage=pass_end, mandrel=mandrel_position))

                # Lead out through the start of the lock
                mandrel_position += lead_out_degrees
                machine.move(
                    PartialCoordinate(
                        mandrel=mandrel_position,
                        delivery_head=head_sign * DELIVERY_HEAD_PASS_START_DEG,
                    )
                )

                mandrel_position += (
                    lock_degrees - lead_out_degrees - (geometry.pass_rotation_deg % 360.0)
                )

            # Next start position within this pattern
            mandrel_position += geometry.pattern_step_deg * num_circuits / pattern_number

        # Next pattern start position
        mandrel_position += geometry.pattern_step_deg

    mandrel_position += lock_degrees
    machine.move(PartialCoordinate(mandrel=mandrel_position, delivery_head=0.0))
    machine.zero_axes(mandrel_position)
    return True


def plan_skip_layer(
    machine: WinderMachine,
    layer: SkipLayer,
    mandrel: MandrelParameters,
    tow: TowParameters,
    sink: Optional[EventSink] = None,
) -> None:
    """Advance the mandrel by ``layer.mandrel_rotation`` and call that zero."""
    machine.move(
        PartialCoordinate(carriage=0.0, mandrel=layer.mandrel_rotation, delivery_head=0.0)
    )
    machine.set_position(PartialCoordinate(mandrel=0.0))


LayerPlanner = Callable[..., Optional[bool]]

LAYER_PLANNERS: Dict[LayerType, LayerPlanner] = {
    LayerType.HOOP: plan_hoop_layer,
    LayerType.HELICAL: plan_helical_layer,
    LayerType.SKIP: plan_skip_layer,
}


def plan_wind(
    wind: WindParameters,
    *,
    verbose: bool = False,
    sink: Optional[EventSink] = None,
) -> WindPlan:
    """
    Plan every layer of a wind into one G-code program.

    The first line is a comment carrying the mandrel and tow parameters as JSON
    for downstream plotting. Once a terminal hoop layer has been planned, any
    remaining layers are dropped with a planning warning; everything planned up
    to that point is still returned.

    Args:
        wind: Wind definition.
        verbose: Log each emitted move at DEBUG.
        sink: Event sink; defaults to logging.

    Returns:
        WindPlan with the command lines and per-layer time/tow estimates.
    """
    sink = resolve_sink(sink, log)
    machine = WinderMachine(wind.mandrel.diameter, verbose=verbose)

    header = {
        "mandrel": {
            "diameter": wind.mandrel.diameter,
            "windLength": wind.mandrel.wind_length,
        },
        "tow": asdict(wind.tow),
    }
    machine.insert_comment(f"Parameters {json.dumps(header)}")
    machine.add_raw_gcode("G0 X0 Y0 Z0")
    machine.set_feed_rate(wind.default_feed_rate)

    total_layers = len(wind.layers)
    encountered_terminal = False
    previous_time_s = machine.get_gcode_time_s()
    previous_tow_m = machine.get_tow_length_m()
    metrics: List[LayerMetrics] = []

    for layer_index, layer in enumerate(wind.layers):
        if encountered_terminal:
            remaining = total_layers - layer_index
            _warn(
                sink,
                f"Attempting to plan {remaining} layer(s) after a terminal layer, aborting",
                skipped_layers=remaining,
            )
            break

        layer_comment = _layer_comment(layer, layer_index, total_layers)
        sink(Event(EventKind.LAYER_STARTED, layer_comment, {"layer": layer_index + 1}))
        machine.insert_comment(layer_comment)

        planner = LAYER_PLANNERS[layer.wind_type]
        planned = planner(machine, layer, wind.mandrel, wind.tow, sink=sink) is not False
        if isinstance(layer, HoopLayer):
            encountered_terminal = encountered_terminal or layer.terminal

        layer_metrics = LayerMetrics(
            index=layer_index,
            wind_type=layer.wind_type,
            planned=planned,
            time_s=machine.get_gcode_time_s() - previous_time_s,
            tow_m=machine.get_tow_length_m() - previous_tow_m,
        )
        metrics.append(layer_metrics)
        previous_time_s = machine.get_gcode_time_s()
        previous_tow_m = machine.get_tow_length_m()
        sink(
            Event(
                EventKind.LAYER_PLANNED,
                f"Layer {layer_index + 1}: time estimate {layer_metrics.time_s:.1f} s, "
                f"tow required {layer_metrics.tow_m:.3f} m",
                {"metrics": layer_metrics},
            )
        )

    plan = WindPlan(
        commands=tuple(machine.get_gcode()),
        layers=tuple(metrics),
        total_time_s=machine.get_gcode_time_s(),
        total_tow_m=machine.get_tow_length_m(),
    )
    sink(
        Event(
            EventKind.WIND_PLANNED,
            f"Total time estimate: {plan.total_time_s:.1f} s, "
            f"total tow required: {plan.total_tow_m:.3f} m",
            {"total_time_s": plan.total_time_s, "total_tow_m": plan.total_tow_m},
        )
    )
    return plan


def _layer_comment(layer: LayerSpec, layer_index: int, total_layers: int) -> str:
    comment = f"Layer {layer_index + 1} of {total_layers}: {layer.wind_type.value}"
    if isinstance(layer, HelicalLayer):
        comment += f" (angle {layer.wind_angle}, skip index {layer.skip_index})"
    return comment


def _warn(sink: EventSink, message: str, **data) -> None:
    sink(Event(EventKind.PLANNING_WARNING, message, data))
