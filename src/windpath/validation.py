from __future__ import annotations

from typing import List

from .model import HelicalLayer, HoopLayer, MandrelParameters, TowParameters, WindParameters


def validate_mandrel(mandrel: MandrelParameters) -> List[str]:
    errors: List[str] = []

    if mandrel.diameter <= 0:
        errors.append("mandrel diameter must be > 0")

    if mandrel.wind_length <= 0:
        errors.append("mandrel windLength must be > 0")

    return errors


def validate_tow(tow: TowParameters) -> List[str]:
    errors: List[str] = []

    if tow.width <= 0:
        errors.append("tow width must be > 0")

    if tow.thickness < 0:
        errors.append("tow thickness must be >= 0")

    return errors


def validate_helical_layer(
    layer: HelicalLayer, mandrel: MandrelParameters, layer_number: int
) -> List[str]:
    errors: List[str] = []
    prefix = f"layer {layer_number} (helical)"

    if layer.wind_angle <= 0 or layer.wind_angle >= 90:
        errors.append(f"{prefix}: windAngle should be in (0, 90) degrees")

    if layer.pattern_number < 1:
        errors.append(f"{prefix}: patternNumber must be >= 1")

    if layer.lock_degrees < 0:
        errors.append(f"{prefix}: lockDegrees must be >= 0")

    if not 0 <= layer.lead_out_degrees <= max(layer.lock_degrees, 0):
        errors.append(f"{prefix}: leadOutDegrees must be within [0, lockDegrees]")

    if not 0 <= layer.lead_in_mm <= mandrel.wind_length:
        errors.append(f"{prefix}: leadInMM must be within [0, windLength]")

    return errors


def validate_layers(wind: WindParameters) -> List[str]:
    errors: List[str] = []

    if not wind.layers:
        errors.append("wind has no layers")

    for layer_index, layer in enumerate(wind.layers):
        layer_number = layer_index + 1
        if isinstance(layer, HelicalLayer):
            errors += validate_helical_layer(layer, wind.mandrel, layer_number)

    return errors


def find_unreachable_layers(wind: WindParameters) -> int:
    """Count layers that follow the first terminal hoop layer and will not be planned."""
    for layer_index, layer in enumerate(wind.layers):
        if isinstance(layer, HoopLayer) and layer.terminal:
            return len(wind.layers) - layer_index - 1
    return 0


def validate_wind(wind: WindParameters) -> List[str]:
    errors: List[str] = []
    errors += validate_mandrel(wind.mandrel)
    errors += validate_tow(wind.tow)
    if wind.default_feed_rate <= 0:
        errors.append("defaultFeedRate must be > 0")
    # Layer ranges are relative to the mandrel; skip them until it is sane.
    if errors:
        return errors
    errors += validate_layers(wind)
    return errors
