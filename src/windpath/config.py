# config.py
from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # type: ignore

from .model import (
    HelicalLayer,
    HoopLayer,
    LayerSpec,
    LayerType,
    MandrelParameters,
    SkipLayer,
    TowParameters,
    WindParameters,
)

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.toml")


@dataclass
class RunConfig:
    command: str  # "plan" or "run"
    input_path: Path
    output_path: Optional[Path]
    port: Optional[str]
    baud_rate: int
    timeout_s: float
    dry_run: bool
    sim_response_delay_s: float
    verbose: bool
    log_level: str


def build_arg_parser() -> argparse.ArgumentParser:
    """
    Build the CLI parser with ``plan`` and ``run`` subcommands.

    Returns:
        Configured argparse.ArgumentParser instance.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        help="TOML config file (defaults to config.toml if present)",
    )
    common.add_argument("--log-level", help="Log level name (default INFO)")
    common.add_argument(
        "--verbose", action="store_true", default=None, help="Log every planned move"
    )

    p = argparse.ArgumentParser(
        prog="windpath",
        description="Filament winding toolpath planner and machine sender",
    )
    sub = p.add_subparsers(dest="command", required=True)

    plan = sub.add_parser("plan", parents=[common], help="Plan a wind definition into G-code")
    plan.add_argument("wind_file", type=Path, help="Wind definition (.wind / .json)")
    plan.add_argument(
        "-o", "--output", type=Path, help="Write G-code here instead of <wind_file>.gcode"
    )

    run = sub.add_parser(
        "run", parents=[common], help="Stream G-code (or a wind definition) to the machine"
    )
    run.add_argument("input_file", type=Path, help="G-code file, or a wind definition to plan")
    run.add_argument("--port", help="Serial port of the winder controller")
    run.add_argument("--baud-rate", type=int, help="Serial baud rate (default 115200)")
    run.add_argument("--timeout-s", type=float, help="Serial read timeout seconds")
    run.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Stream to a simulated controller instead of a serial port",
    )
    run.add_argument(
        "--sim-response-delay-s",
        type=float,
        help="Simulated controller delay per reply (dry run only)",
    )
    return p


def _load_toml(path: Path) -> dict:
    """
    Load a TOML config file.

    Raises:
        FileNotFoundError: If the file is missing.
        tomllib.TOMLDecodeError: On parse errors.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("rb") as f:
        return tomllib.load(f)


def _dict_get_nested(data: dict, key: str, default=None):
    """Fetch a dotted-path value (``"link.port"``) from nested dicts."""
    parts = key.split(".")
    current_level = data
    for part in parts[:-1]:
        current_level = current_level.get(part, {})
    return current_level.get(parts[-1], default)


def load_config_and_args(args: argparse.Namespace) -> RunConfig:
    """
    Merge CLI args over TOML config into a RunConfig.

    Raises:
        SystemExit: On a missing explicit config, unreadable config, or a
            ``run`` without a port outside dry-run mode.
    """
    cfg_data: dict = {}
    cfg_path: Optional[Path] = getattr(args, "config", None)
    used_default = False

    if cfg_path is None and DEFAULT_CONFIG_PATH.exists():
        cfg_path = DEFAULT_CONFIG_PATH
        used_default = True

    if cfg_path is not None:
        try:
            cfg_data = _load_toml(cfg_path)
        except FileNotFoundError:
            # Explicit --config must exist; default config.toml may be absent
            if not used_default:
                raise SystemExit(f"Config file not found: {cfg_path}")
        except Exception as e:
            raise SystemExit(f"Failed to load config file {cfg_path}: {e}") from e

    port = _dict_get_nested(cfg_data, "link.port", None)
    baud_rate = int(_dict_get_nested(cfg_data, "link.baud_rate", 115200))
    timeout_s = float(_dict_get_nested(cfg_data, "link.timeout_s", 0.1))
    dry_run = bool(_dict_get_nested(cfg_data, "link.dry_run", False))
    sim_response_delay_s = float(_dict_get_nested(cfg_data, "link.sim_response_delay_s", 0.0))
    verbose = bool(_dict_get_nested(cfg_data, "planner.verbose", False))
    log_level = str(_dict_get_nested(cfg_data, "logging.level", "INFO"))

    # CLI overrides
    if getattr(args, "port", None) is not None:
        port = args.port
    if getattr(args, "baud_rate", None) is not None:
        baud_rate = args.baud_rate
    if getattr(args, "timeout_s", None) is not None:
        timeout_s = args.timeout_s
    if getattr(args, "dry_run", None) is not None:
        dry_run = bool(args.dry_run)
    if getattr(args, "sim_response_delay_s", None) is not None:
        sim_response_delay_s = args.sim_response_delay_s
    if getattr(args, "verbose", None) is not None:
        verbose = bool(args.verbose)
    if getattr(args, "log_level", None) is not None:
        log_level = args.log_level

    command = args.command
    if command == "plan":
        input_path = args.wind_file
        output_path = args.output or input_path.with_suffix(".gcode")
    else:
        input_path = args.input_file
        output_path = None
        if not dry_run and not port:
            raise SystemExit("A serial port is required (--port or [link] port) unless --dry-run")

    if baud_rate <= 0:
        raise SystemExit("baud_rate must be > 0")

    return RunConfig(
        command=command,
        input_path=input_path,
        output_path=output_path,
        port=port,
        baud_rate=baud_rate,
        timeout_s=timeout_s,
        dry_run=dry_run,
        sim_response_delay_s=sim_response_delay_s,
        verbose=verbose,
        log_level=log_level,
    )


def _require(data: Dict[str, Any], key: str, where: str) -> Any:
    if key not in data:
        raise ValueError(f"{where}: missing '{key}'")
    return data[key]


def parse_layer(data: Dict[str, Any], layer_number: int) -> LayerSpec:
    """
    Build a layer from its wind-definition mapping.

    Raises:
        ValueError: On an unknown ``windType`` or a missing field.
    """
    where = f"layer {layer_number}"
    wind_type = _require(data, "windType", where)
    try:
        layer_type = LayerType(wind_type)
    except ValueError:
        raise ValueError(f"{where}: unknown windType '{wind_type}'") from None

    if layer_type is LayerType.HOOP:
        return HoopLayer(terminal=bool(data.get("terminal", False)))
    if layer_type is LayerType.HELICAL:
        return HelicalLayer(
            wind_angle=float(_require(data, "windAngle", where)),
            pattern_number=int(_require(data, "patternNumber", where)),
            skip_index=int(_require(data, "skipIndex", where)),
            lock_degrees=float(_require(data, "lockDegrees", where)),
            lead_in_mm=float(_require(data, "leadInMM", where)),
            lead_out_degrees=float(_require(data, "leadOutDegrees", where)),
            skip_initial_near_lock=bool(data.get("skipInitialNearLock", False)),
        )
    return SkipLayer(mandrel_rotation=float(_require(data, "mandrelRotation", where)))


def parse_wind_definition(data: Dict[str, Any]) -> WindParameters:
    """
    Convert a decoded wind definition into WindParameters.

    Raises:
        ValueError: If a section or field is missing or a layer is malformed.
    """
    mandrel = _require(data, "mandrelParameters", "wind")
    tow = _require(data, "towParameters", "wind")
    layers = _require(data, "layers", "wind")
    if not isinstance(layers, list):
        raise ValueError("wind: 'layers' must be a list")

    return WindParameters(
        layers=tuple(parse_layer(layer, index + 1) for index, layer in enumerate(layers)),
        mandrel=MandrelParameters(
            diameter=float(_require(mandrel, "diameter", "mandrelParameters")),
            wind_length=float(_require(mandrel, "windLength", "mandrelParameters")),
        ),
        tow=TowParameters(
            width=float(_require(tow, "width", "towParameters")),
            thickness=float(_require(tow, "thickness", "towParameters")),
        ),
        default_feed_rate=float(_require(data, "defaultFeedRate", "wind")),
    )


def load_wind_definition(path: Path) -> WindParameters:
    """
    Read a JSON wind definition from ``path``.

    Raises:
        FileNotFoundError: If the file is missing.
        ValueError: On invalid JSON or a malformed definition.
    """
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    wind = parse_wind_definition(data)
    log.debug("Loaded wind with %d layer(s) from %s", len(wind.layers), path)
    return wind
