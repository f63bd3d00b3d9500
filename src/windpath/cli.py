# cli entrypoint
from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import IO, List, Optional, Sequence

from .config import RunConfig, build_arg_parser, load_config_and_args, load_wind_definition
from .hardware import (
    InvalidStateError,
    LineTransport,
    LinkConnectionError,
    MarlinLink,
    SerialLineTransport,
    SimulatedController,
)
from .logging_utils import setup_logging
from .model import WindPlan
from .planner import plan_wind
from .validation import find_unreachable_layers, validate_wind

log = logging.getLogger(__name__)

WIND_SUFFIXES = (".wind", ".json")


def _plan_from_file(run_config: RunConfig) -> WindPlan:
    """Load, validate and plan the wind definition at ``run_config.input_path``."""
    try:
        wind = load_wind_definition(run_config.input_path)
    except FileNotFoundError:
        raise SystemExit(f"Wind definition not found: {run_config.input_path}")
    except ValueError as e:
        raise SystemExit(f"Invalid wind definition {run_config.input_path}: {e}") from e

    validation_errors = validate_wind(wind)
    if validation_errors:
        for error in validation_errors:
            print(f"ERROR: {error}")
        raise SystemExit("Validation failed; fix the wind definition before planning.")

    unreachable = find_unreachable_layers(wind)
    if unreachable:
        log.warning("%d layer(s) follow a terminal layer and will be dropped", unreachable)

    plan = plan_wind(wind, verbose=run_config.verbose)
    for row in plan.layer_summary:
        log.info(
            "Layer %(layer)d (%(type)s): planned=%(planned)s time=%(time_s).1fs tow=%(tow_m).3fm",
            row,
        )
    return plan


def _read_gcode(path: Path) -> List[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise SystemExit(f"G-code file not found: {path}")
    return [line for line in text.strip().splitlines() if line.strip()]


def _build_transport(run_config: RunConfig) -> LineTransport:
    if run_config.dry_run:
        return SimulatedController(response_delay_s=run_config.sim_response_delay_s)
    return SerialLineTransport(
        run_config.port,
        run_config.baud_rate,
        timeout_s=run_config.timeout_s,
    )


def operator_loop(link: MarlinLink, stream: IO[str], stop: threading.Event) -> None:
    """
    Translate operator lines into pause/resume/abort requests.

    ``p``/``pause`` and ``r``/``resume`` drive the pause protocol; ``q``/``abort``
    resets the link, which ends the run.
    """
    for raw in stream:
        if stop.is_set():
            return
        request = raw.strip().lower()
        if not request:
            continue
        try:
            if request in ("p", "pause"):
                link.pause()
            elif request in ("r", "resume"):
                link.resume()
            elif request in ("q", "quit", "abort"):
                link.reset()
                return
            else:
                log.warning("Unknown operator request %r (use pause, resume or abort)", request)
        except InvalidStateError as e:
            log.warning("%s", e)


def _run(run_config: RunConfig, operator_input: Optional[IO[str]]) -> None:
    if run_config.input_path.suffix.lower() in WIND_SUFFIXES:
        commands: Sequence[str] = _plan_from_file(run_config).commands
    else:
        commands = _read_gcode(run_config.input_path)

    link = MarlinLink(_build_transport(run_config))
    stop = threading.Event()
    try:
        for command in commands:
            link.queue_command(command)
        log.info("Sending %d line(s) from %s", len(commands), run_config.input_path)
        try:
            link.initialize()
        except LinkConnectionError as e:
            raise SystemExit(str(e)) from e

        if operator_input is not None:
            threading.Thread(
                target=operator_loop,
                args=(link, operator_input, stop),
                name="operator-input",
                daemon=True,
            ).start()

        if not link.wait_until_drained():
            raise SystemExit("Run aborted before all commands were acknowledged")
        log.info("All commands acknowledged")
    finally:
        stop.set()
        link.close()


def main(argv: Optional[Sequence[str]] = None, operator_input: Optional[IO[str]] = None) -> None:
    """Entry point for the command-line planner/sender."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    run_config = load_config_and_args(args)
    setup_logging(run_config.log_level)

    if run_config.command == "plan":
        plan = _plan_from_file(run_config)
        run_config.output_path.write_text("\n".join(plan.commands) + "\n", encoding="utf-8")
        log.info("Wrote %d line(s) to %s", len(plan.commands), run_config.output_path)
        return

    _run(run_config, operator_input if operator_input is not None else sys.stdin)


if __name__ == "__main__":
    main()
