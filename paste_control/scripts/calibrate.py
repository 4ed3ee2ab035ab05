#!/usr/bin/env python3
"""Calibration entry point -- all routines are opt-in.

Usage::

    paste-calibrate --job board.json --paste paste.txt --mask mask.txt
    paste-calibrate --job board.json --select-fiducials
    paste-calibrate --job board.json --rough
    paste-calibrate --job board.json --fine --camera 0
    paste-calibrate --job board.json --tip-offset
    paste-calibrate --job board.json --probe 0 --probe 12 --probe 31
    paste-calibrate --job board.json --height-mode mesh
    paste-calibrate --visual-home --camera 0

Point files hold one pad per line: ``x y [area]`` in millimetres.
Routines run in the order listed above and the job file is saved after
each one that completes.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

import numpy as np

from paste_control.calibration import job_file, routines
from paste_control.calibration.fiducials import run_fiducial_selection
from paste_control.calibration.model import CalibrationModel, Fiducial
from paste_control.configs.loader import MachineConfig, load_config
from paste_control.design.layers import design_from_layers
from paste_control.hardware.cancellation import Outcome
from paste_control.hardware.macros import MachineMacros
from paste_control.hardware.prompt import ConsolePrompt, get_int_input
from paste_control.hardware.serial_client import SerialClient
from paste_control.hardware.vision import CameraFrameSource, HoughCircleDetector
from paste_control.utils.logging_config import (
    install_excepthook,
    pop_context,
    push_context,
    setup_logging,
)

logger = logging.getLogger(__name__)


def _read_points(path: str) -> np.ndarray:
    pts = np.loadtxt(path, ndmin=2, comments="#")
    if pts.shape[1] < 2:
        raise ValueError(f"{path}: expected at least 2 columns (x y), got {pts.shape[1]}")
    return pts


def _load_or_create(
    args: argparse.Namespace, config: MachineConfig,
) -> tuple[CalibrationModel, job_file.DispenseSettingsV1]:
    """Model plus the dispense settings to write back with it.

    An existing job keeps its own settings; a new one starts from the
    machine config.
    """
    model = CalibrationModel(default_height=config.motion.default_z_mm)
    settings = job_file.DispenseSettingsV1.from_config(config.dispense)
    if args.paste:
        paste = _read_points(args.paste)
        mask = _read_points(args.mask) if args.mask else np.empty((0, 2))
        areas = paste[:, 2].tolist() if paste.shape[1] > 2 else None
        design = design_from_layers(
            paste[:, :2], mask[:, :2],
            default_z=config.motion.default_z_mm, areas=areas,
        )
        model.load_design(design.placements, design.fiducial_candidates)
    elif args.job and Path(args.job).exists():
        job = job_file.load_job(args.job)
        job_file.apply_job(job, model)
        settings = job.dispense_settings
    return model, settings


def _console_choose(prompt: str, candidates: Sequence[Fiducial]) -> int | None:
    print(f"\n{prompt}")
    for i, f in enumerate(candidates, start=1):
        print(f"  {i:3d}: ({f.x:8.3f}, {f.y:8.3f})")
    choice = get_int_input("Fiducial", 1, len(candidates))
    return None if choice is None else choice - 1


def _report(name: str, result: routines.ProcedureResult) -> bool:
    if result.outcome is Outcome.CANCELLED:
        print(f"{name}: cancelled")
        return False
    print(f"{name}: done")
    return True


def _step(name: str, procedure, *args) -> bool:
    """Run one procedure with its name in the log context."""
    push_context(step=name)
    try:
        return _report(name, procedure(*args))
    finally:
        pop_context(["step"])


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Board calibration (all routines are opt-in)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", "-c", type=str, help="Config file path")
    parser.add_argument("--port", "-p", type=str, help="Serial port override")
    parser.add_argument("--job", "-j", type=str,
                        help="Job file to load and save")
    parser.add_argument("--paste", type=str,
                        help="Paste-layer pad file; starts a new job")
    parser.add_argument("--mask", type=str,
                        help="Mask-layer pad file (with --paste)")
    parser.add_argument("--camera", type=str, default="0",
                        help="Camera device index or path (default: 0)")
    parser.add_argument("--select-fiducials", action="store_true",
                        help="Pick the 3 registration fiducials")
    parser.add_argument("--reselect", action="store_true",
                        help="Re-pick from the current fiducials "
                        "(with --select-fiducials)")
    parser.add_argument("--rough", action="store_true",
                        help="Rough registration by jogging")
    parser.add_argument("--fine", action="store_true",
                        help="Fine registration by camera")
    parser.add_argument("--tip-offset", action="store_true",
                        help="Measure camera-to-tip offset")
    parser.add_argument("--probe", type=int, action="append", default=[],
                        metavar="N", help="Probe placement N (repeatable)")
    parser.add_argument("--clear-probe", type=int, action="append", default=[],
                        metavar="N", help="Forget the probed height of placement N")
    parser.add_argument("--height-mode", choices=["plane", "mesh"],
                        help="Surface model used for placement heights")
    parser.add_argument("--visual-home", action="store_true",
                        help="Re-home XY on the datum fiducial")
    parser.add_argument("--log-level", default=None, help="Logging level")
    args = parser.parse_args(argv)

    machine_steps = any([
        args.rough, args.fine, args.tip_offset, args.probe, args.visual_home,
    ])
    selected = machine_steps or any([
        args.paste, args.select_fiducials, args.clear_probe, args.height_mode,
    ])
    if not selected:
        parser.print_help()
        print("\nError: select at least one routine (e.g. --rough).")
        sys.exit(1)
    if args.mask and not args.paste:
        parser.error("--mask requires --paste")

    try:
        config = load_config(args.config)
    except Exception as exc:
        print(f"Error loading config: {exc}")
        sys.exit(1)

    setup_logging(
        args.log_level or config.logging.level,
        config.logging.file,
        json=config.logging.json,
        context={"app": "calibrate"},
    )
    install_excepthook()
    if args.job:
        push_context(job=Path(args.job).name)

    try:
        model, settings = _load_or_create(args, config)
    except (OSError, ValueError) as exc:
        logger.error("Cannot load design: %s", exc)
        sys.exit(1)

    def save() -> None:
        if args.job:
            job_file.dump_job(args.job, model, settings)

    try:
        if args.select_fiducials:
            outcome = run_fiducial_selection(
                model, _console_choose, reselect=args.reselect,
            )
            print(f"Fiducial selection: {outcome.name.lower()}")
            if outcome is Outcome.COMPLETED:
                save()

        for index in args.clear_probe:
            routines.clear_placement_height(model, index)
        if args.height_mode:
            model.height_mode = args.height_mode
        if args.paste or args.clear_probe or args.height_mode:
            save()

        if machine_steps:
            _run_machine_steps(args, config, model, save)

        print(f"\nCalibration status: {model.status}")

    except KeyboardInterrupt:
        print("\nCalibration interrupted by user.")
        sys.exit(1)
    except Exception as exc:
        logger.exception("Calibration error: %s", exc)
        sys.exit(1)


def _run_machine_steps(
    args: argparse.Namespace,
    config: MachineConfig,
    model: CalibrationModel,
    save,
) -> None:
    client = SerialClient.from_config(config.connection)
    if args.port:
        client.port = args.port

    camera = None
    detector = None
    if args.fine or args.visual_home:
        device = int(args.camera) if args.camera.isdigit() else args.camera
        camera = CameraFrameSource(device)
        detector = HoughCircleDetector(camera, config.vision.hough)

    try:
        with client:
            macros = MachineMacros(client, config)
            prompt = ConsolePrompt(macros, increments=config.motion.jog_increments_mm)

            if args.visual_home:
                _step("Visual home", routines.visual_home, client, detector, config)

            if args.rough and _step(
                "Rough registration",
                routines.rough_registration, client, prompt, model, config,
            ):
                save()

            if args.fine and _step(
                "Fine registration",
                routines.fine_registration, client, detector, model, config,
            ):
                save()

            if args.tip_offset and _step(
                "Tip offset",
                routines.calibrate_tip_offset, client, prompt, model, config,
            ):
                save()

            for index in args.probe:
                if not _step(
                    f"Probe placement {index}",
                    routines.probe_placement_height,
                    client, prompt, model, config, index,
                ):
                    break
                save()
    finally:
        if camera is not None:
            camera.release()


if __name__ == "__main__":
    main()
