#!/usr/bin/env python3
"""
Run Job Script.

Dispense paste on every placement of a calibrated job file.

Usage:
    paste-run-job --job board.json                 # unattended batches
    paste-run-job --job board.json --automated     # learn, then replay timing
    paste-run-job --job board.json --dry-run       # print G-code only
    paste-run-job --job board.json --camera-to 5   # camera over placement 5

Ctrl+C during a run requests cancellation; the placement in progress is
finished before the run stops.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Sequence

from paste_control.calibration.job_file import (
    apply_dispense_settings,
    apply_job,
    load_job,
)
from paste_control.calibration.model import CalibrationModel
from paste_control.configs.loader import load_config
from paste_control.hardware.cancellation import CancellationToken, Outcome
from paste_control.hardware.job_executor import MIN_TIMING_SAMPLES, JobExecutor, RunProgress
from paste_control.hardware.prompt import get_yes_no
from paste_control.hardware.serial_client import Position, SerialClient
from paste_control.utils.logging_config import (
    install_excepthook,
    push_context,
    setup_logging,
)

logger = logging.getLogger(__name__)


class PrintTransport:
    """Transport that prints command batches instead of sending them."""

    def __init__(self) -> None:
        self.batches = 0

    def send(self, commands: Sequence[str] | str) -> None:
        lines = [commands] if isinstance(commands, str) else list(commands)
        self.batches += 1
        print(f"; batch {self.batches}")
        for line in lines:
            print(line)

    def query_machine_position(self) -> Position | None:
        return None


def _progress(progress: RunProgress) -> None:
    pct = 100.0 * progress.completed / progress.total if progress.total else 0.0
    print(
        f"\rProgress: {progress.completed}/{progress.total} ({pct:.1f}%) "
        f"{progress.message}",
        end="",
        flush=True,
    )


def _learn(executor: JobExecutor) -> bool:
    """Step placements by hand until enough timings are recorded."""
    print(
        f"Learning mode: each Enter stops the current pad and moves to the next. "
        f"Need {MIN_TIMING_SAMPLES} timed pads."
    )
    executor.advance_to_next()
    while len(executor.state.extrusion_timings) < MIN_TIMING_SAMPLES:
        if not get_yes_no("Pad done? Advance to next", default=True):
            return False
        if not executor.advance_to_next():
            return False
    return get_yes_no(
        f"Learned {executor.state.auto_extrusion_duration:.0f} ms per pad. "
        "Run remaining placements automatically?",
    )


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Dispense a calibrated job",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", type=str, help="Configuration file path")
    parser.add_argument("--port", "-p", type=str, help="Serial port override")
    parser.add_argument("--job", "-j", type=str, required=True, help="Job file")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--automated",
        "-a",
        action="store_true",
        help="Learn extrusion timing by hand, then replay it",
    )
    mode.add_argument(
        "--camera-to",
        type=int,
        metavar="N",
        help="Move the camera over placement N and exit",
    )
    mode.add_argument(
        "--nozzle-to",
        type=int,
        metavar="N",
        help="Move the tip to placement N at dispensing height and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the command batches but don't connect",
    )
    parser.add_argument("--log-level", default=None, help="Logging level")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    setup_logging(
        args.log_level or config.logging.level,
        config.logging.file,
        json=config.logging.json,
        context={"app": "run_job"},
    )
    install_excepthook()
    push_context(job=Path(args.job).name)

    try:
        job = load_job(args.job)
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        sys.exit(1)

    model = CalibrationModel(default_height=config.motion.default_z_mm)
    apply_job(job, model)
    config = apply_dispense_settings(config, job.dispense_settings)
    print(f"Job: {len(model.placements)} placements, status {model.status}")

    token = CancellationToken()

    def on_sigint(signum, frame):
        if token.is_cancelled:
            raise KeyboardInterrupt
        print("\nCancelling after the current placement (Ctrl+C again to abort)...")
        token.cancel()

    try:
        if args.dry_run:
            printer = PrintTransport()
            executor = JobExecutor(printer, model, config, sleep=lambda s: None)
            outcome = executor.run_job(token)
            print(f"; {printer.batches} batches, {outcome.name.lower()}")
            return

        client = SerialClient.from_config(config.connection)
        if args.port:
            client.port = args.port

        with client:
            executor = JobExecutor(client, model, config)
            executor.set_progress_callback(_progress)

            if args.camera_to is not None:
                executor.move_camera_to_placement(args.camera_to)
                return
            if args.nozzle_to is not None:
                executor.move_nozzle_to_placement(args.nozzle_to)
                return

            previous = signal.signal(signal.SIGINT, on_sigint)
            try:
                if args.automated:
                    if not _learn(executor):
                        executor.stop_dispensing()
                        print("Stopped in learning mode.")
                        return
                    outcome = executor.run_automated(token)
                else:
                    outcome = executor.run_job(token)
            finally:
                signal.signal(signal.SIGINT, previous)

            print()
            if outcome is Outcome.COMPLETED:
                print("Job completed successfully.")
            else:
                print("Job was cancelled.")

    except KeyboardInterrupt:
        print("\nJob interrupted.")
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}")
        logger.exception("Job failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
