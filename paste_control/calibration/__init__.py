"""
Calibration module.

Provides the calibration model, the fiducial selection workflow, guided
calibration procedures and the job file format.
"""

from paste_control.calibration.model import (
    CalibratedPoint,
    CalibrationModel,
    CalibrationStatus,
    Fiducial,
    HeightMode,
    Placement,
)
from paste_control.calibration.fiducials import (
    FiducialSelection,
    SelectionState,
    run_fiducial_selection,
)
from paste_control.calibration.routines import (
    ProcedureResult,
    calibrate_tip_offset,
    clear_placement_height,
    fine_registration,
    probe_placement_height,
    rough_registration,
    visual_home,
)
from paste_control.calibration.job_file import (
    JobFileV1,
    apply_job,
    dump_job,
    load_job,
)

__all__ = [
    "CalibratedPoint",
    "CalibrationModel",
    "CalibrationStatus",
    "Fiducial",
    "HeightMode",
    "Placement",
    "FiducialSelection",
    "SelectionState",
    "run_fiducial_selection",
    "ProcedureResult",
    "calibrate_tip_offset",
    "clear_placement_height",
    "fine_registration",
    "probe_placement_height",
    "rough_registration",
    "visual_home",
    "JobFileV1",
    "apply_job",
    "dump_job",
    "load_job",
]
