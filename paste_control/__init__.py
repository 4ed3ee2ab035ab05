"""
Paste Control Package.

Calibration and job-execution engine for a solder-paste dispensing
machine. Registers a board against its design file, models the board
surface and dispenses paste at every pad over a serial G-code link.

Subpackages:
    geometry: Affine registration, plane fit and Delaunay height mesh
    calibration: Calibration model, fiducial selection, procedures, job files
    hardware: Serial transport, machine macros, vision, job executor
    design: Placements and fiducial candidates from design layers
    configs: Machine configuration loading and validation
    utils: Filesystem and logging helpers
"""

__version__ = "0.1.0"

__all__ = ["geometry", "calibration", "hardware", "design", "configs", "utils"]
