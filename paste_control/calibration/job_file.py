"""Job file schema and (de)serialisation.

A job file is a JSON document holding the design points and every
calibration artifact, so a board can be re-run without re-calibrating::

    {
      "originalPlacements": [{"x": 1.0, "y": 2.0, "z": null, "area": 0.5}, ...],
      "originalFiducials":  [{"x": 0.0, "y": 0.0, "z": 0.0}, ...],
      "fiducialsFinalized": true | false | null,
      "roughTransform":     {"a": 1, "b": 0, "c": 0, "d": 0, "e": 1, "f": 0} | null,
      "fineTransform":      {...} | null,
      "baseHeight":         31.2 | null,
      "planeCoefficients":  {"A": 0, "B": 0, "C": 1, "D": -31.2} | null,
      "meshData":           {"points": [[x, y, z], ...], "triangles": [[i, j, k], ...]} | null,
      "heightMode":         "plane" | "mesh",
      "tipOffsetX":         0.0,
      "tipOffsetY":         0.0,
      "dispenseSettings":   {"dispenseDegrees": 30, "retractionDegrees": 1,
                             "dwellMilliseconds": 100, "adaptive": false}
    }

Import tolerates missing optional fields (null / 0 defaults); export
always writes the full structure.  ``fiducialsFinalized`` tells a selected
triple apart from unselected candidates; files without it treat exactly
three stored fiducials as selected.  Validation uses pydantic models.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from paste_control.calibration.model import (
    CalibrationModel,
    Fiducial,
    HeightMode,
    Placement,
)
from paste_control.configs.loader import DispenseConfig, MachineConfig
from paste_control.geometry.affine import AffineTransform
from paste_control.geometry.mesh import HeightMesh
from paste_control.geometry.plane import PlaneCoefficients
from paste_control.utils.fs import atomic_write_text

logger = logging.getLogger(__name__)


# ============================================================================
# SCHEMA
# ============================================================================

class PlacementV1(BaseModel):
    """Placement in design millimetres; ``z`` null until probed."""
    x: float
    y: float
    z: Optional[float] = None
    area: Optional[float] = Field(None, ge=0.0, description="Pad area (mm^2)")


class FiducialV1(BaseModel):
    x: float
    y: float
    z: float = 0.0


class TransformV1(BaseModel):
    """Affine coefficients: x' = a*x + b*y + c, y' = d*x + e*y + f."""
    a: float
    b: float
    c: float
    d: float
    e: float
    f: float

    @model_validator(mode='after')
    def validate_invertible(self) -> 'TransformV1':
        if abs(self.a * self.e - self.b * self.d) < 1e-12:
            raise ValueError("Transform is not invertible (determinant ~ 0)")
        return self


class PlaneV1(BaseModel):
    A: float
    B: float
    C: float
    D: float

    @field_validator('C')
    @classmethod
    def validate_c(cls, v: float) -> float:
        if v == 0:
            raise ValueError("Plane coefficient C must be non-zero")
        return v


class MeshV1(BaseModel):
    points: List[Tuple[float, float, float]] = Field(..., min_length=3)
    triangles: List[Tuple[int, int, int]] = Field(..., min_length=1)

    @model_validator(mode='after')
    def validate_indices(self) -> 'MeshV1':
        n = len(self.points)
        for tri in self.triangles:
            if any(i < 0 or i >= n for i in tri):
                raise ValueError(f"Triangle {tri} references a vertex outside 0..{n - 1}")
        return self


class DispenseSettingsV1(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dispense_degrees: float = Field(30.0, gt=0.0, alias="dispenseDegrees")
    retraction_degrees: float = Field(1.0, ge=0.0, alias="retractionDegrees")
    dwell_milliseconds: int = Field(100, ge=0, alias="dwellMilliseconds")
    adaptive: bool = False

    @classmethod
    def from_config(cls, d: DispenseConfig) -> 'DispenseSettingsV1':
        return cls(
            dispense_degrees=d.dispense_degrees,
            retraction_degrees=d.retraction_degrees,
            dwell_milliseconds=d.dwell_ms,
            adaptive=d.adaptive.enabled,
        )


class JobFileV1(BaseModel):
    """Complete job file."""
    model_config = ConfigDict(populate_by_name=True)

    original_placements: List[PlacementV1] = Field(
        default_factory=list, alias="originalPlacements",
    )
    original_fiducials: List[FiducialV1] = Field(
        default_factory=list, alias="originalFiducials",
    )
    fiducials_finalized: Optional[bool] = Field(None, alias="fiducialsFinalized")
    rough_transform: Optional[TransformV1] = Field(None, alias="roughTransform")
    fine_transform: Optional[TransformV1] = Field(None, alias="fineTransform")
    base_height: Optional[float] = Field(None, alias="baseHeight")
    plane_coefficients: Optional[PlaneV1] = Field(None, alias="planeCoefficients")
    mesh_data: Optional[MeshV1] = Field(None, alias="meshData")
    height_mode: HeightMode = Field(HeightMode.PLANE, alias="heightMode")
    tip_offset_x: float = Field(0.0, alias="tipOffsetX")
    tip_offset_y: float = Field(0.0, alias="tipOffsetY")
    dispense_settings: DispenseSettingsV1 = Field(
        default_factory=DispenseSettingsV1, alias="dispenseSettings",
    )

    @field_validator('tip_offset_x', 'tip_offset_y', mode='before')
    @classmethod
    def null_offset_is_zero(cls, v):
        return 0.0 if v is None else v

    @model_validator(mode='after')
    def validate_finalized_triple(self) -> 'JobFileV1':
        if self.fiducials_finalized and len(self.original_fiducials) != 3:
            raise ValueError(
                "fiducialsFinalized requires 3 fiducials, "
                f"got {len(self.original_fiducials)}"
            )
        return self


# ============================================================================
# MODEL <-> SCHEMA
# ============================================================================

def _transform_v1(t: Optional[AffineTransform]) -> Optional[TransformV1]:
    if t is None:
        return None
    return TransformV1(a=t.a, b=t.b, c=t.c, d=t.d, e=t.e, f=t.f)


def _transform(t: Optional[TransformV1]) -> Optional[AffineTransform]:
    if t is None:
        return None
    return AffineTransform(a=t.a, b=t.b, c=t.c, d=t.d, e=t.e, f=t.f)


def job_from_model(
    model: CalibrationModel,
    settings: DispenseSettingsV1,
) -> JobFileV1:
    """Snapshot a calibration model into a job file.

    *settings* are written as the job's dispense settings; callers carry
    them over from the loaded job or seed them from the machine config.
    """
    finalized = bool(model.fiducials)
    fiducials = model.fiducials if finalized else model.potential_fiducials
    ox, oy = model.tip_offset
    plane = model.plane
    mesh = model.mesh
    return JobFileV1(
        original_placements=[
            PlacementV1(x=p.x, y=p.y, z=p.z, area=p.area)
            for p in model.placements
        ],
        original_fiducials=[FiducialV1(x=f.x, y=f.y, z=f.z) for f in fiducials],
        fiducials_finalized=finalized,
        rough_transform=_transform_v1(model.rough_transform),
        fine_transform=_transform_v1(model.fine_transform),
        base_height=model.base_height,
        plane_coefficients=PlaneV1(**plane.to_dict()) if plane else None,
        mesh_data=MeshV1(**mesh.to_dict()) if mesh else None,
        height_mode=model.height_mode,
        tip_offset_x=ox,
        tip_offset_y=oy,
        dispense_settings=settings,
    )


def apply_job(job: JobFileV1, model: CalibrationModel) -> None:
    """Load a job file into *model*, replacing its contents.

    Stored fiducials are restored as the finalized triple when the file
    marks them so; files without the marker finalize exactly 3 fiducials.
    Everything else becomes the candidate list.  Stored plane / mesh are
    installed as-is; a missing one is re-derived from the probed placements.
    """
    placements = [
        Placement(x=p.x, y=p.y, z=p.z, area=p.area)
        for p in job.original_placements
    ]
    fiducials = [Fiducial(x=f.x, y=f.y, z=f.z) for f in job.original_fiducials]

    model.load_design(placements)
    finalized = job.fiducials_finalized
    if finalized is None:
        finalized = len(fiducials) == 3
    if finalized:
        model.set_fiducials(fiducials)
    else:
        model.set_potential_fiducials(fiducials)

    model.set_rough_transform(_transform(job.rough_transform))
    model.set_fine_transform(_transform(job.fine_transform))
    model.base_height = job.base_height
    model.height_mode = job.height_mode
    model.tip_offset = (job.tip_offset_x, job.tip_offset_y)

    if job.plane_coefficients is not None or job.mesh_data is not None:
        plane = (
            PlaneCoefficients(**job.plane_coefficients.model_dump())
            if job.plane_coefficients is not None else model.plane
        )
        mesh = (
            HeightMesh.from_dict(job.mesh_data.model_dump())
            if job.mesh_data is not None else model.mesh
        )
        model.restore_surface(plane, mesh)

    logger.info(
        "Applied job: %d placements, %d fiducials, status=%s",
        len(placements), len(fiducials), model.status,
    )


def apply_dispense_settings(
    config: MachineConfig,
    settings: DispenseSettingsV1,
) -> MachineConfig:
    """Return *config* with the job's dispense settings substituted."""
    d = config.dispense
    dispense = replace(
        d,
        dispense_degrees=settings.dispense_degrees,
        retraction_degrees=settings.retraction_degrees,
        dwell_ms=settings.dwell_milliseconds,
        adaptive=replace(d.adaptive, enabled=settings.adaptive),
    )
    return replace(config, dispense=dispense)


# ============================================================================
# FILE I/O
# ============================================================================

def dump_job(
    path: Union[str, Path],
    model: CalibrationModel,
    settings: DispenseSettingsV1,
) -> JobFileV1:
    """Write the model to *path* atomically; returns the written document."""
    job = job_from_model(model, settings)
    text = json.dumps(job.model_dump(mode='json', by_alias=True), indent=2)
    atomic_write_text(path, text + "\n")
    logger.info("Saved job file %s", path)
    return job


def load_job(path: Union[str, Path]) -> JobFileV1:
    """Load and validate a job file.

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If the JSON is malformed or fails validation
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Job file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except json.JSONDecodeError as e:
        raise ValueError(f"Job file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Job file {path} must contain a JSON object")

    try:
        return JobFileV1.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Job file validation failed at {path}: {e}") from e
