"""Calibration model -- design points plus every calibration artifact.

Holds the design-file placements and fiducials (never transformed in
place) together with the artifacts the calibration procedures produce:

- *rough* and *fine* affine transforms (fine wins whenever present),
- the base height captured during rough registration,
- a least-squares plane and a Delaunay height mesh derived from the
  probed placements,
- the camera -> tip XY offset.

Derived "calibrated" point lists are recomputed on demand and cached
against a version counter that every mutation bumps.

Height resolution for a design point ``(x, y)``::

    mesh   (height_mode == "mesh" and a mesh exists)   queried at (x, y)
    plane  (coefficients exist)                        queried at T(x, y)
    base height
    the placement's own z, else the configured default height
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Sequence

from paste_control.errors import DegenerateGeometry
from paste_control.geometry.affine import AffineTransform
from paste_control.geometry.mesh import HeightMesh, build_mesh
from paste_control.geometry.plane import PlaneCoefficients, fit_plane

logger = logging.getLogger(__name__)

MIN_SURFACE_POINTS = 3


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Placement:
    """Paste deposit location in design-file millimetres.

    ``z`` is ``None`` until the placement has been probed.  ``area`` is the
    optional pad area (mm^2) used for adaptive dispense amounts.
    """

    x: float
    y: float
    z: float | None = None
    area: float | None = None

    @property
    def is_probed(self) -> bool:
        return self.z is not None


@dataclass(frozen=True)
class Fiducial:
    """Alignment mark in design-file millimetres."""

    x: float
    y: float
    z: float = 0.0


@dataclass(frozen=True)
class CalibratedPoint:
    """A design point mapped into machine coordinates.

    ``x``/``y``/``z`` are machine millimetres (tip offset not applied);
    ``design_x``/``design_y`` keep the source coordinates.
    """

    index: int
    x: float
    y: float
    z: float
    design_x: float
    design_y: float
    area: float | None = None


@dataclass(frozen=True)
class CalibrationStatus:
    """Derived summary of which artifacts exist."""

    has_rough: bool
    has_fine: bool
    has_surface: bool

    @property
    def is_calibrated(self) -> bool:
        return self.has_rough or self.has_fine


class HeightMode(str, Enum):
    """Which surface model answers height queries first."""

    PLANE = "plane"
    MESH = "mesh"


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class CalibrationModel:
    """Mutable calibration state for one board.

    Parameters
    ----------
    default_height : float
        Height returned for an unprobed placement when no surface and no
        base height exist (mm).
    """

    def __init__(self, default_height: float = 31.5) -> None:
        self._default_height = float(default_height)

        self._placements: list[Placement] = []
        self._potential_fiducials: list[Fiducial] = []
        self._fiducials: list[Fiducial] = []

        self._rough: AffineTransform | None = None
        self._fine: AffineTransform | None = None
        self._base_height: float | None = None
        self._plane: PlaneCoefficients | None = None
        self._mesh: HeightMesh | None = None
        self._height_mode = HeightMode.PLANE
        self._tip_offset: tuple[float, float] = (0.0, 0.0)

        self._version = 0
        self._cache_version = -1
        self._cached_placements: list[CalibratedPoint] = []
        self._cached_fiducials: list[CalibratedPoint] = []

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        """Monotonic counter bumped on every mutation."""
        return self._version

    def _bump(self) -> None:
        self._version += 1

    # ------------------------------------------------------------------
    # Design points
    # ------------------------------------------------------------------

    @property
    def placements(self) -> tuple[Placement, ...]:
        return tuple(self._placements)

    @property
    def fiducials(self) -> tuple[Fiducial, ...]:
        return tuple(self._fiducials)

    @property
    def potential_fiducials(self) -> tuple[Fiducial, ...]:
        return tuple(self._potential_fiducials)

    @property
    def default_height(self) -> float:
        return self._default_height

    def load_design(
        self,
        placements: Sequence[Placement],
        fiducial_candidates: Sequence[Fiducial] = (),
    ) -> None:
        """Replace all design points and discard every calibration artifact."""
        self._placements = list(placements)
        self._potential_fiducials = list(fiducial_candidates)
        self._fiducials = []
        self._rough = None
        self._fine = None
        self._base_height = None
        self._plane = None
        self._mesh = None
        self._bump()
        logger.info(
            "Loaded design: %d placements, %d fiducial candidates",
            len(self._placements), len(self._potential_fiducials),
        )

    def set_potential_fiducials(self, candidates: Sequence[Fiducial]) -> None:
        self._potential_fiducials = list(candidates)
        self._bump()

    def set_fiducials(self, fiducials: Sequence[Fiducial]) -> None:
        """Finalize the fiducial triple.

        Both transforms were measured against the previous triple, so they
        are cleared and the surface is refitted without them.
        """
        if len(fiducials) != 3:
            raise ValueError(f"Exactly 3 fiducials required, got {len(fiducials)}")
        self._fiducials = list(fiducials)
        self._potential_fiducials = []
        self._rough = None
        self._fine = None
        self._refit_surface()
        self._bump()
        logger.info("Fiducials set: %s", [(f.x, f.y) for f in self._fiducials])

    def delete_placement(self, index: int) -> None:
        self._check_index(index, len(self._placements), "placement")
        removed = self._placements.pop(index)
        if removed.is_probed:
            self._refit_surface()
        self._bump()
        logger.info("Deleted placement %d at (%.3f, %.3f)", index, removed.x, removed.y)

    def delete_fiducial(self, index: int) -> None:
        self._check_index(index, len(self._fiducials), "fiducial")
        removed = self._fiducials.pop(index)
        self._bump()
        logger.info("Deleted fiducial %d at (%.3f, %.3f)", index, removed.x, removed.y)

    @staticmethod
    def _check_index(index: int, length: int, kind: str) -> None:
        if not 0 <= index < length:
            raise IndexError(f"No {kind} at index {index} (have {length})")

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    @property
    def rough_transform(self) -> AffineTransform | None:
        return self._rough

    @property
    def fine_transform(self) -> AffineTransform | None:
        return self._fine

    @property
    def active_transform(self) -> AffineTransform | None:
        """``fine`` when present, else ``rough``, else ``None``."""
        return self._fine if self._fine is not None else self._rough

    def set_rough_transform(self, transform: AffineTransform | None) -> None:
        self._rough = transform
        self._refit_surface()
        self._bump()

    def set_fine_transform(self, transform: AffineTransform | None) -> None:
        self._fine = transform
        self._refit_surface()
        self._bump()

    def clear_fine(self) -> None:
        """Drop the fine transform; rough becomes active again."""
        self.set_fine_transform(None)

    # ------------------------------------------------------------------
    # Heights
    # ------------------------------------------------------------------

    @property
    def base_height(self) -> float | None:
        return self._base_height

    @base_height.setter
    def base_height(self, value: float | None) -> None:
        self._base_height = None if value is None else float(value)
        self._bump()

    @property
    def height_mode(self) -> HeightMode:
        return self._height_mode

    @height_mode.setter
    def height_mode(self, mode: HeightMode | str) -> None:
        self._height_mode = HeightMode(mode)
        self._bump()

    @property
    def plane(self) -> PlaneCoefficients | None:
        return self._plane

    @property
    def mesh(self) -> HeightMesh | None:
        return self._mesh

    @property
    def tip_offset(self) -> tuple[float, float]:
        return self._tip_offset

    @tip_offset.setter
    def tip_offset(self, offset: tuple[float, float]) -> None:
        self._tip_offset = (float(offset[0]), float(offset[1]))
        self._bump()

    def set_probe_height(self, index: int, z: float) -> None:
        """Write (or overwrite) the probed height of a placement."""
        self._check_index(index, len(self._placements), "placement")
        self._placements[index] = replace(self._placements[index], z=float(z))
        self._refit_surface()
        self._bump()
        logger.info("Probe height for placement %d set to %.3f", index, z)

    def clear_probe_height(self, index: int) -> None:
        self._check_index(index, len(self._placements), "placement")
        if self._placements[index].z is None:
            return
        self._placements[index] = replace(self._placements[index], z=None)
        self._refit_surface()
        self._bump()
        logger.info("Probe height for placement %d cleared", index)

    def restore_surface(
        self,
        plane: PlaneCoefficients | None,
        mesh: HeightMesh | None,
    ) -> None:
        """Install stored surface artifacts as-is (job-file import)."""
        self._plane = plane
        self._mesh = mesh
        self._bump()

    def _refit_surface(self) -> None:
        """Re-derive plane and mesh from the probed placements.

        The plane is fitted in machine space (through the active transform
        when one exists); the mesh stays in design space.  A degenerate fit
        leaves only that artifact unset.
        """
        probes = [p for p in self._placements if p.z is not None]
        if len(probes) < MIN_SURFACE_POINTS:
            if self._plane is not None or self._mesh is not None:
                logger.info(
                    "Only %d probed points; dropping plane and mesh", len(probes),
                )
            self._plane = None
            self._mesh = None
            return

        transform = self.active_transform
        plane_pts = []
        for p in probes:
            x, y = transform.apply(p.x, p.y) if transform else (p.x, p.y)
            plane_pts.append((x, y, p.z))
        try:
            self._plane = fit_plane(plane_pts)
        except DegenerateGeometry as exc:
            logger.warning("Plane fit failed, plane left unset: %s", exc)
            self._plane = None

        try:
            self._mesh = build_mesh([(p.x, p.y, p.z) for p in probes])
        except DegenerateGeometry as exc:
            logger.warning("Mesh build failed, mesh left unset: %s", exc)
            self._mesh = None

    def resolve_height(
        self,
        x: float,
        y: float,
        own_z: float | None = None,
    ) -> float:
        """Surface height (mm) for the design point ``(x, y)``."""
        if self._height_mode is HeightMode.MESH and self._mesh is not None:
            return self._mesh.height_at(x, y)
        if self._plane is not None:
            transform = self.active_transform
            mx, my = transform.apply(x, y) if transform else (x, y)
            return self._plane.height_at(mx, my)
        if self._base_height is not None:
            return self._base_height
        return own_z if own_z is not None else self._default_height

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def status(self) -> CalibrationStatus:
        return CalibrationStatus(
            has_rough=self._rough is not None,
            has_fine=self._fine is not None,
            has_surface=self._plane is not None or self._mesh is not None,
        )

    def _calibrate(
        self,
        index: int,
        x: float,
        y: float,
        own_z: float | None,
        area: float | None = None,
    ) -> CalibratedPoint:
        transform = self.active_transform
        mx, my = transform.apply(x, y) if transform else (x, y)
        return CalibratedPoint(
            index=index,
            x=mx,
            y=my,
            z=self.resolve_height(x, y, own_z),
            design_x=x,
            design_y=y,
            area=area,
        )

    def _refresh_cache(self) -> None:
        if self._cache_version == self._version:
            return
        self._cached_placements = [
            self._calibrate(i, p.x, p.y, p.z, p.area)
            for i, p in enumerate(self._placements)
        ]
        self._cached_fiducials = [
            self._calibrate(i, f.x, f.y, f.z)
            for i, f in enumerate(self._fiducials)
        ]
        self._cache_version = self._version

    def calibrated_placements(self) -> list[CalibratedPoint]:
        self._refresh_cache()
        return list(self._cached_placements)

    def calibrated_fiducials(self) -> list[CalibratedPoint]:
        self._refresh_cache()
        return list(self._cached_fiducials)
