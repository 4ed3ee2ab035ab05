"""Least-squares plane fit for bed height compensation.

Fits ``A*x + B*y + C*z + D = 0`` to three or more probed points by total
least squares (SVD of the centred point cloud).  With exactly three
non-collinear points the plane passes through all of them.

Heights are then recovered with ``z = -(A*x + B*y + D) / C``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from paste_control.errors import DegeneratePoints

logger = logging.getLogger(__name__)

# |C| below this (unit normal) means the plane is effectively vertical.
VERTICAL_NORMAL_TOL = 1e-9


@dataclass(frozen=True)
class PlaneCoefficients:
    """Plane ``A*x + B*y + C*z + D = 0`` with ``C != 0``."""

    A: float
    B: float
    C: float
    D: float

    def height_at(self, x: float, y: float) -> float:
        return height_at_plane(x, y, self)

    def to_dict(self) -> dict[str, float]:
        return {"A": self.A, "B": self.B, "C": self.C, "D": self.D}


def fit_plane(points_xyz: Sequence[Sequence[float]]) -> PlaneCoefficients:
    """Fit a plane to probed ``(x, y, z)`` points.

    Parameters
    ----------
    points_xyz : sequence of (x, y, z)
        At least 3 points, in the same XY frame the plane will be
        queried in.

    Returns
    -------
    PlaneCoefficients
        Unit normal ``(A, B, C)`` oriented so that ``C > 0``.

    Raises
    ------
    ValueError
        If fewer than 3 points are supplied.
    DegeneratePoints
        If the points are collinear in XY or the fitted normal has no Z
        component.
    """
    pts = np.asarray(points_xyz, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"Expected (N, 3) points, got shape {pts.shape}")
    if len(pts) < 3:
        raise ValueError(f"Need >= 3 points for plane fit, got {len(pts)}")

    centroid = pts.mean(axis=0)
    centred = pts - centroid

    # Collinear in XY -> no unique height function over the board
    xy = centred[:, :2]
    xy_sv = np.linalg.svd(xy, compute_uv=False)
    if xy_sv[0] == 0.0 or xy_sv[1] / xy_sv[0] < 1e-9:
        raise DegeneratePoints("Plane-fit points are collinear in XY")

    _, _, vt = np.linalg.svd(centred)
    normal = vt[-1]
    if abs(normal[2]) < VERTICAL_NORMAL_TOL:
        raise DegeneratePoints("Fitted plane is vertical (C == 0)")
    if normal[2] < 0:
        normal = -normal

    a, b, c = (float(v) for v in normal)
    d = -float(np.dot(normal, centroid))
    coeffs = PlaneCoefficients(A=a, B=b, C=c, D=d)

    residuals = centred @ normal
    logger.debug(
        "Plane fit over %d points: %s (max residual %.4f mm)",
        len(pts), coeffs, float(np.max(np.abs(residuals))),
    )
    return coeffs


def height_at_plane(x: float, y: float, coeffs: PlaneCoefficients) -> float:
    """Solve the plane equation for Z at ``(x, y)``."""
    if coeffs.C == 0:
        raise DegeneratePoints("Plane coefficient C is zero")
    return -(coeffs.A * x + coeffs.B * y + coeffs.D) / coeffs.C
