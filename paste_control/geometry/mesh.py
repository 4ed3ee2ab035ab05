"""Delaunay height mesh for non-planar boards.

Scattered probe points are triangulated in the XY plane with
``scipy.spatial.Delaunay``.  A query point inside the triangulation is
interpolated barycentrically; a point outside the convex hull is snapped
to the nearest triangle by clamping its barycentric weights to [0, 1] and
renormalising, which extends the boundary height outward continuously.

The mesh lives in **design-file** coordinates: callers query it with the
untransformed placement ``(x, y)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from scipy.spatial import Delaunay, QhullError

from paste_control.errors import DegenerateTriangulation

logger = logging.getLogger(__name__)

# Barycentric weights >= -INSIDE_EPS count as inside (shared edges/vertices)
INSIDE_EPS = 1e-6


@dataclass(frozen=True, eq=False)
class HeightMesh:
    """Triangulated height field.

    Parameters
    ----------
    points : np.ndarray
        ``(N, 3)`` vertex array of ``(x, y, z)``.
    triangles : np.ndarray
        ``(M, 3)`` integer vertex indices, one row per triangle.
    """

    points: np.ndarray
    triangles: np.ndarray

    @property
    def n_triangles(self) -> int:
        return int(len(self.triangles))

    def height_at(self, x: float, y: float) -> float:
        return interpolate_height(x, y, self)

    def to_dict(self) -> dict[str, Any]:
        """Serialisable form stored under ``meshData`` in the job file."""
        return {
            "points": self.points.tolist(),
            "triangles": self.triangles.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HeightMesh:
        points = np.asarray(data["points"], dtype=np.float64).reshape(-1, 3)
        triangles = np.asarray(data["triangles"], dtype=np.int64).reshape(-1, 3)
        if len(triangles) == 0:
            raise DegenerateTriangulation("Stored mesh has no triangles")
        if triangles.max() >= len(points) or triangles.min() < 0:
            raise DegenerateTriangulation(
                "Stored mesh references vertices out of range"
            )
        return cls(points=points, triangles=triangles)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def build_mesh(points_xyz: Sequence[Sequence[float]]) -> HeightMesh:
    """Triangulate probed ``(x, y, z)`` points.

    Raises
    ------
    ValueError
        If fewer than 3 points are supplied or any coordinate is not finite.
    DegenerateTriangulation
        If the points are collinear / coincident (qhull failure).
    """
    pts = np.asarray(points_xyz, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"Expected (N, 3) points, got shape {pts.shape}")
    if len(pts) < 3:
        raise ValueError(f"Need >= 3 points for triangulation, got {len(pts)}")
    if not np.all(np.isfinite(pts)):
        raise ValueError("All mesh points must have finite x, y, z")

    try:
        tri = Delaunay(pts[:, :2])
    except QhullError as exc:
        raise DegenerateTriangulation(
            f"Delaunay triangulation failed (collinear points?): {exc}"
        ) from exc

    simplices = np.asarray(tri.simplices, dtype=np.int64)
    if len(simplices) == 0:
        raise DegenerateTriangulation("Delaunay triangulation produced no triangles")

    logger.info(
        "Built height mesh: %d points, %d triangles", len(pts), len(simplices),
    )
    return HeightMesh(points=pts, triangles=simplices)


# ---------------------------------------------------------------------------
# Interpolation
# ---------------------------------------------------------------------------


def barycentric_weights(
    px: float,
    py: float,
    p1: np.ndarray,
    p2: np.ndarray,
    p3: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Barycentric ``(u, v, w)`` of ``(px, py)`` for one or many triangles.

    *p1*, *p2*, *p3* are ``(..., 2)`` vertex arrays; the result arrays have
    the leading shape.  ``u`` weights *p1*, ``v`` weights *p2*, ``w``
    weights *p3*.  Zero-area triangles yield NaN weights.
    """
    v0 = p2 - p1
    v1 = p3 - p1
    v2 = np.array([px, py]) - p1

    dot00 = np.sum(v0 * v0, axis=-1)
    dot01 = np.sum(v0 * v1, axis=-1)
    dot02 = np.sum(v0 * v2, axis=-1)
    dot11 = np.sum(v1 * v1, axis=-1)
    dot12 = np.sum(v1 * v2, axis=-1)

    denom = dot00 * dot11 - dot01 * dot01
    with np.errstate(divide="ignore", invalid="ignore"):
        inv = np.where(denom != 0.0, 1.0 / denom, np.nan)
    v = (dot11 * dot02 - dot01 * dot12) * inv
    w = (dot00 * dot12 - dot01 * dot02) * inv
    u = 1.0 - v - w
    return u, v, w


def interpolate_height(x: float, y: float, mesh: HeightMesh) -> float:
    """Height at ``(x, y)``; interpolated inside, clamped-extrapolated outside."""
    verts = mesh.points[mesh.triangles]  # (M, 3, 3)
    p1, p2, p3 = verts[:, 0, :2], verts[:, 1, :2], verts[:, 2, :2]
    z = verts[:, :, 2]
    u, v, w = barycentric_weights(x, y, p1, p2, p3)

    valid = np.isfinite(u)
    inside = valid & (u >= -INSIDE_EPS) & (v >= -INSIDE_EPS) & (w >= -INSIDE_EPS)
    if np.any(inside):
        i = int(np.argmax(inside))
        return float(u[i] * z[i, 0] + v[i] * z[i, 1] + w[i] * z[i, 2])

    if not np.any(valid):
        raise DegenerateTriangulation("Mesh has no non-degenerate triangles")

    # Outside the hull: clamp + renormalise, keep the nearest projection
    weights = np.clip(np.stack([u, v, w], axis=-1), 0.0, 1.0)
    sums = weights.sum(axis=-1, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        weights = weights / sums
    proj = (
        weights[:, 0:1] * p1 + weights[:, 1:2] * p2 + weights[:, 2:3] * p3
    )
    dist = np.hypot(proj[:, 0] - x, proj[:, 1] - y)
    dist = np.where(valid & np.isfinite(dist), dist, np.inf)
    i = int(np.argmin(dist))
    return float(np.dot(weights[i], z[i]))
