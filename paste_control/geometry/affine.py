"""2-D affine registration from two point triples.

The map is stored as six coefficients::

    x' = a*x + b*y + c
    y' = d*x + e*y + f

and is solved exactly from three source points and three destination
points.  Both triangles must be non-degenerate; a collinear triple in
either one raises ``DegenerateTriangle``.

All coordinates are in **millimetres**.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from paste_control.errors import DegenerateTriangle

logger = logging.getLogger(__name__)

# Relative area tolerance: twice the triangle area divided by the squared
# longest edge.  Scale-free, so it behaves the same for mm and um inputs.
COLLINEAR_TOL = 1e-9

PointLike = Sequence[float]


# ---------------------------------------------------------------------------
# Transform
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AffineTransform:
    """Immutable 2-D affine map.

    Parameters
    ----------
    a, b, c : float
        Row producing the output X.
    d, e, f : float
        Row producing the output Y.
    """

    a: float
    b: float
    c: float
    d: float
    e: float
    f: float

    @property
    def determinant(self) -> float:
        return self.a * self.e - self.b * self.d

    def apply(self, x: float, y: float) -> tuple[float, float]:
        """Map a single point."""
        return (
            self.a * x + self.b * y + self.c,
            self.d * x + self.e * y + self.f,
        )

    def apply_many(self, points: np.ndarray) -> np.ndarray:
        """Map an ``(N, 2)`` array of points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        linear = np.array([[self.a, self.b], [self.d, self.e]])
        return pts @ linear.T + np.array([self.c, self.f])

    def inverse(self) -> AffineTransform:
        """Return the inverse map (machine -> design)."""
        det = self.determinant
        if abs(det) < 1e-12:
            raise DegenerateTriangle("Affine transform is not invertible")
        ia = self.e / det
        ib = -self.b / det
        id_ = -self.d / det
        ie = self.a / det
        return AffineTransform(
            a=ia,
            b=ib,
            c=-(ia * self.c + ib * self.f),
            d=id_,
            e=ie,
            f=-(id_ * self.c + ie * self.f),
        )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def _as_triangle(points: Sequence[PointLike], label: str) -> np.ndarray:
    tri = np.asarray([(p[0], p[1]) for p in points], dtype=np.float64)
    if tri.shape != (3, 2):
        raise ValueError(
            f"{label} triangle needs exactly 3 points, got {len(points)}"
        )
    if not np.all(np.isfinite(tri)):
        raise DegenerateTriangle(f"{label} triangle has non-finite coordinates")
    return tri


def is_degenerate_triangle(tri: np.ndarray, tol: float = COLLINEAR_TOL) -> bool:
    """Return ``True`` if the three points are collinear within *tol*."""
    v1 = tri[1] - tri[0]
    v2 = tri[2] - tri[0]
    cross = abs(v1[0] * v2[1] - v1[1] * v2[0])
    edges = (tri[1] - tri[0], tri[2] - tri[1], tri[0] - tri[2])
    longest_sq = max(float(np.dot(e, e)) for e in edges)
    if longest_sq == 0.0:
        return True
    return cross / longest_sq <= tol


def build_transform(
    src: Sequence[PointLike],
    dst: Sequence[PointLike],
) -> AffineTransform:
    """Solve the affine map taking *src* onto *dst*.

    Parameters
    ----------
    src : sequence of 3 points
        Design-space triangle (``(x, y)`` or objects indexable the same way).
    dst : sequence of 3 points
        Measured machine-space triangle, same order as *src*.

    Returns
    -------
    AffineTransform

    Raises
    ------
    DegenerateTriangle
        If either triangle is collinear.
    """
    s = _as_triangle(src, "Source")
    d = _as_triangle(dst, "Destination")
    if is_degenerate_triangle(s):
        raise DegenerateTriangle(f"Source triangle is collinear: {s.tolist()}")
    if is_degenerate_triangle(d):
        raise DegenerateTriangle(
            f"Destination triangle is collinear: {d.tolist()}"
        )

    # [x y 1] @ [a d; b e; c f] = [x' y']
    lhs = np.column_stack([s, np.ones(3)])
    coeffs = np.linalg.solve(lhs, d)
    t = AffineTransform(
        a=float(coeffs[0, 0]),
        b=float(coeffs[1, 0]),
        c=float(coeffs[2, 0]),
        d=float(coeffs[0, 1]),
        e=float(coeffs[1, 1]),
        f=float(coeffs[2, 1]),
    )
    logger.debug("Built affine transform %s", t)
    return t


def apply_transform(
    transform: AffineTransform,
    point: PointLike,
) -> tuple[float, float]:
    """Functional form of ``AffineTransform.apply``."""
    return transform.apply(float(point[0]), float(point[1]))
