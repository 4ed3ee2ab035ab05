"""
Geometry kernel.

Pure functions, no I/O: affine registration from two point triples,
least-squares plane fit, and Delaunay height mesh interpolation.
"""

from paste_control.geometry.affine import (
    AffineTransform,
    apply_transform,
    build_transform,
)
from paste_control.geometry.mesh import HeightMesh, build_mesh, interpolate_height
from paste_control.geometry.plane import (
    PlaneCoefficients,
    fit_plane,
    height_at_plane,
)

__all__ = [
    "AffineTransform",
    "apply_transform",
    "build_transform",
    "HeightMesh",
    "build_mesh",
    "interpolate_height",
    "PlaneCoefficients",
    "fit_plane",
    "height_at_plane",
]
