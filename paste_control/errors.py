"""Engine-level exception hierarchy.

Transport failures live with the transport (``hardware.serial_client``);
everything raised by the geometry kernel, the calibration model, the
calibration procedures and the job executor derives from
``PasteControlError``.

Cancellation is deliberately absent: a cancelled procedure or run is a
normal outcome (``Outcome.CANCELLED``), not an exception.
"""

from __future__ import annotations


class PasteControlError(Exception):
    """Base exception for all engine errors."""

    pass


class PreconditionFailed(PasteControlError):
    """A procedure or run was started without its prerequisites.

    Raised before any state mutation or motion (missing fiducials, no
    active transform, no placements, too few timing samples).
    """

    pass


class DegenerateGeometry(PasteControlError):
    """Input geometry cannot produce a well-defined artifact."""

    pass


class DegenerateTriangle(DegenerateGeometry):
    """Source or destination triangle of an affine fit is collinear."""

    pass


class DegeneratePoints(DegenerateGeometry):
    """Plane-fit points are collinear or define a vertical plane."""

    pass


class DegenerateTriangulation(DegenerateGeometry):
    """Delaunay triangulation produced no usable triangles."""

    pass


class FeatureNotDetected(PasteControlError):
    """Vision never located the alignment feature for a fiducial."""

    pass
