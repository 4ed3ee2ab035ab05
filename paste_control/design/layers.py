"""Design-layer helpers.

Turns the pad positions of a board's paste and solder-mask layers into
the placement and fiducial-candidate lists the calibration model loads.
Pads that appear on the mask layer but not on the paste layer are
exposed copper with no paste, which is where fiducials live.

Pad areas are estimated from aperture shapes as mappings in the form a
Gerber parser emits them::

    {"type": "circle", "diameter": 0.6}
    {"type": "rectangle", "xSize": 1.0, "ySize": 0.5}
    {"type": "obround", "xSize": 1.2, "ySize": 0.6}
    {"type": "polygon", "diameter": 1.0, "vertices": 6}
    {"type": "macroShape", "name": "RoundRect", "variableValues": [...]}
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from paste_control.calibration.model import Fiducial, Placement

logger = logging.getLogger(__name__)

POINT_TOLERANCE_MM = 0.001
MACRO_FALLBACK_AREA = 0.5


@dataclass(frozen=True)
class DesignData:
    """Placements and fiducial candidates extracted from a design."""

    placements: list[Placement] = field(default_factory=list)
    fiducial_candidates: list[Fiducial] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Layer comparison
# ---------------------------------------------------------------------------


def _xy(point: Sequence[float]) -> tuple[float, float]:
    return float(point[0]), float(point[1])


def find_mask_only_points(
    mask_points: Sequence[Sequence[float]],
    paste_points: Sequence[Sequence[float]],
    tolerance: float = POINT_TOLERANCE_MM,
) -> list[tuple[float, float]]:
    """Return mask points with no paste point within *tolerance* on both axes.

    Order of *mask_points* is preserved.
    """
    paste = [_xy(p) for p in paste_points]
    result = []
    for m in mask_points:
        mx, my = _xy(m)
        if not any(abs(px - mx) < tolerance and abs(py - my) < tolerance
                   for px, py in paste):
            result.append((mx, my))
    return result


def design_from_layers(
    paste_points: Sequence[Sequence[float]],
    mask_points: Sequence[Sequence[float]] = (),
    tolerance: float = POINT_TOLERANCE_MM,
    default_z: float = 0.0,
    areas: Optional[Sequence[Optional[float]]] = None,
) -> DesignData:
    """Build placements and fiducial candidates from two pad layers.

    Parameters
    ----------
    paste_points : sequence of (x, y)
        Pad centres on the paste layer (mm).  Each becomes an unprobed
        placement.
    mask_points : sequence of (x, y)
        Pad centres on the solder-mask layer (mm).
    tolerance : float
        Per-axis match distance between layers (mm).
    default_z : float
        Z assigned to fiducial candidates.
    areas : sequence of float or None, optional
        Pad area per paste point (mm^2), e.g. from ``aperture_area``.

    Raises
    ------
    ValueError
        If *tolerance* is negative or *areas* does not match
        *paste_points* in length.
    """
    if tolerance < 0:
        raise ValueError(f"tolerance must be >= 0, got {tolerance}")
    if areas is not None and len(areas) != len(paste_points):
        raise ValueError(
            f"areas has {len(areas)} entries for {len(paste_points)} paste points"
        )

    placements = []
    for i, p in enumerate(paste_points):
        x, y = _xy(p)
        area = areas[i] if areas is not None else None
        placements.append(Placement(x=x, y=y, area=area))

    candidates = [
        Fiducial(x=x, y=y, z=default_z)
        for x, y in find_mask_only_points(mask_points, paste_points, tolerance)
    ]
    logger.info(
        "Design: %d placements, %d mask points, %d fiducial candidates",
        len(placements), len(mask_points), len(candidates),
    )
    return DesignData(placements=placements, fiducial_candidates=candidates)


# ---------------------------------------------------------------------------
# Aperture areas
# ---------------------------------------------------------------------------


def _bbox_area(values: Sequence[float], start: int, end: int, pad: float = 0.0) -> float:
    xs = [values[i] for i in range(start, end - 1, 2)]
    ys = [values[i + 1] for i in range(start, end - 1, 2)]
    if not xs:
        return MACRO_FALLBACK_AREA
    width = abs(max(xs) - min(xs)) + 2 * pad
    height = abs(max(ys) - min(ys)) + 2 * pad
    return width * height


def estimate_macro_area(shape: Mapping[str, Any]) -> Optional[float]:
    """Bounding-box area of a macro aperture from its parameters.

    The parameter layout is inferred from the macro name:

    - ``RoundRect``: ``[radius, x1, y1, ..., x4, y4, rotation]``; the
      radius extends beyond the corner points on every side.
    - ``RotRect``: ``[width, height, rotation]``.
    - ``Outline*``: ``[x1, y1, ..., rotation]``.
    - ``*Poly*``: ``[n_vertices, x1, y1, ..., rotation]``.

    Unknown macros treat a small leading value as a size and a large
    trailing value as a rotation.  Returns None without parameters.
    """
    values = [float(v) for v in shape.get("variableValues") or ()]
    if not values:
        return None
    name = str(shape.get("name", "")).lower()

    if "roundrect" in name or "roundedrect" in name:
        return _bbox_area(values, 1, len(values) - 1, pad=values[0])
    if "rotrect" in name or "rotatedrect" in name:
        if len(values) >= 2:
            return abs(values[0] * values[1])
        start, end = 0, len(values)
    elif "outline" in name:
        start, end = 0, len(values) - 1
    elif "poly" in name:
        start, end = 1, len(values) - 1
    else:
        start = 1 if abs(values[0]) < 5 else 0
        end = len(values) - 1 if abs(values[-1]) > 50 else len(values)
    return _bbox_area(values, start, end)


def aperture_area(shape: Optional[Mapping[str, Any]]) -> Optional[float]:
    """Pad area in mm^2 for an aperture shape, or None if unknown."""
    if not shape:
        return None
    kind = shape.get("type")

    if kind == "circle":
        r = shape["diameter"] / 2
        return math.pi * r * r
    if kind == "rectangle":
        return shape["xSize"] * shape["ySize"]
    if kind == "obround":
        lo = min(shape["xSize"], shape["ySize"])
        hi = max(shape["xSize"], shape["ySize"])
        return (hi - lo) * lo + math.pi * (lo / 2) ** 2
    if kind == "polygon":
        n = shape["vertices"]
        r = shape["diameter"] / 2
        return n * r * r * math.sin(2 * math.pi / n) / 2
    if kind == "macroShape":
        return estimate_macro_area(shape)

    logger.warning("Unknown aperture shape type: %s", kind)
    return None
