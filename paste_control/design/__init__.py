"""Design-file helpers: placements, fiducial candidates and pad areas."""

from paste_control.design.layers import (
    DesignData,
    aperture_area,
    design_from_layers,
    estimate_macro_area,
    find_mask_only_points,
)

__all__ = [
    "DesignData",
    "aperture_area",
    "design_from_layers",
    "estimate_macro_area",
    "find_mask_only_points",
]
