"""Tests for design-layer helpers."""

from __future__ import annotations

import math

import pytest

from paste_control.calibration.model import Fiducial, Placement
from paste_control.design.layers import (
    aperture_area,
    design_from_layers,
    estimate_macro_area,
    find_mask_only_points,
)


class TestMaskOnly:
    def test_mask_only_points_are_candidates(self) -> None:
        paste = [(1.0, 1.0), (2.0, 2.0)]
        mask = [(1.0, 1.0), (2.0005, 2.0), (9.0, 9.0), (0.0, 5.0)]
        assert find_mask_only_points(mask, paste) == [(9.0, 9.0), (0.0, 5.0)]

    def test_tolerance_is_per_axis(self) -> None:
        assert find_mask_only_points([(1.002, 1.0)], [(1.0, 1.0)]) == [(1.002, 1.0)]
        assert find_mask_only_points([(1.002, 1.0)], [(1.0, 1.0)], tolerance=0.01) == []

    def test_design_from_layers(self) -> None:
        design = design_from_layers(
            [(1, 1), (2, 2)], [(1, 1), (2, 2), (8, 8)],
            default_z=31.5, areas=[0.25, None],
        )
        assert design.placements == [
            Placement(1.0, 1.0, area=0.25), Placement(2.0, 2.0),
        ]
        assert design.fiducial_candidates == [Fiducial(8.0, 8.0, 31.5)]

    def test_areas_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            design_from_layers([(1, 1)], areas=[1.0, 2.0])


class TestApertureArea:
    def test_circle(self) -> None:
        assert aperture_area({"type": "circle", "diameter": 2.0}) == pytest.approx(math.pi)

    def test_rectangle(self) -> None:
        assert aperture_area({"type": "rectangle", "xSize": 1.5, "ySize": 0.4}) == pytest.approx(0.6)

    def test_obround(self) -> None:
        area = aperture_area({"type": "obround", "xSize": 3.0, "ySize": 1.0})
        assert area == pytest.approx(2.0 + math.pi / 4)

    def test_polygon(self) -> None:
        # regular hexagon with circumradius 1
        area = aperture_area({"type": "polygon", "diameter": 2.0, "vertices": 6})
        assert area == pytest.approx(3 * math.sqrt(3) / 2)

    def test_unknown(self) -> None:
        assert aperture_area({"type": "thermal"}) is None
        assert aperture_area(None) is None

    def test_round_rect_macro_adds_radius(self) -> None:
        shape = {
            "type": "macroShape",
            "name": "RoundRect",
            "variableValues": [0.1, -0.5, 0.2, 0.5, 0.2, 0.5, -0.2, -0.5, -0.2, 0.0],
        }
        assert aperture_area(shape) == pytest.approx(1.2 * 0.6)

    def test_rot_rect_macro(self) -> None:
        shape = {"name": "RotRect", "variableValues": [1.0, 0.5, 45.0]}
        assert estimate_macro_area(shape) == pytest.approx(0.5)

    def test_outline_macro(self) -> None:
        shape = {"name": "Outline5P", "variableValues": [0, 0, 2, 0, 2, 1, 0, 1, 90]}
        assert estimate_macro_area(shape) == pytest.approx(2.0)

    def test_macro_without_values(self) -> None:
        assert estimate_macro_area({"name": "FreePoly0", "variableValues": []}) is None
