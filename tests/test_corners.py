import cv2
import numpy as np
import pytest

from sheet_scanner.models import MarkerCandidate, Point, Rect
from sheet_scanner.tools import corner_resolver as cr
from sheet_scanner.tools.marker_detector import corner_filter, find_markers, preview_filter


def marker(x, y, side=20):
    return MarkerCandidate(
        center=Point(float(x), float(y)),
        area=float(side * side),
        bounding_box=Rect(int(x - side / 2), int(y - side / 2), side, side),
    )


def square_markers(dx=0.0, dy=0.0):
    return [
        marker(900 + dx, 100 + dy),
        marker(100 + dx, 900 + dy),
        marker(100 + dx, 100 + dy),
        marker(900 + dx, 900 + dy),
    ]


class TestResolveCorners:
    def test_fewer_than_four_markers(self):
        res = cr.resolve_corners(square_markers()[:3], 1000, 1000)
        assert not res.is_valid
        assert res.failure == cr.TOO_FEW_MARKERS
        assert res.quad is None

    def test_no_markers(self):
        res = cr.resolve_corners([], 1000, 1000)
        assert not res.is_valid

    def test_rectangle_resolves(self):
        res = cr.resolve_corners(square_markers(), 1000, 1000)
        assert res.is_valid
        quad = res.quad
        assert quad.top_left == Point(100.0, 100.0)
        assert quad.top_right == Point(900.0, 100.0)
        assert quad.bottom_right == Point(900.0, 900.0)
        assert quad.bottom_left == Point(100.0, 900.0)

    def test_interior_markers_are_ignored(self):
        markers = square_markers() + [marker(500, 500), marker(300, 700), marker(650, 200)]
        res = cr.resolve_corners(markers, 1000, 1000)
        assert res.is_valid
        assert res.quad.top_left == Point(100.0, 100.0)

    @pytest.mark.parametrize("dx,dy", [(40, 30), (-50, 60), (0, -80)])
    def test_translation_keeps_roles(self, dx, dy):
        base = cr.resolve_corners(square_markers(), 1000, 1000)
        moved = cr.resolve_corners(square_markers(dx, dy), 1000, 1000)
        assert moved.is_valid
        for name in ("top_left", "top_right", "bottom_left", "bottom_right"):
            a, b = getattr(base, name).center, getattr(moved, name).center
            assert (b.x - a.x, b.y - a.y) == (dx, dy)

    def test_one_marker_in_two_roles(self):
        line = [marker(100 * i, 100 * i) for i in range(1, 5)]
        res = cr.resolve_corners(line, 1000, 1000)
        assert not res.is_valid
        assert res.failure == cr.NOT_DISTINCT

    def test_marker_size_mismatch(self):
        markers = square_markers()
        markers[0] = marker(900, 100, side=80)   # 6400 vs 400
        res = cr.resolve_corners(markers, 1000, 1000)
        assert res.failure == cr.SIZE_MISMATCH

    def test_sheet_too_small(self):
        tiny = [marker(100, 100), marker(150, 100), marker(100, 150), marker(150, 150)]
        res = cr.resolve_corners(tiny, 1000, 1000)
        assert res.failure == cr.TOO_SMALL
        # positions are still reported for drawing
        assert res.top_left is not None and res.bottom_right is not None

    def test_span_is_measured_per_dimension(self):
        wide = [marker(100, 100), marker(900, 100), marker(100, 150), marker(900, 150)]
        res = cr.resolve_corners(wide, 1000, 1000)
        assert res.failure == cr.TOO_SMALL

    def test_trapezoid_is_not_rectangular(self):
        trap = [marker(150, 100), marker(250, 100), marker(0, 500), marker(400, 500)]
        res = cr.resolve_corners(trap, 1000, 1000)
        assert res.failure == cr.NOT_RECTANGULAR

    def test_detected_is_normalized(self):
        res = cr.resolve_corners(square_markers(), 1000, 2000)
        corners = res.detected(1000, 2000)
        assert corners.top_left == Point(0.1, 0.05)
        assert corners.bottom_right == Point(0.9, 0.45)


class TestFindMarkers:
    def _canvas(self):
        return np.zeros((400, 400), np.uint8)

    def test_square_kept_other_shapes_rejected(self):
        binary = self._canvas()
        cv2.rectangle(binary, (50, 50), (89, 89), 255, -1)        # square
        cv2.rectangle(binary, (200, 50), (279, 69), 255, -1)      # 80x20 bar
        cv2.rectangle(binary, (50, 250), (89, 259), 255, -1)      # L shape
        cv2.rectangle(binary, (50, 250), (59, 289), 255, -1)
        cv2.rectangle(binary, (300, 300), (302, 302), 255, -1)    # speck

        markers = find_markers(binary, 400, 400, corner_filter())
        assert len(markers) == 1
        assert markers[0].center.x == pytest.approx(70.0, abs=1.0)
        assert markers[0].center.y == pytest.approx(70.0, abs=1.0)
        assert markers[0].bounding_box.width == 40

    def test_empty_binary(self):
        assert find_markers(self._canvas(), 400, 400) == []

    def test_too_large_blob_rejected(self):
        binary = self._canvas()
        cv2.rectangle(binary, (20, 20), (219, 219), 255, -1)      # 25% of the frame
        assert find_markers(binary, 400, 400, corner_filter()) == []

    def test_preview_filter_has_pixel_floor(self):
        binary = np.zeros((1000, 1000), np.uint8)
        cv2.rectangle(binary, (100, 100), (119, 119), 255, -1)    # 400 px, below 800
        cv2.rectangle(binary, (500, 500), (549, 549), 255, -1)    # 2500 px
        markers = find_markers(binary, 1000, 1000, preview_filter())
        assert len(markers) == 1
        assert markers[0].center.x == pytest.approx(525.0, abs=1.0)
