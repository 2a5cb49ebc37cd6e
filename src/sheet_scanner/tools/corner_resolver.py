# src/sheet_scanner/tools/corner_resolver.py
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from ..models import CornerQuad, DetectedCorners, MarkerCandidate, Point
from ..scan_defaults import DEFAULTS, ScanDefaults

logger = logging.getLogger(__name__)

# failure reasons, in the order the checks run
TOO_FEW_MARKERS = "too_few_markers"
UNRESOLVED = "unresolved_corners"
NOT_DISTINCT = "corners_not_distinct"
SIZE_MISMATCH = "marker_size_mismatch"
TOO_SMALL = "sheet_too_small"
NOT_RECTANGULAR = "not_rectangular"


@dataclass(frozen=True)
class CornerResolution:
    """
    Outcome of picking four corner markers. Corner positions are kept even
    when a check fails so they can still be drawn.
    """
    is_valid: bool
    top_left: Optional[MarkerCandidate] = None
    top_right: Optional[MarkerCandidate] = None
    bottom_left: Optional[MarkerCandidate] = None
    bottom_right: Optional[MarkerCandidate] = None
    failure: Optional[str] = None

    @property
    def quad(self) -> Optional[CornerQuad]:
        if not self.is_valid:
            return None
        return CornerQuad(
            top_left=self.top_left.center,
            top_right=self.top_right.center,
            bottom_right=self.bottom_right.center,
            bottom_left=self.bottom_left.center,
        )

    def detected(self, image_width: int, image_height: int, all_markers: Sequence[Point] = ()) -> DetectedCorners:
        def norm(m: Optional[MarkerCandidate]) -> Optional[Point]:
            return m.center.normalized(image_width, image_height) if m is not None else None

        return DetectedCorners(
            top_left=norm(self.top_left),
            top_right=norm(self.top_right),
            bottom_left=norm(self.bottom_left),
            bottom_right=norm(self.bottom_right),
            all_markers=list(all_markers),
        )


def _ratio(a: float, b: float) -> float:
    hi = max(a, b)
    return min(a, b) / hi if hi > 0 else 0.0


def resolve_corners(
    markers: List[MarkerCandidate],
    image_width: int,
    image_height: int,
    defaults: ScanDefaults = DEFAULTS,
) -> CornerResolution:
    """
    Pick the extreme markers along both diagonals:
      top-left = min(x+y), bottom-right = max(x+y),
      top-right = max(x-y), bottom-left = max(y-x)
    then validate the quad. Never raises for bad input; returns an invalid
    resolution instead.
    """
    if len(markers) < 4:
        logger.debug("Corner resolution failed: %d marker(s), need 4", len(markers))
        return CornerResolution(False, failure=TOO_FEW_MARKERS)

    idx = range(len(markers))
    i_tl = min(idx, key=lambda i: markers[i].center.x + markers[i].center.y)
    i_br = max(idx, key=lambda i: markers[i].center.x + markers[i].center.y)
    i_tr = max(idx, key=lambda i: markers[i].center.x - markers[i].center.y)
    i_bl = max(idx, key=lambda i: markers[i].center.y - markers[i].center.x)

    tl, tr, bl, br = markers[i_tl], markers[i_tr], markers[i_bl], markers[i_br]

    def fail(reason: str) -> CornerResolution:
        logger.debug("Corner resolution failed: %s", reason)
        return CornerResolution(False, tl, tr, bl, br, failure=reason)

    if any(m is None for m in (tl, tr, bl, br)):
        return fail(UNRESOLVED)

    # one marker must not fill two roles
    if len({i_tl, i_tr, i_bl, i_br}) != 4:
        return fail(NOT_DISTINCT)

    areas = [tl.area, tr.area, bl.area, br.area]
    if max(areas) > min(areas) * defaults.corner_max_area_spread:
        return fail(SIZE_MISMATCH)

    top_w = abs(tr.center.x - tl.center.x)
    bottom_w = abs(br.center.x - bl.center.x)
    left_h = abs(bl.center.y - tl.center.y)
    right_h = abs(br.center.y - tr.center.y)
    avg_w = (top_w + bottom_w) / 2.0
    avg_h = (left_h + right_h) / 2.0

    if (avg_w < image_width * defaults.corner_min_span_ratio
            or avg_h < image_height * defaults.corner_min_span_ratio):
        return fail(TOO_SMALL)

    if (_ratio(top_w, bottom_w) < defaults.corner_min_parallel_ratio
            or _ratio(left_h, right_h) < defaults.corner_min_parallel_ratio):
        return fail(NOT_RECTANGULAR)

    logger.debug(
        "Corners TL=(%.0f,%.0f) TR=(%.0f,%.0f) BR=(%.0f,%.0f) BL=(%.0f,%.0f) sheet %.0fx%.0f",
        tl.center.x, tl.center.y, tr.center.x, tr.center.y,
        br.center.x, br.center.y, bl.center.x, bl.center.y, avg_w, avg_h,
    )
    return CornerResolution(True, tl, tr, bl, br)
