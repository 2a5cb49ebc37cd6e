# src/sheet_scanner/tools/marker_detector.py
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional
import logging

import numpy as np

from ..models import MarkerCandidate, Point, Rect
from ..scan_defaults import DEFAULTS, ScanDefaults
from . import vision

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarkerFilter:
    """Acceptance band for near-square solid blobs."""
    min_area_ratio: float = 0.0
    max_area_ratio: float = 1.0
    min_area_px: float = 0.0
    aspect_min: float = 0.5
    aspect_max: float = 2.0
    min_solidity: float = 0.5
    retrieval: str = "external"

    def area_bounds(self, image_width: int, image_height: int):
        image_area = float(image_width * image_height)
        lo = max(self.min_area_px, self.min_area_ratio * image_area)
        hi = self.max_area_ratio * image_area
        return lo, hi


def corner_filter(d: ScanDefaults = DEFAULTS) -> MarkerFilter:
    return MarkerFilter(
        min_area_ratio=d.corner_min_area_ratio,
        max_area_ratio=d.corner_max_area_ratio,
        aspect_min=d.marker_aspect_min,
        aspect_max=d.marker_aspect_max,
        min_solidity=d.corner_min_solidity,
        retrieval="external",
    )


def preview_filter(d: ScanDefaults = DEFAULTS) -> MarkerFilter:
    # looser solidity; fixed pixel floor keeps answer bubbles out
    return MarkerFilter(
        min_area_px=d.preview_min_marker_area,
        max_area_ratio=d.preview_max_area_ratio,
        aspect_min=d.marker_aspect_min,
        aspect_max=d.marker_aspect_max,
        min_solidity=d.preview_min_solidity,
        retrieval="list",
    )


def timing_filter(d: ScanDefaults = DEFAULTS) -> MarkerFilter:
    return MarkerFilter(
        min_area_ratio=d.timing_min_area_ratio,
        max_area_ratio=d.timing_max_area_ratio,
        aspect_min=d.marker_aspect_min,
        aspect_max=d.marker_aspect_max,
        min_solidity=d.timing_min_solidity,
        retrieval="external",
    )


def find_markers(
    binary: np.ndarray,
    image_width: int,
    image_height: int,
    flt: Optional[MarkerFilter] = None,
) -> List[MarkerCandidate]:
    """
    Square-ish, mostly filled foreground blobs of `binary` (dark marks must
    already be the foreground). Output order carries no meaning.
    """
    flt = flt or corner_filter()
    min_area, max_area = flt.area_bounds(image_width, image_height)
    contours = vision.find_contours(binary, flt.retrieval)

    passed_area = passed_aspect = 0
    markers: List[MarkerCandidate] = []
    for contour in contours:
        area = vision.contour_area(contour)
        if area <= 0 or area < min_area or area > max_area:
            continue
        passed_area += 1

        x, y, w, h = vision.bounding_rect(contour)
        if w <= 0 or h <= 0:
            continue
        aspect = w / float(h)
        if aspect < flt.aspect_min or aspect > flt.aspect_max:
            continue
        passed_aspect += 1

        solidity = area / float(w * h)
        if solidity < flt.min_solidity:
            continue

        rect = Rect(x, y, w, h)
        markers.append(MarkerCandidate(center=rect.center, area=area, bounding_box=rect))

    logger.debug(
        "Markers: contours=%d area=%d aspect=%d solid=%d (area band %.0f-%.0f)",
        len(contours), passed_area, passed_aspect, len(markers), min_area, max_area,
    )
    return markers


def normalized_centers(markers: List[MarkerCandidate], image_width: int, image_height: int) -> List[Point]:
    return [m.center.normalized(image_width, image_height) for m in markers]
