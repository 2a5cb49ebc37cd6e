# src/sheet_scanner/tools/bubble_detector.py
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional
import logging
import math

import numpy as np
import cv2

from ..models import BubbleCandidate, TemplateLayout, layout_for
from ..scan_defaults import DEFAULTS, ScanDefaults
from .image_buffer import ImageBuffer
from .preprocess import preprocess
from . import vision

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------
# Geometry
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class BubbleRegion:
    """
    Answer area in pixels plus the bubble geometry the template implies.
    Each column starts with `lead_slots` pitches (question number, row timing
    mark) and then holds one option per pitch.
    """
    x0: float
    y0: float
    x1: float
    y1: float
    expected_radius: float
    columns: int = 1
    pitch: float = 0.0
    lead_slots: float = 0.0

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def column_width(self) -> float:
        return self.width / max(1, self.columns)

    @property
    def expected_diameter(self) -> float:
        return 2.0 * self.expected_radius

    def option_x(self, column: int, option: int) -> float:
        return self.x0 + column * self.column_width + (self.lead_slots + option) * self.pitch

    def contains(self, x: float, y: float) -> bool:
        return self.x0 <= x <= self.x1 and self.y0 <= y <= self.y1


def answer_region(
    width: int,
    height: int,
    layout: TemplateLayout,
    options_per_question: int,
    d: ScanDefaults = DEFAULTS,
) -> BubbleRegion:
    """
    Strip header, footer and side margins (timing marks, titles, name box),
    then derive the bubble radius from the option pitch of one column.
    """
    x0 = width * d.margin_ratio
    x1 = width - width * d.margin_ratio
    y0 = height * d.header_ratio
    y1 = height - height * d.footer_ratio
    columns = max(1, layout.columns)
    pitch = (x1 - x0) / columns / (options_per_question + d.lead_slots)
    radius = max(2.0, pitch * d.radius_pitch_ratio)
    return BubbleRegion(x0, y0, x1, y1, radius, columns=columns, pitch=pitch, lead_slots=d.lead_slots)

# ------------------------------------------------------------------------------
# Detection paths
# ------------------------------------------------------------------------------

def detect_hough_bubbles(buf: ImageBuffer, region: BubbleRegion, d: ScanDefaults = DEFAULTS) -> List[BubbleCandidate]:
    r = region.expected_radius
    min_r = max(3, int(r * d.hough_min_radius_factor))
    max_r = max(min_r + 1, int(math.ceil(r * d.hough_max_radius_factor)))
    min_dist = region.expected_diameter * d.nms_distance_factor

    k = max(3, d.blur_ksize | 1)
    blurred = cv2.GaussianBlur(buf.gray, (k, k), 0)
    circles = vision.find_circles(
        blurred, min_r, max_r, min_dist,
        dp=d.hough_dp, param1=d.hough_param1, param2=d.hough_param2,
    )

    bubbles: List[BubbleCandidate] = []
    for c in circles:
        if not region.contains(c.x, c.y):
            continue
        darkness = buf.darkness_ratio(c.x, c.y, c.radius, d.darkness_inner_ratio, d.dark_pixel_threshold)
        bubbles.append(BubbleCandidate(
            x=c.x, y=c.y, radius=c.radius, darkness=darkness,
            area=math.pi * c.radius * c.radius, circularity=1.0,
        ))
    logger.debug("Hough: %d circle(s), %d inside answer region (r=%d..%d)", len(circles), len(bubbles), min_r, max_r)
    return bubbles


def detect_contour_bubbles(
    binary: np.ndarray,
    buf: ImageBuffer,
    region: Optional[BubbleRegion] = None,
    d: ScanDefaults = DEFAULTS,
) -> List[BubbleCandidate]:
    """Round-enough blobs of the binary image, measured on the source pixels."""
    bubbles: List[BubbleCandidate] = []
    for contour in vision.find_contours(binary, "external"):
        area = vision.contour_area(contour)
        if area < d.contour_min_area or area > d.contour_max_area:
            continue
        perimeter = vision.contour_perimeter(contour)
        if perimeter <= 0:
            continue
        circ = vision.circularity(area, perimeter)
        if circ < d.contour_min_circularity:
            continue
        c = vision.enclosing_circle(contour)
        if region is not None and not region.contains(c.x, c.y):
            continue
        darkness = buf.darkness_ratio(c.x, c.y, c.radius, d.darkness_inner_ratio, d.dark_pixel_threshold)
        bubbles.append(BubbleCandidate(
            x=c.x, y=c.y, radius=c.radius, darkness=darkness, area=area, circularity=circ,
        ))
    logger.debug("Contours: %d bubble candidate(s)", len(bubbles))
    return bubbles


def suppress_overlaps(bubbles: List[BubbleCandidate], min_distance: float) -> List[BubbleCandidate]:
    """Greedy NMS: largest first; drop anything centred within `min_distance` of a kept bubble."""
    kept: List[BubbleCandidate] = []
    limit = min_distance * min_distance
    for b in sorted(bubbles, key=lambda b: b.area, reverse=True):
        if all((b.x - k.x) ** 2 + (b.y - k.y) ** 2 >= limit for k in kept):
            kept.append(b)
    return kept


def detect_bubbles(
    image,
    total_questions: int,
    options_per_question: int = 5,
    binary: Optional[np.ndarray] = None,
    d: ScanDefaults = DEFAULTS,
) -> List[BubbleCandidate]:
    """
    Circle detection inside the template's answer region; below the layout's
    Hough floor (`ScanDefaults.hough_floor_for`) the contour path takes over.
    Either way overlaps are suppressed. An empty list is a legitimate result.
    """
    buf = ImageBuffer.coerce(image)
    layout = layout_for(total_questions)
    region = answer_region(buf.width, buf.height, layout, options_per_question, d)

    bubbles = detect_hough_bubbles(buf, region, d)
    floor = d.hough_floor_for(total_questions, options_per_question)
    if len(bubbles) < floor:
        logger.info("Only %d circle(s) found (floor %d); using contour detection", len(bubbles), floor)
        if binary is None:
            binary = preprocess(buf, d)
        fallback = detect_contour_bubbles(binary, buf, region, d)
        if fallback:
            bubbles = fallback

    min_distance = region.expected_diameter * d.nms_distance_factor
    deduped = suppress_overlaps(bubbles, min_distance)
    logger.debug("Bubbles: %d after overlap suppression (min distance %.1f)", len(deduped), min_distance)
    return deduped
