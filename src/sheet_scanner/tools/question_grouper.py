# src/sheet_scanner/tools/question_grouper.py
from __future__ import annotations
from typing import List
import logging

import numpy as np

from ..models import BubbleCandidate, Point, QuestionGroup, TemplateLayout, layout_for
from ..scan_defaults import DEFAULTS, ScanDefaults
from .bubble_detector import answer_region
from .image_buffer import ImageBuffer
from .marker_detector import find_markers, timing_filter
from .preprocess import binarize_otsu

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------
# Shared helpers
# ------------------------------------------------------------------------------

def select_best_spaced(row: List[BubbleCandidate], n: int) -> List[BubbleCandidate]:
    """
    Reduce a row of more than `n` bubbles to `n`: keep the outermost two, then
    for every interior slot take the unused bubble nearest its evenly
    interpolated x.
    """
    row = sorted(row, key=lambda b: b.x)
    if len(row) <= n:
        return row
    if n <= 1:
        return row[:max(0, n)]

    first, last = row[0], row[-1]
    used = {0, len(row) - 1}
    picked = [first]
    for i in range(1, n - 1):
        expected_x = first.x + (last.x - first.x) * i / (n - 1)
        best = min(
            (j for j in range(1, len(row) - 1) if j not in used),
            key=lambda j: abs(row[j].x - expected_x),
        )
        used.add(best)
        picked.append(row[best])
    picked.append(last)
    return sorted(picked, key=lambda b: b.x)


def average_diameter(bubbles: List[BubbleCandidate]) -> float:
    return float(np.mean([b.diameter for b in bubbles])) if bubbles else 0.0

# ------------------------------------------------------------------------------
# Row timing marks
# ------------------------------------------------------------------------------

def find_row_timing_marks(
    image,
    layout: TemplateLayout,
    total_questions: int,
    options_per_question: int = 5,
    d: ScanDefaults = DEFAULTS,
) -> List[Point]:
    """
    Small solid squares sitting left of each answer row. Marks inside the
    corner-marker margins or the header/footer bands are ignored, and so is
    anything that reaches into the column's option-A slot. Round blobs fail
    the solidity floor. Returned column-major (column, then y).
    """
    buf = ImageBuffer.coerce(image)
    w, h = buf.width, buf.height
    binary = binarize_otsu(buf.gray)
    candidates = find_markers(binary, w, h, timing_filter(d))

    margin_x = w * d.timing_corner_margin_ratio
    margin_y = h * d.timing_corner_margin_ratio
    top = h * d.header_ratio
    bottom = h - h * d.footer_ratio
    column_width = w / float(layout.columns)
    left_fraction = d.left_fraction_for(total_questions)
    region = answer_region(w, h, layout, options_per_question, d)

    marks: List[tuple] = []
    for m in candidates:
        x, y = m.center.x, m.center.y
        in_corner = (x < margin_x or x > w - margin_x) and (y < margin_y or y > h - margin_y)
        if in_corner or y < top or y > bottom:
            continue
        col = min(int(x // column_width), layout.columns - 1)
        if x - col * column_width >= column_width * left_fraction:
            continue
        if x >= region.option_x(col, 0) - region.expected_radius:
            continue
        marks.append((col, y, m.center))

    marks.sort(key=lambda t: (t[0], t[1]))
    logger.debug("Row timing marks: %d of %d candidate(s) kept", len(marks), len(candidates))
    return [p for _, _, p in marks]

# ------------------------------------------------------------------------------
# Strategies
# ------------------------------------------------------------------------------

def group_by_timing_marks(
    bubbles: List[BubbleCandidate],
    marks: List[Point],
    layout: TemplateLayout,
    options_per_question: int,
    image_width: int,
    d: ScanDefaults = DEFAULTS,
) -> List[QuestionGroup]:
    # marks repeat every template column, inside the side margins
    column_width = image_width * (1.0 - 2.0 * d.margin_ratio) / float(layout.columns)
    diameter = average_diameter(bubbles)
    tolerance = diameter * d.timing_y_tolerance_factor
    # square marks can come back from contour detection as "bubbles";
    # keep this mark and the next column's mark out of the row
    clearance = diameter / 2.0

    groups: List[QuestionGroup] = []
    for mark in marks:
        row = [
            b for b in bubbles
            if mark.x + clearance < b.x < mark.x + column_width - clearance
            and abs(b.y - mark.y) <= tolerance
        ]
        if not row:
            continue
        row.sort(key=lambda b: b.x)
        if len(row) > options_per_question:
            row = select_best_spaced(row, options_per_question)
        groups.append(row)
    return groups


def split_rows(column: List[BubbleCandidate], gap: float) -> List[List[BubbleCandidate]]:
    rows: List[List[BubbleCandidate]] = []
    current: List[BubbleCandidate] = []
    last_y = None
    for b in sorted(column, key=lambda b: b.y):
        if current and last_y is not None and b.y - last_y > gap:
            rows.append(current)
            current = []
        current.append(b)
        last_y = b.y
    if current:
        rows.append(current)
    return rows


def group_by_y_clusters(
    bubbles: List[BubbleCandidate],
    layout: TemplateLayout,
    options_per_question: int,
    d: ScanDefaults = DEFAULTS,
) -> List[QuestionGroup]:
    """Equal-width x bins for columns, then y-gap splitting into rows."""
    if not bubbles:
        return []
    xs = [b.x for b in bubbles]
    min_x, max_x = min(xs), max(xs)
    span = max_x - min_x

    columns: List[List[BubbleCandidate]] = [[] for _ in range(layout.columns)]
    for b in bubbles:
        col = 0 if span <= 0 else int((b.x - min_x) / span * layout.columns)
        columns[min(col, layout.columns - 1)].append(b)

    gap = average_diameter(bubbles) * d.row_gap_factor
    groups: List[QuestionGroup] = []
    for ci, column in enumerate(columns):
        kept = 0
        for row in split_rows(column, gap):
            row.sort(key=lambda b: b.x)
            if len(row) == options_per_question or len(row) == options_per_question - 1:
                groups.append(row)
            elif len(row) > options_per_question:
                groups.append(select_best_spaced(row, options_per_question))
            else:
                continue
            kept += 1
        logger.debug("Column %d: %d bubble(s) -> %d row(s)", ci + 1, len(column), kept)
    return groups


def group_questions(
    bubbles: List[BubbleCandidate],
    total_questions: int,
    options_per_question: int = 5,
    image=None,
    d: ScanDefaults = DEFAULTS,
) -> List[QuestionGroup]:
    """
    Partition bubbles into per-question rows, column-major. Timing-mark
    anchoring is tried first when an image is supplied and kept only if it
    yields enough rows; otherwise y-clustering decides.
    """
    layout = layout_for(total_questions)
    if not bubbles:
        return []

    if image is not None:
        buf = ImageBuffer.coerce(image)
        marks = find_row_timing_marks(buf, layout, total_questions, options_per_question, d)
        needed_marks = d.timing_accept_ratio * layout.expected_rows
        if len(marks) >= needed_marks:
            anchored = group_by_timing_marks(bubbles, marks, layout, options_per_question, buf.width, d)
            if len(anchored) >= d.timing_accept_ratio * total_questions:
                if len(anchored) > total_questions:
                    logger.warning("Timing marks gave %d group(s) for %d question(s); extra rows dropped",
                                   len(anchored), total_questions)
                logger.info("Grouped %d question(s) from %d row timing mark(s)", len(anchored), len(marks))
                return anchored[:total_questions]
            logger.info("Timing marks gave only %d group(s); falling back to y-clustering", len(anchored))
        else:
            logger.debug("Found %d row timing mark(s), need %.0f", len(marks), needed_marks)

    groups = group_by_y_clusters(bubbles, layout, options_per_question, d)
    logger.info("Grouped %d question(s) by y-clustering", len(groups))
    return groups[:total_questions]
