"""
Synthetic answer sheets drawn with OpenCV.

The 20-question sheet is laid out in "corrected" coordinates (the frame the
scanner warps onto once the corner squares are found) and then mapped back
into the drawn frame, so every bubble lands where the scanner expects it.
"""
from typing import List, Optional, Sequence

import cv2
import numpy as np
import pytest

from sheet_scanner.models import BubbleCandidate, layout_for
from sheet_scanner.scan_defaults import DEFAULTS
from sheet_scanner.tools.bubble_detector import answer_region

SHEET_W, SHEET_H = 800, 1000
CORNER = 50           # corner square side
CORNER_INSET = 20     # distance of the square from the frame edge
BUBBLE_R = 12
MARK = 14             # row timing mark side
OPTION_PITCH = 48

_C0 = CORNER_INSET + CORNER / 2.0                 # corner square centre
_SX = (SHEET_W - 2 * _C0) / SHEET_W
_SY = (SHEET_H - 2 * _C0) / SHEET_H


def _drawn(u: float, v: float):
    return int(round(_C0 + u * _SX)), int(round(_C0 + v * _SY))


def _row_v(row: int) -> float:
    return 140.0 + row * 80.0


def draw_sheet(answers: Sequence[Optional[int]], options: int = 5, corners: bool = True,
               timing_marks: bool = True) -> np.ndarray:
    """
    20 questions, 2 columns x 10 rows. answers[i] is the filled option index
    for question i+1 (None leaves the row blank); a tuple fills several.
    """
    img = np.full((SHEET_H, SHEET_W, 3), 255, np.uint8)
    black = (0, 0, 0)

    if corners:
        lo, hi_x, hi_y = CORNER_INSET, SHEET_W - CORNER_INSET - CORNER, SHEET_H - CORNER_INSET - CORNER
        for x, y in ((lo, lo), (hi_x, lo), (lo, hi_y), (hi_x, hi_y)):
            cv2.rectangle(img, (x, y), (x + CORNER - 1, y + CORNER - 1), black, -1)

    for q in range(20):
        col, row = divmod(q, 10)
        base_u = col * 400.0
        v = _row_v(row)
        if timing_marks:
            mx, my = _drawn(base_u + 80.0, v)
            half = MARK // 2
            cv2.rectangle(img, (mx - half, my - half), (mx + half - 1, my + half - 1), black, -1)

        picked = answers[q] if q < len(answers) else None
        if picked is None:
            picked = ()
        elif isinstance(picked, int):
            picked = (picked,)
        for o in range(options):
            center = _drawn(base_u + 165.0 + o * OPTION_PITCH, v)
            if o in picked:
                cv2.circle(img, center, BUBBLE_R, black, -1)
            else:
                cv2.circle(img, center, BUBBLE_R, black, 2)
    return img


def grid_bubbles(filled: Sequence[Optional[int]], columns: int = 2, rows: int = 10, options: int = 5,
                 dark: float = 0.9, light: float = 0.05,
                 overrides: Optional[dict] = None) -> List[BubbleCandidate]:
    """
    A perfect bubble grid: columns at x = 100 + c*500, options 40 px apart,
    rows y = 100 + r*60, radius 12. overrides maps (question, option) to a
    darkness value.
    """
    overrides = overrides or {}
    out: List[BubbleCandidate] = []
    for c in range(columns):
        for r in range(rows):
            q = c * rows + r
            for o in range(options):
                darkness = dark if q < len(filled) and filled[q] == o else light
                darkness = overrides.get((q, o), darkness)
                out.append(BubbleCandidate(
                    x=100.0 + c * 500 + o * 40, y=100.0 + r * 60, radius=12.0,
                    darkness=darkness, area=452.0, circularity=0.9,
                ))
    return out


# frame size per layout, large enough for readable bubbles
TEMPLATE_SIZES = {20: (800, 1000), 50: (900, 1200), 100: (1200, 1500)}


def draw_template_sheet(total: int, answers: Sequence[Optional[int]], options: int = 5,
                        timing_marks: bool = False) -> np.ndarray:
    """
    A sheet laid out exactly where answer_region expects it once corrected:
    option o of column c at region.option_x(c, o), rows spread evenly over the
    answer band, and the row timing mark (optional) in the slot before A.
    """
    w, h = TEMPLATE_SIZES[total]
    layout = layout_for(total)
    region = answer_region(w, h, layout, options, DEFAULTS)
    c0 = CORNER_INSET + CORNER / 2.0
    sx, sy = (w - 2 * c0) / w, (h - 2 * c0) / h

    def drawn(u, v):
        return int(round(c0 + u * sx)), int(round(c0 + v * sy))

    img = np.full((h, w, 3), 255, np.uint8)
    black = (0, 0, 0)
    lo, hi_x, hi_y = CORNER_INSET, w - CORNER_INSET - CORNER, h - CORNER_INSET - CORNER
    for x, y in ((lo, lo), (hi_x, lo), (lo, hi_y), (hi_x, hi_y)):
        cv2.rectangle(img, (x, y), (x + CORNER - 1, y + CORNER - 1), black, -1)

    radius = int(round(region.expected_radius * 0.9 * sx))
    half = int(region.pitch * 0.25 * sx)
    row_pitch = (region.y1 - region.y0) / layout.questions_per_column
    for q in range(total):
        col, row = divmod(q, layout.questions_per_column)
        v = region.y0 + (row + 0.5) * row_pitch
        if timing_marks:
            mx, my = drawn(region.option_x(col, -1), v)
            cv2.rectangle(img, (mx - half, my - half), (mx + half - 1, my + half - 1), black, -1)
        picked = answers[q] if q < len(answers) else None
        for o in range(options):
            center = drawn(region.option_x(col, o), v)
            cv2.circle(img, center, radius, black, -1 if o == picked else 2)
    return img


def on_canvas(sheet: np.ndarray, size, background: int = 255, quad=None) -> np.ndarray:
    """
    Place a drawn sheet on a larger frame: centred as is, or warped so its
    frame corners land on `quad` (TL, TR, BR, BL).
    """
    cw, ch = size
    sh, sw = sheet.shape[:2]
    if quad is None:
        canvas = np.full((ch, cw, 3), background, np.uint8)
        x, y = (cw - sw) // 2, (ch - sh) // 2
        canvas[y:y + sh, x:x + sw] = sheet
        return canvas
    src = np.float32([(0, 0), (sw, 0), (sw, sh), (0, sh)])
    m = cv2.getPerspectiveTransform(src, np.float32(quad))
    return cv2.warpPerspective(sheet, m, (cw, ch), borderValue=(background,) * 3)


def template_answers(total: int) -> List[int]:
    return [(q * 3) % 5 for q in range(total)]


ANSWER_INDEXES = [i % 5 for i in range(20)]
ANSWER_LETTERS = ["ABCDE"[i] for i in ANSWER_INDEXES]


@pytest.fixture
def sheet_factory():
    return draw_sheet


@pytest.fixture
def filled_sheet():
    return draw_sheet(ANSWER_INDEXES)


@pytest.fixture
def expected_letters():
    return list(ANSWER_LETTERS)


@pytest.fixture
def blank_image():
    return np.full((SHEET_H, SHEET_W, 3), 255, np.uint8)


@pytest.fixture
def bubble_grid():
    return grid_bubbles


@pytest.fixture
def sheet_png(tmp_path, filled_sheet):
    path = tmp_path / "sheet.png"
    cv2.imwrite(str(path), filled_sheet)
    return path


@pytest.fixture
def blank_png(tmp_path, blank_image):
    path = tmp_path / "blank.png"
    cv2.imwrite(str(path), blank_image)
    return path


@pytest.fixture
def template_sheet():
    return draw_template_sheet


@pytest.fixture
def canvas():
    return on_canvas


@pytest.fixture
def template_letters():
    def letters(total: int) -> List[str]:
        return ["ABCDE"[i] for i in template_answers(total)]
    return letters
