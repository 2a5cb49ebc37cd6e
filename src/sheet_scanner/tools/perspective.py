# src/sheet_scanner/tools/perspective.py
from __future__ import annotations
from typing import Optional
import logging

import numpy as np
import cv2 as cv

from ..models import CornerQuad

logger = logging.getLogger(__name__)


def perspective_matrix(corners: CornerQuad, width: int, height: int) -> np.ndarray:
    src = np.float32([p.as_tuple() for p in corners.ordered()])
    dst = np.float32([
        [0.0, 0.0],
        [float(width), 0.0],
        [float(width), float(height)],
        [0.0, float(height)],
    ])
    return cv.getPerspectiveTransform(src, dst)


def correct_perspective(image: np.ndarray, corners: Optional[CornerQuad]) -> np.ndarray:
    """
    Map the quad spanned by `corners` onto the full frame (same width x height
    as `image`). Without corners the image is returned untouched.
    """
    if corners is None:
        return image
    h, w = image.shape[:2]
    H = perspective_matrix(corners, w, h)
    corrected = cv.warpPerspective(image, H, (w, h))
    logger.debug("Perspective corrected to %dx%d", w, h)
    return corrected
