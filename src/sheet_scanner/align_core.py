# src/sheet_scanner/align_core.py
from __future__ import annotations
from dataclasses import replace
from typing import Callable, List, Optional, Tuple
import logging

import numpy as np

from .models import CornerQuad
from .scan_defaults import DEFAULTS, ScanDefaults
from .tools.corner_resolver import CornerResolution, resolve_corners
from .tools.image_buffer import ImageBuffer
from .tools.marker_detector import corner_filter, find_markers
from .tools.perspective import correct_perspective
from .tools.preprocess import binarize_adaptive, binarize_otsu

logger = logging.getLogger(__name__)


def _binarizers(d: ScanDefaults) -> List[Tuple[str, Callable[[np.ndarray], np.ndarray], str]]:
    def adaptive(g: np.ndarray) -> np.ndarray:
        return binarize_adaptive(g, d.corner_block_size, d.corner_c, "gaussian")

    return [
        ("gaussian", adaptive, "external"),
        ("mean", lambda g: binarize_adaptive(g, d.corner_block_size, d.corner_c, "mean"), "external"),
        ("otsu", binarize_otsu, "external"),
        # a page edge on a darker desk encloses the corner squares
        ("gaussian/all", adaptive, "list"),
    ]


def find_sheet_corners(image, d: ScanDefaults = DEFAULTS) -> Optional[CornerQuad]:
    """
    Try each binarization in turn (Gaussian adaptive, mean adaptive, Otsu) and
    return the first corner quad that passes validation, or None. A last pass
    reads every contour, not only the outermost, so the squares are still
    found when the page outline surrounds them.
    """
    buf = ImageBuffer.coerce(image)
    last: Optional[CornerResolution] = None
    for name, binarize, retrieval in _binarizers(d):
        binary = binarize(buf.gray)
        flt = replace(corner_filter(d), retrieval=retrieval)
        markers = find_markers(binary, buf.width, buf.height, flt)
        last = resolve_corners(markers, buf.width, buf.height, d)
        logger.debug("Corner search [%s]: %d marker(s), valid=%s", name, len(markers), last.is_valid)
        if last.is_valid:
            return last.quad
    logger.debug("Corner search exhausted (last failure: %s)", last.failure if last else None)
    return None


def find_and_correct(image, d: ScanDefaults = DEFAULTS) -> Tuple[np.ndarray, Optional[CornerQuad]]:
    """
    Returns (corrected pixels, corners). Without a valid quad the original
    pixels come back with corners=None and the scan continues on them.
    """
    buf = ImageBuffer.coerce(image)
    corners = find_sheet_corners(buf, d)
    if corners is None:
        logger.warning("Corners not detected reliably, using original image")
        return buf.pixels, None
    logger.info("4 corners detected, applying perspective correction")
    return correct_perspective(buf.pixels, corners), corners
