# src/sheet_scanner/tools/preprocess.py
from __future__ import annotations
from typing import Tuple
import logging

import numpy as np
import cv2

from ..scan_defaults import DEFAULTS, ScanDefaults
from .image_buffer import ImageBuffer

logger = logging.getLogger(__name__)


def threshold_params(brightness: float, d: ScanDefaults = DEFAULTS) -> Tuple[int, float]:
    """Darker frames get a larger neighbourhood and a bigger offset."""
    if brightness < d.brightness_cutoff:
        return d.dark_block_size, d.dark_c
    return d.bright_block_size, d.bright_c


def _odd(k: int) -> int:
    k = max(3, int(k))
    return k if k % 2 == 1 else k + 1


def preprocess(image, d: ScanDefaults = DEFAULTS) -> np.ndarray:
    """Grayscale -> blur -> inverse adaptive threshold (dark marks become 255)."""
    buf = ImageBuffer.coerce(image)
    gray = buf.gray
    mean = float(np.mean(gray))
    block, c = threshold_params(mean, d)

    k = _odd(d.blur_ksize)
    blurred = cv2.GaussianBlur(gray, (k, k), 0)
    binary = cv2.adaptiveThreshold(
        blurred, 255,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY_INV,
        _odd(block), c,
    )
    logger.debug("Preprocessing: brightness=%.1f blockSize=%d C=%.1f", mean, block, c)
    return binary


def binarize_adaptive(gray: np.ndarray, block_size: int, c: float, method: str = "gaussian") -> np.ndarray:
    adaptive = cv2.ADAPTIVE_THRESH_GAUSSIAN_C if method == "gaussian" else cv2.ADAPTIVE_THRESH_MEAN_C
    return cv2.adaptiveThreshold(gray, 255, adaptive, cv2.THRESH_BINARY_INV, _odd(block_size), c)


def binarize_otsu(gray: np.ndarray) -> np.ndarray:
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
    return binary
