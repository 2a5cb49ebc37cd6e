# src/sheet_scanner/preview_core.py
from __future__ import annotations
from typing import Optional
import logging
import threading

import cv2

from .models import DetectionResult
from .scan_defaults import DEFAULTS, ScanDefaults
from .tools import corner_resolver as cr
from .tools.image_buffer import ImageBuffer
from .tools.marker_detector import find_markers, normalized_centers, preview_filter
from .tools.preprocess import binarize_adaptive

logger = logging.getLogger(__name__)

_GUIDANCE = {
    cr.TOO_FEW_MARKERS: "Point the camera at the sheet so all four corner markers are visible",
    cr.UNRESOLVED: "Point the camera at the sheet so all four corner markers are visible",
    cr.NOT_DISTINCT: "Move back so the whole sheet fits inside the frame",
    cr.SIZE_MISMATCH: "Hold the phone flat above the sheet",
    cr.TOO_SMALL: "Move closer to the sheet",
    cr.NOT_RECTANGULAR: "Hold the phone parallel to the sheet",
}
READY_MESSAGE = "Sheet detected, hold steady"


def analyze_frame(frame, d: ScanDefaults = DEFAULTS) -> DetectionResult:
    """
    Lightweight corner check for one preview frame: no bubble work, no state.
    Any failure, including unreadable frames, comes back as is_valid=False.
    """
    try:
        buf = ImageBuffer.coerce(frame)
        k = max(3, d.blur_ksize | 1)
        blurred = cv2.GaussianBlur(buf.gray, (k, k), 0)
        binary = binarize_adaptive(blurred, d.preview_block_size, d.preview_c, "gaussian")
        markers = find_markers(binary, buf.width, buf.height, preview_filter(d))
        resolution = cr.resolve_corners(markers, buf.width, buf.height, d)
        corners = resolution.detected(buf.width, buf.height, normalized_centers(markers, buf.width, buf.height))
        if resolution.is_valid:
            return DetectionResult(True, corners, READY_MESSAGE)
        return DetectionResult(False, corners, _GUIDANCE.get(resolution.failure, _GUIDANCE[cr.TOO_FEW_MARKERS]))
    except Exception as e:
        logger.error("Corner detection failed: %s", e, exc_info=True)
        return DetectionResult(False, None, "Could not analyze frame")


class FrameAnalyzer:
    """
    Runs analyze_frame for the latest frame only. A frame submitted while
    another is still being analyzed is dropped (None), never queued.
    """

    def __init__(self, defaults: ScanDefaults = DEFAULTS):
        self.defaults = defaults
        self._busy = threading.Lock()
        self.skipped = 0

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def submit(self, frame) -> Optional[DetectionResult]:
        if not self._busy.acquire(blocking=False):
            self.skipped += 1
            return None
        try:
            return analyze_frame(frame, self.defaults)
        finally:
            self._busy.release()


class StabilityTracker:
    """Consecutive-valid-frame counter that signals when to auto-capture."""

    def __init__(self, required_frames: int = DEFAULTS.stability_frames):
        if required_frames < 1:
            raise ValueError("required_frames must be >= 1")
        self.required_frames = required_frames
        self.count = 0

    def update(self, result: Optional[DetectionResult]) -> bool:
        if result is None:
            return self.ready  # skipped frame: no information
        if result.is_valid:
            self.count += 1
        else:
            self.count = 0
        return self.ready

    @property
    def ready(self) -> bool:
        return self.count >= self.required_frames

    @property
    def progress(self) -> float:
        return min(1.0, self.count / float(self.required_frames))

    def reset(self) -> None:
        self.count = 0
