# src/sheet_scanner/tools/image_buffer.py
from __future__ import annotations
from typing import Any

import numpy as np
import cv2
from PIL import Image


class ImageBuffer:
    """
    A decoded frame (BGR or grayscale uint8) with per-pixel brightness sampling.

    Brightness of a colour pixel is the integer mean of its three channels, so
    it matches what a grayscale average of R, G and B would report.
    """

    def __init__(self, pixels: np.ndarray):
        if pixels is None or not isinstance(pixels, np.ndarray) or pixels.size == 0:
            raise ValueError("ImageBuffer needs a non-empty numpy array")
        if pixels.ndim == 3 and pixels.shape[2] == 4:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_BGRA2BGR)
        elif pixels.ndim == 3 and pixels.shape[2] == 1:
            pixels = pixels[:, :, 0]
        if pixels.ndim not in (2, 3):
            raise ValueError(f"Unsupported image shape {pixels.shape}")
        if pixels.dtype != np.uint8:
            pixels = np.clip(pixels, 0, 255).astype(np.uint8)
        self.pixels = pixels
        self._brightness = None
        self._gray = None

    @classmethod
    def coerce(cls, image: Any) -> "ImageBuffer":
        if isinstance(image, ImageBuffer):
            return image
        if isinstance(image, Image.Image):
            rgb = np.array(image.convert("RGB"))
            return cls(cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))
        if isinstance(image, np.ndarray):
            return cls(image)
        raise TypeError(f"Cannot build an ImageBuffer from {type(image).__name__}")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def brightness_map(self) -> np.ndarray:
        if self._brightness is None:
            if self.pixels.ndim == 2:
                self._brightness = self.pixels.astype(np.int32)
            else:
                self._brightness = self.pixels.astype(np.int32).sum(axis=2) // 3
        return self._brightness

    @property
    def gray(self) -> np.ndarray:
        if self._gray is None:
            if self.pixels.ndim == 2:
                self._gray = self.pixels
            else:
                self._gray = cv2.cvtColor(self.pixels, cv2.COLOR_BGR2GRAY)
        return self._gray

    def brightness(self, x: int, y: int) -> int:
        """Brightness at (x, y); coordinates are clamped into the frame."""
        xi = min(max(int(x), 0), self.width - 1)
        yi = min(max(int(y), 0), self.height - 1)
        return int(self.brightness_map[yi, xi])

    def darkness_ratio(
        self,
        cx: float,
        cy: float,
        radius: float,
        inner_ratio: float = 0.8,
        dark_threshold: int = 128,
    ) -> float:
        """
        Fraction of pixels darker than `dark_threshold` inside the disk of
        radius `inner_ratio * radius` around (cx, cy). Sample positions falling
        outside the frame are clamped to the nearest edge pixel.
        """
        r = int(radius * inner_ratio)
        if r < 0:
            return 0.0
        offsets = np.arange(-r, r + 1)
        dx, dy = np.meshgrid(offsets, offsets)
        inside = (dx * dx + dy * dy) <= r * r
        xs = np.clip(int(cx) + dx[inside], 0, self.width - 1)
        ys = np.clip(int(cy) + dy[inside], 0, self.height - 1)
        if xs.size == 0:
            return 0.0
        dark = np.count_nonzero(self.brightness_map[ys, xs] < dark_threshold)
        return float(dark) / float(xs.size)
