# src/sheet_scanner/tools/vision.py
"""
Thin capability layer over the two vision primitives the scanner relies on:

  find_contours(binary)           connected-component boundary tracing
  find_circles(gray, ...)         Hough-gradient circle voting

Callers only depend on these documented semantics, so the backend (OpenCV
here) stays swappable.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import cv2

_RETRIEVAL = {
    "external": cv2.RETR_EXTERNAL,
    "list": cv2.RETR_LIST,
}


@dataclass(frozen=True)
class Circle:
    x: float
    y: float
    radius: float


def find_contours(binary: np.ndarray, mode: str = "external") -> List[np.ndarray]:
    """Foreground (non-zero) boundaries of a binary image."""
    try:
        retrieval = _RETRIEVAL[mode]
    except KeyError:
        raise ValueError(f"Unknown contour retrieval mode: {mode}") from None
    found = cv2.findContours(binary, retrieval, cv2.CHAIN_APPROX_SIMPLE)
    contours = found[-2]  # OpenCV 3 returns (img, contours, hierarchy)
    return list(contours)


def find_circles(
    gray: np.ndarray,
    min_radius: int,
    max_radius: int,
    min_dist: float,
    dp: float = 1.2,
    param1: float = 100.0,
    param2: float = 20.0,
) -> List[Circle]:
    circles = cv2.HoughCircles(
        gray,
        cv2.HOUGH_GRADIENT,
        dp=dp,
        minDist=max(1.0, float(min_dist)),
        param1=param1,
        param2=param2,
        minRadius=int(min_radius),
        maxRadius=int(max_radius),
    )
    if circles is None:
        return []
    return [Circle(float(c[0]), float(c[1]), float(c[2])) for c in circles[0]]


def contour_area(contour: np.ndarray) -> float:
    return float(cv2.contourArea(contour))


def contour_perimeter(contour: np.ndarray) -> float:
    return float(cv2.arcLength(contour, True))


def bounding_rect(contour: np.ndarray) -> Tuple[int, int, int, int]:
    x, y, w, h = cv2.boundingRect(contour)
    return int(x), int(y), int(w), int(h)


def enclosing_circle(contour: np.ndarray) -> Circle:
    (cx, cy), r = cv2.minEnclosingCircle(contour)
    return Circle(float(cx), float(cy), float(r))


def circularity(area: float, perimeter: float) -> float:
    if perimeter <= 0:
        return 0.0
    return float(4.0 * np.pi * area / (perimeter * perimeter))
