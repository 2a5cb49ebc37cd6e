# src/sheet_scanner/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

SUPPORTED_QUESTION_COUNTS: Tuple[int, ...] = (20, 50, 100)

# ------------------------------------------------------------------------------
# Geometry
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def normalized(self, width: int, height: int) -> "Point":
        return Point(self.x / float(width), self.y / float(height))

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)


@dataclass(frozen=True)
class MarkerCandidate:
    center: Point
    area: float
    bounding_box: Rect


@dataclass(frozen=True)
class CornerQuad:
    """Four resolved sheet corners in pixel coordinates."""
    top_left: Point
    top_right: Point
    bottom_right: Point
    bottom_left: Point

    def ordered(self) -> List[Point]:
        """TL, TR, BR, BL: the source order of the perspective transform."""
        return [self.top_left, self.top_right, self.bottom_right, self.bottom_left]


@dataclass(frozen=True)
class DetectedCorners:
    """Normalized [0..1] corner positions for overlay feedback."""
    top_left: Optional[Point]
    top_right: Optional[Point]
    bottom_left: Optional[Point]
    bottom_right: Optional[Point]
    all_markers: List[Point] = field(default_factory=list)


@dataclass(frozen=True)
class DetectionResult:
    is_valid: bool
    corners: Optional[DetectedCorners]
    message: str = ""

# ------------------------------------------------------------------------------
# Bubbles and layout
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class BubbleCandidate:
    x: float
    y: float
    radius: float
    darkness: float
    area: float
    circularity: float

    @property
    def diameter(self) -> float:
        return 2.0 * self.radius


QuestionGroup = List[BubbleCandidate]


@dataclass(frozen=True)
class TemplateLayout:
    columns: int
    questions_per_column: int

    @property
    def expected_rows(self) -> int:
        return self.columns * self.questions_per_column


_LAYOUTS: Dict[int, TemplateLayout] = {
    20: TemplateLayout(2, 10),
    50: TemplateLayout(3, 17),
    100: TemplateLayout(4, 25),
}


def layout_for(total_questions: int) -> TemplateLayout:
    try:
        return _LAYOUTS[total_questions]
    except KeyError:
        raise ValueError(
            f"Unsupported question count {total_questions}; expected one of {SUPPORTED_QUESTION_COUNTS}"
        ) from None

# ------------------------------------------------------------------------------
# Scan results
# ------------------------------------------------------------------------------

class IssueType(str, Enum):
    MISSING = "MISSING"          # no bubbles found for the question
    NO_MARK = "NO_MARK"
    FAINT = "FAINT"
    ERASED = "ERASED"
    DOUBLE_MARK = "DOUBLE_MARK"


@dataclass(frozen=True)
class ScanIssue:
    question_number: int
    message: str
    type: IssueType

    def to_dict(self) -> Dict[str, Any]:
        return {"question": self.question_number, "type": self.type.value, "message": self.message}


@dataclass(frozen=True)
class ScanSuccess:
    answers: List[str]
    confidence: float
    issues: List[ScanIssue] = field(default_factory=list)
    corrected_image: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    ok = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "answers": list(self.answers),
            "confidence": round(float(self.confidence), 4),
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass(frozen=True)
class ScanError:
    message: str

    ok = False

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message}


ScanResult = Union[ScanSuccess, ScanError]
