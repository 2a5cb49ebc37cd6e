# sheet_scanner/scan_defaults.py
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional


def _timing_left_fractions() -> Dict[int, float]:
    # Tuned on the 2-column sheet; 50/100 share it until recalibrated.
    return {20: 0.35, 50: 0.35, 100: 0.35}


@dataclass(frozen=True)
class ScanDefaults:
    # Single source of truth for scanning thresholds

    # corner markers, full scan (external contours)
    corner_min_area_ratio: float = 0.0003
    corner_max_area_ratio: float = 0.02
    corner_min_solidity: float = 0.5
    corner_block_size: int = 51
    corner_c: float = 10.0
    marker_aspect_min: float = 0.5
    marker_aspect_max: float = 2.0

    # corner markers, live preview (all contours)
    preview_min_marker_area: float = 800.0
    preview_max_area_ratio: float = 0.05
    preview_min_solidity: float = 0.4
    preview_block_size: int = 25
    preview_c: float = 10.0

    # corner quad validation
    corner_max_area_spread: float = 10.0    # largest/smallest marker area
    corner_min_span_ratio: float = 0.10     # quad side vs image side
    corner_min_parallel_ratio: float = 0.6  # opposite sides min/max

    # adaptive preprocessing
    brightness_cutoff: float = 100.0
    bright_block_size: int = 11
    bright_c: float = 2.0
    dark_block_size: int = 21
    dark_c: float = 5.0
    blur_ksize: int = 5

    # bubble region (fractions of the corrected image)
    header_ratio: float = 0.10
    footer_ratio: float = 0.04
    margin_ratio: float = 0.03
    lead_slots: float = 2.0           # number label + timing mark before option A
    radius_pitch_ratio: float = 0.32  # bubble radius / option pitch

    # circle detection
    hough_dp: float = 1.2
    hough_param1: float = 100.0
    hough_param2: float = 18.0
    hough_min_radius_factor: float = 0.6
    hough_max_radius_factor: float = 1.4
    hough_floor: int = 50             # 20 x 5 sheet; scales with bubble count

    # contour fallback
    contour_min_area: float = 60.0
    contour_max_area: float = 4000.0
    contour_min_circularity: float = 0.30

    # darkness sampling
    darkness_inner_ratio: float = 0.8
    dark_pixel_threshold: int = 128

    nms_distance_factor: float = 0.6  # x expected diameter

    # grouping
    row_gap_factor: float = 0.6                 # x average diameter
    timing_y_tolerance_factor: float = 0.8      # x average diameter
    timing_accept_ratio: float = 0.70
    timing_min_area_ratio: float = 0.00002
    timing_max_area_ratio: float = 0.002
    timing_min_solidity: float = 0.80          # discs top out at pi/4
    timing_corner_margin_ratio: float = 0.05
    timing_left_fraction: Dict[int, float] = field(default_factory=_timing_left_fractions)

    # answer classification
    double_mark_threshold: float = 0.25
    filled_threshold: float = 0.30
    faint_threshold: float = 0.40
    erased_threshold: float = 0.15

    # confidence
    critical_penalty: float = 0.05
    minor_penalty: float = 0.02
    review_confidence: float = 0.85

    # live preview
    stability_frames: int = 8

    def left_fraction_for(self, total_questions: int) -> float:
        return float(self.timing_left_fraction.get(total_questions, 0.35))

    def hough_floor_for(self, total_questions: int, options_per_question: int = 5) -> int:
        """Fewer circles than this sends detection to the contour path."""
        return max(1, int(round(self.hough_floor * total_questions * options_per_question / 100.0)))


DEFAULTS = ScanDefaults()

FIELD_NAMES = frozenset(f.name for f in fields(ScanDefaults))


def apply_overrides(base: Optional[ScanDefaults] = None, **overrides: Any) -> ScanDefaults:
    # produce an overridden immutable config without mutating DEFAULTS
    base = DEFAULTS if base is None else base
    unknown = sorted(set(overrides) - FIELD_NAMES)
    if unknown:
        raise ValueError(f"Unknown scan setting(s): {', '.join(unknown)}")

    changes: Dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
    fractions = changes.get("timing_left_fraction")
    if fractions is not None:
        if not isinstance(fractions, Mapping):
            raise ValueError("timing_left_fraction must be a mapping of question count -> fraction")
        merged = dict(base.timing_left_fraction)
        merged.update({int(k): float(v) for k, v in fractions.items()})
        changes["timing_left_fraction"] = merged
    return replace(base, **changes)
