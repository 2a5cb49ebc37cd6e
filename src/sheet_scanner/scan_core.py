# src/sheet_scanner/scan_core.py
from __future__ import annotations
from typing import List, Optional, Sequence, Tuple
import csv
import logging
import os

import cv2
import numpy as np

from .align_core import find_and_correct
from .models import (
    SUPPORTED_QUESTION_COUNTS,
    BubbleCandidate,
    ScanError,
    ScanIssue,
    ScanResult,
    ScanSuccess,
)
from .scan_defaults import DEFAULTS, ScanDefaults
from .tools.answer_extractor import extract_answers, score_confidence
from .tools.bubble_detector import detect_bubbles
from .tools.image_buffer import ImageBuffer
from .tools.image_io import load_pages
from .tools.preprocess import preprocess
from .tools.question_grouper import group_questions

logger = logging.getLogger(__name__)

NO_BUBBLES_MESSAGE = "No bubbles detected. Check lighting and focus."


def _ensure_dir(path: str) -> None:
    if path and not os.path.isdir(path):
        os.makedirs(path, exist_ok=True)


def analyze_bubbles(
    bubbles: List[BubbleCandidate],
    total_questions: int,
    options_per_question: int = 5,
    image=None,
    d: ScanDefaults = DEFAULTS,
) -> Tuple[List[str], List[ScanIssue], float]:
    """
    Bubbles -> (answers, issues, confidence). Missing rows are padded with
    empty groups so there is exactly one answer per question.
    """
    groups = group_questions(bubbles, total_questions, options_per_question, image, d)
    groups = list(groups[:total_questions]) + [[] for _ in range(total_questions - len(groups))]
    answers, issues = extract_answers(groups, options_per_question, d)
    confidence = score_confidence(answers, issues, total_questions, d)
    return answers, issues, confidence


def scan_sheet(
    image,
    total_questions: int,
    options_per_question: int = 5,
    d: ScanDefaults = DEFAULTS,
) -> ScanResult:
    """
    Full pipeline for one captured frame. Never raises: every failure comes
    back as ScanError.
    """
    logger.info("Scan start: %s questions", total_questions)
    if total_questions not in SUPPORTED_QUESTION_COUNTS:
        return ScanError("Only 20, 50, or 100 questions supported")
    if not 2 <= options_per_question <= 26:
        return ScanError("Options per question must be between 2 and 26")

    try:
        buf = ImageBuffer.coerce(image)
        corrected_pixels, _corners = find_and_correct(buf, d)
        corrected = ImageBuffer(corrected_pixels)

        binary = preprocess(corrected, d)
        bubbles = detect_bubbles(corrected, total_questions, options_per_question, binary=binary, d=d)
        logger.info("Detected %d bubble(s)", len(bubbles))
        if not bubbles:
            return ScanError(NO_BUBBLES_MESSAGE)

        answers, issues, confidence = analyze_bubbles(
            bubbles, total_questions, options_per_question, corrected, d
        )
    except Exception as e:
        logger.exception("Scan failed")
        return ScanError(f"Scan error: {e}")

    answered = sum(1 for a in answers if a)
    logger.info("Scan complete: %d/%d detected, %.1f%% confidence", answered, total_questions, confidence * 100)
    return ScanSuccess(answers=answers, confidence=confidence, issues=issues, corrected_image=corrected_pixels)


def needs_review(result: ScanResult, d: ScanDefaults = DEFAULTS) -> bool:
    return isinstance(result, ScanSuccess) and result.confidence < d.review_confidence

# ------------------------------------------------------------------------------
# Key handling & scoring
# ------------------------------------------------------------------------------

def load_key_txt(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()
    chars = [c for c in raw if c.isalpha()]
    return [c.upper() for c in chars]


def score_against_key(answers: Sequence[Optional[str]], key: Sequence[str]) -> Tuple[int, int]:
    correct = 0
    total = min(len(answers), len(key))
    for i in range(total):
        if answers[i] and answers[i] == key[i]:
            correct += 1
    return correct, total

# ------------------------------------------------------------------------------
# Batch
# ------------------------------------------------------------------------------

def _issues_cell(issues: Sequence[ScanIssue]) -> str:
    return "; ".join(f"Q{i.question_number}:{i.type.value}" for i in issues)


def scan_to_csv(
    inputs: List[str],
    out_csv: str,
    total_questions: int,
    options_per_question: int = 5,
    key_txt: Optional[str] = None,
    d: ScanDefaults = DEFAULTS,
    corrected_dir: Optional[str] = None,
    dpi: int = 300,
) -> str:
    """
    Scan images and/or PDF pages into one CSV row each.
    If a key is provided, score/total columns are appended.
    """
    pages = load_pages(inputs, dpi=dpi)
    key: Optional[List[str]] = load_key_txt(key_txt) if key_txt else None

    header = ["page_index", "source", "status", "confidence", "issues"] \
             + [f"Q{i+1}" for i in range(total_questions)]
    if key:
        header += ["score", "total"]

    _ensure_dir(os.path.dirname(out_csv) or ".")
    if corrected_dir:
        _ensure_dir(corrected_dir)

    with open(out_csv, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)

        for page_idx, (label, img_bgr) in enumerate(pages, start=1):
            result = scan_sheet(img_bgr, total_questions, options_per_question, d)

            if isinstance(result, ScanSuccess):
                status = "review" if needs_review(result, d) else "ok"
                row = [str(page_idx), label, status, f"{result.confidence:.3f}", _issues_cell(result.issues)]
                row += list(result.answers)
                answers = list(result.answers)
                if corrected_dir and result.corrected_image is not None:
                    out_png = os.path.join(corrected_dir, f"page_{page_idx:03d}_corrected.png")
                    cv2.imwrite(out_png, np.ascontiguousarray(result.corrected_image))
            else:
                row = [str(page_idx), label, "error", "", result.message] + [""] * total_questions
                answers = [""] * total_questions
                logger.warning("%s: %s", label, result.message)

            if key:
                got, tot = score_against_key(answers, key)
                row += [str(got), str(tot)]

            writer.writerow(row)

    return out_csv
