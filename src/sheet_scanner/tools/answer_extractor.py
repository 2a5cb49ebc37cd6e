# src/sheet_scanner/tools/answer_extractor.py
from __future__ import annotations
from string import ascii_uppercase
from typing import List, Optional, Sequence, Tuple
import logging

from ..models import IssueType, QuestionGroup, ScanIssue
from ..scan_defaults import DEFAULTS, ScanDefaults
from .question_grouper import select_best_spaced

logger = logging.getLogger(__name__)


def option_letter(index: int) -> str:
    return ascii_uppercase[index] if 0 <= index < len(ascii_uppercase) else "?"


def classify_group(
    question_number: int,
    group: QuestionGroup,
    d: ScanDefaults = DEFAULTS,
) -> Tuple[str, Optional[ScanIssue]]:
    """
    One question -> (answer letter or "", issue or None). The letter comes
    from the bubble's position in the left-to-right group.
    """
    if not group:
        return "", ScanIssue(question_number, "No bubbles detected", IssueType.MISSING)

    order = sorted(range(len(group)), key=lambda i: group[i].darkness, reverse=True)
    top = order[0]
    d1 = group[top].darkness
    second = order[1] if len(order) > 1 else None

    if second is not None and d1 >= d.double_mark_threshold and group[second].darkness >= d.double_mark_threshold:
        a1, a2 = option_letter(top), option_letter(second)
        logger.warning("Q%d: double mark (%s=%.2f, %s=%.2f)", question_number, a1, d1, a2, group[second].darkness)
        return "", ScanIssue(question_number, f"Double mark: {a1} and {a2}", IssueType.DOUBLE_MARK)

    if d1 >= d.filled_threshold:
        answer = option_letter(top)
        logger.debug("Q%d: %s (%.2f)", question_number, answer, d1)
        if d1 < d.faint_threshold:
            return answer, ScanIssue(question_number, "Faint mark", IssueType.FAINT)
        return answer, None

    if d1 >= d.erased_threshold:
        answer = option_letter(top)
        logger.debug("Q%d: %s (light/erased %.2f)", question_number, answer, d1)
        return answer, ScanIssue(question_number, "Possible erased mark", IssueType.ERASED)

    logger.debug("Q%d: no answer (max %.2f)", question_number, d1)
    return "", ScanIssue(question_number, "No clear mark", IssueType.NO_MARK)


def extract_answers(
    groups: Sequence[QuestionGroup],
    options_per_question: int = 5,
    d: ScanDefaults = DEFAULTS,
) -> Tuple[List[str], List[ScanIssue]]:
    answers: List[str] = []
    issues: List[ScanIssue] = []
    for index, group in enumerate(groups):
        group = list(group)
        if len(group) > options_per_question:
            group = select_best_spaced(group, options_per_question)
        answer, issue = classify_group(index + 1, group, d)
        answers.append(answer)
        if issue is not None:
            issues.append(issue)
    return answers, issues


def score_confidence(
    answers: Sequence[str],
    issues: Sequence[ScanIssue],
    total_questions: int,
    d: ScanDefaults = DEFAULTS,
) -> float:
    """Answered fraction minus per-issue penalties, clamped to [0, 1]."""
    if total_questions <= 0:
        return 0.0
    base = sum(1 for a in answers if a) / float(total_questions)
    critical = sum(1 for i in issues if i.type in (IssueType.MISSING, IssueType.DOUBLE_MARK))
    minor = sum(1 for i in issues if i.type in (IssueType.FAINT, IssueType.ERASED))
    penalty = critical * d.critical_penalty + minor * d.minor_penalty
    return max(0.0, min(1.0, base - penalty))
