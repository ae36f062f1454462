from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

import pandas as pd

from .models import ExamAttempt, SubjectAggregate
from .subjects import NATURAL_SCIENCES, REQUIRED_SUBJECTS, CanonicalSubject, normalize_subject

logger = logging.getLogger(__name__)

POINTS_PER_REGULAR_SUBJECT = 100.0
POINTS_PER_NATURAL_SCIENCE_SUBJECT = 100.0 / 3
MAX_GLOBAL_SCORE = 500.0


def round_half_up(value: float, digits: int = 2) -> float:
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def subject_points(subject: CanonicalSubject, percentage: float) -> float:
    if subject in NATURAL_SCIENCES:
        return (percentage / 100.0) * POINTS_PER_NATURAL_SCIENCE_SUBJECT
    return (percentage / 100.0) * POINTS_PER_REGULAR_SUBJECT


def best_subject_percentages(attempts: Iterable[ExamAttempt]) -> tuple[dict[CanonicalSubject, float], tuple[str, ...]]:
    best: dict[CanonicalSubject, float] = {}
    unmapped: list[str] = []
    for attempt in attempts:
        if not attempt.is_valid:
            continue
        subject = normalize_subject(attempt.subject or "")
        percentage = attempt.percentage
        if not isinstance(subject, CanonicalSubject):
            if subject not in unmapped:
                unmapped.append(subject)
            continue
        current = best.get(subject)
        if current is None or percentage > current:
            best[subject] = percentage
    if unmapped:
        logger.debug("Unmapped subject labels ignored for scoring: %s", ", ".join(unmapped))
    return best, tuple(unmapped)


def aggregate(attempts: Iterable[ExamAttempt]) -> SubjectAggregate:
    """Reduce attempts to one best percentage per subject and a 0-500 global score.

    Regular subjects are worth up to 100 points each. Biology, Chemistry and
    Physics share 100 points between them, so each is worth up to 100/3.
    Invalid attempts and unmapped subjects contribute nothing.
    """
    subject_scores, unmapped = best_subject_percentages(attempts)
    total = sum(subject_points(subject, pct) for subject, pct in subject_scores.items())
    global_score = max(0.0, min(MAX_GLOBAL_SCORE, round_half_up(total, 2)))
    return SubjectAggregate(
        subject_scores=subject_scores,
        global_score=global_score,
        unmapped_subjects=unmapped,
    )


def is_complete(subject_scores: Mapping[CanonicalSubject, float]) -> bool:
    return all(subject in subject_scores for subject in REQUIRED_SUBJECTS)


def completion_percentage(subject_scores: Mapping[CanonicalSubject, float]) -> int:
    present = sum(1 for subject in REQUIRED_SUBJECTS if subject in subject_scores)
    return int(round_half_up(present * 100.0 / len(REQUIRED_SUBJECTS), 0))


def topic_breakdown(attempts: Iterable[ExamAttempt]) -> list[dict[str, object]]:
    rows: list[dict[str, object]] = []
    for attempt in attempts:
        if not attempt.is_valid:
            continue
        subject = normalize_subject(attempt.subject or "")
        if not isinstance(subject, CanonicalSubject):
            continue
        for detail in attempt.question_details:
            if not detail.topic:
                continue
            rows.append(
                {
                    "subject": subject.value,
                    "topic": detail.topic,
                    "correct": 1 if detail.is_correct else 0,
                }
            )

    if not rows:
        return []

    df = pd.DataFrame(rows)
    grouped = (
        df.groupby(["subject", "topic"], sort=True)["correct"]
        .agg(correct="sum", total="count")
        .reset_index()
    )
    result: list[dict[str, object]] = []
    for row in grouped.itertuples(index=False):
        correct = int(row.correct)
        total = int(row.total)
        result.append(
            {
                "subject": str(row.subject),
                "topic": str(row.topic),
                "correct": correct,
                "total": total,
                "percentage": round_half_up(correct * 100.0 / total, 2) if total else 0.0,
            }
        )
    return result
