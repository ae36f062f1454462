from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping

from .subjects import CanonicalSubject, subject_lookup_key


class Phase(str, Enum):
    FIRST = "first"
    SECOND = "second"
    THIRD = "third"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw: "Phase | str") -> "Phase":
        if isinstance(raw, Phase):
            return raw
        phase = _PHASE_ALIASES.get(subject_lookup_key(str(raw or "")))
        if phase is None:
            raise ValueError(f"Unknown phase '{raw}'")
        return phase


_PHASE_ALIASES: dict[str, Phase] = {}
for _phase, _aliases in (
    (Phase.FIRST, ("first", "phase1", "phase 1", "fase i", "fase 1", "1")),
    (Phase.SECOND, ("second", "phase2", "phase 2", "fase ii", "fase 2", "2")),
    (Phase.THIRD, ("third", "phase3", "phase 3", "fase iii", "fase 3", "3")),
):
    for _alias in _aliases:
        _PHASE_ALIASES[_alias] = _phase


def _to_float_or_none(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _to_int_or_none(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class QuestionDetail:
    topic: str
    is_correct: bool


@dataclass(frozen=True)
class AttemptScore:
    overall_percentage: float | None = None
    correct_answers: int | None = None
    total_questions: int | None = None

    @property
    def percentage(self) -> float | None:
        if self.overall_percentage is not None:
            value = self.overall_percentage
        elif self.correct_answers is not None and self.total_questions:
            value = self.correct_answers * 100.0 / self.total_questions
        else:
            return None
        return max(0.0, min(100.0, float(value)))

    @classmethod
    def from_document(cls, raw: object) -> "AttemptScore | None":
        if not isinstance(raw, Mapping):
            return None
        return cls(
            overall_percentage=_to_float_or_none(raw.get("overallPercentage")),
            correct_answers=_to_int_or_none(raw.get("correctAnswers")),
            total_questions=_to_int_or_none(raw.get("totalQuestions")),
        )


@dataclass(frozen=True)
class ExamAttempt:
    student_id: str
    phase: Phase
    subject: str | None
    completed: bool
    score: AttemptScore | None
    question_details: tuple[QuestionDetail, ...] = ()
    exam_id: str | None = None

    @property
    def percentage(self) -> float | None:
        return self.score.percentage if self.score is not None else None

    @property
    def is_valid(self) -> bool:
        """Completed, with a subject label and a usable score."""
        return bool(self.completed and (self.subject or "").strip() and self.percentage is not None)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], *, student_id: str, phase: Phase) -> "ExamAttempt":
        # Older documents carry either flag; both must be true when present.
        completed = doc.get("completed")
        is_completed = doc.get("isCompleted")
        flags = [flag for flag in (completed, is_completed) if flag is not None]
        details: list[QuestionDetail] = []
        for item in doc.get("questionDetails") or []:
            if not isinstance(item, Mapping):
                continue
            details.append(
                QuestionDetail(
                    topic=str(item.get("topic") or "").strip(),
                    is_correct=bool(item.get("isCorrect")),
                )
            )
        subject = doc.get("subject")
        return cls(
            student_id=student_id,
            phase=phase,
            subject=str(subject) if subject is not None else None,
            completed=bool(flags) and all(flag is True for flag in flags),
            score=AttemptScore.from_document(doc.get("score")),
            question_details=tuple(details),
            exam_id=str(doc["examId"]) if doc.get("examId") is not None else None,
        )


@dataclass(frozen=True)
class Student:
    id: str
    name: str = ""
    institution_id: str | None = None
    campus_id: str | None = None
    grade_id: str | None = None
    jornada: str | None = None
    academic_year: int | None = None
    created_at: datetime | date | str | int | float | Mapping[str, Any] | None = None
    is_active: bool = True


@dataclass(frozen=True)
class StudentFilters:
    phase: Phase = Phase.FIRST
    institution_id: str | None = None
    campus_id: str | None = None
    grade_id: str | None = None
    jornada: str | None = None
    academic_year: int | None = None
    include_inactive: bool = False


@dataclass(frozen=True)
class SubjectAggregate:
    subject_scores: dict[CanonicalSubject, float]
    global_score: float
    unmapped_subjects: tuple[str, ...] = ()

    @property
    def completed_subject_count(self) -> int:
        return len(self.subject_scores)


@dataclass(frozen=True)
class GlobalScore:
    student_id: str
    phase: Phase
    value: float
    completed_subject_count: int
    subject_scores: dict[CanonicalSubject, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "phase": self.phase.value,
            "value": self.value,
            "completed_subject_count": self.completed_subject_count,
            "subject_scores": {subject.value: pct for subject, pct in self.subject_scores.items()},
        }


@dataclass(frozen=True)
class RankingEntry:
    student: Student
    global_score: float
    total_attempt_count: int
    completed_subject_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student.id,
            "student_name": self.student.name,
            "institution_id": self.student.institution_id,
            "campus_id": self.student.campus_id,
            "grade_id": self.student.grade_id,
            "jornada": self.student.jornada,
            "global_score": self.global_score,
            "total_attempt_count": self.total_attempt_count,
            "completed_subject_count": self.completed_subject_count,
        }


@dataclass(frozen=True)
class InstitutionRankingEntry:
    group_id: str
    name: str
    average: float
    qualifying_count: int
    student_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.group_id,
            "name": self.name,
            "average": self.average,
            "qualifying_count": self.qualifying_count,
            "student_count": self.student_count,
        }


@dataclass(frozen=True)
class StudentPosition:
    rank: int | None
    total_in_phase: int
    total_in_grade: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "total_in_phase": self.total_in_phase,
            "total_in_grade": self.total_in_grade,
        }
