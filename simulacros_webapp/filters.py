from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping

from .models import Student, StudentFilters

_UNRESTRICTED_VALUES = {"", "all", "todos", "todas"}


def is_unrestricted(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().casefold() in _UNRESTRICTED_VALUES
    return False


def _year_from_timestamp(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.year
    if isinstance(value, date):
        return value.year
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc).year
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        return _year_from_timestamp(seconds) if isinstance(seconds, (int, float)) else None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).year
        except ValueError:
            return None
    return None


def student_year(student: Student) -> int | None:
    if student.academic_year is not None:
        return int(student.academic_year)
    return _year_from_timestamp(student.created_at)


def matches_filters(student: Student, filters: StudentFilters) -> bool:
    if not filters.include_inactive and not student.is_active:
        return False
    for wanted, actual in (
        (filters.institution_id, student.institution_id),
        (filters.campus_id, student.campus_id),
        (filters.grade_id, student.grade_id),
        (filters.jornada, student.jornada),
    ):
        if not is_unrestricted(wanted) and actual != wanted:
            return False
    if filters.academic_year is not None:
        year = student_year(student)
        # Legacy records without a usable timestamp match any year.
        if year is not None and year != filters.academic_year:
            return False
    return True


def select_students(students: Iterable[Student], filters: StudentFilters) -> list[Student]:
    return [student for student in students if matches_filters(student, filters)]
