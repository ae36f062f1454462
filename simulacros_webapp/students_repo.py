from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .db import Campus, Grade, Institution, StudentRecord
from .errors import RepositoryUnavailableError
from .filters import is_unrestricted
from .models import Student, StudentFilters


class StudentDirectory(Protocol):
    def get_filtered_students(self, filters: StudentFilters) -> list[Student]:
        ...

    def get_student(self, student_id: str) -> Student | None:
        ...

    def list_institutions(self) -> list[dict[str, Any]]:
        ...

    def list_campuses(self, institution_id: str | None = None) -> list[dict[str, Any]]:
        ...

    def list_grades(self, campus_id: str | None = None) -> list[dict[str, Any]]:
        ...

    def list_academic_years(self) -> list[int]:
        ...


def _student_from_record(record: StudentRecord) -> Student:
    return Student(
        id=record.id,
        name=record.name or "",
        institution_id=record.institution_id,
        campus_id=record.campus_id,
        grade_id=record.grade_id,
        jornada=record.jornada,
        academic_year=record.academic_year,
        created_at=record.created_at,
        is_active=bool(record.is_active),
    )


class SqlStudentDirectory:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_filtered_students(self, filters: StudentFilters) -> list[Student]:
        """Organizational filters only; year matching is left to the filter engine."""
        stmt = select(StudentRecord)
        if not is_unrestricted(filters.institution_id):
            stmt = stmt.where(StudentRecord.institution_id == filters.institution_id)
        if not is_unrestricted(filters.campus_id):
            stmt = stmt.where(StudentRecord.campus_id == filters.campus_id)
        if not is_unrestricted(filters.grade_id):
            stmt = stmt.where(StudentRecord.grade_id == filters.grade_id)
        if not is_unrestricted(filters.jornada):
            stmt = stmt.where(StudentRecord.jornada == filters.jornada)
        if not filters.include_inactive:
            stmt = stmt.where(StudentRecord.is_active.is_(True))

        try:
            with self._session_factory() as db:
                records = db.execute(stmt.order_by(StudentRecord.id)).scalars().all()
                return [_student_from_record(r) for r in records]
        except OperationalError as exc:
            raise RepositoryUnavailableError(str(exc.orig or exc)) from exc

    def get_student(self, student_id: str) -> Student | None:
        try:
            with self._session_factory() as db:
                record = db.get(StudentRecord, student_id)
                return _student_from_record(record) if record is not None else None
        except OperationalError as exc:
            raise RepositoryUnavailableError(str(exc.orig or exc)) from exc

    def list_institutions(self) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Institution.id, Institution.name)
                .where(Institution.is_active.is_(True))
                .order_by(Institution.name, Institution.id)
            ).all()
        return [{"id": r.id, "name": r.name} for r in rows]

    def list_campuses(self, institution_id: str | None = None) -> list[dict[str, Any]]:
        stmt = select(Campus.id, Campus.name, Campus.institution_id)
        if not is_unrestricted(institution_id):
            stmt = stmt.where(Campus.institution_id == institution_id)
        with self._session_factory() as db:
            rows = db.execute(stmt.order_by(Campus.name, Campus.id)).all()
        return [{"id": r.id, "name": r.name, "institution_id": r.institution_id} for r in rows]

    def list_grades(self, campus_id: str | None = None) -> list[dict[str, Any]]:
        stmt = select(Grade.id, Grade.name, Grade.campus_id)
        if not is_unrestricted(campus_id):
            stmt = stmt.where(Grade.campus_id == campus_id)
        with self._session_factory() as db:
            rows = db.execute(stmt.order_by(Grade.name, Grade.id)).all()
        return [{"id": r.id, "name": r.name, "campus_id": r.campus_id} for r in rows]

    def list_academic_years(self) -> list[int]:
        with self._session_factory() as db:
            rows = db.execute(select(StudentRecord.academic_year, StudentRecord.created_at)).all()
        years = set()
        for academic_year, created_at in rows:
            if academic_year is not None:
                years.add(int(academic_year))
            elif created_at is not None:
                years.add(created_at.year)
        return sorted(years, reverse=True)
