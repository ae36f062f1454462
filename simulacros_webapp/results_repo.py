from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import ExamResultRecord
from .errors import RepositoryUnavailableError, ResultFetchError


class ResultRepository(Protocol):
    def get_phase_results(self, student_id: str, phase_name: str) -> list[dict[str, Any]]:
        ...


class SqlResultRepository:
    """Attempt documents stored as JSON rows keyed by student and stored phase name."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_phase_results(self, student_id: str, phase_name: str) -> list[dict[str, Any]]:
        """Attempt documents of one student for one stored phase name.

        Failing to reach the store raises ``RepositoryUnavailableError``. A
        query that fails on a live connection (statement timeout, lock) only
        affects this student and raises ``ResultFetchError``.
        """
        stmt = (
            select(ExamResultRecord.exam_id, ExamResultRecord.document)
            .where(
                ExamResultRecord.student_id == student_id,
                ExamResultRecord.phase_name == phase_name,
            )
            .order_by(ExamResultRecord.id)
        )
        with self._session_factory() as db:
            try:
                db.connection()
            except OperationalError as exc:
                raise RepositoryUnavailableError(str(exc.orig or exc)) from exc
            try:
                rows = db.execute(stmt).all()
            except OperationalError as exc:
                if exc.connection_invalidated:
                    raise RepositoryUnavailableError(str(exc.orig or exc)) from exc
                raise ResultFetchError(student_id, phase_name, str(exc.orig or exc)) from exc
            except SQLAlchemyError as exc:
                raise ResultFetchError(student_id, phase_name, str(exc)) from exc

        documents: list[dict[str, Any]] = []
        for exam_id, document in rows:
            if not isinstance(document, dict):
                continue
            item = dict(document)
            if exam_id and "examId" not in item:
                item["examId"] = exam_id
            documents.append(item)
        return documents

    def add_result(self, student_id: str, phase_name: str, document: dict[str, Any]) -> int:
        with self._session_factory() as db:
            record = ExamResultRecord(
                student_id=student_id,
                phase_name=phase_name,
                exam_id=document.get("examId"),
                document=document,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return int(record.id)
