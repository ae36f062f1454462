from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.sql import func as sqlfunc

from .config import DATABASE_URL


class Base(DeclarativeBase):
    pass


def build_session_factory(database_url: str) -> sessionmaker[Session]:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    db_engine = create_engine(database_url, echo=False, future=True, connect_args=connect_args)
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, future=True)


SessionLocal = build_session_factory(DATABASE_URL)


class Institution(Base):
    __tablename__ = "institution"
    id = Column(String(64), primary_key=True)
    name = Column(String(256), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Campus(Base):
    __tablename__ = "campus"
    id = Column(String(64), primary_key=True)
    institution_id = Column(String(64), ForeignKey("institution.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(256), nullable=False)


class Grade(Base):
    __tablename__ = "grade"
    id = Column(String(64), primary_key=True)
    campus_id = Column(String(64), ForeignKey("campus.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(128), nullable=False)


class StudentRecord(Base):
    __tablename__ = "student"
    id = Column(String(64), primary_key=True)
    name = Column(String(256), nullable=False, default="")
    institution_id = Column(String(64), ForeignKey("institution.id"), nullable=True, index=True)
    campus_id = Column(String(64), ForeignKey("campus.id"), nullable=True, index=True)
    grade_id = Column(String(64), ForeignKey("grade.id"), nullable=True, index=True)
    jornada = Column(String(16), nullable=True)  # mañana | tarde | única
    academic_year = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class ExamResultRecord(Base):
    __tablename__ = "exam_result"
    id = Column(Integer, primary_key=True)
    student_id = Column(String(64), ForeignKey("student.id", ondelete="CASCADE"), nullable=False, index=True)
    phase_name = Column(String(32), nullable=False, index=True)  # stored name, e.g. "fase I" or legacy "first"
    exam_id = Column(String(128), nullable=True)
    document = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=sqlfunc.now(), nullable=False)


def init_db(session_factory: sessionmaker[Session] | None = None) -> None:
    factory = session_factory or SessionLocal
    Base.metadata.create_all(bind=factory.kw["bind"])
