"""
Test fixtures for the simulacros webapp.

Provides in-memory result/student fakes, a seeded file-based SQLite
database and a FastAPI TestClient wired to the fake service.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone

import pytest

from simulacros_webapp.db import (
    Campus,
    ExamResultRecord,
    Grade,
    Institution,
    StudentRecord,
    build_session_factory,
    init_db,
)
from simulacros_webapp.engine import AggregationService
from simulacros_webapp.filter_options_repo import clear_filter_options_cache
from simulacros_webapp.models import Student
from simulacros_webapp.routes import clear_ranking_cache

SCENARIO_SCORES = {
    "Matemáticas": 80,
    "Lenguaje": 90,
    "Ciencias Sociales": 70,
    "Biologia": 60,
    "Quimica": 90,
    "Física": 30,
    "Inglés": 100,
}


def make_doc(subject, percentage, *, completed=True, exam_id=None, details=None):
    doc = {"subject": subject, "completed": completed, "score": {"overallPercentage": percentage}}
    if exam_id is not None:
        doc["examId"] = exam_id
    if details is not None:
        doc["questionDetails"] = [{"topic": topic, "isCorrect": ok} for topic, ok in details]
    return doc


def uniform_docs(percentage, *, skip=()):
    return [make_doc(subject, percentage) for subject in SCENARIO_SCORES if subject not in skip]


class FakeResultRepository:
    """Attempt documents held in memory, keyed by (student id, stored phase name)."""

    def __init__(self):
        self.documents = {}
        self.failures = {}
        self.delays = {}
        self.calls = []

    def add(self, student_id, phase_name, *docs):
        self.documents.setdefault((student_id, phase_name), []).extend(docs)

    def get_phase_results(self, student_id, phase_name):
        self.calls.append((student_id, phase_name))
        delay = self.delays.get(student_id)
        if delay:
            time.sleep(delay)
        exc = self.failures.get(student_id)
        if exc is not None:
            raise exc
        return [dict(doc) for doc in self.documents.get((student_id, phase_name), [])]


class FakeDirectory:
    """Returns every student; organizational filtering is left to the engine."""

    def __init__(self, students=(), institutions=(), campuses=(), grades=()):
        self.students = list(students)
        self.institutions = list(institutions)
        self.campuses = list(campuses)
        self.grades = list(grades)

    def get_filtered_students(self, filters):
        return list(self.students)

    def get_student(self, student_id):
        return next((s for s in self.students if s.id == student_id), None)

    def list_institutions(self):
        return sorted(self.institutions, key=lambda i: (i["name"], i["id"]))

    def list_campuses(self, institution_id=None):
        if institution_id is None:
            return list(self.campuses)
        return [c for c in self.campuses if c["institution_id"] == institution_id]

    def list_grades(self, campus_id=None):
        if campus_id is None:
            return list(self.grades)
        return [g for g in self.grades if g["campus_id"] == campus_id]

    def list_academic_years(self):
        return sorted({s.academic_year for s in self.students if s.academic_year is not None}, reverse=True)


@pytest.fixture(autouse=True)
def clear_caches():
    clear_ranking_cache()
    clear_filter_options_cache()
    yield
    clear_ranking_cache()
    clear_filter_options_cache()


@pytest.fixture
def students():
    return [
        Student("s1", "Ana", "inst-a", "camp-a1", "g-a1-11", "mañana", academic_year=2025),
        Student("s2", "Bruno", "inst-a", "camp-a1", "g-a1-11", "tarde", academic_year=2025),
        Student("s3", "Carla", "inst-b", "camp-b1", "g-b1-11", "mañana", academic_year=2025),
        Student("s4", "Diego", "inst-b", "camp-b1", "g-b1-11", "tarde", academic_year=2025),
        Student("s5", "Elena", "inst-a", "camp-a1", "g-a1-11", "mañana", academic_year=2025, is_active=False),
        Student("s6", "Felipe", "inst-b", "camp-b1", "g-b1-11", "única", academic_year=2024),
    ]


@pytest.fixture
def repository():
    """s2 500, s1 400, s6 300, s3 250 (legacy phase name); s4 misses English."""
    repo = FakeResultRepository()
    s1_docs = [make_doc(subject, pct) for subject, pct in SCENARIO_SCORES.items() if subject != "Matemáticas"]
    repo.add(
        "s1",
        "fase I",
        make_doc("Matemáticas", 80, details=[("Álgebra", True), ("Álgebra", False), ("Geometría", True)]),
        *s1_docs,
        make_doc("matematicas", 40),
        make_doc("Matemáticas", 75, completed=False, details=[("Álgebra", True)]),
    )
    repo.add("s2", "fase I", *uniform_docs(100))
    repo.add("s3", "first", *uniform_docs(50))
    repo.add("s4", "fase I", *uniform_docs(100, skip=("Inglés",)))
    repo.add("s5", "fase I", *uniform_docs(100))
    repo.add("s6", "fase I", *uniform_docs(60))
    return repo


@pytest.fixture
def directory(students):
    return FakeDirectory(
        students=students,
        institutions=[
            {"id": "inst-a", "name": "Colegio Andes"},
            {"id": "inst-b", "name": "Colegio Bolívar"},
            {"id": "inst-c", "name": "Colegio Caribe"},
        ],
        campuses=[
            {"id": "camp-a1", "name": "Sede Norte", "institution_id": "inst-a"},
            {"id": "camp-b1", "name": "Sede Centro", "institution_id": "inst-b"},
        ],
        grades=[
            {"id": "g-a1-11", "name": "11A", "campus_id": "camp-a1"},
            {"id": "g-b1-11", "name": "11B", "campus_id": "camp-b1"},
        ],
    )


@pytest.fixture
def service(repository, directory):
    return AggregationService(repository, directory, concurrency=4, timeout_seconds=2.0)


@pytest.fixture
def client(service):
    from fastapi.testclient import TestClient

    from simulacros_webapp.main import create_app
    from simulacros_webapp.routes import get_service

    app = create_app(init_database=False)
    app.dependency_overrides[get_service] = lambda: service
    return TestClient(app)


@pytest.fixture
def session_factory(tmp_path):
    """File-based SQLite database with the schema created."""
    factory = build_session_factory(f"sqlite:///{(tmp_path / 'test.db').as_posix()}")
    init_db(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def seeded_session_factory(session_factory):
    with session_factory() as db:
        db.add_all(
            [
                Institution(id="inst-a", name="Colegio Andes", is_active=True),
                Institution(id="inst-b", name="Colegio Bolívar", is_active=True),
                Institution(id="inst-z", name="Colegio Cerrado", is_active=False),
            ]
        )
        db.flush()
        db.add_all(
            [
                Campus(id="camp-a1", institution_id="inst-a", name="Sede Norte"),
                Campus(id="camp-b1", institution_id="inst-b", name="Sede Centro"),
            ]
        )
        db.flush()
        db.add_all(
            [
                Grade(id="g-a1-11", campus_id="camp-a1", name="11A"),
                Grade(id="g-b1-11", campus_id="camp-b1", name="11B"),
            ]
        )
        db.flush()
        db.add_all(
            [
                StudentRecord(
                    id="s1",
                    name="Ana",
                    institution_id="inst-a",
                    campus_id="camp-a1",
                    grade_id="g-a1-11",
                    jornada="mañana",
                    academic_year=2025,
                    is_active=True,
                ),
                StudentRecord(
                    id="s2",
                    name="Bruno",
                    institution_id="inst-b",
                    campus_id="camp-b1",
                    grade_id="g-b1-11",
                    jornada="tarde",
                    created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
                    is_active=True,
                ),
                StudentRecord(
                    id="s3",
                    name="Carla",
                    institution_id="inst-a",
                    campus_id="camp-a1",
                    grade_id="g-a1-11",
                    jornada="tarde",
                    academic_year=2025,
                    is_active=False,
                ),
            ]
        )
        db.flush()
        for subject, pct in SCENARIO_SCORES.items():
            db.add(ExamResultRecord(student_id="s1", phase_name="fase I", document=make_doc(subject, pct)))
        db.add(
            ExamResultRecord(
                student_id="s2",
                phase_name="first",
                exam_id="exam-77",
                document=make_doc("Matemáticas", 55),
            )
        )
        db.commit()
    return session_factory
