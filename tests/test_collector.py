"""Tests for result collection and the concurrent fan-out."""

import asyncio
import logging
import threading

import pytest

from conftest import FakeResultRepository, make_doc, uniform_docs
from simulacros_webapp.collector import collect, collect_many, stored_phase_names
from simulacros_webapp.errors import RepositoryUnavailableError, ResultFetchError
from simulacros_webapp.models import Phase


class CountingRepository(FakeResultRepository):
    """Records how many fetches run at the same time."""

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0

    def get_phase_results(self, student_id, phase_name):
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            return super().get_phase_results(student_id, phase_name)
        finally:
            with self._lock:
                self.in_flight -= 1


class TestCollect:
    def test_canonical_stored_name_first(self):
        assert stored_phase_names(Phase.FIRST)[0] == "fase I"
        assert "first" in stored_phase_names(Phase.FIRST)

    def test_legacy_phase_name(self, repository):
        attempts = collect(repository, "s3", Phase.FIRST)
        assert len(attempts) == 7
        assert ("s3", "fase I") in repository.calls
        assert ("s3", "first") in repository.calls

    def test_stops_at_first_name_with_valid_attempts(self):
        repo = FakeResultRepository()
        repo.add("s1", "fase I", make_doc("Inglés", 90))
        repo.add("s1", "first", make_doc("Inglés", 10))
        attempts = collect(repo, "s1", "fase 1")
        assert [a.percentage for a in attempts] == [90.0]
        assert repo.calls == [("s1", "fase I")]

    def test_invalid_attempts_dropped(self, repository):
        attempts = collect(repository, "s1", Phase.FIRST)
        assert len(attempts) == 8
        assert all(a.is_valid for a in attempts)

    def test_no_results(self):
        assert collect(FakeResultRepository(), "ghost", Phase.THIRD) == []

    def test_unknown_phase(self, repository):
        with pytest.raises(ValueError):
            collect(repository, "s1", "fase IV")

    def test_fetch_error_propagates(self):
        repo = FakeResultRepository()
        repo.failures["s1"] = ResultFetchError("s1", "fase I", "boom")
        with pytest.raises(ResultFetchError):
            collect(repo, "s1", Phase.FIRST)


class TestCollectMany:
    def test_order_preserved(self, repository):
        results = asyncio.run(collect_many(repository, ["s6", "s1", "s2"], Phase.FIRST, concurrency=2))
        assert [r[0].student_id for r in results] == ["s6", "s1", "s2"]

    def test_failed_student_skipped(self, repository, caplog):
        repository.failures["s2"] = ResultFetchError("s2", "fase I", "connection reset")
        with caplog.at_level(logging.WARNING, logger="simulacros_webapp.collector"):
            results = asyncio.run(collect_many(repository, ["s1", "s2", "s6"], Phase.FIRST))
        assert results[1] is None
        assert results[0] and results[2]
        assert "s2" in caplog.text

    def test_timed_out_student_skipped(self):
        repo = FakeResultRepository()
        repo.add("fast", "fase I", *uniform_docs(70))
        repo.add("slow", "fase I", *uniform_docs(70))
        repo.delays["slow"] = 0.5
        results = asyncio.run(collect_many(repo, ["fast", "slow"], Phase.FIRST, timeout_seconds=0.05))
        assert len(results[0]) == 7
        assert results[1] is None

    def test_timed_out_fetch_keeps_its_slot(self):
        repo = CountingRepository()
        repo.add("slow", "fase I", *uniform_docs(70))
        repo.add("fast", "fase I", *uniform_docs(70))
        repo.delays["slow"] = 0.3
        results = asyncio.run(
            collect_many(repo, ["slow", "fast"], Phase.FIRST, concurrency=1, timeout_seconds=0.05)
        )
        assert results[0] is None
        assert len(results[1]) == 7
        assert repo.peak == 1

    def test_infrastructure_failure_propagates(self, repository):
        repository.failures["s2"] = RepositoryUnavailableError("database is down")
        with pytest.raises(RepositoryUnavailableError):
            asyncio.run(collect_many(repository, ["s1", "s2", "s6"], Phase.FIRST))

    def test_empty_input(self, repository):
        assert asyncio.run(collect_many(repository, [], Phase.FIRST)) == []
