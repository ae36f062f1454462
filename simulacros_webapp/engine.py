from __future__ import annotations

import logging
from typing import Any, Sequence

from .collector import collect_many
from .config import RESULTS_FETCH_CONCURRENCY, RESULTS_FETCH_TIMEOUT_SEC
from .filters import is_unrestricted, select_students
from .models import (
    GlobalScore,
    InstitutionRankingEntry,
    Phase,
    RankingEntry,
    Student,
    StudentFilters,
    StudentPosition,
    SubjectAggregate,
)
from .ranking import best_student_by_group, mean_score, rank, rank_groups, student_position
from .results_repo import ResultRepository
from .scoring import aggregate, completion_percentage, is_complete, topic_breakdown
from .students_repo import StudentDirectory

logger = logging.getLogger(__name__)


class AggregationService:
    """The single entry point every dashboard uses for scores and rankings.

    Stateless apart from its collaborators: each call reads the attempt
    records it needs and derives everything on the spot.
    """

    def __init__(
        self,
        repository: ResultRepository,
        directory: StudentDirectory,
        *,
        concurrency: int = RESULTS_FETCH_CONCURRENCY,
        timeout_seconds: float = RESULTS_FETCH_TIMEOUT_SEC,
    ) -> None:
        self.repository = repository
        self.directory = directory
        self.concurrency = concurrency
        self.timeout_seconds = timeout_seconds

    async def _collect(self, student_ids: Sequence[str], phase: Phase):
        return await collect_many(
            self.repository,
            student_ids,
            phase,
            concurrency=self.concurrency,
            timeout_seconds=self.timeout_seconds,
        )

    async def _aggregate_one(self, student_id: str, phase: Phase) -> SubjectAggregate:
        (attempts,) = await self._collect([student_id], phase)
        return aggregate(attempts or [])

    @staticmethod
    def _global_score(student_id: str, phase: Phase, result: SubjectAggregate) -> GlobalScore | None:
        if not is_complete(result.subject_scores):
            return None
        return GlobalScore(
            student_id=student_id,
            phase=phase,
            value=result.global_score,
            completed_subject_count=result.completed_subject_count,
            subject_scores=dict(result.subject_scores),
        )

    @staticmethod
    def _progress(student_id: str, phase: Phase, result: SubjectAggregate) -> dict[str, Any]:
        return {
            "student_id": student_id,
            "phase": phase.value,
            "completed_subject_count": result.completed_subject_count,
            "completion_percentage": completion_percentage(result.subject_scores),
            "is_complete": is_complete(result.subject_scores),
            "unmapped_subjects": list(result.unmapped_subjects),
        }

    async def compute_global_score(self, student_id: str, phase: Phase | str) -> GlobalScore | None:
        phase = Phase.parse(phase)
        return self._global_score(student_id, phase, await self._aggregate_one(student_id, phase))

    async def compute_phase_progress(self, student_id: str, phase: Phase | str) -> dict[str, Any]:
        phase = Phase.parse(phase)
        return self._progress(student_id, phase, await self._aggregate_one(student_id, phase))

    async def compute_score_report(self, student_id: str, phase: Phase | str) -> dict[str, Any]:
        """Global score and phase progress of one student from a single fetch."""
        phase = Phase.parse(phase)
        result = await self._aggregate_one(student_id, phase)
        score = self._global_score(student_id, phase, result)
        return {
            **self._progress(student_id, phase, result),
            "value": score.value if score is not None else None,
            "subject_scores": {subject.value: pct for subject, pct in result.subject_scores.items()},
            "qualifies": score is not None,
        }

    async def compute_topic_breakdown(self, student_id: str, phase: Phase | str) -> list[dict[str, object]]:
        phase = Phase.parse(phase)
        (attempts,) = await self._collect([student_id], phase)
        return topic_breakdown(attempts or [])

    async def compute_ranking(self, population: Sequence[Student], phase: Phase | str) -> list[RankingEntry]:
        phase = Phase.parse(phase)
        if not population:
            return []
        collected = await self._collect([s.id for s in population], phase)

        entries: list[RankingEntry] = []
        skipped = 0
        for student, attempts in zip(population, collected):
            if attempts is None:
                skipped += 1
                continue
            result = aggregate(attempts)
            if not is_complete(result.subject_scores):
                continue
            entries.append(
                RankingEntry(
                    student=student,
                    global_score=result.global_score,
                    total_attempt_count=len(attempts),
                    completed_subject_count=result.completed_subject_count,
                )
            )

        ranked = rank(entries)
        logger.info(
            "Ranking for phase %s: %s of %s students qualify (%s skipped on fetch errors)",
            phase.value,
            len(ranked),
            len(population),
            skipped,
        )
        return ranked

    async def compute_average(self, population: Sequence[Student], phase: Phase | str) -> float:
        ranked = await self.compute_ranking(population, phase)
        return mean_score(e.global_score for e in ranked)

    def select_population(self, filters: StudentFilters) -> list[Student]:
        return select_students(self.directory.get_filtered_students(filters), filters)

    async def rank_population(self, filters: StudentFilters) -> list[RankingEntry]:
        return await self.compute_ranking(self.select_population(filters), filters.phase)

    async def compute_institution_ranking(
        self,
        filters: StudentFilters,
        *,
        include_empty: bool = True,
    ) -> list[InstitutionRankingEntry]:
        population = self.select_population(filters)
        ranked = await self.compute_ranking(population, filters.phase)
        institutions = self.directory.list_institutions()
        if not is_unrestricted(filters.institution_id):
            institutions = [i for i in institutions if str(i["id"]) == filters.institution_id]
        return rank_groups(
            institutions,
            ranked,
            population,
            key=lambda s: s.institution_id,
            include_empty=include_empty,
        )

    async def compute_campus_ranking(
        self,
        filters: StudentFilters,
        *,
        include_empty: bool = True,
    ) -> list[InstitutionRankingEntry]:
        population = self.select_population(filters)
        ranked = await self.compute_ranking(population, filters.phase)
        campuses = self.directory.list_campuses(filters.institution_id)
        return rank_groups(
            campuses,
            ranked,
            population,
            key=lambda s: s.campus_id,
            include_empty=include_empty,
        )

    async def best_students_by_institution(self, filters: StudentFilters) -> list[RankingEntry]:
        ranked = await self.rank_population(filters)
        return best_student_by_group(ranked, key=lambda s: s.institution_id)

    async def compute_student_position(self, student_id: str, phase: Phase | str) -> StudentPosition | None:
        """Place of a student among the classmates of the same institution, campus and grade."""
        phase = Phase.parse(phase)
        student = self.directory.get_student(student_id)
        if student is None:
            return None
        if not (student.institution_id and student.campus_id and student.grade_id):
            return StudentPosition(rank=None, total_in_phase=0, total_in_grade=0)

        filters = StudentFilters(
            phase=phase,
            institution_id=student.institution_id,
            campus_id=student.campus_id,
            grade_id=student.grade_id,
        )
        classmates = self.select_population(filters)
        if all(c.id != student.id for c in classmates):
            classmates = [*classmates, student]
        ranked = await self.compute_ranking(classmates, phase)
        return student_position(ranked, student_id, total_in_grade=len(classmates))
