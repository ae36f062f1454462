from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Sequence

from .config import MAX_RANKING_LIMIT, MIN_RANKING_LIMIT
from .models import InstitutionRankingEntry, RankingEntry, Student, StudentPosition
from .scoring import round_half_up


def rank(entries: Iterable[RankingEntry]) -> list[RankingEntry]:
    """Order entries: students with attempts first, then by score descending.

    Equal scores keep their input order.
    """
    return sorted(
        entries,
        key=lambda e: (e.total_attempt_count == 0, -float(e.global_score)),
    )


def mean_score(values: Iterable[float]) -> float:
    items = [float(v) for v in values]
    if not items:
        return 0.0
    return round_half_up(sum(items) / len(items), 2)


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return MAX_RANKING_LIMIT
    return max(MIN_RANKING_LIMIT, min(int(limit), MAX_RANKING_LIMIT))


def ranked_rows(entries: Sequence[RankingEntry], *, limit: int | None = None) -> list[dict[str, Any]]:
    rows = [entry.to_dict() for entry in entries[: clamp_limit(limit)]]
    for idx, row in enumerate(rows, start=1):
        row["rank_pos"] = idx
    return rows


def rank_groups(
    groups: Sequence[Mapping[str, Any]],
    ranked: Sequence[RankingEntry],
    population: Sequence[Student],
    *,
    key: Callable[[Student], str | None],
    include_empty: bool = True,
) -> list[InstitutionRankingEntry]:
    """Average the qualifying students of each group and order groups by it.

    ``groups`` are ``{"id", "name"}`` rows in display order. Groups without
    qualifying students get a 0 average and are kept unless
    ``include_empty`` is false.
    """
    scores_by_group: dict[str, list[float]] = {}
    for entry in ranked:
        group_id = key(entry.student)
        if group_id is not None:
            scores_by_group.setdefault(group_id, []).append(entry.global_score)

    students_by_group: dict[str, int] = {}
    for student in population:
        group_id = key(student)
        if group_id is not None:
            students_by_group[group_id] = students_by_group.get(group_id, 0) + 1

    result: list[InstitutionRankingEntry] = []
    for group in groups:
        group_id = str(group["id"])
        scores = scores_by_group.get(group_id, [])
        if not scores and not include_empty:
            continue
        result.append(
            InstitutionRankingEntry(
                group_id=group_id,
                name=str(group.get("name") or ""),
                average=mean_score(scores),
                qualifying_count=len(scores),
                student_count=students_by_group.get(group_id, 0),
            )
        )
    result.sort(key=lambda g: -g.average)
    return result


def best_student_by_group(
    ranked: Sequence[RankingEntry],
    *,
    key: Callable[[Student], str | None],
) -> list[RankingEntry]:
    best: dict[str, RankingEntry] = {}
    for entry in ranked:
        group_id = key(entry.student)
        if group_id is None:
            continue
        current = best.get(group_id)
        if current is None or entry.global_score > current.global_score:
            best[group_id] = entry
    return rank(best.values())


def student_position(ranked: Sequence[RankingEntry], student_id: str, *, total_in_grade: int) -> StudentPosition:
    position = next((idx for idx, e in enumerate(ranked, start=1) if e.student.id == student_id), None)
    return StudentPosition(rank=position, total_in_phase=len(ranked), total_in_grade=total_in_grade)
