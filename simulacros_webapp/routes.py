from __future__ import annotations

import io
from functools import lru_cache

import pandas as pd
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from .cache import TtlCache, ttl_cached
from .config import DEFAULT_RANKING_LIMIT, JORNADAS, MAX_RANKING_LIMIT, MIN_RANKING_LIMIT
from .db import SessionLocal
from .engine import AggregationService
from .filter_options_repo import fetch_filter_options
from .filters import is_unrestricted
from .models import InstitutionRankingEntry, Phase, RankingEntry, StudentFilters
from .ranking import mean_score, ranked_rows
from .results_repo import SqlResultRepository
from .students_repo import SqlStudentDirectory

router = APIRouter()

_RANKING_CACHE = TtlCache()

EXPORT_COLUMNS = [
    "rank_pos",
    "student_id",
    "student_name",
    "institution_id",
    "campus_id",
    "grade_id",
    "jornada",
    "global_score",
    "completed_subject_count",
    "total_attempt_count",
]


@lru_cache(maxsize=1)
def get_service() -> AggregationService:
    return AggregationService(SqlResultRepository(SessionLocal), SqlStudentDirectory(SessionLocal))


def clear_ranking_cache() -> None:
    _RANKING_CACHE.clear()


@ttl_cached(_RANKING_CACHE)
async def _cached_ranking(service: AggregationService, filters: StudentFilters) -> list[RankingEntry]:
    return await service.rank_population(filters)


@ttl_cached(_RANKING_CACHE)
async def _cached_institution_ranking(
    service: AggregationService,
    filters: StudentFilters,
    include_empty: bool,
) -> list[InstitutionRankingEntry]:
    return await service.compute_institution_ranking(filters, include_empty=include_empty)


@ttl_cached(_RANKING_CACHE)
async def _cached_campus_ranking(service: AggregationService, filters: StudentFilters) -> list[InstitutionRankingEntry]:
    return await service.compute_campus_ranking(filters)


def _parse_optional_int(value: str | None) -> int | None:
    raw = (value or "").strip()
    if not raw:
        return None
    return int(raw) if raw.isdigit() else None


def _parse_bounded_int(value: str | None, *, default: int, min_value: int, max_value: int | None = None) -> int:
    parsed = _parse_optional_int(value)
    if parsed is None:
        parsed = default
    if parsed < min_value:
        parsed = min_value
    if max_value is not None and parsed > max_value:
        parsed = max_value
    return parsed


def _parse_flag(value: str | None, *, default: bool) -> bool:
    raw = (value or "").strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "off", "no"}


def _parse_phase(value: str | None) -> Phase:
    if is_unrestricted(value):
        return Phase.FIRST
    return Phase.parse(value)


def _parse_year(value: str | None) -> int | None:
    if is_unrestricted(value):
        return None
    parsed = _parse_optional_int(value)
    if parsed is None:
        raise ValueError(f"Invalid year '{value}'")
    return parsed


def _parse_jornada(value: str | None) -> str | None:
    if is_unrestricted(value):
        return None
    raw = str(value).strip().casefold()
    for jornada in JORNADAS:
        if jornada.casefold() == raw:
            return jornada
    raise ValueError(f"Unknown jornada '{value}'")


def _optional_text(value: str | None) -> str | None:
    return None if is_unrestricted(value) else str(value).strip()


def _build_filters(
    *,
    phase: str | None,
    institution_id: str | None = None,
    campus_id: str | None = None,
    grade_id: str | None = None,
    jornada: str | None = None,
    year: str | None = None,
    include_inactive: str | None = None,
) -> StudentFilters:
    return StudentFilters(
        phase=_parse_phase(phase),
        institution_id=_optional_text(institution_id),
        campus_id=_optional_text(campus_id),
        grade_id=_optional_text(grade_id),
        jornada=_parse_jornada(jornada),
        academic_year=_parse_year(year),
        include_inactive=_parse_flag(include_inactive, default=False),
    )


def _student_not_found(student_id: str) -> JSONResponse:
    return JSONResponse({"error": f"Student '{student_id}' not found"}, status_code=404)


@router.get("/api/students/{student_id}/global-score")
async def student_global_score(
    student_id: str,
    phase: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    phase_value = _parse_phase(phase)
    if service.directory.get_student(student_id) is None:
        return _student_not_found(student_id)

    return JSONResponse(await service.compute_score_report(student_id, phase_value))


@router.get("/api/students/{student_id}/position")
async def student_position(
    student_id: str,
    phase: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    position = await service.compute_student_position(student_id, _parse_phase(phase))
    if position is None:
        return _student_not_found(student_id)
    return JSONResponse({"student_id": student_id, **position.to_dict()})


@router.get("/api/students/{student_id}/topics")
async def student_topics(
    student_id: str,
    phase: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    phase_value = _parse_phase(phase)
    if service.directory.get_student(student_id) is None:
        return _student_not_found(student_id)
    items = await service.compute_topic_breakdown(student_id, phase_value)
    return JSONResponse({"items": items})


@router.get("/api/ranking/students")
async def ranking_students(
    phase: str | None = Query(default=None),
    institution_id: str | None = Query(default=None),
    campus_id: str | None = Query(default=None),
    grade_id: str | None = Query(default=None),
    jornada: str | None = Query(default=None),
    year: str | None = Query(default=None),
    include_inactive: str | None = Query(default=None),
    limit: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    filters = _build_filters(
        phase=phase,
        institution_id=institution_id,
        campus_id=campus_id,
        grade_id=grade_id,
        jornada=jornada,
        year=year,
        include_inactive=include_inactive,
    )
    limit_value = _parse_bounded_int(
        limit,
        default=DEFAULT_RANKING_LIMIT,
        min_value=MIN_RANKING_LIMIT,
        max_value=MAX_RANKING_LIMIT,
    )
    ranked = await _cached_ranking(service, filters)
    return JSONResponse({"items": ranked_rows(ranked, limit=limit_value), "total": len(ranked)})


@router.get("/api/ranking/average")
async def ranking_average(
    phase: str | None = Query(default=None),
    institution_id: str | None = Query(default=None),
    campus_id: str | None = Query(default=None),
    grade_id: str | None = Query(default=None),
    jornada: str | None = Query(default=None),
    year: str | None = Query(default=None),
    include_inactive: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    filters = _build_filters(
        phase=phase,
        institution_id=institution_id,
        campus_id=campus_id,
        grade_id=grade_id,
        jornada=jornada,
        year=year,
        include_inactive=include_inactive,
    )
    ranked = await _cached_ranking(service, filters)
    return JSONResponse(
        {
            "phase": filters.phase.value,
            "average": mean_score(e.global_score for e in ranked),
            "qualifying_count": len(ranked),
        }
    )


@router.get("/api/ranking/institutions")
async def ranking_institutions(
    phase: str | None = Query(default=None),
    jornada: str | None = Query(default=None),
    year: str | None = Query(default=None),
    include_empty: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    filters = _build_filters(phase=phase, jornada=jornada, year=year)
    groups = await _cached_institution_ranking(service, filters, _parse_flag(include_empty, default=True))
    return JSONResponse({"items": [g.to_dict() for g in groups]})


@router.get("/api/ranking/campuses")
async def ranking_campuses(
    phase: str | None = Query(default=None),
    institution_id: str | None = Query(default=None),
    jornada: str | None = Query(default=None),
    year: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    filters = _build_filters(phase=phase, institution_id=institution_id, jornada=jornada, year=year)
    groups = await _cached_campus_ranking(service, filters)
    return JSONResponse({"items": [g.to_dict() for g in groups]})


@router.get("/api/ranking/best-students")
async def ranking_best_students(
    phase: str | None = Query(default=None),
    jornada: str | None = Query(default=None),
    year: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    filters = _build_filters(phase=phase, jornada=jornada, year=year)
    best = await service.best_students_by_institution(filters)
    return JSONResponse({"items": ranked_rows(best)})


@router.get("/api/ranking/export")
async def ranking_export(
    phase: str | None = Query(default=None),
    institution_id: str | None = Query(default=None),
    campus_id: str | None = Query(default=None),
    grade_id: str | None = Query(default=None),
    jornada: str | None = Query(default=None),
    year: str | None = Query(default=None),
    include_inactive: str | None = Query(default=None),
    limit: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    filters = _build_filters(
        phase=phase,
        institution_id=institution_id,
        campus_id=campus_id,
        grade_id=grade_id,
        jornada=jornada,
        year=year,
        include_inactive=include_inactive,
    )
    limit_value = _parse_bounded_int(
        limit,
        default=MAX_RANKING_LIMIT,
        min_value=MIN_RANKING_LIMIT,
        max_value=MAX_RANKING_LIMIT,
    )
    ranked = await _cached_ranking(service, filters)
    rows = ranked_rows(ranked, limit=limit_value)

    if rows:
        df = pd.DataFrame(rows)[EXPORT_COLUMNS]
    else:
        df = pd.DataFrame(columns=EXPORT_COLUMNS)

    filters_df = pd.DataFrame(
        [
            {"key": "phase", "value": filters.phase.value},
            {"key": "institution_id", "value": filters.institution_id},
            {"key": "campus_id", "value": filters.campus_id},
            {"key": "grade_id", "value": filters.grade_id},
            {"key": "jornada", "value": filters.jornada},
            {"key": "year", "value": filters.academic_year},
            {"key": "include_inactive", "value": filters.include_inactive},
            {"key": "limit", "value": limit_value},
            {"key": "average", "value": mean_score(e.global_score for e in ranked)},
        ]
    )

    out = io.BytesIO()
    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="ranking")
        filters_df.to_excel(writer, index=False, sheet_name="filters")
    out.seek(0)

    headers = {"Content-Disposition": f"attachment; filename=ranking_{filters.phase.value}.xlsx"}
    return StreamingResponse(
        out,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers=headers,
    )


@router.get("/api/filters")
def filter_options(
    institution_id: str | None = Query(default=None),
    campus_id: str | None = Query(default=None),
    service: AggregationService = Depends(get_service),
):
    return JSONResponse(
        fetch_filter_options(service.directory, institution_id=institution_id, campus_id=campus_id)
    )
