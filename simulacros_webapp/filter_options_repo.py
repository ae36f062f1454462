from __future__ import annotations

from typing import Any

from .cache import TtlCache
from .config import JORNADAS
from .filters import is_unrestricted
from .models import Phase
from .students_repo import StudentDirectory

_FILTER_OPTIONS_CACHE = TtlCache()


def clear_filter_options_cache() -> None:
    _FILTER_OPTIONS_CACHE.clear()


def fetch_filter_options(
    directory: StudentDirectory,
    *,
    institution_id: str | None = None,
    campus_id: str | None = None,
) -> dict[str, list[Any]]:
    institution_key = None if is_unrestricted(institution_id) else institution_id
    campus_key = None if is_unrestricted(campus_id) else campus_id
    cache_key = (directory, institution_key, campus_key)
    cached = _FILTER_OPTIONS_CACHE.get(cache_key)
    if cached is not None:
        return cached

    institutions = directory.list_institutions()
    campuses = directory.list_campuses(institution_key) if institution_key is not None else []
    grades = directory.list_grades(campus_key) if campus_key is not None else []

    result: dict[str, list[Any]] = {
        "institutions": institutions,
        "campuses": campuses,
        "grades": grades,
        "jornadas": list(JORNADAS),
        "years": directory.list_academic_years(),
        "phases": [phase.value for phase in Phase],
    }
    _FILTER_OPTIONS_CACHE.put(cache_key, result)
    return result
