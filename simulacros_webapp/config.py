from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

APP_NAME = "Simulacros - Resultados y ranking académico"

BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent

load_dotenv(PROJECT_ROOT / ".env")


def _read_int_env(name: str, default: int, *, min_value: int, max_value: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError:
        value = default
    return max(min_value, min(value, max_value))


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except ValueError:
        value = default
    return max(0.0, value)


DATABASE_URL = os.getenv("DATABASE_URL", "").strip() or f"sqlite:///{(BASE_DIR / 'app.db').as_posix()}"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"

RESULTS_FETCH_CONCURRENCY = _read_int_env("RESULTS_FETCH_CONCURRENCY", 8, min_value=1, max_value=64)
RESULTS_FETCH_TIMEOUT_SEC = _read_float_env("RESULTS_FETCH_TIMEOUT_SEC", 10.0)
RANKING_CACHE_TTL_SEC = _read_float_env("RANKING_CACHE_TTL_SEC", 300.0)

DEFAULT_RANKING_LIMIT = 100
MIN_RANKING_LIMIT = 1
MAX_RANKING_LIMIT = 2000

# Canonical stored name first, legacy variants after it.
PHASE_STORED_NAMES: dict[str, tuple[str, ...]] = {
    "first": ("fase I", "Fase I", "fase 1", "first"),
    "second": ("Fase II", "fase II", "fase 2", "second"),
    "third": ("fase III", "Fase III", "fase 3", "third"),
}

JORNADAS = ("mañana", "tarde", "única")
