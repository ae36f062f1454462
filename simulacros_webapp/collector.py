from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from .config import PHASE_STORED_NAMES, RESULTS_FETCH_CONCURRENCY, RESULTS_FETCH_TIMEOUT_SEC
from .errors import ResultFetchError
from .models import ExamAttempt, Phase
from .results_repo import ResultRepository

logger = logging.getLogger(__name__)


def stored_phase_names(phase: Phase) -> tuple[str, ...]:
    return PHASE_STORED_NAMES.get(phase.value, (phase.value,))


def collect(repository: ResultRepository, student_id: str, phase: Phase | str) -> list[ExamAttempt]:
    """Valid attempts of one student for one phase.

    Stored names are tried in order; the first one holding a valid attempt
    wins. ``ResultFetchError`` and ``RepositoryUnavailableError`` propagate.
    """
    phase = Phase.parse(phase)
    for phase_name in stored_phase_names(phase):
        documents = repository.get_phase_results(student_id, phase_name)
        if not documents:
            continue
        attempts = [
            ExamAttempt.from_document(doc, student_id=student_id, phase=phase)
            for doc in documents
            if isinstance(doc, dict)
        ]
        valid = [a for a in attempts if a.is_valid]
        if len(valid) < len(attempts):
            logger.debug(
                "Student %s, %s: ignored %s incomplete or malformed attempt(s)",
                student_id,
                phase_name,
                len(attempts) - len(valid),
            )
        if valid:
            return valid
    return []


async def collect_many(
    repository: ResultRepository,
    student_ids: Sequence[str],
    phase: Phase | str,
    *,
    concurrency: int = RESULTS_FETCH_CONCURRENCY,
    timeout_seconds: float = RESULTS_FETCH_TIMEOUT_SEC,
) -> list[list[ExamAttempt] | None]:
    """Collect attempts for many students, in input order.

    A student whose fetch fails or times out gets ``None`` and the rest carry
    on. Infrastructure errors and cancellation propagate, so callers never see
    a partial result. A timed out fetch keeps its slot until the worker thread
    returns, so at most ``concurrency`` queries run at once.
    """
    phase = Phase.parse(phase)
    semaphore = asyncio.Semaphore(max(1, int(concurrency)))

    async def _one(student_id: str) -> list[ExamAttempt] | None:
        await semaphore.acquire()
        worker = asyncio.ensure_future(asyncio.to_thread(collect, repository, student_id, phase))
        worker.add_done_callback(_release)
        try:
            if timeout_seconds and timeout_seconds > 0:
                return await asyncio.wait_for(asyncio.shield(worker), timeout=timeout_seconds)
            return await worker
        except ResultFetchError as exc:
            logger.warning("Skipping student %s for phase %s: %s", student_id, phase.value, exc)
            return None
        except asyncio.TimeoutError:
            logger.warning(
                "Skipping student %s for phase %s: timed out after %.1fs",
                student_id,
                phase.value,
                timeout_seconds,
            )
            return None

    def _release(worker: asyncio.Future) -> None:
        semaphore.release()
        if not worker.cancelled():
            worker.exception()

    tasks = [asyncio.ensure_future(_one(sid)) for sid in student_ids]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
