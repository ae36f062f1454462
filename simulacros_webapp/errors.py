from __future__ import annotations


class AggregationError(Exception):
    """Base class for failures raised by the scoring engine and its adapters."""


class ResultFetchError(AggregationError):
    """Reading one student's results failed; the student is skipped for the phase."""

    def __init__(self, student_id: str, phase_name: str, reason: str = "") -> None:
        self.student_id = student_id
        self.phase_name = phase_name
        self.reason = reason
        message = f"Could not read results of student '{student_id}' for '{phase_name}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RepositoryUnavailableError(AggregationError):
    """The backing store cannot be reached at all."""
