from __future__ import annotations

from typing import Any, Dict, List, Optional

from .models import JobHandle, JobState, ResultLocation, ResultPage


class QueryError(Exception):
    """Base class for every failure raised while running a query job."""

    def __init__(
        self,
        message: str,
        job: Optional[JobHandle] = None,
        last_state: Optional[JobState] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.job = job
        self.last_state = last_state

    @property
    def job_id(self) -> Optional[str]:
        return self.job.job_id if self.job else None


class SubmissionError(QueryError):
    pass


class PollingError(QueryError):
    pass


class PollTimeout(QueryError):
    def __init__(
        self,
        message: str,
        job: Optional[JobHandle] = None,
        last_state: Optional[JobState] = None,
        attempts: int = 0,
        elapsed: float = 0.0,
    ) -> None:
        super().__init__(message, job=job, last_state=last_state)
        self.attempts = attempts
        self.elapsed = elapsed


class Cancelled(QueryError):
    pass


class JobExecutionError(QueryError):
    def __init__(
        self,
        message: str,
        job: Optional[JobHandle] = None,
        reason: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message, job=job, last_state=JobState.ERROR)
        self.reason = reason
        self.errors = errors or []


class FetchError(QueryError):
    """A page request failed; pages fetched before the failure are kept."""

    def __init__(
        self,
        message: str,
        location: Optional[ResultLocation] = None,
        pages: Optional[List[ResultPage]] = None,
        job: Optional[JobHandle] = None,
    ) -> None:
        super().__init__(message, job=job, last_state=JobState.DONE)
        self.location = location
        self.pages = pages or []

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return [row for page in self.pages for row in page.rows]
