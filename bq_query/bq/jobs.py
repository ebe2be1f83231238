from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery

from ..errors import Cancelled, PollingError, PollTimeout, SubmissionError
from ..models import (
    JobHandle,
    JobRequest,
    JobState,
    JobStatistics,
    JobStatus,
    PollPolicy,
    ResultLocation,
)
from .client import build_job_config

logger = logging.getLogger(__name__)


def bytes_human(num: float) -> str:
    for unit in ["B", "KB", "MB", "GB", "TB", "PB"]:
        if num < 1024.0:
            return f"{num:3.1f}{unit}"
        num /= 1024.0
    return f"{num:.1f}EB"


def _isoformat(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _referenced_tables_from_job(job: bigquery.QueryJob) -> List[str]:
    tables = getattr(job, "referenced_tables", None) or []
    return [f"{t.project}.{t.dataset_id}.{t.table_id}" for t in tables]


def statistics_from_job(job: bigquery.QueryJob) -> JobStatistics:
    return JobStatistics(
        total_bytes_processed=int(getattr(job, "total_bytes_processed", None) or 0),
        total_bytes_billed=getattr(job, "total_bytes_billed", None),
        cache_hit=getattr(job, "cache_hit", None),
        statement_type=getattr(job, "statement_type", None),
        referenced_tables=_referenced_tables_from_job(job),
        slot_millis=getattr(job, "slot_millis", None),
        created=_isoformat(getattr(job, "created", None)),
        started=_isoformat(getattr(job, "started", None)),
        ended=_isoformat(getattr(job, "ended", None)),
    )


def status_from_job(job: bigquery.QueryJob) -> JobStatus:
    if job.state == "DONE":
        if job.error_result:
            return JobStatus(
                state=JobState.ERROR,
                statistics=statistics_from_job(job),
                error=dict(job.error_result),
                errors=list(job.errors or []),
            )
        location = None
        destination = getattr(job, "destination", None)
        if destination is not None:
            location = ResultLocation(
                project=destination.project,
                dataset_id=destination.dataset_id,
                table_id=destination.table_id,
            )
        return JobStatus(state=JobState.DONE, location=location, statistics=statistics_from_job(job))
    if job.state == "RUNNING":
        return JobStatus(state=JobState.RUNNING)
    return JobStatus(state=JobState.PENDING)


class JobClient:
    """Submits query jobs and checks their status.

    Submission is never retried here: a retried insert may create a
    duplicate job, so that decision belongs to the caller.
    """

    def __init__(self, client: bigquery.Client) -> None:
        self.client = client

    def _insert(self, request: JobRequest, dry_run: bool) -> bigquery.QueryJob:
        try:
            job_config = build_job_config(request, dry_run=dry_run)
            return self.client.query(
                request.query,
                job_config=job_config,
                project=request.project,
                location=request.location,
            )
        except (GoogleAPIError, ValueError) as exc:
            raise SubmissionError(f"Query job submission failed: {exc}") from exc

    def submit(self, request: JobRequest) -> JobHandle:
        job = self._insert(request, dry_run=False)
        handle = JobHandle(job_id=job.job_id, project=job.project, location=job.location)
        logger.debug("Submitted job %s in project %s", handle.job_id, handle.project)
        return handle

    def submit_dry_run(self, request: JobRequest) -> JobStatistics:
        job = self._insert(request, dry_run=True)
        statistics = statistics_from_job(job)
        logger.debug(
            "Dry run for project %s would process %s",
            request.project,
            bytes_human(statistics.total_bytes_processed),
        )
        return statistics

    def get_status(self, handle: JobHandle) -> JobStatus:
        try:
            job = self.client.get_job(handle.job_id, project=handle.project, location=handle.location)
        except GoogleAPIError as exc:
            raise PollingError(f"Status check failed for job {handle.job_id}: {exc}", job=handle) from exc
        return status_from_job(job)


class JobPoller:
    def __init__(
        self,
        jobs: JobClient,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.jobs = jobs
        self._sleep = sleep
        self._clock = clock

    def wait_until_done(
        self,
        handle: JobHandle,
        policy: PollPolicy,
        cancel_event: Optional[threading.Event] = None,
        quiet: bool = False,
    ) -> JobStatus:
        log = logger.debug if quiet else logger.info
        started = self._clock()
        attempt = 0
        last_state = JobState.PENDING
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise Cancelled(f"Polling cancelled for job {handle.job_id}", job=handle, last_state=last_state)

            status = self.jobs.get_status(handle)
            attempt += 1
            elapsed = self._clock() - started
            if status.state.is_terminal:
                self._log_completion(log, handle, status, elapsed)
                return status

            last_state = status.state
            log("Running job %s (%s): %.0fs", handle.job_id, last_state.value, elapsed)

            if policy.max_attempts is not None and attempt >= policy.max_attempts:
                raise PollTimeout(
                    f"Job {handle.job_id} still {last_state.value} after {attempt} status checks",
                    job=handle,
                    last_state=last_state,
                    attempts=attempt,
                    elapsed=elapsed,
                )
            delay = policy.delay_for(attempt - 1)
            if policy.timeout is not None and elapsed + delay > policy.timeout:
                raise PollTimeout(
                    f"Job {handle.job_id} still {last_state.value} after {elapsed:.0f}s",
                    job=handle,
                    last_state=last_state,
                    attempts=attempt,
                    elapsed=elapsed,
                )
            self._sleep(delay)

    @staticmethod
    def _log_completion(
        log: Callable[..., None],
        handle: JobHandle,
        status: JobStatus,
        elapsed: float,
    ) -> None:
        if status.state is JobState.ERROR:
            reason: Dict[str, Any] = status.error or {}
            logger.warning("Job %s failed: %s", handle.job_id, reason.get("message", reason))
            return
        processed = status.statistics.total_bytes_processed if status.statistics else 0
        log("Job %s complete after %.0fs, %s processed", handle.job_id, elapsed, bytes_human(processed))
