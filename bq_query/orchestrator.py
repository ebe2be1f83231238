"""Submit, wait, then page: the synchronous entry point for query jobs."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Tuple

from google.cloud import bigquery

from .bq.jobs import JobClient, JobPoller
from .bq.tabledata import ResultPager
from .errors import FetchError, JobExecutionError, QueryError
from .models import (
    JobHandle,
    JobRequest,
    JobState,
    JobStatistics,
    JobStatus,
    QueryOptions,
    QueryResult,
    ResultLocation,
)

logger = logging.getLogger(__name__)


class QueryOrchestrator:
    """Runs a query job end to end on a shared BigQuery client.

    Every call is independent; the client is the only state shared between
    concurrent calls.
    """

    def __init__(
        self,
        client: bigquery.Client,
        project: str,
        location: Optional[str] = None,
        options: Optional[QueryOptions] = None,
        jobs: Optional[JobClient] = None,
        poller: Optional[JobPoller] = None,
        pager_factory: Optional[Callable[[bool], ResultPager]] = None,
    ) -> None:
        self.client = client
        self.project = project
        self.location = location
        self.options = options or QueryOptions()
        self.jobs = jobs or JobClient(client)
        self.poller = poller or JobPoller(self.jobs)
        self._pager_factory = pager_factory or (lambda warn: ResultPager(client, warn_on_truncation=warn))

    def _request(
        self,
        query: str,
        destination_table: Optional[str],
        default_dataset: Optional[str],
        options: QueryOptions,
    ) -> JobRequest:
        if not isinstance(query, str) or not query.strip():
            raise ValueError("query must be a non-empty string")
        return JobRequest(
            query=query,
            project=self.project,
            destination_table=destination_table,
            default_dataset=default_dataset,
            location=self.location,
            options=options,
        )

    def _wait(
        self,
        request: JobRequest,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[JobHandle, JobStatus]:
        handle = self.jobs.submit(request)
        status = self.poller.wait_until_done(
            handle,
            request.options.poll,
            cancel_event=cancel_event,
            quiet=request.options.quiet,
        )
        if status.state is JobState.ERROR:
            error = status.error or {}
            raise JobExecutionError(
                f"Job {handle.job_id} failed: {error.get('message', 'unknown error')}",
                job=handle,
                reason=error.get("reason"),
                errors=status.errors,
            )
        if status.location is None:
            raise QueryError(
                f"Job {handle.job_id} finished without a destination table",
                job=handle,
                last_state=status.state,
            )
        return handle, status

    def run_query_job(
        self,
        query: str,
        destination_table: Optional[str] = None,
        default_dataset: Optional[str] = None,
        options: Optional[QueryOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResultLocation:
        """Submit a query and block until it finishes; return its destination table."""
        request = self._request(query, destination_table, default_dataset, options or self.options)
        _, status = self._wait(request, cancel_event)
        return status.location

    def run(
        self,
        query: str,
        destination_table: Optional[str] = None,
        default_dataset: Optional[str] = None,
        options: Optional[QueryOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> QueryResult:
        """Run a query and return up to ``max_pages * page_size`` rows of its result.

        Raises :class:`JobExecutionError` if the job ends in error; no rows are
        fetched in that case. A :class:`FetchError` raised while paging carries
        the job handle and the rows fetched before the failure.
        """
        options = options or self.options
        request = self._request(query, destination_table, default_dataset, options)
        handle, status = self._wait(request, cancel_event)

        pager = self._pager_factory(options.warn_on_truncation)
        try:
            fetched = pager.collect_pages(status.location, options.page_size, options.max_pages)
        except FetchError as exc:
            exc.job = handle
            raise

        total_rows = fetched.pages[-1].total_rows if fetched.pages else 0
        logger.debug(
            "Fetched %d of %d rows for job %s in %d pages",
            len(fetched.rows),
            total_rows,
            handle.job_id,
            len(fetched.pages),
        )
        return QueryResult(
            job=handle,
            rows=fetched.rows,
            columns=fetched.columns,
            location=status.location,
            statistics=status.statistics,
            total_rows=total_rows,
            truncated=fetched.truncated,
        )

    def dry_run(
        self,
        query: str,
        destination_table: Optional[str] = None,
        default_dataset: Optional[str] = None,
        options: Optional[QueryOptions] = None,
    ) -> JobStatistics:
        """Validate a query and estimate its cost without running it."""
        request = self._request(query, destination_table, default_dataset, options or self.options)
        return self.jobs.submit_dry_run(request)
