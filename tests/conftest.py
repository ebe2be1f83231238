from types import SimpleNamespace

import pytest
from google.api_core.exceptions import BadRequest, InternalServerError


def make_rows(start, count):
    return [{"n": start + i, "label": f"row-{start + i}"} for i in range(count)]


class FakeRowIterator:
    def __init__(self, rows, next_page_token, total_rows):
        self._rows = rows
        self.next_page_token = next_page_token
        self.total_rows = total_rows
        self.schema = [SimpleNamespace(name="n"), SimpleNamespace(name="label")]

    @property
    def pages(self):
        return iter([self._rows])


class FakeBigQueryClient:
    """In-memory stand-in for google.cloud.bigquery.Client.

    ``states`` is the sequence returned by successive get_job calls; the last
    one repeats. ``pages`` is a list of row lists served by list_rows.
    """

    def __init__(
        self,
        states=("DONE",),
        error_result=None,
        pages=None,
        fail_on_page=None,
        submit_error=None,
        status_error=None,
    ):
        self.states = list(states)
        self.error_result = error_result
        self.pages = pages if pages is not None else [make_rows(0, 10)]
        self.fail_on_page = fail_on_page
        self.submit_error = submit_error
        self.status_error = status_error
        self.query_calls = []
        self.status_calls = 0
        self.list_rows_calls = []
        self.get_table_calls = []

    def query(self, sql, job_config=None, project=None, location=None):
        self.query_calls.append({"sql": sql, "job_config": job_config, "project": project, "location": location})
        if self.submit_error:
            raise BadRequest(self.submit_error)
        if job_config is not None and job_config.dry_run:
            return SimpleNamespace(
                job_id="dry-run-job",
                project=project,
                location=location,
                state="DONE",
                error_result=None,
                errors=None,
                destination=None,
                total_bytes_processed=1234,
                total_bytes_billed=None,
                cache_hit=False,
                statement_type="SELECT",
                referenced_tables=[SimpleNamespace(project="p", dataset_id="d", table_id="t")],
            )
        return SimpleNamespace(job_id="job_1", project=project, location=location, state="PENDING")

    def get_job(self, job_id, project=None, location=None):
        self.status_calls += 1
        if self.status_error:
            raise InternalServerError(self.status_error)
        index = min(self.status_calls - 1, len(self.states) - 1)
        state = self.states[index]
        done = state == "DONE"
        return SimpleNamespace(
            job_id=job_id,
            project=project,
            location=location,
            state=state,
            error_result=self.error_result if done else None,
            errors=[self.error_result] if done and self.error_result else None,
            destination=SimpleNamespace(project=project, dataset_id="_anon", table_id="anon_result")
            if done
            else None,
            total_bytes_processed=2048 if done else None,
            total_bytes_billed=10485760 if done else None,
            cache_hit=False,
            statement_type="SELECT",
            referenced_tables=[],
        )

    def get_table(self, table):
        self.get_table_calls.append(table)
        return SimpleNamespace(full_id=table)

    def list_rows(self, table, page_size=None, page_token=None):
        index = int(page_token.split("-")[1]) if page_token else 0
        self.list_rows_calls.append({"table": table, "page_size": page_size, "page_token": page_token})
        if self.fail_on_page is not None and index == self.fail_on_page:
            raise InternalServerError("backend error")
        rows = self.pages[index][:page_size]
        next_token = f"page-{index + 1}" if index + 1 < len(self.pages) else None
        total = sum(len(page) for page in self.pages)
        return FakeRowIterator(rows, next_token, total)


class FakeSleep:
    def __init__(self, clock=None, on_sleep=None):
        self.delays = []
        self.clock = clock
        self.on_sleep = on_sleep

    def __call__(self, delay):
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.now += delay
        if self.on_sleep is not None:
            self.on_sleep()


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def fake_client():
    return FakeBigQueryClient


@pytest.fixture
def rows():
    return make_rows


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return FakeSleep(clock=clock)


@pytest.fixture
def make_sleeper(clock):
    def factory(on_sleep=None):
        return FakeSleep(clock=clock, on_sleep=on_sleep)

    return factory
