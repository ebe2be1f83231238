from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class JobState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.ERROR)


class CreateDisposition(str, Enum):
    CREATE_IF_NEEDED = "CREATE_IF_NEEDED"
    CREATE_NEVER = "CREATE_NEVER"


class WriteDisposition(str, Enum):
    WRITE_EMPTY = "WRITE_EMPTY"
    WRITE_TRUNCATE = "WRITE_TRUNCATE"
    WRITE_APPEND = "WRITE_APPEND"


@dataclass(frozen=True)
class PollPolicy:
    """Delay policy between status checks.

    The delay before poll ``n`` (zero based) is
    ``initial_delay * backoff_factor ** n`` capped at ``max_delay``.
    ``timeout`` and ``max_attempts`` bound the loop; ``None`` disables a bound.
    """

    initial_delay: float = 0.5
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    timeout: Optional[float] = 21600.0
    max_attempts: Optional[int] = None

    def delay_for(self, attempt: int) -> float:
        delay = self.initial_delay
        for _ in range(attempt):
            if delay >= self.max_delay or self.backoff_factor <= 1:
                break
            delay *= self.backoff_factor
        return min(delay, self.max_delay)


@dataclass(frozen=True)
class QueryOptions:
    page_size: int = 10000
    max_pages: int = 10
    warn_on_truncation: bool = True
    poll: PollPolicy = field(default_factory=PollPolicy)
    create_disposition: CreateDisposition = CreateDisposition.CREATE_IF_NEEDED
    write_disposition: WriteDisposition = WriteDisposition.WRITE_EMPTY
    use_legacy_sql: bool = True
    quiet: bool = False
    use_query_cache: bool = True
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobRequest:
    query: str
    project: str
    destination_table: Optional[str] = None
    default_dataset: Optional[str] = None
    location: Optional[str] = None
    options: QueryOptions = field(default_factory=QueryOptions)


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    project: str
    location: Optional[str] = None


@dataclass(frozen=True)
class ResultLocation:
    project: str
    dataset_id: str
    table_id: str

    @property
    def table_id_str(self) -> str:
        return f"{self.project}.{self.dataset_id}.{self.table_id}"


@dataclass
class JobStatistics:
    total_bytes_processed: int = 0
    total_bytes_billed: Optional[int] = None
    cache_hit: Optional[bool] = None
    statement_type: Optional[str] = None
    referenced_tables: List[str] = field(default_factory=list)
    slot_millis: Optional[int] = None
    created: Optional[str] = None
    started: Optional[str] = None
    ended: Optional[str] = None


@dataclass
class JobStatus:
    state: JobState
    location: Optional[ResultLocation] = None
    statistics: Optional[JobStatistics] = None
    error: Optional[Dict[str, Any]] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ResultPage:
    rows: List[Dict[str, Any]]
    columns: List[str]
    page_token: Optional[str] = None
    total_rows: int = 0


@dataclass
class FetchedPages:
    pages: List[ResultPage]
    truncated: bool = False

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return [row for page in self.pages for row in page.rows]

    @property
    def columns(self) -> List[str]:
        return self.pages[0].columns if self.pages else []


@dataclass
class QueryResult:
    job: JobHandle
    rows: List[Dict[str, Any]]
    columns: List[str]
    location: ResultLocation
    statistics: Optional[JobStatistics] = None
    total_rows: int = 0
    truncated: bool = False

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)
