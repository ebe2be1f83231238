from __future__ import annotations

import logging
from typing import Iterator, List, Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery

from ..errors import FetchError
from ..models import FetchedPages, ResultLocation, ResultPage

logger = logging.getLogger(__name__)


class ResultPager:
    """Reads the rows of a finished job's destination table page by page."""

    def __init__(self, client: bigquery.Client, warn_on_truncation: bool = True) -> None:
        self.client = client
        self.warn_on_truncation = warn_on_truncation

    def fetch_page(
        self,
        table: bigquery.Table,
        page_size: int,
        page_token: Optional[str],
    ) -> ResultPage:
        result_iter = self.client.list_rows(
            table,
            page_size=page_size,
            page_token=page_token,
        )
        page = next(result_iter.pages, None)
        rows = list(page) if page is not None else []
        columns = [field.name for field in result_iter.schema]
        data = [{col: row.get(col) for col in columns} for row in rows]
        return ResultPage(
            rows=data,
            columns=columns,
            page_token=result_iter.next_page_token,
            total_rows=int(result_iter.total_rows or 0),
        )

    def fetch_pages(
        self,
        location: ResultLocation,
        page_size: int,
        max_pages: int,
    ) -> Iterator[ResultPage]:
        """Yield up to ``max_pages`` pages of ``page_size`` rows each.

        Stops early once a page comes back without a continuation token. A
        failed request raises :class:`FetchError` holding every page yielded
        before it.
        """
        fetched: List[ResultPage] = []
        page_token: Optional[str] = None
        table: Optional[bigquery.Table] = None
        while len(fetched) < max_pages:
            try:
                # Looked up once; the table carries the schema list_rows needs.
                if table is None:
                    table = self.client.get_table(location.table_id_str)
                page = self.fetch_page(table, page_size, page_token)
            except GoogleAPIError as exc:
                raise FetchError(
                    f"Failed to fetch page {len(fetched) + 1} of {location.table_id_str}: {exc}",
                    location=location,
                    pages=list(fetched),
                ) from exc
            fetched.append(page)
            yield page
            page_token = page.page_token
            if not page_token:
                return

    def collect_pages(
        self,
        location: ResultLocation,
        page_size: int,
        max_pages: int,
    ) -> FetchedPages:
        pages = list(self.fetch_pages(location, page_size, max_pages))
        truncated = bool(pages) and bool(pages[-1].page_token)
        if truncated and self.warn_on_truncation:
            fetched_rows = sum(len(page.rows) for page in pages)
            logger.warning(
                "Only %d of %d rows of %s retrieved. Increase max_pages and/or page_size "
                "to retrieve more results.",
                fetched_rows,
                pages[-1].total_rows,
                location.table_id_str,
            )
        return FetchedPages(pages=pages, truncated=truncated)
