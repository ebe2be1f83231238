import logging

import pytest

from bq_query.bq.tabledata import ResultPager
from bq_query.errors import FetchError
from bq_query.models import ResultLocation

LOCATION = ResultLocation(project="proj", dataset_id="_anon", table_id="anon_result")


def three_pages(rows):
    return [rows(0, 10), rows(10, 10), rows(20, 10)]


def test_page_cap_truncates_and_warns(fake_client, rows, caplog):
    client = fake_client(pages=three_pages(rows))
    pager = ResultPager(client)
    with caplog.at_level(logging.WARNING):
        fetched = pager.collect_pages(LOCATION, page_size=10, max_pages=2)
    assert len(fetched.pages) == 2
    assert len(fetched.rows) == 20
    assert fetched.truncated is True
    assert "Only 20 of 30 rows" in caplog.text
    assert [call["page_token"] for call in client.list_rows_calls] == [None, "page-1"]


def test_truncation_warning_can_be_disabled(fake_client, rows, caplog):
    client = fake_client(pages=three_pages(rows))
    pager = ResultPager(client, warn_on_truncation=False)
    with caplog.at_level(logging.WARNING):
        fetched = pager.collect_pages(LOCATION, page_size=10, max_pages=1)
    assert fetched.truncated is True
    assert caplog.text == ""


def test_stops_when_no_continuation_token(fake_client, rows):
    client = fake_client(pages=three_pages(rows))
    fetched = ResultPager(client).collect_pages(LOCATION, page_size=10, max_pages=10)
    assert len(fetched.pages) == 3
    assert fetched.truncated is False
    assert fetched.rows[-1]["n"] == 29
    assert fetched.columns == ["n", "label"]
    assert len(client.list_rows_calls) == 3


def test_failure_keeps_rows_already_fetched(fake_client, rows):
    client = fake_client(pages=three_pages(rows), fail_on_page=1)
    with pytest.raises(FetchError) as excinfo:
        ResultPager(client).collect_pages(LOCATION, page_size=10, max_pages=3)
    error = excinfo.value
    assert len(error.pages) == 1
    assert len(error.rows) == 10
    assert error.location == LOCATION


def test_fetch_pages_is_lazy(fake_client, rows):
    client = fake_client(pages=three_pages(rows))
    pages = ResultPager(client).fetch_pages(LOCATION, page_size=10, max_pages=3)
    assert client.list_rows_calls == []
    first = next(pages)
    assert first.page_token == "page-1"
    assert first.total_rows == 30
    assert len(client.list_rows_calls) == 1


def test_requests_full_table_id_and_page_size(fake_client, rows):
    client = fake_client(pages=[rows(0, 5)])
    ResultPager(client).collect_pages(LOCATION, page_size=3, max_pages=1)
    assert client.get_table_calls == ["proj._anon.anon_result"]
    assert client.list_rows_calls[0]["table"].full_id == "proj._anon.anon_result"
    assert client.list_rows_calls[0]["page_size"] == 3


def test_table_is_looked_up_once_for_all_pages(fake_client, rows):
    client = fake_client(pages=three_pages(rows))
    ResultPager(client).collect_pages(LOCATION, page_size=10, max_pages=3)
    assert client.get_table_calls == ["proj._anon.anon_result"]
    assert len(client.list_rows_calls) == 3
    assert len({id(call["table"]) for call in client.list_rows_calls}) == 1


def test_exact_page_cap_is_not_truncation(fake_client, rows, caplog):
    client = fake_client(pages=[rows(0, 10), rows(10, 10)])
    with caplog.at_level(logging.WARNING):
        fetched = ResultPager(client).collect_pages(LOCATION, page_size=10, max_pages=2)
    assert len(fetched.rows) == 20
    assert fetched.truncated is False
    assert caplog.text == ""
