import asyncio
import json

import httpx
import numpy as np
import pytest

from services.ingest import (
    RecordStream,
    SearchClient,
    SearchError,
    SearchPageFetcher,
    build_filters,
    build_search_body,
)
from shared.config import TelemetryFields


def _hits(start: int, count: int) -> list[dict]:
    return [{"_id": str(i), "_source": {"n": i}, "sort": [i]} for i in range(start, start + count)]


def _page_source(*page_list):
    """fetch_page stand-in serving fixed pages; records the cursors it was asked for"""
    cursors = []
    remaining = list(page_list)

    async def fetch_page(cursor):
        cursors.append(cursor)
        page = remaining.pop(0)
        if isinstance(page, Exception):
            raise page
        next_cursor = page[-1]["sort"] if page and remaining else None
        return page, next_cursor

    return fetch_page, cursors


async def _drain(stream) -> list[list[dict]]:
    return [page async for page in stream]


def test_build_filters_for_traces() -> None:
    fields = TelemetryFields()
    filters = build_filters("now-1h", "now", fields, service="checkout")

    assert filters[0] == {"range": {"@timestamp": {"gte": "now-1h", "lte": "now"}}}
    assert {"exists": {"field": "TraceId"}} in filters
    assert {"term": {"Resource.service.name": "checkout"}} in filters


def test_build_filters_wildcard_service_and_query_string() -> None:
    filters = build_filters(
        "2024-01-01T00:00:00Z",
        "2024-01-02T00:00:00Z",
        TelemetryFields(),
        service="check*",
        query_string="status:500",
    )

    assert {"wildcard": {"Resource.service.name": "check*"}} in filters
    query = [f for f in filters if "query_string" in f][0]["query_string"]
    assert query == {"query": "status:500", "analyze_wildcard": True, "default_field": "*"}


def test_build_filters_for_single_attribute() -> None:
    filters = build_filters(
        "now-1h", "now", TelemetryFields(), attribute_key="http.route", use_text_content=False
    )

    assert {"exists": {"field": "http.route"}} in filters
    assert {"exists": {"field": "TraceId"}} not in filters


def test_search_body_is_sorted_by_timestamp() -> None:
    body = build_search_body([{"match_all": {}}], TelemetryFields(timestamp="ts"), page_size=50)

    assert body["size"] == 50
    assert body["query"] == {"bool": {"filter": [{"match_all": {}}]}}
    assert body["sort"] == [{"ts": {"order": "desc"}}]


def test_page_fetcher_uses_search_after() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/traces-*/_search"
        body = json.loads(request.content)
        requests.append(body)
        start = body.get("search_after", [-1])[0] + 1
        count = 2 if start < 4 else 1
        return httpx.Response(200, json={"hits": {"hits": _hits(start, count)}})

    async def scenario():
        client = SearchClient(base_url="http://search:9200", transport=httpx.MockTransport(handler))
        fetcher = SearchPageFetcher(client, "traces-*", {"size": 2, "query": {"match_all": {}}})
        try:
            return await _drain(RecordStream(fetcher))
        finally:
            await client.close()

    result = asyncio.run(scenario())

    assert [[h["_id"] for h in page] for page in result] == [["0", "1"], ["2", "3"], ["4"]]
    assert "search_after" not in requests[0]
    assert requests[1]["search_after"] == [1]
    assert requests[2]["search_after"] == [3]


def test_search_client_raises_search_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="no such index")

    async def scenario():
        async with SearchClient(transport=httpx.MockTransport(handler)) as client:
            await client.search("missing-*", {})

    with pytest.raises(SearchError) as info:
        asyncio.run(scenario())
    assert info.value.status == 404


def test_sampling_keeps_ceiling_of_rate() -> None:
    fetch_page, _ = _page_source(_hits(0, 10))
    stream = RecordStream(fetch_page, sampling_rate=0.5, rng=np.random.default_rng(1))

    result = asyncio.run(_drain(stream))

    assert len(result) == 1
    ids = [int(h["_id"]) for h in result[0]]
    assert len(ids) == 5
    assert ids == sorted(ids)
    assert stream.processed_docs == 10


def test_sampling_keeps_at_least_one_record() -> None:
    fetch_page, _ = _page_source(_hits(0, 3))
    result = asyncio.run(_drain(RecordStream(fetch_page, sampling_rate=0.01)))

    assert len(result[0]) == 1


def test_max_docs_truncates_and_stops() -> None:
    fetch_page, cursors = _page_source(_hits(0, 4), _hits(4, 4), _hits(8, 4))
    stream = RecordStream(fetch_page, max_docs_to_process=6)

    result = asyncio.run(_drain(stream))

    assert [len(page) for page in result] == [4, 2]
    assert stream.processed_docs == 6
    assert len(cursors) == 2


def test_failed_page_is_retried_from_same_cursor() -> None:
    fetch_page, cursors = _page_source(_hits(0, 2), SearchError("timeout"), _hits(2, 2))
    result = asyncio.run(_drain(RecordStream(fetch_page, retry_backoff=0)))

    assert [len(page) for page in result] == [2, 2]
    assert cursors == [None, [1], [1]]


def test_stream_ends_after_repeated_failures() -> None:
    fetch_page, cursors = _page_source(
        _hits(0, 2), SearchError("down"), SearchError("down"), SearchError("down"), _hits(2, 2)
    )
    result = asyncio.run(_drain(RecordStream(fetch_page, max_page_failures=3, retry_backoff=0)))

    assert [len(page) for page in result] == [2]
    assert len(cursors) == 4


def test_empty_page_ends_stream() -> None:
    fetch_page, _ = _page_source([], _hits(0, 2))
    stream = RecordStream(fetch_page)

    assert asyncio.run(_drain(stream)) == []
    assert stream.pages == 1


def test_non_json_response_raises_search_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy error</html>")

    async def scenario():
        async with SearchClient(transport=httpx.MockTransport(handler)) as client:
            await client.search("traces-*", {})

    with pytest.raises(SearchError) as info:
        asyncio.run(scenario())
    assert info.value.status == 200


def test_malformed_page_ends_stream_without_losing_earlier_pages() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        if len(requests) == 1:
            return httpx.Response(200, json={"hits": {"hits": _hits(0, 2)}})
        return httpx.Response(200, text="<html>proxy error</html>")

    async def scenario():
        async with SearchClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = SearchPageFetcher(client, "traces-*", {"size": 2})
            return await _drain(RecordStream(fetcher, max_page_failures=2, retry_backoff=0))

    result = asyncio.run(scenario())

    assert [[h["_id"] for h in page] for page in result] == [["0", "1"]]
    assert len(requests) == 3
    assert all(body["search_after"] == [1] for body in requests[1:])


def test_unexpected_fetch_error_is_retried() -> None:
    fetch_page, cursors = _page_source(KeyError("hits"), _hits(0, 2))
    result = asyncio.run(_drain(RecordStream(fetch_page, retry_backoff=0)))

    assert [len(page) for page in result] == [2]
    assert cursors == [None, None]
