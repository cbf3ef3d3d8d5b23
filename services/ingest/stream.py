"""
Record Stream Source
Pages through telemetry documents with `search_after`, sampling each page
"""

import math
from typing import Any, Optional

import numpy as np
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from .client import SearchClient

logger = structlog.get_logger()

Cursor = Optional[list[Any]]


class SearchPageFetcher:
    """Fetch-by-page over a sorted search body; the cursor is the last hit's `sort`"""

    def __init__(self, client: SearchClient, index: str, body: dict):
        self.client = client
        self.index = index
        self.body = body
        self.page_size = body.get("size", 1000)

    async def __call__(self, cursor: Cursor = None) -> tuple[list[dict], Cursor]:
        body = dict(self.body)
        if cursor:
            body["search_after"] = cursor

        response = await self.client.search(self.index, body)
        hits = response.get("hits", {}).get("hits", []) or []

        next_cursor = None
        if hits and len(hits) >= self.page_size:
            next_cursor = hits[-1].get("sort")
        return hits, next_cursor


class RecordStream:
    """
    Async iterator of sampled record pages.

    Ends when a page comes back empty, the cursor runs out, or
    `max_docs_to_process` records have been examined. Any fetch error,
    malformed responses included, is retried from the same cursor with
    exponential backoff; after `max_page_failures` attempts the stream ends
    with whatever it already yielded.
    """

    def __init__(
        self,
        fetch_page,
        sampling_rate: float = 1.0,
        max_docs_to_process: int = 10000,
        max_page_failures: int = 3,
        retry_backoff: float = 1.0,
        rng: Optional[np.random.Generator] = None,
    ):
        self.fetch_page = fetch_page
        self.sampling_rate = sampling_rate
        self.max_docs_to_process = max_docs_to_process
        self.max_page_failures = max(1, max_page_failures)
        self.retry_backoff = retry_backoff
        self.rng = rng or np.random.default_rng()

        self.processed_docs = 0
        self.pages = 0
        self._cursor: Cursor = None
        self._done = False

    def __aiter__(self):
        return self

    def _log_retry(self, retry_state: RetryCallState):
        logger.warning(
            "Retrying record page fetch",
            error=str(retry_state.outcome.exception()),
            attempt=retry_state.attempt_number,
            processed_docs=self.processed_docs,
        )

    async def _fetch(self) -> tuple[list[dict], Cursor]:
        """One page from the current cursor, retried with exponential backoff"""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_page_failures),
            wait=wait_exponential(multiplier=self.retry_backoff, max=30),
            retry=retry_if_exception_type(Exception),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.fetch_page(self._cursor)

    async def __anext__(self) -> list[dict]:
        if not self._done and self.processed_docs < self.max_docs_to_process:
            try:
                records, next_cursor = await self._fetch()
            except Exception as e:
                logger.error(
                    "Giving up on record page",
                    error=str(e),
                    attempts=self.max_page_failures,
                    processed_docs=self.processed_docs,
                )
                records, next_cursor = [], None
            else:
                self.pages += 1

            if records:
                remaining = self.max_docs_to_process - self.processed_docs
                records = records[:remaining]
                self.processed_docs += len(records)
                self._cursor = next_cursor
                self._done = next_cursor is None

                sampled = self._sample(records)
                logger.debug(
                    "Sampled record page",
                    page_size=len(records),
                    sampled=len(sampled),
                    processed_docs=self.processed_docs,
                )
                return sampled
            self._done = True

        logger.info("Record stream exhausted", processed_docs=self.processed_docs, pages=self.pages)
        raise StopAsyncIteration

    def _sample(self, records: list[dict]) -> list[dict]:
        if self.sampling_rate >= 1.0:
            return records
        count = max(1, math.ceil(len(records) * self.sampling_rate))
        if len(records) <= count:
            return records
        indices = sorted(self.rng.choice(len(records), size=count, replace=False))
        return [records[i] for i in indices]

    async def aclose(self):
        self._done = True
