"""
Embedding Stream
Lazily turns record pages into batches of embedded values
"""

from typing import AsyncIterator, Callable, Optional

import structlog

from shared.schemas.clustering import AttributeValueWithEmbedding

from .embedder import EmbeddingClient

logger = structlog.get_logger()


class EmbeddingStream:
    """
    Single-consumer async iterator of AttributeValueWithEmbedding batches.

    Each page of records is converted to text, split into batches of
    `batch_size` and sent to the embedder; one batch of embedded values is
    yielded per request. Values whose embedding failed are dropped with a
    warning. The stream ends when the record source is exhausted or
    `max_samples` values have been extracted. It cannot be iterated twice;
    re-running means building a new pipeline.
    """

    def __init__(
        self,
        pages: AsyncIterator[list[dict]],
        extractor: Callable[[dict], str],
        embedder: EmbeddingClient,
        batch_size: int = 3,
        max_samples: Optional[int] = None,
        id_getter: Optional[Callable[[dict], str]] = None,
    ):
        self.pages = pages
        self.extractor = extractor
        self.embedder = embedder
        self.batch_size = max(1, batch_size)
        self.max_samples = max_samples
        self.id_getter = id_getter or (lambda record: str(record.get("_id") or "unknown"))

        self.extracted = 0
        self.embedded = 0
        self.failed = 0
        self._iterator: Optional[AsyncIterator[list[AttributeValueWithEmbedding]]] = None

    def __aiter__(self):
        if self._iterator is not None:
            raise RuntimeError("EmbeddingStream can only be consumed once")
        self._iterator = self._generate()
        return self

    async def __anext__(self) -> list[AttributeValueWithEmbedding]:
        if self._iterator is None:
            self.__aiter__()
        return await self._iterator.__anext__()

    @property
    def exhausted_cap(self) -> bool:
        return self.max_samples is not None and self.extracted >= self.max_samples

    async def _generate(self):
        logger.info(
            "Starting streaming embedding generation",
            batch_size=self.batch_size,
            max_samples=self.max_samples,
        )
        async for page in self.pages:
            values = self._extract(page)
            for start in range(0, len(values), self.batch_size):
                batch = await self._embed(values[start:start + self.batch_size])
                if batch:
                    yield batch
            if self.exhausted_cap:
                logger.info("Sample cap reached", max_samples=self.max_samples)
                break

        logger.info(
            "Completed streaming embedding generation",
            extracted=self.extracted,
            embedded=self.embedded,
            failed=self.failed,
        )

    def _extract(self, page: list[dict]) -> list[AttributeValueWithEmbedding]:
        values = []
        empty = 0
        for record in page:
            if self.exhausted_cap:
                break
            try:
                text = self.extractor(record)
                value_id = self.id_getter(record)
            except Exception as e:
                logger.warning("Error extracting text content", error=str(e), doc_id=record.get("_id"))
                continue
            if not text or not text.strip():
                empty += 1
                continue
            values.append(AttributeValueWithEmbedding(id=value_id, value=text))
            self.extracted += 1

        logger.debug("Text extraction summary", page_size=len(page), extracted=len(values), empty=empty)
        return values

    async def _embed(self, values: list[AttributeValueWithEmbedding]) -> list[AttributeValueWithEmbedding]:
        results = await self.embedder.embed_batch([v.value for v in values])
        embedded = []
        for index, value in enumerate(values):
            result = results[index] if index < len(results) else None
            if result is None or not result.ok:
                self.failed += 1
                logger.warning(
                    "Attribute value has no embedding",
                    value=value.value[:100],
                    error=result.error if result else "missing result",
                )
                continue
            embedded.append(value.model_copy(update={"vector": list(result.vector)}))
        self.embedded += len(embedded)
        return embedded

    async def aclose(self):
        """Stop the stream and release the record source"""
        if self._iterator is not None:
            await self._iterator.aclose()
        close = getattr(self.pages, "aclose", None)
        if close is not None:
            await close()
