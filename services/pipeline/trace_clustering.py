"""
Telemetry Clustering Pipeline
Runs: search pages → text extraction → embedding → streaming clustering → result
"""

import asyncio
from functools import partial
from typing import Optional

import numpy as np
import structlog

from services.embed_cluster.clusterer import StreamingClusterer
from services.embed_cluster.embedder import EmbeddingClient
from services.embed_cluster.formatter import fallback_result, format_result
from services.embed_cluster.stream import EmbeddingStream
from services.ingest.client import SearchClient
from services.ingest.query import build_filters, build_search_body
from services.ingest.stream import RecordStream, SearchPageFetcher
from services.normalize.normalizer import (
    AttributeExtractor,
    GenericTextExtractor,
    TraceTextExtractor,
    record_id,
)
from shared import config
from shared.config import TelemetryFields
from shared.schemas.clustering import ClusteringOptions, ClusteringResult

log = structlog.get_logger()

INDICES = {
    "traces": config.TRACES_INDEX,
    "logs": config.LOGS_INDEX,
}


def select_extractor(options: ClusteringOptions, fields: TelemetryFields):
    """Text extractor for the data type, or a single-attribute extractor"""
    if options.attribute_key:
        return AttributeExtractor(options.attribute_key)
    if options.data_type == "traces":
        return TraceTextExtractor(fields)
    return GenericTextExtractor()


def build_embedding_stream(
    search_client: SearchClient,
    embedder: EmbeddingClient,
    start_time: str,
    end_time: str,
    options: ClusteringOptions,
    fields: TelemetryFields,
    index: str,
) -> EmbeddingStream:
    use_text_content = options.attribute_key is None
    filters = build_filters(
        start_time,
        end_time,
        fields,
        attribute_key=options.attribute_key,
        service=options.service,
        query_string=options.query_string,
        use_text_content=use_text_content and options.data_type == "traces",
    )
    body = build_search_body(filters, fields, options.page_size)
    log.debug("Built search query", index=index, filters=len(filters))

    records = RecordStream(
        SearchPageFetcher(search_client, index, body),
        sampling_rate=options.sampling_rate,
        max_docs_to_process=options.max_docs_to_process,
        max_page_failures=config.SEARCH_MAX_PAGE_FAILURES,
        retry_backoff=config.SEARCH_RETRY_BACKOFF,
        rng=np.random.default_rng(options.seed),
    )
    return EmbeddingStream(
        records,
        select_extractor(options, fields),
        embedder,
        batch_size=options.embedding_batch_size,
        max_samples=options.max_samples,
        id_getter=partial(record_id, fields=fields),
    )


async def cluster_attributes(
    search_client: SearchClient,
    embedder: EmbeddingClient,
    start_time: str,
    end_time: str,
    options: Optional[ClusteringOptions] = None,
    fields: Optional[TelemetryFields] = None,
    index: Optional[str] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> ClusteringResult:
    """
    Cluster telemetry records from a time range into semantic groups.

    Args:
        search_client: Document store client
        embedder: Embedding provider client
        start_time: Range start (ISO 8601 or date math)
        end_time: Range end
        options: Clustering options (defaults apply when omitted)
        fields: Document field paths
        index: Index pattern (default: by options.data_type)
        cancel_event: Set to stop the run at the next suspension point

    Returns:
        ClusteringResult; failures come back as a fallback result, never raised
    """
    options = options or ClusteringOptions()
    fields = fields or TelemetryFields()
    index = index or INDICES[options.data_type]

    log.info(
        "Starting attribute clustering",
        index=index,
        start=start_time,
        end=end_time,
        attribute_key=options.attribute_key,
        cluster_count=options.cluster_count,
        sampling_percent=options.sampling_percent,
        strategy=options.strategy.value,
    )

    stream = None
    try:
        stream = build_embedding_stream(
            search_client, embedder, start_time, end_time, options, fields, index
        )
        clusterer = StreamingClusterer(
            cluster_count=options.cluster_count,
            min_cluster_size=options.min_cluster_size,
            include_outliers=options.include_outliers,
            strategy=options.strategy,
            seed=options.seed,
            retain_vectors=not options.exclude_vectors,
        )
        output = await clusterer.cluster(stream, cancel_event=cancel_event)
        result = format_result(output, options, options.attribute_key, total_values=stream.extracted)
        log.info(
            "Attribute clustering complete",
            clusters=result.cluster_count,
            outliers=len(result.outliers),
            extracted=stream.extracted,
            embedding_failures=stream.failed,
        )
        return result
    except Exception as e:
        log.error("Error clustering attributes", error=str(e), attribute_key=options.attribute_key)
        return fallback_result(
            options,
            reason=str(e),
            attribute_key=options.attribute_key,
            error=e,
            total_values=stream.extracted if stream is not None else 0,
        )
