#!/usr/bin/env python3
"""
Telemetry Clustering CLI
Clusters telemetry from the document store and prints the result as JSON
"""

import asyncio
import json

import click
import structlog

from services.embed_cluster.embedder import EmbeddingClient
from services.ingest.client import SearchClient
from services.pipeline.trace_clustering import cluster_attributes
from shared import config
from shared.config import configure_logging
from shared.schemas.clustering import ClusteringOptions, ClusteringStrategy

log = structlog.get_logger()


async def _run(start_time: str, end_time: str, options: ClusteringOptions, opensearch_url: str,
               provider: str, index: str) -> dict:
    embedder = EmbeddingClient(provider=provider, batch_size=options.embedding_batch_size)
    try:
        async with SearchClient(base_url=opensearch_url) as client:
            result = await cluster_attributes(
                client, embedder, start_time, end_time, options, index=index or None
            )
    finally:
        await embedder.close()
    return result.to_response()


@click.command()
@click.option("--from", "start_time", default="now-1h", help="Range start (ISO 8601 or date math)")
@click.option("--to", "end_time", default="now", help="Range end")
@click.option("--service", default=None, help="Service name filter, wildcards allowed")
@click.option("--query", "query_string", default=None, help="Extra query string filter")
@click.option("--attribute-key", default=None, help="Cluster one attribute instead of text content")
@click.option("--data-type", type=click.Choice(["traces", "logs"]), default="traces")
@click.option("--index", default="", help="Index pattern (default: by data type)")
@click.option("--clusters", "cluster_count", type=int, default=config.DEFAULT_NUM_CLUSTERS)
@click.option("--min-cluster-size", type=int, default=config.DEFAULT_MIN_CLUSTER_SIZE)
@click.option("--no-outliers", is_flag=True, help="Drop members of undersized clusters")
@click.option("--sampling-percent", type=float, default=10.0)
@click.option("--no-sampling", is_flag=True, help="Use every document")
@click.option("--max-samples", type=int, default=100)
@click.option("--max-docs", "max_docs_to_process", type=int, default=10000)
@click.option("--batch-size", "embedding_batch_size", type=int, default=config.EMBEDDING_BATCH_SIZE)
@click.option("--strategy", type=click.Choice([s.value for s in ClusteringStrategy]),
              default=ClusteringStrategy.TWO_PASS.value)
@click.option("--seed", type=int, default=None, help="Random seed for reproducible runs")
@click.option("--exclude-vectors", is_flag=True, help="Omit vectors from the output")
@click.option("--opensearch-url", default=config.OPENSEARCH_URL)
@click.option("--provider", type=click.Choice(["openai", "ollama", "local"]), default=config.EMBEDDING_PROVIDER)
def main(start_time, end_time, service, query_string, attribute_key, data_type, index,
         cluster_count, min_cluster_size, no_outliers, sampling_percent, no_sampling,
         max_samples, max_docs_to_process, embedding_batch_size, strategy, seed,
         exclude_vectors, opensearch_url, provider):
    """Cluster telemetry records into semantically similar groups."""
    configure_logging()
    options = ClusteringOptions(
        cluster_count=cluster_count,
        min_cluster_size=min_cluster_size,
        include_outliers=not no_outliers,
        enable_sampling=not no_sampling,
        sampling_percent=sampling_percent,
        max_samples=max_samples,
        max_docs_to_process=max_docs_to_process,
        embedding_batch_size=embedding_batch_size,
        exclude_vectors=exclude_vectors,
        strategy=ClusteringStrategy(strategy),
        seed=seed,
        service=service,
        query_string=query_string,
        attribute_key=attribute_key,
        data_type=data_type,
    )
    log.info("Clustering config", opensearch_url=opensearch_url, provider=provider, data_type=data_type)

    response = asyncio.run(_run(start_time, end_time, options, opensearch_url, provider, index))
    click.echo(json.dumps(response, indent=2))


if __name__ == "__main__":
    main()
