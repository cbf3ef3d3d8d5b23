"""
Telemetry Embed/Cluster Service
Embeds normalized telemetry text and clusters it into semantic groups

Components:
- embedder.py: EmbeddingClient for OpenAI-compatible, Ollama or local embeddings
- stream.py: EmbeddingStream turning record pages into embedded batches
- clusterer.py: StreamingClusterer (k-means++ seeding, two-pass or mini-batch)
- formatter.py: ClusteringResult formatting and fallback results
"""

from .embedder import EmbeddingClient, get_embedder
from .stream import EmbeddingStream
from .clusterer import ClusterOutput, StreamingClusterer
from .formatter import empty_result, extract_common_terms, fallback_result, format_result, strip_vectors

__all__ = [
    "EmbeddingClient",
    "get_embedder",
    "EmbeddingStream",
    "StreamingClusterer",
    "ClusterOutput",
    "format_result",
    "empty_result",
    "fallback_result",
    "strip_vectors",
    "extract_common_terms",
]
