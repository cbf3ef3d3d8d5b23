"""Telemetry Insights Shared Schemas"""

from .clustering import (
    AttributeValueWithEmbedding,
    Cluster,
    ClusteringOptions,
    ClusteringResult,
    ClusteringStrategy,
    EmbeddingResult,
)

__all__ = [
    # Value schemas
    "AttributeValueWithEmbedding",
    "EmbeddingResult",
    # Cluster schemas
    "Cluster",
    "ClusteringResult",
    "ClusteringOptions",
    "ClusteringStrategy",
]
