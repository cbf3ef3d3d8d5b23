"""
Clustering Result Formatter
Builds the public ClusteringResult from clusterer output, or a fallback on failure
"""

import re
from collections import Counter
from typing import Optional

import structlog

from shared.schemas.clustering import (
    AttributeValueWithEmbedding,
    Cluster,
    ClusteringOptions,
    ClusteringResult,
)

from .clusterer import ClusterOutput

logger = structlog.get_logger()

NO_VALUES_MESSAGE = "No attribute values found"
TEXT_CONTENT_KEY = "text_content"

_NON_WORD = re.compile(r"[^\w\s]")


def strip_vectors(values: list[AttributeValueWithEmbedding]) -> list[AttributeValueWithEmbedding]:
    """Copies of values without their vectors"""
    return [v if v.vector is None else v.model_copy(update={"vector": None}) for v in values]


def extract_common_terms(values: list[str], top_k: int = 10) -> list[str]:
    """Tokens present in at least half of the values (and at least two), most frequent first"""
    if not values:
        return []
    counter: Counter = Counter()
    for value in values:
        tokens = _NON_WORD.sub(" ", value.lower()).split()
        counter.update({t for t in tokens if len(t) > 2})
    threshold = max(2, len(values) // 2)
    return [term for term, count in counter.most_common() if count >= threshold][:top_k]


def _cluster_index(label: str, fallback: int) -> int:
    _, _, suffix = label.rpartition("_")
    return int(suffix) if suffix.isdigit() else fallback


def empty_result(
    options: ClusteringOptions,
    attribute_key: Optional[str] = None,
    message: str = NO_VALUES_MESSAGE,
    total_values: int = 0,
    cancelled: bool = False,
) -> ClusteringResult:
    """Well-formed result for runs that produced nothing to cluster"""
    return ClusteringResult(
        attribute_key=attribute_key or TEXT_CONTENT_KEY,
        total_values=total_values,
        min_cluster_size=options.min_cluster_size,
        sampling_enabled=options.enable_sampling,
        sampling_percent=options.effective_sampling_percent,
        strategy=options.strategy,
        cancelled=cancelled,
        message=message,
    )


def fallback_result(
    options: ClusteringOptions,
    reason: str,
    attribute_key: Optional[str] = None,
    error: Optional[BaseException] = None,
    total_values: int = 0,
) -> ClusteringResult:
    """Result returned when clustering failed; never carries partial clusters"""
    logger.warning(
        "Using fallback clustering result",
        reason=reason,
        attribute_key=attribute_key,
        error=str(error) if error else None,
    )
    return ClusteringResult(
        attribute_key=attribute_key or TEXT_CONTENT_KEY,
        total_values=total_values,
        min_cluster_size=options.min_cluster_size,
        sampling_enabled=options.enable_sampling,
        sampling_percent=options.effective_sampling_percent,
        strategy=options.strategy,
        message="Clustering process did not complete successfully.",
        error=str(error) if error else reason,
        reason=reason,
    )


def format_result(
    output: ClusterOutput,
    options: ClusteringOptions,
    attribute_key: Optional[str] = None,
    total_values: Optional[int] = None,
) -> ClusteringResult:
    """
    Convert clusterer output to a ClusteringResult.

    Args:
        output: Clusterer output (label -> members, outliers)
        options: Options used for the run
        attribute_key: Clustered attribute, None for text content
        total_values: Values extracted before embedding (default: admitted count)

    Returns:
        ClusteringResult; a fallback result if the output carries an error or
        cannot be formatted
    """
    if total_values is None:
        total_values = output.admitted + output.rejected

    if output.error:
        return fallback_result(
            options, "Streaming clustering failed", attribute_key,
            error=RuntimeError(output.error), total_values=total_values,
        )

    if output.admitted == 0:
        message = "Clustering cancelled before any values were read" if output.cancelled else NO_VALUES_MESSAGE
        return empty_result(options, attribute_key, message, total_values, output.cancelled)

    try:
        clusters = []
        for position, (label, members) in enumerate(output.clusters.items()):
            clusters.append(Cluster(
                id=_cluster_index(label, position),
                label=label,
                members=strip_vectors(members) if options.exclude_vectors else members,
                common_terms=extract_common_terms([m.value for m in members]),
            ))
        outliers = strip_vectors(output.outliers) if options.exclude_vectors else output.outliers

        message = None
        if not clusters:
            message = f"No cluster reached the minimum size of {options.min_cluster_size}"
        elif output.cancelled:
            message = "Clustering cancelled; result is partial"
        elif output.effective_k < options.cluster_count:
            message = (
                f"Only {output.admitted} values available; "
                f"cluster count reduced to {output.effective_k}"
            )

        return ClusteringResult(
            attribute_key=attribute_key or TEXT_CONTENT_KEY,
            total_values=total_values,
            clusters=clusters,
            outliers=outliers,
            cluster_count=len(clusters),
            min_cluster_size=options.min_cluster_size,
            cluster_sizes=[c.size for c in clusters],
            cluster_labels=[c.label for c in clusters],
            sampling_enabled=options.enable_sampling,
            sampling_percent=options.effective_sampling_percent,
            sampled_values=output.admitted,
            strategy=options.strategy,
            cancelled=output.cancelled,
            message=message,
        )
    except Exception as e:
        logger.error("Error formatting clustering result", error=str(e))
        return fallback_result(options, "Failed to format clustering result", attribute_key, e, total_values)
