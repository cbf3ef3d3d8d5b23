"""
Telemetry Insights - Clustering Schemas

Values, clusters and the public clustering result
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ClusteringStrategy(str, Enum):
    """How the clusterer consumes the embedding stream"""

    TWO_PASS = "two_pass"
    MINI_BATCH = "mini_batch"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmbeddingResult(BaseModel):
    """Vector or failure for one embedded text"""

    vector: Optional[list[float]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.vector) and self.error is None


class AttributeValueWithEmbedding(_CamelModel):
    """
    A text value extracted from one telemetry record.

    `vector` is None when embedding failed; such values are never clustered.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    value: str
    vector: Optional[list[float]] = None
    count: int = 1
    embedding_error: Optional[str] = None


class Cluster(_CamelModel):
    """A group of semantically similar values"""

    id: int
    label: str
    members: list[AttributeValueWithEmbedding] = Field(default_factory=list)
    common_terms: list[str] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)


class ClusteringResult(_CamelModel):
    """
    Immutable output of one clustering invocation.

    Callers tell "no insights" apart from a successful run by
    cluster_count == 0 together with a message.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    attribute_key: str
    total_values: int = 0
    clusters: list[Cluster] = Field(default_factory=list)
    outliers: list[AttributeValueWithEmbedding] = Field(default_factory=list)
    cluster_count: int = 0
    min_cluster_size: int = 3
    cluster_sizes: list[int] = Field(default_factory=list)
    cluster_labels: list[str] = Field(default_factory=list)
    sampling_enabled: bool = True
    sampling_percent: float = 10
    sampled_values: int = 0
    strategy: ClusteringStrategy = ClusteringStrategy.TWO_PASS
    cancelled: bool = False
    message: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    def to_response(self) -> dict:
        """Serialize for callers: camelCase keys, unset optionals omitted"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ClusteringOptions(BaseModel):
    """Caller-facing parameters for one clustering run"""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "cluster_count": 5,
                "min_cluster_size": 3,
                "sampling_percent": 10,
                "service": "checkout",
                "strategy": "two_pass",
            }
        }
    )

    cluster_count: int = Field(5, ge=1)
    min_cluster_size: int = Field(3, ge=1)
    include_outliers: bool = True
    enable_sampling: bool = True
    sampling_percent: float = Field(10, gt=0, le=100)
    max_samples: Optional[int] = Field(100, ge=1)
    max_docs_to_process: int = Field(10000, ge=1)
    page_size: int = Field(1000, ge=1)
    embedding_batch_size: int = Field(3, ge=1)
    exclude_vectors: bool = False
    strategy: ClusteringStrategy = ClusteringStrategy.TWO_PASS
    seed: Optional[int] = None
    service: Optional[str] = None
    query_string: Optional[str] = None
    attribute_key: Optional[str] = None
    data_type: Literal["traces", "logs"] = "traces"

    @property
    def sampling_rate(self) -> float:
        return self.sampling_percent / 100 if self.enable_sampling else 1.0

    @property
    def effective_sampling_percent(self) -> float:
        """Share of records actually read; 100 when sampling is off"""
        return self.sampling_percent if self.enable_sampling else 100