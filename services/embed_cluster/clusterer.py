"""
Streaming Telemetry Clusterer
Groups embedded values with k-means++ seeded k-means over an async stream
"""

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Optional

import numpy as np
import structlog

from shared.schemas.clustering import AttributeValueWithEmbedding, ClusteringStrategy

logger = structlog.get_logger()

Batch = list[AttributeValueWithEmbedding]


@dataclass
class ClusterOutput:
    """Internal result of one clustering run"""
    clusters: dict[str, Batch] = field(default_factory=dict)
    outliers: Batch = field(default_factory=list)
    admitted: int = 0
    rejected: int = 0
    effective_k: int = 0
    dimension: Optional[int] = None
    cancelled: bool = False
    error: Optional[str] = None


class StreamingClusterer:
    """
    Clusters an unbounded stream of embedded values into k groups plus outliers.

    Seeding reads the first max(3k, 100) values as a seed pool and picks
    centroids with k-means++. The pool is then replayed ahead of the rest of
    the stream for assignment.

    Strategies:
    - TWO_PASS: assign everything, recompute centroids once, reassign once.
      Every admitted value is held in memory until the run ends.
    - MINI_BATCH: assign each value on arrival and move its centroid by a
      running mean. With retain_vectors=False members are kept without
      vectors, so only the seed pool and the current batch hold vectors.
    """

    MIN_SEED_POOL = 100

    def __init__(
        self,
        cluster_count: int = 5,
        min_cluster_size: int = 3,
        include_outliers: bool = True,
        strategy: ClusteringStrategy = ClusteringStrategy.TWO_PASS,
        seed: Optional[int] = None,
        retain_vectors: bool = True,
    ):
        if cluster_count < 1:
            raise ValueError("cluster_count must be at least 1")
        self.cluster_count = cluster_count
        self.min_cluster_size = min_cluster_size
        self.include_outliers = include_outliers
        self.strategy = ClusteringStrategy(strategy)
        self.seed = seed
        self.retain_vectors = retain_vectors

    @property
    def seed_pool_size(self) -> int:
        return max(3 * self.cluster_count, self.MIN_SEED_POOL)

    async def cluster(
        self,
        stream: AsyncIterable[Batch],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ClusterOutput:
        """
        Consume the stream once and partition its values.

        Never raises: failures come back as ClusterOutput.error with no clusters.
        """
        try:
            iterator = stream.__aiter__()
        except RuntimeError as e:
            logger.error("Embedding stream unavailable", error=str(e))
            return ClusterOutput(error=str(e))

        run = _ClusterRun(self, iterator, cancel_event)
        try:
            return await run.execute()
        except Exception as e:
            logger.error("Error during streaming clustering", error=str(e), strategy=self.strategy.value)
            return ClusterOutput(
                admitted=run.admitted,
                rejected=run.rejected,
                dimension=run.dimension,
                error=str(e),
            )
        finally:
            await run.close()


class _ClusterRun:
    """State owned by a single clustering invocation"""

    def __init__(self, clusterer: StreamingClusterer, iterator: AsyncIterator[Batch], cancel_event):
        self.clusterer = clusterer
        self.iterator = iterator
        self.cancel_event = cancel_event
        self.rng = np.random.default_rng(clusterer.seed)
        self.dimension: Optional[int] = None
        self.admitted = 0
        self.rejected = 0
        self.cancelled = False
        self._closed = False

    async def execute(self) -> ClusterOutput:
        c = self.clusterer

        seed_pool = await self._collect_seed_pool(c.seed_pool_size)
        if not seed_pool:
            logger.warning("No vectors available for clustering", cancelled=self.cancelled)
            return ClusterOutput(rejected=self.rejected, cancelled=self.cancelled)

        k = c.cluster_count
        if len(seed_pool) < k:
            k = max(1, len(seed_pool) // 2)
            logger.warning(
                "Not enough vectors for requested cluster count",
                vector_count=len(seed_pool),
                requested=c.cluster_count,
                effective=k,
            )

        pool_matrix = np.asarray([v.vector for v in seed_pool], dtype=float)
        centroids = self._init_centroids(pool_matrix, k)
        logger.info("Initialized centroids with k-means++", seed_pool=len(seed_pool), k=k)

        if c.strategy == ClusteringStrategy.MINI_BATCH:
            clusters = await self._mini_batch(seed_pool, centroids)
        else:
            clusters = await self._two_pass(seed_pool, centroids)

        valid, outliers = self._dissolve_small(clusters)
        logger.info(
            "Clustering completed",
            total_vectors=self.admitted,
            valid_clusters=len(valid),
            outlier_count=len(outliers),
            cancelled=self.cancelled,
        )
        return ClusterOutput(
            clusters=valid,
            outliers=outliers,
            admitted=self.admitted,
            rejected=self.rejected,
            effective_k=k,
            dimension=self.dimension,
            cancelled=self.cancelled,
        )

    # Stream handling

    async def _next_batch(self) -> Optional[Batch]:
        """Pull one batch; None when the stream ends or the run is cancelled"""
        if self.cancelled or self._closed:
            return None
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.warning("Clustering cancelled", admitted=self.admitted)
            self.cancelled = True
            return None
        try:
            return await self.iterator.__anext__()
        except StopAsyncIteration:
            self._closed = True
            return None

    def _admit(self, batch: Batch) -> Batch:
        """Keep values with a vector of the run's dimensionality"""
        admitted = []
        for value in batch:
            vector = value.vector
            if not vector:
                self.rejected += 1
                continue
            if self.dimension is None:
                self.dimension = len(vector)
            elif len(vector) != self.dimension:
                self.rejected += 1
                logger.warning(
                    "Rejected vector with mismatched dimension",
                    id=value.id,
                    expected=self.dimension,
                    actual=len(vector),
                )
                continue
            admitted.append(value)
        self.admitted += len(admitted)
        return admitted

    async def _collect_seed_pool(self, target: int) -> Batch:
        pool: Batch = []
        logger.info("Collecting initial vectors for centroid initialization", target_count=target)
        while len(pool) < target:
            batch = await self._next_batch()
            if batch is None:
                break
            pool.extend(self._admit(batch))
        return pool

    async def _replay(self, seed_pool: Batch):
        """Seed pool first, then the remainder of the stream"""
        yield seed_pool
        while True:
            batch = await self._next_batch()
            if batch is None:
                return
            admitted = self._admit(batch)
            if admitted:
                yield admitted

    async def close(self):
        if self._closed:
            return
        self._closed = True
        close = getattr(self.iterator, "aclose", None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.warning("Failed to close embedding stream", error=str(e))

    # Algorithm

    def _init_centroids(self, points: np.ndarray, k: int) -> np.ndarray:
        """k-means++: first centroid uniform, the rest weighted by squared distance"""
        n = len(points)
        centroids = [points[self.rng.integers(n)].copy()]
        for _ in range(1, k):
            d2 = _squared_distances(points, np.asarray(centroids)).min(axis=1)
            total = d2.sum()
            if total <= 0:
                index = self.rng.integers(n)
            else:
                index = self.rng.choice(n, p=d2 / total)
            centroids.append(points[index].copy())
        return np.asarray(centroids, dtype=float)

    async def _two_pass(self, seed_pool: Batch, centroids: np.ndarray) -> dict[int, Batch]:
        k = len(centroids)
        collected: Batch = []
        assignments: list[np.ndarray] = []

        async for batch in self._replay(seed_pool):
            matrix = np.asarray([v.vector for v in batch], dtype=float)
            assignments.append(_nearest(matrix, centroids))
            collected.extend(batch)

        if not collected:
            return {}

        matrix = np.asarray([v.vector for v in collected], dtype=float)
        labels = np.concatenate(assignments)

        updated = centroids.copy()
        for i in range(k):
            mask = labels == i
            if mask.any():
                updated[i] = matrix[mask].mean(axis=0)

        labels = _nearest(matrix, updated)
        clusters: dict[int, Batch] = {i: [] for i in range(k)}
        for value, label in zip(collected, labels):
            clusters[int(label)].append(self._member(value))
        return clusters

    async def _mini_batch(self, seed_pool: Batch, centroids: np.ndarray) -> dict[int, Batch]:
        k = len(centroids)
        counts = np.zeros(k, dtype=int)
        clusters: dict[int, Batch] = {i: [] for i in range(k)}

        async for batch in self._replay(seed_pool):
            matrix = np.asarray([v.vector for v in batch], dtype=float)
            for value, point in zip(batch, matrix):
                i = int(_nearest(point[np.newaxis, :], centroids)[0])
                counts[i] += 1
                centroids[i] += (point - centroids[i]) / counts[i]
                clusters[i].append(self._member(value))
        return clusters

    def _member(self, value: AttributeValueWithEmbedding) -> AttributeValueWithEmbedding:
        if self.clusterer.retain_vectors:
            return value
        return value.model_copy(update={"vector": None})

    def _dissolve_small(self, clusters: dict[int, Batch]) -> tuple[dict[str, Batch], Batch]:
        valid: dict[str, Batch] = {}
        outliers: Batch = []
        for index in sorted(clusters):
            members = clusters[index]
            if len(members) < self.clusterer.min_cluster_size:
                if self.clusterer.include_outliers:
                    outliers.extend(members)
            else:
                valid[f"cluster_{index}"] = members
        return valid, outliers


def _squared_distances(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """(n, k) matrix of squared Euclidean distances"""
    diff = points[:, np.newaxis, :] - centroids[np.newaxis, :, :]
    return np.einsum("nkd,nkd->nk", diff, diff)


def _nearest(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    # argmin keeps the first index on ties
    return _squared_distances(points, centroids).argmin(axis=1)
