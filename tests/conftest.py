"""Shared fixtures and fakes for the clustering pipeline tests."""

from __future__ import annotations

import pytest

from shared.schemas.clustering import AttributeValueWithEmbedding, EmbeddingResult

OFFSETS = [(0.1, 0.0), (-0.1, 0.0), (0.0, 0.1), (0.0, -0.1)]
CENTERS = {"a": (0.0, 0.0), "b": (10.0, 10.0), "c": (-10.0, 10.0)}


def make_group(name: str, size: int) -> list[AttributeValueWithEmbedding]:
    cx, cy = CENTERS[name]
    return [
        AttributeValueWithEmbedding(
            id=f"{name}-{i}",
            value=f"group {name} value {i}",
            vector=[cx + OFFSETS[i % 4][0], cy + OFFSETS[i % 4][1]],
        )
        for i in range(size)
    ]


async def batches(values, size: int = 3):
    for start in range(0, len(values), size):
        yield list(values[start:start + size])


async def pages(*page_list):
    for page in page_list:
        yield page


class FakeEmbedder:
    """Deterministic embedder; texts containing "fail" get an error result."""

    def __init__(self, vector_for=None):
        self.calls: list[list[str]] = []
        self.vector_for = vector_for or (lambda text: [float(len(text)), 1.0])

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        self.calls.append(list(texts))
        return [
            EmbeddingResult(error="provider error") if "fail" in text
            else EmbeddingResult(vector=self.vector_for(text))
            for text in texts
        ]


@pytest.fixture
def three_groups() -> list[AttributeValueWithEmbedding]:
    return make_group("a", 4) + make_group("b", 4) + make_group("c", 4)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()
