"""
Telemetry Embedding Service
Generates embeddings for normalized telemetry text via an OpenAI-compatible API,
Ollama, or sentence-transformers
"""

import asyncio
import time
from typing import Optional

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from shared import config
from shared.schemas.clustering import EmbeddingResult

logger = structlog.get_logger()

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


class EmbeddingClient:
    """
    Batched text -> vector client.

    Supports three backends:
    1. openai: any OpenAI-compatible /v1/embeddings endpoint (default)
    2. ollama: /api/embeddings, one prompt per request
    3. local: sentence-transformers, run off the event loop

    embed_batch never raises. Every text gets an EmbeddingResult; a failed
    request marks all of its texts with the error.
    """

    # Max characters sent per text
    MAX_TEXT_LENGTH = 8000

    DEFAULT_MODELS = {
        "openai": config.OPENAI_EMBEDDINGS_MODEL,
        "ollama": config.EMBED_MODEL,
        "local": "all-MiniLM-L6-v2",
    }

    def __init__(
        self,
        provider: str = config.EMBEDDING_PROVIDER,
        model: Optional[str] = None,
        endpoint: str = config.OPENAI_EMBEDDINGS_ENDPOINT,
        api_key: Optional[str] = None,
        ollama_url: str = config.OLLAMA_URL,
        batch_size: int = config.EMBEDDING_BATCH_SIZE,
        max_retries: int = config.EMBEDDING_MAX_RETRIES,
        retry_backoff: float = 1.0,
        min_request_interval: float = config.EMBEDDING_MIN_INTERVAL,
        timeout: float = config.EMBEDDING_TIMEOUT,
        max_length: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            provider: "openai", "ollama" or "local"
            model: Embedding model (default depends on provider)
            endpoint: OpenAI-compatible embeddings URL
            api_key: API key for the openai provider (default: OPENAI_API_KEY)
            ollama_url: URL of Ollama server
            batch_size: Max texts per request
            max_retries: Retries for 429/5xx and transport errors
            retry_backoff: Base delay in seconds, doubled per retry
            min_request_interval: Minimum seconds between requests
            timeout: Request timeout in seconds
            max_length: Max text length (default: MAX_TEXT_LENGTH)
        """
        if provider not in ("openai", "ollama", "local"):
            raise ValueError(f"Unknown embedding provider: {provider}")
        self.provider = provider
        self.model = model or self.DEFAULT_MODELS[provider]
        self.endpoint = endpoint
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.ollama_url = ollama_url.rstrip("/")
        self.batch_size = max(1, batch_size)
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.min_request_interval = min_request_interval
        self.max_length = max_length or self.MAX_TEXT_LENGTH
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._local_model = None
        self._last_request = 0.0

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """
        Generate embeddings for a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            One EmbeddingResult per text, in order
        """
        if not texts:
            return []

        texts = [self._truncate(t) for t in texts]

        if self.provider == "openai" and not self.api_key:
            logger.error("Missing OpenAI API key")
            return [EmbeddingResult(error="Missing OpenAI API key") for _ in texts]

        results: list[EmbeddingResult] = []
        for start in range(0, len(texts), self.batch_size):
            chunk = texts[start:start + self.batch_size]
            try:
                if self.provider == "openai":
                    vectors = await self._embed_openai(chunk)
                elif self.provider == "ollama":
                    vectors = [await self._embed_ollama(text) for text in chunk]
                else:
                    vectors = await self._embed_local(chunk)
                results.extend(EmbeddingResult(vector=v) for v in vectors)
            except Exception as e:
                logger.error(
                    "Embedding request failed",
                    provider=self.provider,
                    model=self.model,
                    batch_size=len(chunk),
                    error=str(e),
                )
                results.extend(EmbeddingResult(error=str(e)) for _ in chunk)
        return results

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_length:
            logger.debug("Truncated text", original=len(text), max=self.max_length)
            return text[:self.max_length]
        return text

    async def _throttle(self):
        """Space requests at least min_request_interval apart"""
        if self.min_request_interval <= 0:
            return
        wait = self._last_request + self.min_request_interval - time.monotonic()
        if wait > 0:
            await asyncio.sleep(wait)
        self._last_request = time.monotonic()

    def _log_retry(self, retry_state: RetryCallState):
        exc = retry_state.outcome.exception()
        status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
        logger.warning(
            "Retrying embedding request",
            status=status,
            error=str(exc),
            attempt=retry_state.attempt_number,
        )

    async def _post(self, url: str, payload: dict, headers: Optional[dict] = None) -> dict:
        """POST with retries on transient failures"""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_backoff, max=30),
            retry=retry_if_exception(_should_retry),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._throttle()
                    response = await self._client.post(url, json=payload, headers=headers)
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Embedding HTTP error", status=e.response.status_code, error=e.response.text[:200])
            raise

    async def _embed_openai(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings using an OpenAI-compatible API"""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        result = await self._post(self.endpoint, {"input": texts, "model": self.model}, headers)
        data = result.get("data")
        if not isinstance(data, list) or len(data) != len(texts):
            raise ValueError("Unexpected API response format")
        data = sorted(data, key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in data]

    async def _embed_ollama(self, text: str) -> list[float]:
        """Generate embedding using Ollama API"""
        result = await self._post(
            f"{self.ollama_url}/api/embeddings",
            {"model": self.model, "prompt": text},
        )
        embedding = result.get("embedding", [])
        if not embedding:
            raise ValueError("Empty embedding returned")
        return embedding

    async def _embed_local(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings using sentence-transformers"""
        if self._local_model is None:
            self._init_local_model()
        embeddings = await asyncio.to_thread(
            self._local_model.encode, texts, convert_to_numpy=True, show_progress_bar=False
        )
        return embeddings.tolist()

    def _init_local_model(self):
        """Initialize local sentence-transformer model"""
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise RuntimeError(
                "sentence-transformers not installed. "
                "Run: pip install 'telemetry-insights[local]'"
            )
        self._local_model = SentenceTransformer(self.model)
        logger.info(
            "Initialized local embedding model",
            model=self.model,
            dim=self._local_model.get_sentence_embedding_dimension(),
        )

    async def close(self):
        await self._client.aclose()


def get_embedder(provider: str = config.EMBEDDING_PROVIDER, **kwargs) -> EmbeddingClient:
    """Create an embedder from environment defaults"""
    return EmbeddingClient(provider=provider, **kwargs)
