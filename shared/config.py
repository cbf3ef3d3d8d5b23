"""
Telemetry Insights - Configuration
Environment-driven defaults for the document store, embedding provider and clustering
"""

import logging
import os
import sys

import structlog
from pydantic import BaseModel

# Document store
OPENSEARCH_URL = os.getenv("OPENSEARCH_URL", "http://localhost:9200")
OPENSEARCH_USERNAME = os.getenv("OPENSEARCH_USERNAME", "")
OPENSEARCH_PASSWORD = os.getenv("OPENSEARCH_PASSWORD", "")
OPENSEARCH_TIMEOUT = float(os.getenv("OPENSEARCH_TIMEOUT", "30"))
TRACES_INDEX = os.getenv("TRACES_INDEX", "traces-*")
LOGS_INDEX = os.getenv("LOGS_INDEX", "logs-*")
SEARCH_MAX_PAGE_FAILURES = int(os.getenv("SEARCH_MAX_PAGE_FAILURES", "3"))
SEARCH_RETRY_BACKOFF = float(os.getenv("SEARCH_RETRY_BACKOFF", "1"))

# Embedding provider
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "openai")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_EMBEDDINGS_ENDPOINT = os.getenv(
    "OPENAI_EMBEDDINGS_ENDPOINT", "https://api.openai.com/v1/embeddings"
)
OPENAI_EMBEDDINGS_MODEL = os.getenv("OPENAI_EMBEDDINGS_MODEL", "text-embedding-3-small")
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
EMBED_MODEL = os.getenv("EMBED_MODEL", "nomic-embed-text")
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "3"))
EMBEDDING_MAX_RETRIES = int(os.getenv("EMBEDDING_MAX_RETRIES", "3"))
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "30"))
EMBEDDING_MIN_INTERVAL = float(os.getenv("EMBEDDING_MIN_INTERVAL", "0"))

# Clustering
DEFAULT_NUM_CLUSTERS = int(os.getenv("DEFAULT_NUM_CLUSTERS", "5"))
DEFAULT_MIN_CLUSTER_SIZE = int(os.getenv("DEFAULT_MIN_CLUSTER_SIZE", "3"))


class TelemetryFields(BaseModel):
    """Document field paths for OTel-shaped telemetry"""

    service: str = os.getenv("FIELD_SERVICE", "Resource.service.name")
    timestamp: str = os.getenv("FIELD_TIMESTAMP", "@timestamp")
    trace_id: str = os.getenv("FIELD_TRACE_ID", "TraceId")
    span_id: str = os.getenv("FIELD_SPAN_ID", "SpanId")
    duration: str = os.getenv("FIELD_DURATION", "Duration")
    status: str = os.getenv("FIELD_STATUS", "Attributes.http.status_code")
    span_name: str = os.getenv("FIELD_SPAN_NAME", "Name")


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "false").lower() == "true"


def configure_logging(level: str = LOG_LEVEL, json_logs: bool = LOG_JSON):
    """Route structlog output to stderr so stdout stays free for results"""
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )
