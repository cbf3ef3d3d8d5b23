"""
Telemetry Ingest Service
Reads telemetry documents from an OpenSearch/Elasticsearch-compatible store

Components:
- client.py: SearchClient for the `_search` API
- query.py: Query DSL builders (filters, paginated search body)
- stream.py: SearchPageFetcher and RecordStream (sampling + document cap)
"""

from .client import SearchClient, SearchError
from .query import build_filters, build_search_body
from .stream import RecordStream, SearchPageFetcher

__all__ = [
    "SearchClient",
    "SearchError",
    "build_filters",
    "build_search_body",
    "RecordStream",
    "SearchPageFetcher",
]
