"""
Telemetry Normalize Service
Converts raw search hits into normalized text for embedding

Components:
- normalizer.py: text extractors for spans, logs/metrics and single attributes
"""

from .normalizer import (
    AttributeExtractor,
    GenericTextExtractor,
    TraceTextExtractor,
    get_value_by_path,
    record_id,
)

__all__ = [
    "AttributeExtractor",
    "GenericTextExtractor",
    "TraceTextExtractor",
    "get_value_by_path",
    "record_id",
]
