"""
Telemetry Normalizer
Turns raw search hits into normalized text for embedding
"""

import re
from typing import Any, Optional

from shared.config import TelemetryFields

# "GET /api/cart HTTP/1.1" 200
ACCESS_LOG_PATTERN = re.compile(r'"(GET|POST|PUT|DELETE|PATCH)\s+([^\s"]+)\s+HTTP/[\d.]+"\s+(\d+)')


def get_value_by_path(obj: Any, path: str) -> Any:
    """
    Resolve a dotted path such as "Attributes.http.method".

    Documents mix nested objects with flattened dotted keys, so at each level
    the longest matching key wins ({"http.method": "GET"} as well as
    {"http": {"method": "GET"}}).
    """
    if obj is None or not path:
        return None

    parts = path.split(".")
    current = obj
    i = 0
    while i < len(parts):
        if not isinstance(current, dict):
            return None
        for j in range(len(parts), i, -1):
            key = ".".join(parts[i:j])
            if key in current:
                current = current[key]
                i = j
                break
        else:
            return None
    return current


def record_source(record: dict) -> dict:
    return record.get("_source") or {}


def record_id(record: dict, fields: Optional[TelemetryFields] = None) -> str:
    """Trace id when present, else the document id"""
    fields = fields or TelemetryFields()
    source = record_source(record)
    for path in (fields.trace_id, "trace.id", "trace_id"):
        value = get_value_by_path(source, path)
        if value:
            return str(value)
    return str(record.get("_id") or "unknown")


class TraceTextExtractor:
    """
    Builds "key:value | key:value" text from a span document.

    Features:
    - Identity, service, operation and status fields from TelemetryFields
    - HTTP method/target, parsed from an access-log message when missing
    - Resource service metadata
    - Short scalar span attributes
    """

    MAX_ATTRIBUTE_LENGTH = 100
    SKIPPED_ATTRIBUTE_PREFIXES = ("http.", "url.", "service.")

    def __init__(self, fields: Optional[TelemetryFields] = None):
        self.fields = fields or TelemetryFields()

    def __call__(self, record: dict) -> str:
        source = record_source(record)
        fields = self.fields
        parts: list[str] = []

        def add(key: str, value: Any):
            if value is not None and str(value).strip():
                parts.append(f"{key}:{str(value).strip()}")

        add("traceId", get_value_by_path(source, fields.trace_id))
        add("spanId", get_value_by_path(source, fields.span_id))
        add("service", get_value_by_path(source, fields.service))
        add("operation", get_value_by_path(source, fields.span_name))
        status = get_value_by_path(source, fields.status)
        add("status", status)

        http_method = (
            get_value_by_path(source, "Attributes.http.method")
            or get_value_by_path(source, "http.method")
        )
        add("httpMethod", http_method)
        http_target = (
            get_value_by_path(source, "Attributes.http.target")
            or get_value_by_path(source, "Attributes.url.path")
            or get_value_by_path(source, "http.target")
            or get_value_by_path(source, "url.path")
        )
        add("httpTarget", http_target)

        message = get_value_by_path(source, "message")
        if isinstance(message, str):
            match = ACCESS_LOG_PATTERN.search(message)
            if match:
                method, target, code = match.groups()
                if not http_method:
                    add("httpMethod", method)
                if not http_target:
                    add("httpTarget", target)
                if status is None:
                    add("statusMsg", code)

        add("serviceNamespace", get_value_by_path(source, "Resource.service.namespace"))
        add("serviceVersion", get_value_by_path(source, "Resource.service.version"))
        add("serviceInstanceId", get_value_by_path(source, "Resource.service.instance.id"))

        attributes = source.get("Attributes")
        if isinstance(attributes, dict):
            for key, value in attributes.items():
                if key.startswith(self.SKIPPED_ATTRIBUTE_PREFIXES):
                    continue
                if isinstance(value, (str, int, float, bool)) and len(str(value)) < self.MAX_ATTRIBUTE_LENGTH:
                    add(f"attr_{key.replace('.', '_')}", value)

        return " | ".join(parts)


class GenericTextExtractor:
    """Joins text fields, dimension maps and one value field; used for logs and metrics"""

    TEXT_FIELDS = [
        "message", "body", "Body", "name", "Name", "title", "description",
        "error.message", "exception.message", "error.stack", "exception.stack",
        "span.name", "TraceStatusDescription", "metric.name",
        "log_name", "event.action", "kubernetes.pod.name", "kubernetes.namespace",
        "url.path", "url.full", "service.name",
    ]
    DIMENSION_FIELDS = [
        "labels", "dimensions", "attributes", "tags", "Attributes",
        "resource.attributes", "Resource.attributes",
    ]
    VALUE_FIELDS = ["value", "count", "Duration", "metric.value", "gauge.value"]

    def __init__(
        self,
        text_fields: Optional[list[str]] = None,
        dimension_fields: Optional[list[str]] = None,
        value_fields: Optional[list[str]] = None,
    ):
        self.text_fields = text_fields if text_fields is not None else self.TEXT_FIELDS
        self.dimension_fields = dimension_fields if dimension_fields is not None else self.DIMENSION_FIELDS
        self.value_fields = value_fields if value_fields is not None else self.VALUE_FIELDS

    def __call__(self, record: dict) -> str:
        source = record_source(record)
        parts: list[str] = []

        for path in self.text_fields:
            value = get_value_by_path(source, path)
            if value is not None and not isinstance(value, (dict, list)) and str(value).strip():
                parts.append(str(value))

        for path in self.dimension_fields:
            dimensions = get_value_by_path(source, path)
            if isinstance(dimensions, dict):
                for key, value in dimensions.items():
                    if value is not None and not isinstance(value, (dict, list)) and str(value).strip():
                        parts.append(f'{key}:"{value}"')

        for path in self.value_fields:
            value = get_value_by_path(source, path)
            if value is not None:
                parts.append(f"value:{value}")
                break

        return " ".join(parts)


class AttributeExtractor:
    """Returns a single attribute as text"""

    def __init__(self, attribute_key: str):
        self.attribute_key = attribute_key

    def __call__(self, record: dict) -> str:
        value = get_value_by_path(record_source(record), self.attribute_key)
        if isinstance(value, (str, int, float, bool)):
            return str(value)
        return ""
