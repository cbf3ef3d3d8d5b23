"""
Query DSL builders for telemetry searches
"""

from typing import Optional

from shared.config import TelemetryFields


def build_filters(
    start_time: str,
    end_time: str,
    fields: TelemetryFields,
    attribute_key: Optional[str] = None,
    service: Optional[str] = None,
    query_string: Optional[str] = None,
    use_text_content: bool = True,
) -> list[dict]:
    """
    Build `bool.filter` clauses for a time-bounded telemetry search.

    Args:
        start_time: Range start (ISO 8601 or date math such as "now-1h")
        end_time: Range end
        fields: Document field paths
        attribute_key: Attribute that must exist when clustering a single attribute
        service: Service name, wildcards allowed
        query_string: Extra Lucene query string
        use_text_content: Require trace data instead of a specific attribute

    Returns:
        List of filter clauses
    """
    filters: list[dict] = [
        {"range": {fields.timestamp: {"gte": start_time, "lte": end_time}}}
    ]

    if attribute_key and not use_text_content:
        if attribute_key in ("trace.id", "TraceId"):
            filters.append({"exists": {"field": fields.trace_id}})
        else:
            filters.append({"exists": {"field": attribute_key}})
    elif use_text_content:
        filters.append({"exists": {"field": fields.trace_id}})

    if service:
        if "*" in service:
            filters.append({"wildcard": {fields.service: service}})
        else:
            filters.append({"term": {fields.service: service}})

    if query_string:
        filters.append({
            "query_string": {
                "query": query_string,
                "analyze_wildcard": True,
                "default_field": "*",
            }
        })

    return filters


def build_search_body(filters: list[dict], fields: TelemetryFields, page_size: int = 1000) -> dict:
    """Search body sorted by timestamp so `search_after` paging is stable"""
    return {
        "size": page_size,
        "query": {"bool": {"filter": filters}},
        "sort": [{fields.timestamp: {"order": "desc"}}],
    }
