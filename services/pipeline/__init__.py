"""
Telemetry Clustering Pipeline
Wires record streaming, text extraction, embedding and clustering together

Components:
- trace_clustering.py: cluster_attributes orchestrator
- cli.py: Command-line entry point
"""

from .trace_clustering import cluster_attributes

__all__ = ["cluster_attributes"]
