"""Core layer: exceptions, structured logging, YAML loading and metrics.

Sits in the middle of the diamond DAG. Depends on nothing inside
nostrsearch except ``nostrsearch.models`` and is used by
``nostrsearch.services`` and the CLI.

Attributes:
    Logger: Structured logger supporting key=value and JSON output.
    StructuredFormatter: Root-handler formatter used by the CLI.
    SearchMetrics: Prometheus recorder gated by ``MetricsConfig.enabled``.
    MetricsServer: aiohttp ``/metrics`` endpoint.
    load_yaml: Safe YAML loading.
"""

from .exceptions import (
    ConfigurationError,
    ConnectivityError,
    NostrSearchError,
    NotAuthenticatedError,
    ProtocolError,
    SessionError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import MetricsConfig, MetricsServer, SearchMetrics
from .yaml import load_yaml


__all__ = [
    "ConfigurationError",
    "ConnectivityError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "NostrSearchError",
    "NotAuthenticatedError",
    "ProtocolError",
    "SearchMetrics",
    "SessionError",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
]
