"""
API server module for ingestion status endpoints.

Provides HTTP endpoints for:
- /chain_ingest/v0/health - Health check endpoint
- /chain_ingest/v0/sync - Current ingestion progress
- /metrics - Prometheus metrics
"""

from .server import ApiServer, ApiServerConfig, ProgressGetter

__all__ = [
    "ApiServer",
    "ApiServerConfig",
    "ProgressGetter",
]
