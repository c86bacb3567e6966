"""
Remote node access.

JSON-RPC over HTTP for querying the node height and retrieving blocks.
"""

from .client import (
    BLOCK_METHOD,
    DEFAULT_HEIGHT_METHOD,
    HEIGHT_METHODS,
    JsonRpcClient,
)

__all__ = [
    "BLOCK_METHOD",
    "DEFAULT_HEIGHT_METHOD",
    "HEIGHT_METHODS",
    "JsonRpcClient",
]
