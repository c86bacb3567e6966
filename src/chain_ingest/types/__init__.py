"""Base types shared across the ingestion subspecs."""

from .base import CamelModel, StrictBaseModel

__all__ = [
    "CamelModel",
    "StrictBaseModel",
]
