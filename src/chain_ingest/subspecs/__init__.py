"""Subspecifications of the chain ingestion service."""
