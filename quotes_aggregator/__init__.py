"""Quotes Aggregator: idempotent insurance quote API with resilient pricing."""

__version__ = "1.0.0"
