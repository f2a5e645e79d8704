"""Lightweight observability helpers.

Request IDs + structlog contextvars, plus an in-memory counters snapshot for
flows issued, validated and completed in this process.
"""
