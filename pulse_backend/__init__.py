"""Pulse Terminal backend: market-data cache, provider health and rate limiting."""

__version__ = "0.1.0"
