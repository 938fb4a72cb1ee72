"""Streaming field viewer client: field store, connection lifecycle and scene projection."""

__version__ = "0.3.0"
