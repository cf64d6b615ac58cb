"""Streaming quote feed client for the iTick market-data websocket."""

__version__ = "0.1.0"
