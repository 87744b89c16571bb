"""Streaming multi-turn chat with web-search tool calls."""

__version__ = "0.1.0"
