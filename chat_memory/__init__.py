"""Conversational memory indexing and retrieval for Telegram accounts."""

__version__ = "0.1.0"
