"""Convoflow - asynchronous conversation pipeline."""

__version__ = "0.1.0"
