"""Outbound channel adapters."""
