"""Observability utilities."""
