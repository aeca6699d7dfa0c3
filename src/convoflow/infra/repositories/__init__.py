"""Postgres implementations of the pipeline stores."""
