"""Pipeline stages: ingestion, normalization, AI response, delivery."""
