"""Infrastructure adapters: database, storage, language model."""
