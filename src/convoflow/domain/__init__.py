"""Domain layer: entities, contact memory, chunking and signal policies."""
