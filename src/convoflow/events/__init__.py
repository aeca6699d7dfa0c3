"""Event contracts exchanged over the bus."""
