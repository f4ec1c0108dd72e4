"""I/O layer: result caching."""
