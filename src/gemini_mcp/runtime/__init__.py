"""Runtime layer: retry execution and observability."""
