"""Infrastructure layer - configuration, logging, persistence and gateway clients."""
