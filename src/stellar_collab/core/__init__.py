"""Core utilities: error taxonomy and structured logging."""
