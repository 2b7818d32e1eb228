"""HTTP API for the benefit registry."""
