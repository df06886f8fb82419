"""HTTP API for vecstore."""
