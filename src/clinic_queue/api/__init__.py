"""HTTP API for the clinic queue."""
