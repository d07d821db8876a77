"""HTTP API for exclusive listings."""
