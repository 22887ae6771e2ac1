"""Application entry points (HTTP API and command line)."""
