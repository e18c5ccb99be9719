"""Prometheus metrics for syncs, credentials and scheduler runs."""
