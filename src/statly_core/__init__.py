"""Statly core: multi-provider metrics ingestion and install attribution."""
