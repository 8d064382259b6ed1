"""Upstream clients: the chain indexer and the curated secondary index."""
