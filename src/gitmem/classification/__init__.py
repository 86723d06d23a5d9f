"""Batch job orchestration shared by indexing and quality checks."""
