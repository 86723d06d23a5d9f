"""AI-backed commit enrichment and evaluation."""
