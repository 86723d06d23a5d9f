"""Commit classifiers."""
