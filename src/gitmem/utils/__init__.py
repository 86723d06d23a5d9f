"""Utility helpers for gitmem."""
