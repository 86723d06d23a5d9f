"""Database models for gitmem."""
