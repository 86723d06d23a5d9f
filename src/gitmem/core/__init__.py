"""Store, git and analytics building blocks for gitmem."""
