"""gitmem - incremental commit enrichment and file analytics for git repositories."""

__version__ = "0.4.0"
