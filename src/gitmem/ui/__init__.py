"""UI components for gitmem."""

from .progress_display import (
    NullProgressDisplay,
    RichProgressDisplay,
    SimpleProgressDisplay,
    create_progress_display,
)

__all__ = [
    "create_progress_display",
    "NullProgressDisplay",
    "RichProgressDisplay",
    "SimpleProgressDisplay",
]
