from .badges import (
    begin_unread_run,
    end_unread_run,
    inbox_badge,
    release_unread_watches,
    unread_badge,
)
from .nav import go

__all__ = [
    "go",
    "unread_badge",
    "inbox_badge",
    "begin_unread_run",
    "end_unread_run",
    "release_unread_watches",
]
