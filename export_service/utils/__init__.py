"""Export service utilities package."""

from .media import has_content, remove_file

__all__ = [
    "has_content",
    "remove_file",
]
