"""Media file helpers shared by the upload store and the scheduler."""

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def has_content(path: Optional[Path]) -> bool:
    """True if ``path`` is a regular file with at least one byte.

    Unreadable paths count as missing.
    """
    if path is None:
        return False
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def remove_file(path: Optional[Path]) -> bool:
    """Delete a file if present.

    Args:
        path: File to delete (None is ignored)

    Returns:
        True if a file was removed
    """
    if path is None:
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
        return False
    return True
