"""Restricts caller-supplied paths to the configured browse roots."""

import os
from typing import Iterable, Optional


class OutOfBoundsError(ValueError):
    """Raised when a path resolves outside every allowed root."""


def _canonical(path: str) -> str:
    return os.path.realpath(os.path.abspath(os.path.expanduser(path)))


def is_path_inside(base: str, candidate: str) -> bool:
    """True when candidate is base itself or one of its descendants (both canonical)."""
    if candidate == base:
        return True
    try:
        return os.path.commonpath([base, candidate]) == base
    except ValueError:
        # Different drives or mixed absolute/relative paths
        return False


def validate_path(input_path: Optional[str], roots: Iterable[str]) -> str:
    """Resolve input_path and ensure it lies within one of roots.

    Symlinks and ``..`` segments are resolved before the comparison, so a
    path cannot escape a root by traversal.

    Returns:
        The resolved absolute path.

    Raises:
        OutOfBoundsError: If the path is empty or outside every root.
    """
    if not input_path or not str(input_path).strip():
        raise OutOfBoundsError("Path is required")

    resolved = _canonical(str(input_path))
    for root in roots:
        if not root:
            continue
        if is_path_inside(_canonical(str(root)), resolved):
            return resolved

    raise OutOfBoundsError("Path is outside allowed browse roots")
