"""
Input validation functions for brew-sync.

Provides validation for document ids (the logical paths that identify one
synchronizable file) before they reach a record source or remote store.
"""

import fnmatch
from collections.abc import Iterable

# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Document id")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_document_id(path: str) -> tuple[bool, str]:
    """
    Validate a document id.

    Args:
        path: The document id to validate (e.g. ``"beans.json"``)

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot start with '/' (ids are relative to the sync root)
        - Cannot contain '..' segments (path traversal protection)
        - Cannot have empty path segments (e.g., 'a//b.json')
        - Cannot contain backslashes
    """
    if not path or not path.strip():
        return (
            False,
            format_validation_error("Document id", "cannot be empty"),
        )

    if path.startswith("/"):
        return (
            False,
            format_validation_error(
                "Document id", "must be relative (no leading '/')"
            ),
        )

    if "\\" in path:
        return (
            False,
            format_validation_error(
                "Document id", "cannot contain backslashes"
            ),
        )

    segments = path.split("/")
    if any(seg == ".." for seg in segments):
        return (
            False,
            format_validation_error("Document id", "cannot contain '..'"),
        )

    if any(seg == "" for seg in segments):
        return (
            False,
            format_validation_error(
                "Document id", "cannot have empty path segments"
            ),
        )

    return (True, "")


def ensure_document_id(path: str) -> str:
    """Return *path* unchanged or raise ``ValueError`` if it is invalid."""
    is_valid, reason = validate_document_id(path)
    if not is_valid:
        raise ValueError(f"{reason}: {path!r}")
    return path


def path_selected(
    path: str,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> bool:
    """Apply include/exclude glob filters to a document id.

    Excludes are checked first.  An empty *include* selects everything.
    """
    for pattern in exclude:
        if fnmatch.fnmatch(path, pattern):
            return False
    include = list(include)
    if not include:
        return True
    return any(fnmatch.fnmatch(path, pattern) for pattern in include)
