"""File handler module: path validation, encoding-aware decode, atomic write.

Provides the core file I/O infrastructure shared by the directory record
source and the file-backed document store.  All functions are pure apart
from file I/O.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

# =============================================================================
# Path Validation
# =============================================================================


def resolve_under_root(root: Path, relative: str) -> Path:
    """Resolve *relative* below *root*, refusing anything that escapes it.

    Args:
        root: Base directory.
        relative: POSIX-style relative path (a document id).

    Returns:
        Resolved absolute path.

    Raises:
        ValueError: If the resolved path is outside *root*.
    """
    base = root.resolve()
    resolved = (base / relative).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(
            f"Path is outside base directory: {resolved} not under {base}"
        )
    return resolved


# =============================================================================
# Decoding
# =============================================================================


def decode_bytes(raw: bytes) -> tuple[str, str]:
    """Decode *raw* with automatic encoding detection.

    UTF-8 (with or without BOM) is tried first since that is what every
    device writes; charset-normalizer handles anything else.

    Returns:
        Tuple of (content_string, detected_encoding).

    Raises:
        UnicodeDecodeError: If no plausible encoding could be detected.
    """
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8-sig"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        raise UnicodeDecodeError(
            "unknown", raw, 0, len(raw), "encoding could not be detected"
        )
    encoding = result.encoding
    # ascii is a strict subset of utf-8
    if encoding == "ascii":
        encoding = "utf-8"
    return (str(result), encoding)


# =============================================================================
# Writing
# =============================================================================


def write_bytes_atomic(path: Path, data: bytes) -> int:
    """Write *data* to *path* atomically, creating parent directories.

    Writes to a temporary file in the same directory then calls
    ``os.replace()`` so readers never observe a half-written file.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(data)


def write_file(path: Path, content: str, encoding: str = "utf-8") -> int:
    """Encode *content* and write it atomically.

    Returns:
        Number of bytes written.
    """
    return write_bytes_atomic(path, content.encode(encoding))
