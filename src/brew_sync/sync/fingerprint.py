"""Content fingerprinting (change detection).

Two devices independently re-serialising an unchanged record must produce
the same fingerprint, so structured (JSON) documents are normalised before
hashing:

1. Bytes are decoded (UTF-8 first, charset-normalizer otherwise).
2. The JSON is parsed and object keys are sorted recursively.
3. Volatile top-level fields (``exportDate`` by default) are dropped, and
   a full-export wrapper (``{"exportDate": ..., "data": ...}``) is reduced
   to its ``data`` payload.
4. The result is re-serialised compactly and hashed with SHA-256.

Anything that cannot be decoded or parsed is hashed as raw bytes.  That
yields more false "changed" detections but never skips a file.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable
from typing import Any

from brew_sync.file_handler import decode_bytes
from brew_sync.sync.models import FileMetadata

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_FIELDS: frozenset[str] = frozenset({"exportDate"})

Content = bytes | str | dict | list


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _strip_volatile(value: Any, ignored: frozenset[str]) -> Any:
    if not isinstance(value, dict):
        return value
    if "data" in value and "exportDate" in value:
        return value["data"]
    return {k: v for k, v in value.items() if k not in ignored}


def canonical_json(value: Any) -> bytes:
    """Serialise *value* deterministically (sorted keys, no whitespace)."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def normalize(
    content: Content,
    ignored_fields: Iterable[str] = DEFAULT_IGNORED_FIELDS,
) -> bytes:
    """Return the canonical byte form that ``fingerprint`` hashes.

    Raises:
        ValueError: If *content* is not structured data.
        UnicodeDecodeError: If *content* is bytes that cannot be decoded.
    """
    ignored = frozenset(ignored_fields)
    if isinstance(content, (dict, list)):
        document = content
    else:
        text = (
            decode_bytes(content)[0]
            if isinstance(content, bytes)
            else content
        )
        document = json.loads(text)
    return canonical_json(_strip_volatile(document, ignored))


def fingerprint(
    content: Content,
    ignored_fields: Iterable[str] = DEFAULT_IGNORED_FIELDS,
) -> str:
    """Compute the deterministic fingerprint of a document.

    Args:
        content: Raw bytes, text, or an already-parsed JSON document.
        ignored_fields: Top-level keys excluded from the digest.

    Returns:
        Lowercase SHA-256 hex digest.
    """
    try:
        return _sha256(normalize(content, ignored_fields))
    except (ValueError, TypeError) as exc:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors
        logger.debug("Fingerprinting raw bytes (not structured): %s", exc)
    if isinstance(content, bytes):
        return _sha256(content)
    if isinstance(content, str):
        return _sha256(content.encode("utf-8"))
    return _sha256(repr(content).encode("utf-8"))


def describe(
    path: str,
    content: bytes,
    modified_at: int | None = None,
    ignored_fields: Iterable[str] = DEFAULT_IGNORED_FIELDS,
) -> FileMetadata:
    """Build ``FileMetadata`` for one document's raw content."""
    return FileMetadata(
        path=path,
        fingerprint=fingerprint(content, ignored_fields),
        size=len(content),
        modified_at=modified_at,
    )
