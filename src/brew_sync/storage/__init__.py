"""Remote store backends.

- ``base``   -- ``RemoteStore`` protocol and ``RemoteEntry``.
- ``webdav`` -- ``WebDAVStore`` (requests; Nextcloud, ownCloud, Jianguoyun ...).
- ``s3``     -- ``S3Store`` (boto3; AWS S3 and compatible services).

The ``create_remote_store()`` factory maps a ``RemoteConfig`` backend name
to a store instance.
"""

from __future__ import annotations

from ..config import RemoteConfig
from .base import RemoteEntry, RemoteStore


def create_remote_store(config: RemoteConfig) -> RemoteStore:
    """Create the remote store for ``config.backend``.

    Raises:
        ValueError: If the backend name is not recognised.
    """
    if config.backend == "webdav":
        from .webdav import WebDAVStore

        return WebDAVStore(config)
    if config.backend == "s3":
        from .s3 import S3Store

        return S3Store(config)
    raise ValueError(
        f"Unknown backend: '{config.backend}'. Valid backends: ['s3', 'webdav']"
    )


__all__ = ["RemoteEntry", "RemoteStore", "create_remote_store"]
