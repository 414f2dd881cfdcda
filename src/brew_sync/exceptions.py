"""
Exceptions for brew-sync operations.
"""


class SyncError(Exception):
    """Base exception for sync operations."""

    pass


class RemoteStoreError(SyncError):
    """A remote store operation (list/upload/download/delete) failed."""

    pass


class ConnectivityError(RemoteStoreError):
    """Remote store is unreachable or rejected the credentials."""

    pass


class LocalStoreError(SyncError):
    """Failed to read or write a local document."""

    pass


class MetadataValidationError(SyncError):
    """Sync metadata document failed structural validation."""

    pass


class SyncInProgressError(SyncError):
    """Another sync pass is already running in this process."""

    pass
