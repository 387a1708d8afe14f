"""Error types for Icon Vault."""
from typing import Optional


class IconVaultError(Exception):
    """Base exception for Icon Vault errors."""
    status_code = 500


class NotFound(IconVaultError):
    """No file stored at the requested shard/filename."""
    status_code = 404


class StorageIOError(IconVaultError, OSError):
    """Underlying filesystem operation failed."""
    status_code = 500


class InvalidPath(IconVaultError):
    """Externally supplied path failed the shape or root-confinement check."""
    status_code = 400

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class InvalidUpload(IconVaultError):
    """Uploaded file is not an acceptable SVG."""
    status_code = 400


class DuplicateContent(IconVaultError):
    """An icon with the same content hash already exists."""
    status_code = 409

    def __init__(self, content_hash: str, icon_id: Optional[int] = None):
        super().__init__(f"Icon already exists: {content_hash}")
        self.content_hash = content_hash
        self.icon_id = icon_id


class AlreadyStored(IconVaultError):
    """A file already exists at the shard/filename being created."""
    status_code = 409
