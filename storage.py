"""Content-addressed sharded file storage for icons.

Layout on disk::

    <base_path>/icons/shard-<N>/<file_name>      N in [0, shard_count)

The shard is always recomputable from the content digest, so no lookup
table is kept. The store holds no mutable state beyond its configuration
and is safe to call from concurrent request handlers.
"""
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from errors import AlreadyStored, NotFound, StorageIOError

logger = logging.getLogger(__name__)

# Configuration
ICONS_DIRNAME = "icons"
DEFAULT_SHARD_COUNT = 16
SHARD_PREFIX_CHARS = 8
FILE_MODE = 0o666

_UMASK = os.umask(0)
os.umask(_UMASK)


def content_hash(content: Union[bytes, str]) -> str:
    """Calculate the MD5 hex digest of icon content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.md5(content).hexdigest()


def resolve_shard(digest: str, shard_count: int = DEFAULT_SHARD_COUNT) -> int:
    """Map a content digest to a shard id using its leading hex characters."""
    if shard_count <= 0:
        raise ValueError(f"shard_count must be positive, got {shard_count}")
    prefix = digest[:SHARD_PREFIX_CHARS]
    if not prefix:
        raise ValueError("Empty digest")
    return int(prefix, 16) % shard_count


def shard_dirname(shard_id: int) -> str:
    return f"shard-{shard_id}"


def _check_file_name(file_name: str) -> None:
    if (
        not file_name
        or file_name in (".", "..")
        or "/" in file_name
        or "\\" in file_name
        or "\x00" in file_name
    ):
        raise ValueError(f"Invalid file name: {file_name!r}")


class ShardedStore:
    """Byte storage keyed by (shard_id, file_name) under a fixed base path."""

    def __init__(self, base_path: Union[str, Path], shard_count: int = DEFAULT_SHARD_COUNT):
        if shard_count <= 0:
            raise ValueError(f"shard_count must be positive, got {shard_count}")
        self.base_path = Path(base_path).resolve()
        self.shard_count = shard_count

    @property
    def icons_root(self) -> Path:
        """Directory holding every shard directory."""
        return self.base_path / ICONS_DIRNAME

    def hash(self, content: Union[bytes, str]) -> str:
        return content_hash(content)

    def shard_for(self, digest: str) -> int:
        return resolve_shard(digest, self.shard_count)

    def resolve_path(self, shard_id: int, file_name: str) -> Path:
        """Build the absolute path for a stored file. Performs no I/O."""
        if not 0 <= shard_id < self.shard_count:
            raise ValueError(f"shard_id {shard_id} outside [0, {self.shard_count})")
        _check_file_name(file_name)
        return self.icons_root / shard_dirname(shard_id) / file_name

    def _prepare(self, shard_id: int, file_name: str) -> Path:
        path = self.resolve_path(shard_id, file_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to create {path.parent}: {e}") from e
        return path

    def _write_temp(self, path: Path, content: bytes) -> Path:
        """Write content to a synced temp file beside path and return it."""
        with tempfile.NamedTemporaryFile(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                # NamedTemporaryFile creates 0600; stored icons get the usual umask mode.
                os.fchmod(tmp.fileno(), FILE_MODE & ~_UMASK)
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            except OSError:
                tmp_path.unlink(missing_ok=True)
                raise
        return tmp_path

    def write(self, shard_id: int, file_name: str, content: Union[bytes, str]) -> Path:
        """Write content atomically, replacing any file already at that path.

        Raises:
            StorageIOError: If the directory, temp file or rename fails.
        """
        if isinstance(content, str):
            content = content.encode("utf-8")
        path = self._prepare(shard_id, file_name)

        tmp_path = None
        try:
            tmp_path = self._write_temp(path, content)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise StorageIOError(f"Failed to write {path}: {e}") from e

        logger.debug(f"Wrote {len(content)} bytes to {path}")
        return path

    def create(self, shard_id: int, file_name: str, content: Union[bytes, str]) -> Path:
        """Store content under a name nobody else holds yet.

        The file appears complete or not at all, and an existing file is
        never replaced. Of several concurrent creates for one name exactly
        one succeeds.

        Raises:
            AlreadyStored: If a file already exists at that path.
            StorageIOError: If the directory, temp file or link fails.
        """
        if isinstance(content, str):
            content = content.encode("utf-8")
        path = self._prepare(shard_id, file_name)

        tmp_path = None
        try:
            tmp_path = self._write_temp(path, content)
            os.link(tmp_path, path)
        except FileExistsError as e:
            raise AlreadyStored(f"{shard_dirname(shard_id)}/{file_name}") from e
        except OSError as e:
            raise StorageIOError(f"Failed to create {path}: {e}") from e
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

        logger.debug(f"Created {path} ({len(content)} bytes)")
        return path

    def read(self, shard_id: int, file_name: str) -> bytes:
        """Read a stored file.

        Raises:
            NotFound: If nothing is stored at that shard/filename.
            StorageIOError: For any other filesystem failure.
        """
        path = self.resolve_path(shard_id, file_name)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFound(f"File not found: {shard_dirname(shard_id)}/{file_name}") from e
        except OSError as e:
            raise StorageIOError(f"Failed to read {path}: {e}") from e

    def delete(self, shard_id: int, file_name: str) -> None:
        """Remove a stored file. Deleting an absent file is not an error."""
        path = self.resolve_path(shard_id, file_name)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to delete {path}: {e}") from e
        logger.debug(f"Deleted {path}")

    def exists(self, shard_id: int, file_name: str) -> bool:
        return self.resolve_path(shard_id, file_name).is_file()
