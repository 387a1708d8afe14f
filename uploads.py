"""Icon upload ingestion: validation, dedup and sharded storage."""
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session

from analysis import AnalysisJob, AnalysisQueue
from database import find_by_content_hash, get_session, insert_icon
from errors import AlreadyStored, DuplicateContent, InvalidUpload, StorageIOError
from models import STATUS_PENDING, STATUS_PUBLISHED, Icon
from storage import ShardedStore

logger = logging.getLogger(__name__)

# Configuration
ALLOWED_EXT = ".svg"
DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024
UNSAFE_CHARS_RE = re.compile(r"[^\w.-]+")
MAX_NAME_ATTEMPTS = 20

# (file_name, content, content_type)
BatchItem = Tuple[str, bytes, Optional[str]]


@dataclass
class UploadResult:
    file_name: str
    success: bool
    icon: Optional[dict] = None
    error: Optional[str] = None


def icon_summary(icon: Icon) -> dict:
    return {
        "id": icon.id,
        "name": icon.name,
        "file_name": icon.file_name,
        "status": icon.status,
        "url": f"/icons/{icon.public_path}",
    }


def normalize_file_name(name: str) -> str:
    """Reduce an uploaded name to a single safe path segment ending in .svg."""
    base = name.replace("\\", "/").split("/")[-1].strip()
    base = UNSAFE_CHARS_RE.sub("-", base).strip(".-")
    if not base:
        base = "icon"
    if not base.lower().endswith(ALLOWED_EXT):
        base = f"{base}{ALLOWED_EXT}"
    return base


def validate_svg(
    file_name: str,
    content: bytes,
    max_size: int = DEFAULT_MAX_FILE_SIZE,
    content_type: Optional[str] = None,
) -> str:
    """Check size, type and markup of an upload. Returns the decoded SVG text."""
    if not content:
        raise InvalidUpload("Empty file")
    if len(content) > max_size:
        limit = f"{max_size / 1024 / 1024:g}MB" if max_size >= 1024 * 1024 else f"{max_size} bytes"
        raise InvalidUpload(f"File size exceeds {limit} limit")
    if "svg" not in (content_type or "") and not file_name.lower().endswith(ALLOWED_EXT):
        raise InvalidUpload("Only SVG files are allowed")
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidUpload("Invalid SVG file")
    if "<svg" not in text or "</svg>" not in text:
        raise InvalidUpload("Invalid SVG file")
    return text


def candidate_names(file_name: str, digest: str, extra: int = MAX_NAME_ATTEMPTS):
    """Names to try for an upload, in order: as given, digest-suffixed, then numbered."""
    yield file_name
    stem = Path(file_name).stem
    yield f"{stem}-{digest[:8]}{ALLOWED_EXT}"
    for n in range(2, extra + 2):
        yield f"{stem}-{digest[:8]}-{n}{ALLOWED_EXT}"


def claim_file_name(
    store: ShardedStore, shard_id: int, file_name: str, digest: str, content: bytes
) -> str:
    """Store content under the first free candidate name in the shard.

    Each attempt is an exclusive create, so concurrent uploads never
    overwrite each other's files. Returns the name that was claimed.
    """
    for candidate in candidate_names(file_name, digest, MAX_NAME_ATTEMPTS):
        try:
            store.create(shard_id, candidate, content)
            return candidate
        except AlreadyStored:
            continue
    raise StorageIOError(f"No free file name for {file_name} in shard-{shard_id}")


def ingest_icon(
    session: Session,
    store: ShardedStore,
    analysis_queue: Optional[AnalysisQueue],
    file_name: str,
    content: bytes,
    name: Optional[str] = None,
    description: Optional[str] = None,
    content_type: Optional[str] = None,
    max_size: int = DEFAULT_MAX_FILE_SIZE,
) -> Icon:
    """Store a new icon and record it. Returns the persisted Icon.

    Raises:
        InvalidUpload: If the file is not an acceptable SVG.
        DuplicateContent: If an icon with identical content already exists.
        StorageIOError: If the file could not be written.
    """
    svg_text = validate_svg(file_name, content, max_size, content_type)
    digest = store.hash(content)

    existing = find_by_content_hash(session, digest)
    if existing:
        raise DuplicateContent(digest, existing.id)

    shard_id = store.shard_for(digest)
    normalized = normalize_file_name(file_name)
    stored_name = claim_file_name(store, shard_id, normalized, digest, content)

    icon = Icon(
        name=(name or "").strip() or Path(normalized).stem,
        file_name=stored_name,
        description=description or None,
        content_hash=digest,
        shard_id=shard_id,
        size=len(content),
        status=STATUS_PENDING if analysis_queue is not None else STATUS_PUBLISHED,
    )
    try:
        insert_icon(session, icon)
    except Exception:
        # The claimed name belongs to this upload alone, so its file goes with it.
        session.rollback()
        try:
            store.delete(shard_id, stored_name)
        except StorageIOError:
            logger.exception(f"Failed to remove orphaned file shard-{shard_id}/{stored_name}")
        raise
    logger.info(f"Stored icon {icon.id} at shard-{shard_id}/{stored_name}")

    if analysis_queue is not None:
        try:
            analysis_queue.submit(AnalysisJob(icon.id, svg_text))
        except Exception:
            logger.exception(f"Failed to queue icon {icon.id} for analysis")
    return icon


def ingest_batch(
    engine: Engine,
    store: ShardedStore,
    analysis_queue: Optional[AnalysisQueue],
    files: Iterable[BatchItem],
    max_batch_size: int = 50,
    concurrency: int = 3,
    max_size: int = DEFAULT_MAX_FILE_SIZE,
) -> dict:
    """Ingest several files with bounded concurrency.

    A failing file is reported in its own result; it never fails the batch.
    """
    files = list(files)
    if not files:
        raise InvalidUpload("No files uploaded")
    if len(files) > max_batch_size:
        raise InvalidUpload(f"Maximum {max_batch_size} files allowed per batch")

    def process(item: BatchItem) -> UploadResult:
        file_name, content, content_type = item
        try:
            with get_session(engine) as s:
                icon = ingest_icon(
                    s, store, analysis_queue, file_name, content,
                    content_type=content_type, max_size=max_size,
                )
                return UploadResult(file_name, True, icon=icon_summary(icon))
        except DuplicateContent:
            return UploadResult(file_name, False, error="Icon already exists")
        except InvalidUpload as e:
            return UploadResult(file_name, False, error=str(e))
        except Exception as e:
            logger.exception(f"Error processing file {file_name}")
            return UploadResult(file_name, False, error=str(e))

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        results: List[UploadResult] = list(pool.map(process, files))

    succeeded = sum(1 for r in results if r.success)
    return {
        "success": True,
        "results": [asdict(r) for r in results],
        "summary": {
            "total": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
        },
    }
