"""FastAPI routes for Icon Vault."""
import logging
import os
import time
from typing import List as ListType
from typing import Optional

from fastapi import Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.engine import Engine
from sqlmodel import select

from analysis import AnalysisQueue
from config import Settings
from database import get_session
from errors import DuplicateContent, IconVaultError, NotFound, StorageIOError
from models import Icon, IconTagLink, Tag, utcnow
from storage import ShardedStore
from uploads import icon_summary, ingest_batch, ingest_icon
from utils import sanitize_icon_path

logger = logging.getLogger(__name__)

SVG_MEDIA_TYPE = "image/svg+xml"
CACHE_FOREVER = "public, max-age=31536000, immutable"


# Dependencies
def get_store(request: Request) -> ShardedStore:
    return request.app.state.store


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_analysis_queue(request: Request) -> Optional[AnalysisQueue]:
    return request.app.state.analysis_queue


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def vault_error_handler(request: Request, exc: IconVaultError) -> JSONResponse:
    """Translate domain errors into JSON responses."""
    body = {"error": str(exc)}
    if isinstance(exc, DuplicateContent):
        body = {
            "error": "Icon already exists",
            "icon_id": exc.icon_id,
            "message": "This icon has already been uploaded",
        }
    elif isinstance(exc, StorageIOError):
        logger.error(f"Storage failure on {request.url.path}: {exc}")
        body = {"error": "Internal storage error"}
    return JSONResponse(body, status_code=exc.status_code)


def _load_icon(engine: Engine, icon_id: int) -> Icon:
    with get_session(engine) as s:
        icon = s.get(Icon, icon_id)
        if not icon:
            raise NotFound("Icon not found")
        return icon


def upload_icon(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    store: ShardedStore = Depends(get_store),
    engine: Engine = Depends(get_engine),
    analysis_queue: Optional[AnalysisQueue] = Depends(get_analysis_queue),
    settings: Settings = Depends(get_app_settings),
):
    """Upload a single SVG icon."""
    content = file.file.read()
    with get_session(engine) as s:
        icon = ingest_icon(
            s,
            store,
            analysis_queue,
            file.filename or "icon.svg",
            content,
            name=name,
            description=description,
            content_type=file.content_type,
            max_size=settings.max_file_size,
        )
        summary = icon_summary(icon)

    message = (
        "Icon uploaded successfully. Analysis in progress."
        if analysis_queue is not None
        else "Icon uploaded successfully."
    )
    return {"success": True, "icon": summary, "message": message}


def upload_batch(
    files: ListType[UploadFile] = File(...),
    store: ShardedStore = Depends(get_store),
    engine: Engine = Depends(get_engine),
    analysis_queue: Optional[AnalysisQueue] = Depends(get_analysis_queue),
    settings: Settings = Depends(get_app_settings),
):
    """Upload several SVG icons; each file gets its own result."""
    items = [(f.filename or "icon.svg", f.file.read(), f.content_type) for f in files]
    return ingest_batch(
        engine,
        store,
        analysis_queue,
        items,
        max_batch_size=settings.max_batch_size,
        concurrency=settings.batch_concurrency,
        max_size=settings.max_file_size,
    )


def delete_icon(
    icon_id: int,
    store: ShardedStore = Depends(get_store),
    engine: Engine = Depends(get_engine),
):
    """Delete an icon's file and its record."""
    with get_session(engine) as s:
        icon = s.get(Icon, icon_id)
        if not icon:
            raise NotFound("Icon not found")

        store.delete(icon.shard_id, icon.file_name)

        links = s.exec(select(IconTagLink).where(IconTagLink.icon_id == icon_id)).all()
        for link in links:
            tag = s.get(Tag, link.tag_id)
            if tag and tag.usage_count > 0:
                tag.usage_count -= 1
            s.delete(link)

        s.delete(icon)
        s.commit()
    logger.info(f"Deleted icon {icon_id}")
    return {"success": True}


def serve_icon(path: str, store: ShardedStore = Depends(get_store)):
    """Serve an SVG straight from sharded storage, e.g. /icons/shard-0/home.svg."""
    sanitize_icon_path(path, store.icons_root)
    shard_part, file_name = path.split("/", 1)
    shard_id = int(shard_part[len("shard-"):])
    if shard_id >= store.shard_count:
        raise NotFound("File not found")

    content = store.read(shard_id, file_name)
    if b"<svg" not in content or b"</svg>" not in content:
        raise HTTPException(400, "Invalid SVG file")

    return Response(
        content,
        media_type=SVG_MEDIA_TYPE,
        headers={"Cache-Control": CACHE_FOREVER, "X-Content-Type-Options": "nosniff"},
    )


def icon_info(
    icon_id: int,
    store: ShardedStore = Depends(get_store),
    engine: Engine = Depends(get_engine),
):
    """Icon metadata with its tags."""
    with get_session(engine) as s:
        icon = s.get(Icon, icon_id)
        if not icon:
            raise NotFound("Icon not found")
        tags = s.exec(
            select(Tag.name)
            .join(IconTagLink, Tag.id == IconTagLink.tag_id)
            .where(IconTagLink.icon_id == icon_id)
            .order_by(Tag.name)
        ).all()
        info = icon_summary(icon)
        info.update(
            description=icon.description,
            content_hash=icon.content_hash,
            shard_id=icon.shard_id,
            size=icon.size,
            category=icon.ai_category,
            tags=list(tags),
            view_count=icon.view_count,
            download_count=icon.download_count,
            created_at=icon.created_at.isoformat(),
            file_exists=store.exists(icon.shard_id, icon.file_name),
        )
    return info


def icon_svg(
    icon_id: int,
    store: ShardedStore = Depends(get_store),
    engine: Engine = Depends(get_engine),
):
    """Get SVG content of an icon."""
    icon = _load_icon(engine, icon_id)
    content = store.read(icon.shard_id, icon.file_name)
    return Response(content, media_type=SVG_MEDIA_TYPE, headers={"Cache-Control": "public, max-age=31536000"})


def view_icon(icon_id: int, engine: Engine = Depends(get_engine)):
    """Record a view of an icon."""
    with get_session(engine) as s:
        icon = s.get(Icon, icon_id)
        if not icon:
            raise NotFound("Icon not found")
        icon.view_count += 1
        s.commit()
        return {"success": True, "view_count": icon.view_count}


def download_icon(
    icon_id: int,
    store: ShardedStore = Depends(get_store),
    engine: Engine = Depends(get_engine),
):
    """Download an icon file and increment its download count."""
    with get_session(engine) as s:
        icon = s.get(Icon, icon_id)
        if not icon:
            raise NotFound("Icon not found")
        content = store.read(icon.shard_id, icon.file_name)
        icon.download_count += 1
        s.commit()
        file_name = icon.file_name

    return Response(
        content,
        media_type=SVG_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{file_name}"',
            "Cache-Control": "public, max-age=31536000",
        },
    )


def health(request: Request):
    """Liveness and basic storage/analysis status."""
    store: ShardedStore = request.app.state.store
    analysis_queue: Optional[AnalysisQueue] = request.app.state.analysis_queue
    root = store.base_path
    return {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "uptime": time.monotonic() - request.app.state.started_at,
        "storage": {
            "root": str(root),
            "shard_count": store.shard_count,
            "writable": os.access(root, os.W_OK) if root.exists() else os.access(root.parent, os.W_OK),
        },
        "analysis": {
            "enabled": analysis_queue is not None,
            "running": bool(analysis_queue and analysis_queue.running),
            "pending": analysis_queue.pending if analysis_queue else 0,
        },
    }
