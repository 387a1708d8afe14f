"""
Icon Vault – SVG icon store (FastAPI + SQLite)

Quick start
-----------
1) python -m venv .venv && source .venv/bin/activate  # or .venv\\Scripts\\activate on Windows
2) pip install -e .
3) python app.py  # creates the DB and storage directories on first use
4) POST an SVG to http://localhost:8001/api/admin/upload, then fetch it from /icons/shard-<n>/<name>.svg

Notes
-----
• Icon records live in ./icon_vault.db (DATABASE_URL overrides).
• Files are stored under <STORAGE_BASE_PATH>/icons/shard-<n>/, n = MD5 prefix mod SHARD_COUNT.
• SHARD_COUNT must not change once files have been written.
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from analysis import AnalysisQueue, make_tagging_handler
from config import Settings, get_settings
from database import create_db_engine, init_db
from errors import IconVaultError
from routes import (
    delete_icon,
    download_icon,
    health,
    icon_info,
    icon_svg,
    serve_icon,
    upload_batch,
    upload_icon,
    vault_error_handler,
    view_icon,
)
from storage import ShardedStore

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application with its own store, engine and analysis queue."""
    settings = settings or get_settings()
    engine = create_db_engine(settings.database_url)
    store = ShardedStore(settings.storage_base_path, settings.shard_count)
    analysis_queue = None
    if settings.analysis_enabled:
        analysis_queue = AnalysisQueue(
            make_tagging_handler(engine),
            workers=settings.analysis_workers,
            attempts=settings.analysis_attempts,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        if analysis_queue is not None:
            analysis_queue.start()
        logger.info(f"Icon Vault serving {store.icons_root} across {store.shard_count} shards")
        yield
        if analysis_queue is not None:
            analysis_queue.stop()
        engine.dispose()

    app = FastAPI(title="Icon Vault", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.analysis_queue = analysis_queue
    app.state.started_at = time.monotonic()

    app.add_exception_handler(IconVaultError, vault_error_handler)

    # Admin
    app.post("/api/admin/upload")(upload_icon)
    app.post("/api/admin/upload/batch")(upload_batch)
    app.delete("/api/admin/icons/{icon_id}")(delete_icon)

    # Public API
    app.get("/api/icons/{icon_id}/info")(icon_info)
    app.get("/api/icons/{icon_id}/svg")(icon_svg)
    app.post("/api/icons/{icon_id}/view")(view_icon)
    app.post("/api/icons/{icon_id}/download")(download_icon)
    app.get("/api/health")(health)

    # Static icon files
    app.get("/icons/{path:path}")(serve_icon)

    return app


app = create_app()


if __name__ == "__main__":
    # Allow `python app.py 8000`
    logging.basicConfig(level=logging.INFO)
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8001
    print(f"→ Open http://localhost:{port}")
    import uvicorn

    uvicorn.run("app:app", host="127.0.0.1", port=port, reload=True)
