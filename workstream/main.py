"""Workstream FastAPI backend: application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from workstream import config
from workstream.db import connection, factory
from workstream.db.file_watcher import file_watcher
from workstream.routers.content import content_router
from workstream.routers.reports import reports_router
from workstream.routers.sync import sync_router
from workstream.services.data_service import build_data_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("workstream.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle.

    Collaborator clients are injected by setting ``app.state.issue_tracker_client``
    and ``app.state.version_control_client`` before startup; without them only the
    document-store source is synced and cycle reviews read from the store.
    """
    logger.info("Workstream backend starting up")

    # 1. Initialize DB connection
    db = await connection.get_connection()

    # 2. Run migrations
    await factory.run_migrations(db)

    # 3. Wire services
    issue_tracker = getattr(app.state, "issue_tracker_client", None)
    version_control = getattr(app.state, "version_control_client", None)
    if issue_tracker is None and config.ISSUE_TRACKER_API_KEY:
        logger.warning("Issue tracker API key is set but no issue-tracker client was provided")
    if version_control is None and config.GITHUB_TOKEN:
        logger.warning("Version-control token is set but no version-control client was provided")
    service = build_data_service(
        db,
        issue_tracker=issue_tracker,
        version_control=version_control,
        documents_dir=config.DOCUMENTS_DIR,
    )
    app.state.data_service = service
    logger.info("Registered sources: %s", ", ".join(service.sync_engine.registered_sources))

    # 4. Optional document watcher
    if config.WATCH_DOCUMENTS:
        await file_watcher.start(service.sync_engine, config.DOCUMENTS_DIR)

    yield

    logger.info("Workstream backend shutting down")
    await file_watcher.stop()
    await connection.close_connection()


app = FastAPI(
    title="Workstream API",
    description="Unified work-tracking store with PR correlation and cycle reports",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(content_router)
app.include_router(sync_router)
app.include_router(reports_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "db": "connected" if connection.is_connected() else "disconnected",
        "watcher": "running" if file_watcher.is_running else "stopped",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("workstream.main:app", host=config.HOST, port=config.PORT, reload=False)
