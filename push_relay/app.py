import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from .watcher import CollectionWatcher

logger = logging.getLogger(__name__)

LIVENESS_BODY = "This server is running and listening to Firestore changes.\n"
LIVENESS_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _log_watcher_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.critical(f"Firestore watcher crashed: {str(error)}", exc_info=error)
    else:
        logger.warning("Firestore watcher exited")


def create_app(watcher: Optional[CollectionWatcher] = None) -> FastAPI:
    """
    Build the HTTP app. Every path answers the hosting platform's health check;
    the watcher, if given, runs as a background task for the app's lifetime.
    """
    app = FastAPI(title="Push Relay", version="1.0.0", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.watcher_task = None

    @app.api_route("/{path:path}", methods=LIVENESS_METHODS, response_class=PlainTextResponse)
    async def liveness(path: str):
        return PlainTextResponse(LIVENESS_BODY)

    @app.on_event("startup")
    async def startup_event():
        if watcher is None:
            return
        app.state.watcher_task = asyncio.create_task(watcher.run())
        app.state.watcher_task.add_done_callback(_log_watcher_exit)
        logger.info(f"Started Firestore watcher for {watcher.collection_path}")

    @app.on_event("shutdown")
    async def shutdown_event():
        task = app.state.watcher_task
        if task is None:
            return
        if task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Firestore watcher stopped")

    return app
