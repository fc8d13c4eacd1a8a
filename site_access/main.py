from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.deps import ANY_STAFF, services_dep
from .api.routes import access, audit, dashboard, favorites, health, people, recognitions, sessions, sites
from .core.config import get_settings
from .core.logger import setup_logger
from .core.security import safe_decode_token
from .db.session import init_db
from .exceptions import AccessControlError
from .services import AccessServices
from .services.realtime import change_feed
from .types import AccessChange
from .ws.manager import change_message, site_channel, ws_manager

settings = get_settings()
logger = logging.getLogger("site_access.api")


def _bridge_changes(loop: asyncio.AbstractEventLoop):
    """Forward feed changes, emitted from worker threads, to the site's websocket channel."""

    def _forward(change: AccessChange) -> None:
        if loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(
            ws_manager.broadcast(change_message(change), channel=site_channel(change.site_id)),
            loop,
        )

    return change_feed.on_change(None, _forward)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger()
    if settings.store_backend == "sql":
        init_db()
    unsubscribe = _bridge_changes(asyncio.get_running_loop())
    logger.info("Site access API started (store=%s, embeddings=%s)", settings.store_backend, settings.embedding_backend)
    yield
    unsubscribe()


app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AccessControlError)
async def access_control_error_handler(_request: Request, exc: AccessControlError) -> JSONResponse:
    # Capture outcomes that reach here outside the recognition routes are client errors.
    status_code = exc.status_code if exc.status_code >= 400 else 422
    if status_code >= 500:
        logger.error("%s: %s", exc.code, exc, exc_info=exc.__cause__)
    return JSONResponse(status_code=status_code, content={"code": exc.code, "detail": str(exc)})


app.include_router(health.router, prefix=settings.api_prefix)
app.include_router(sites.router, prefix=settings.api_prefix)
app.include_router(people.router, prefix=settings.api_prefix)
app.include_router(favorites.router, prefix=settings.api_prefix)
app.include_router(access.router, prefix=settings.api_prefix)
app.include_router(recognitions.router, prefix=settings.api_prefix)
app.include_router(sessions.router, prefix=settings.api_prefix)
app.include_router(dashboard.router, prefix=settings.api_prefix)
app.include_router(audit.router, prefix=settings.api_prefix)


@app.websocket("/ws/sites/{site_id}")
async def site_events_socket(
    websocket: WebSocket,
    site_id: str,
    services: AccessServices = Depends(services_dep),
):
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return

    payload = safe_decode_token(token)
    if payload is None:
        await websocket.close(code=4401)
        return
    if payload.get("role") not in ANY_STAFF:
        await websocket.close(code=4403)
        return
    if await run_in_threadpool(services.repo.get_site, site_id) is None:
        await websocket.close(code=4404)
        return

    await ws_manager.connect(websocket, channel=site_channel(site_id))
    try:
        while True:
            message = await websocket.receive_text()
            if message.lower() == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception:
        await ws_manager.disconnect(websocket)
        await asyncio.sleep(0)
