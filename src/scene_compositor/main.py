"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scene_compositor.api.routes import router
from scene_compositor.config import settings
from scene_compositor.errors import EngineLoadError
from scene_compositor.tools.ffmpeg_engine import shared_engine

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# CORS configuration
# ---------------------------------------------------------------------------

_DEFAULT_ORIGINS = {
    "http://localhost:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:3001",
}


def _get_allowed_origins() -> set[str]:
    origins = set(_DEFAULT_ORIGINS)
    if settings.allowed_origins:
        origins.update(o.strip() for o in settings.allowed_origins.split(",") if o.strip())
    return origins


_ALLOWED_ORIGINS = _get_allowed_origins()


# ---------------------------------------------------------------------------
# App lifecycle
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Warm the shared FFmpeg engine so the first export does not pay for it."""
    logger.info("app.startup", allowed_origins=sorted(_ALLOWED_ORIGINS))
    try:
        engine = await shared_engine.get()
        logger.info("app.engine_ready", version=engine.version)
    except EngineLoadError:
        # Exports retry the load on demand
        logger.exception("app.engine_unavailable")
    yield
    logger.info("app.shutdown")


app = FastAPI(
    title="Scene Compositor",
    description="Composes generated scene clips, narration, music and captions into one video",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_ALLOWED_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "engine_loaded": shared_engine.loaded}
