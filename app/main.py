# app/main.py
"""
FastAPI application entry point.
Includes request logging, global error handler, all routers,
and startup/shutdown of the record store and live assistant.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from app.routers import assistant, auth, health, vehicles
from app.config import settings
from app.dependencies import get_record_store, get_voice_bridge
from app.utils.logger import get_logger
import time

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 AutoTrack Registry starting up...")
    store = get_record_store()
    logger.info(f"✅ Registry ready — {len(store.list())} vehicles")
    logger.info(f"🔐 Access mode: {settings.ACCESS_MODE}")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_HOST}:{settings.BACKEND_PORT}")
    yield
    logger.info("🛑 AutoTrack Registry shutting down...")
    if get_voice_bridge.cache_info().currsize:
        await get_voice_bridge().shutdown()


app = FastAPI(
    title="AutoTrack Registry API",
    description="Vehicle registry with local persistence and a live voice assistant.",
    version="2.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── CORS (allow the dashboard front end to call the API) ────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(auth.router,      prefix="/api/v1", tags=["🔐 Auth"])
app.include_router(vehicles.router,  prefix="/api/v1", tags=["🚗 Vehicles"])
app.include_router(assistant.router, prefix="/api/v1", tags=["🎙 Live Assistant"])
app.include_router(health.router,    prefix="/api/v1", tags=["💚 Health"])
