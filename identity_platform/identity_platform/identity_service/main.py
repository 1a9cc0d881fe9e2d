"""
Identity Manager - minimal API with registration, login and bearer tokens
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os
import sys

from .config import settings
from .db import init_db
from .errors import register_exception_handlers
from .routes import health, weather
from .routes.identity import map_identity_api


def configure_logging() -> None:
    handlers = [logging.StreamHandler(sys.stdout)]

    # File logging is optional; continue without it if the directory is unusable
    if settings.LOG_DIR:
        try:
            os.makedirs(settings.LOG_DIR, exist_ok=True)
            handlers.append(logging.FileHandler(os.path.join(settings.LOG_DIR, "auth_events.log")))
        except OSError as e:
            print(f"WARNING: Could not set up file logging: {e}", file=sys.stderr)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers
    )


configure_logging()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Create the identity schema on startup"""
    init_db()
    yield


app = FastAPI(
    title=settings.SERVICE_NAME,
    description="Registration, login and bearer tokens for a sample protected API",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

map_identity_api(app, settings.IDENTITY_PREFIX)
app.include_router(weather.router)
app.include_router(health.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.SERVICE_NAME,
        "version": "1.0.0",
        "status": "running"
    }
