"""
MODULE OVERVIEW:
The FastAPI application for the demo stream server.

WHAT IS HAPPENING HERE:
This server exists so the client has something honest to talk to: it plays fixed SSE
fixtures (including a deliberately broken one), echoes request headers and cookies
back as response headers, and runs a finite ticker feed. The `lifespan` context logs
startup, and on shutdown reports any streams that were still open.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from streamprobe.server.middleware import TimingMiddleware
from streamprobe.server.routes import sse
from streamprobe.server.stream_registry import registry

@asynccontextmanager
async def lifespan(app: FastAPI):
    # STARTUP
    logger.info("streamprobe demo server starting up...")

    yield

    # SHUTDOWN
    if registry.active_streams:
        logger.info(f"Server shutting down with {len(registry.active_streams)} open streams.")
    logger.info("Shutdown complete.")


app = FastAPI(
    title="streamprobe demo server",
    description="Server-Sent Events fixtures for the streamprobe client",
    version="1.0.0",
    lifespan=lifespan
)

# Add Middlewares
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sse.router, tags=["Streams"])

@app.get("/healthz", tags=["Ops"])
async def health_check():
    return {"status": "ok"}

@app.get("/stats", tags=["Ops"])
async def get_stats():
    return registry.get_stats()
