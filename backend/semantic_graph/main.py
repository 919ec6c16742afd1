"""FastAPI entry point for per-owner semantic graph analytics.

Serves the owner-scoped layout, similarity, clustering and satellite endpoints
from `semantic_graph.api`. Tables are created on startup; the shared UMAP worker
pool is stopped on shutdown so pending reductions do not outlive the app.

Functions:
    lifespan(app: FastAPI): Create tables, then release the reduction pool on exit.
    health_check(): Readiness check for load balancers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from semantic_graph.api import api_router
from semantic_graph.core.config import get_settings
from semantic_graph.db.session import init_db
from semantic_graph.services.projection import shutdown_reduction_executor

_LOGGER = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    _LOGGER.info("%s ready", settings.app_name)
    try:
        yield
    finally:
        shutdown_reduction_executor()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
