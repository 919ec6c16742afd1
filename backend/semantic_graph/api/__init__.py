"""API router composition for the backend.

The module assembles individual route groups into a single `api_router` that can be mounted on the app.
"""

from fastapi import APIRouter

from semantic_graph.api.routes.graph import router as graph_router

api_router = APIRouter()
api_router.include_router(graph_router)

__all__ = ["api_router"]
