"""Route exports for the API layer.

Re-exports the graph router so callers can include all owner endpoints with a single import.
"""

from .graph import router as graph_router

__all__ = ["graph_router"]
