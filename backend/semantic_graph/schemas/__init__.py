"""Convenience exports for API schemas.

Re-exports the pydantic models used by the graph routes so consumers can import from one module.
"""

from .graph import (
    BatchSimilarityRequest,
    BatchSimilarityResponse,
    ClusterDetailResponse,
    ClusterGenerateRequest,
    ClusterGenerateResponse,
    ClusterMember,
    ClusterResponse,
    ConceptPayload,
    ConceptSaveRequest,
    EntityPayload,
    EntitySaveRequest,
    GeneratedCluster,
    GraphSaveResponse,
    ItemPositionResponse,
    PositionsResponse,
    SatellitePositionResponse,
    SimilarItemResponse,
    SimilarItemsResponse,
    SimilarityMode,
    SimilaritySaveRequest,
)

__all__ = [
    "SimilarityMode",
    "ItemPositionResponse",
    "SatellitePositionResponse",
    "PositionsResponse",
    "SimilarItemResponse",
    "SimilarItemsResponse",
    "SimilaritySaveRequest",
    "BatchSimilarityRequest",
    "BatchSimilarityResponse",
    "ClusterGenerateRequest",
    "ClusterResponse",
    "ClusterMember",
    "ClusterDetailResponse",
    "GeneratedCluster",
    "ClusterGenerateResponse",
    "ConceptPayload",
    "EntityPayload",
    "ConceptSaveRequest",
    "EntitySaveRequest",
    "GraphSaveResponse",
]
