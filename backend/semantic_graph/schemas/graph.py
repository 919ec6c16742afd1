"""Pydantic schemas for the owner graph endpoints.
Classes:
    ItemPositionResponse, SatellitePositionResponse, PositionsResponse: Layout payloads for the map view.
    SimilarItemResponse, SimilaritySaveRequest, BatchSimilarityRequest, BatchSimilarityResponse: Similarity lookups, saves and batch runs.
    ClusterGenerateRequest, ClusterResponse, ClusterDetailResponse, GeneratedCluster, ClusterGenerateResponse: Cluster lifecycle.
    ConceptPayload, EntityPayload, ConceptSaveRequest, EntitySaveRequest, GraphSaveResponse: Satellite writes.
"""

from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field


class SimilarityMode(str, Enum):
    VECTOR = "vector"
    HYBRID = "hybrid"


class ItemPositionResponse(BaseModel):
    item_id: UUID
    x: float
    y: float
    method: str
    computed_at: Optional[datetime] = None


class SatellitePositionResponse(BaseModel):
    id: UUID
    type: str
    name: Optional[str] = None
    x: float
    y: float
    connected_item_ids: list[UUID] = Field(default_factory=list)


class PositionsResponse(BaseModel):
    owner_id: str
    items: list[ItemPositionResponse]
    satellites: list[SatellitePositionResponse]
    total_items: int
    stored_count: int
    newly_positioned: int
    strategy: Optional[str] = None
    failed_writes: int = 0
    compute_time_ms: float


class SimilarItemResponse(BaseModel):
    item_id: UUID
    similarity: float
    title: Optional[str] = None
    vector_similarity: Optional[float] = None
    components: dict[str, float] = Field(default_factory=dict)


class SimilarItemsResponse(BaseModel):
    item_id: UUID
    mode: SimilarityMode
    results: list[SimilarItemResponse]
    saved: int = 0


class SimilaritySaveRequest(BaseModel):
    mode: SimilarityMode = SimilarityMode.HYBRID
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    limit: Optional[int] = Field(default=None, ge=1, le=100)


class BatchSimilarityRequest(BaseModel):
    item_ids: list[UUID] = Field(min_length=1, max_length=500)
    use_hybrid: bool = True


class BatchSimilarityResponse(BaseModel):
    processed: int
    failed: int


class ClusterGenerateRequest(BaseModel):
    min_cluster_size: Optional[int] = Field(default=None, ge=1, le=100)
    seed: Optional[int] = Field(default=None, ge=0)


class ClusterResponse(BaseModel):
    id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    item_count: int
    coherence: float


class ClusterMember(BaseModel):
    item_id: UUID
    title: str


class ClusterDetailResponse(ClusterResponse):
    members: list[ClusterMember] = Field(default_factory=list)


class GeneratedCluster(ClusterResponse):
    item_ids: list[UUID] = Field(default_factory=list)
    label_source: str


class ClusterGenerateResponse(BaseModel):
    owner_id: str
    clusters: list[GeneratedCluster]
    unclustered_item_ids: list[UUID]
    total_items: int
    degraded: bool
    compute_time_ms: float


class ConceptPayload(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    relevance: float = Field(default=1.0, ge=0.0, le=1.0)
    parent: Optional[str] = Field(default=None, max_length=200)
    confidence: float = Field(default=0.85, ge=0.0, le=1.0)


class EntityPayload(BaseModel):
    text: str = Field(min_length=1, max_length=200)
    type: str = "technology"
    confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    mentions: int = Field(default=0, ge=0)
    context: Optional[str] = Field(default=None, max_length=1000)


class ConceptSaveRequest(BaseModel):
    concepts: list[ConceptPayload]


class EntitySaveRequest(BaseModel):
    entities: list[EntityPayload]


class GraphSaveResponse(BaseModel):
    saved: int
    failed: int = 0
    ids: dict[str, UUID] = Field(default_factory=dict)
