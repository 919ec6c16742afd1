"""Owner-scoped graph analytics endpoints.

Endpoints:
    get_positions(owner_id, session): Project items onto the canvas and place their satellites.
    get_similar_items(owner_id, item_id, ...): Vector or hybrid neighbours, read only.
    save_similar_items(owner_id, item_id, payload, session): Compute neighbours and store them as `similar_to` edges.
    get_stored_similar_items(owner_id, item_id, limit, session): Previously saved `similar_to` edges.
    batch_similarities(owner_id, payload, session): Compute and persist neighbours for many items.
    generate_clusters(owner_id, payload, session): Regenerate the owner's cluster set.
    list_clusters(owner_id, session) / get_cluster(owner_id, cluster_id, session): Cluster reads.
    save_concepts(...) / save_entities(...): Attach satellite nodes to an item.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel.ext.asyncio.session import AsyncSession

from semantic_graph.db.session import get_session
from semantic_graph.schemas import (
    BatchSimilarityRequest,
    BatchSimilarityResponse,
    ClusterDetailResponse,
    ClusterGenerateRequest,
    ClusterGenerateResponse,
    ClusterMember,
    ClusterResponse,
    ConceptSaveRequest,
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
from semantic_graph.services.clustering import ClusterService
from semantic_graph.services.graph_builder import ConceptGraphBuilder, ConceptInput, EntityInput
from semantic_graph.services.projection import ProjectionService
from semantic_graph.services.radial import RadialLayoutService
from semantic_graph.services.similarity import SimilarItem, SimilarityService

router = APIRouter(prefix="/owners/{owner_id}", tags=["graph"])


def _raise_for_value_error(exc: ValueError) -> None:
    message = str(exc)
    if "not found" in message.lower():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message) from exc


@router.get("/positions", response_model=PositionsResponse)
async def get_positions(owner_id: str, session: AsyncSession = Depends(get_session)) -> PositionsResponse:
    summary = await ProjectionService().compute_positions(session, owner_id)
    satellites = await RadialLayoutService().compute_positions(session, owner_id, summary.as_mapping())
    return PositionsResponse(
        owner_id=owner_id,
        items=[
            ItemPositionResponse(
                item_id=position.item_id,
                x=position.x,
                y=position.y,
                method=position.method.value,
                computed_at=position.computed_at,
            )
            for position in summary.positions
        ],
        satellites=[
            SatellitePositionResponse(
                id=satellite.satellite_id,
                type=satellite.satellite_type,
                name=satellite.name,
                x=satellite.x,
                y=satellite.y,
                connected_item_ids=satellite.connected_anchor_ids,
            )
            for satellite in satellites
        ],
        total_items=summary.total_items,
        stored_count=summary.stored_count,
        newly_positioned=summary.newly_positioned,
        strategy=summary.strategy,
        failed_writes=summary.failed_writes,
        compute_time_ms=summary.compute_time_ms,
    )


async def _lookup_similar(
    service: SimilarityService,
    session: AsyncSession,
    owner_id: str,
    item_id: UUID,
    mode: SimilarityMode,
    threshold: Optional[float],
    limit: Optional[int],
) -> list[SimilarItem]:
    try:
        if mode is SimilarityMode.HYBRID:
            return await service.find_similar_hybrid(session, owner_id, item_id, threshold=threshold, limit=limit)
        return await service.find_similar(session, owner_id, item_id, threshold=threshold, limit=limit)
    except ValueError as exc:
        _raise_for_value_error(exc)


def _similar_items_response(
    item_id: UUID,
    mode: SimilarityMode,
    results: list[SimilarItem],
    saved: int = 0,
) -> SimilarItemsResponse:
    return SimilarItemsResponse(
        item_id=item_id,
        mode=mode,
        saved=saved,
        results=[
            SimilarItemResponse(
                item_id=result.item_id,
                similarity=result.similarity,
                title=result.title,
                vector_similarity=result.vector_similarity,
                components=result.components,
            )
            for result in results
        ],
    )


@router.get("/items/{item_id}/similar", response_model=SimilarItemsResponse)
async def get_similar_items(
    owner_id: str,
    item_id: UUID,
    mode: SimilarityMode = SimilarityMode.HYBRID,
    threshold: Optional[float] = Query(default=None, ge=0.0, le=1.0),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> SimilarItemsResponse:
    results = await _lookup_similar(SimilarityService(), session, owner_id, item_id, mode, threshold, limit)
    return _similar_items_response(item_id, mode, results)


@router.post("/items/{item_id}/similarities", response_model=SimilarItemsResponse)
async def save_similar_items(
    owner_id: str,
    item_id: UUID,
    payload: SimilaritySaveRequest,
    session: AsyncSession = Depends(get_session),
) -> SimilarItemsResponse:
    service = SimilarityService()
    results = await _lookup_similar(
        service, session, owner_id, item_id, payload.mode, payload.threshold, payload.limit
    )
    saved = 0
    if results:
        saved = await service.save_similarities(session, owner_id, item_id, results, method=payload.mode.value)
    return _similar_items_response(item_id, payload.mode, results, saved)


@router.get("/items/{item_id}/similar/stored", response_model=list[SimilarItemResponse])
async def get_stored_similar_items(
    owner_id: str,
    item_id: UUID,
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> list[SimilarItemResponse]:
    try:
        results = await SimilarityService().get_similar_from_db(session, owner_id, item_id, limit=limit)
    except ValueError as exc:
        _raise_for_value_error(exc)
    return [
        SimilarItemResponse(item_id=result.item_id, similarity=result.similarity, title=result.title)
        for result in results
    ]


@router.post("/similarities/batch", response_model=BatchSimilarityResponse)
async def batch_similarities(
    owner_id: str,
    payload: BatchSimilarityRequest,
    session: AsyncSession = Depends(get_session),
) -> BatchSimilarityResponse:
    result = await SimilarityService().batch_compute_similarities(
        session,
        owner_id,
        payload.item_ids,
        use_hybrid=payload.use_hybrid,
    )
    return BatchSimilarityResponse(processed=result.processed, failed=result.failed)


@router.post("/clusters", response_model=ClusterGenerateResponse)
async def generate_clusters(
    owner_id: str,
    payload: ClusterGenerateRequest,
    session: AsyncSession = Depends(get_session),
) -> ClusterGenerateResponse:
    summary = await ClusterService().generate_clusters(
        session,
        owner_id,
        min_cluster_size=payload.min_cluster_size,
        seed=payload.seed,
    )
    return ClusterGenerateResponse(
        owner_id=owner_id,
        clusters=[
            GeneratedCluster(
                id=cluster.id,
                name=cluster.name,
                description=cluster.description,
                item_count=cluster.item_count,
                coherence=cluster.coherence,
                item_ids=cluster.item_ids,
                label_source=cluster.label_source,
            )
            for cluster in summary.clusters
        ],
        unclustered_item_ids=summary.unclustered_item_ids,
        total_items=summary.total_items,
        degraded=summary.degraded,
        compute_time_ms=summary.compute_time_ms,
    )


@router.get("/clusters", response_model=list[ClusterResponse])
async def list_clusters(owner_id: str, session: AsyncSession = Depends(get_session)) -> list[ClusterResponse]:
    clusters = await ClusterService().list_clusters(session, owner_id)
    return [
        ClusterResponse(
            id=cluster.id,
            name=cluster.name,
            description=cluster.description,
            item_count=cluster.item_count,
            coherence=cluster.coherence,
        )
        for cluster in clusters
    ]


@router.get("/clusters/{cluster_id}", response_model=ClusterDetailResponse)
async def get_cluster(
    owner_id: str,
    cluster_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> ClusterDetailResponse:
    try:
        details = await ClusterService().get_cluster_details(session, owner_id, cluster_id)
    except ValueError as exc:
        _raise_for_value_error(exc)
    return ClusterDetailResponse(
        id=details.id,
        name=details.name,
        description=details.description,
        item_count=details.item_count,
        coherence=details.coherence,
        members=[ClusterMember(item_id=item_id, title=title) for item_id, title in details.members],
    )


@router.post("/items/{item_id}/concepts", response_model=GraphSaveResponse, status_code=status.HTTP_201_CREATED)
async def save_concepts(
    owner_id: str,
    item_id: UUID,
    payload: ConceptSaveRequest,
    session: AsyncSession = Depends(get_session),
) -> GraphSaveResponse:
    concepts = [
        ConceptInput(
            name=concept.name,
            relevance=concept.relevance,
            parent=concept.parent,
            confidence=concept.confidence,
        )
        for concept in payload.concepts
    ]
    try:
        created = await ConceptGraphBuilder().save_concepts(session, owner_id, item_id, concepts)
    except ValueError as exc:
        _raise_for_value_error(exc)
    return GraphSaveResponse(saved=len(created), ids=created)


@router.post("/items/{item_id}/entities", response_model=GraphSaveResponse, status_code=status.HTTP_201_CREATED)
async def save_entities(
    owner_id: str,
    item_id: UUID,
    payload: EntitySaveRequest,
    session: AsyncSession = Depends(get_session),
) -> GraphSaveResponse:
    entities = [
        EntityInput(
            text=entity.text,
            entity_type=entity.type,
            confidence=entity.confidence,
            mentions=entity.mentions,
            context=entity.context,
        )
        for entity in payload.entities
    ]
    try:
        result = await ConceptGraphBuilder().save_entities(session, owner_id, item_id, entities)
    except ValueError as exc:
        _raise_for_value_error(exc)
    return GraphSaveResponse(saved=result.saved, failed=result.failed)
