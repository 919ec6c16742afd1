"""Durable store contract backed by an async SQLModel session.

Classes:
    StoredPosition: Position previously persisted for an item.
    EmbeddingRecord: Item embedding plus the metadata the analytics services read.
    EdgeDraft: Relationship edge to upsert on its natural key (singly or as a symmetric pair).
    ClusterDraft: Cluster to write during a full regeneration.
    GraphStore: Reads embeddings/edges/clusters and performs idempotent writes for one session,
        including concept/entity upserts for the satellite graph.

Every write commits on success and rolls the session back on failure before
re-raising, so callers can count the failure and continue with sibling writes.
"""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy import delete, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from semantic_graph.core.clock import as_utc, utc_now
from semantic_graph.models import Cluster, Concept, Entity, Item, ItemTag, Relationship
from semantic_graph.services.vectors import decode_vector, encode_vector


@dataclass(slots=True)
class StoredPosition:
    x: float
    y: float
    method: str | None = None
    computed_at: datetime | None = None


@dataclass(slots=True)
class EmbeddingRecord:
    item_id: UUID
    vector: np.ndarray
    position: StoredPosition | None = None
    title: str = ""
    summary: str | None = None
    domain: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class EdgeDraft:
    owner_id: str
    source_type: str
    source_id: UUID
    target_type: str
    target_id: UUID
    relationship_type: str
    weight: float
    metadata: dict[str, Any] | None = None


@dataclass(slots=True)
class ClusterDraft:
    name: str
    description: str | None
    centroid: np.ndarray
    member_ids: list[UUID]
    coherence: float


_SATELLITE_MODELS = {"concept": Concept, "entity": Entity}


def _to_record(item: Item) -> EmbeddingRecord | None:
    vector = decode_vector(item.embedding_vector, item.embedding_dim)
    if vector is None or vector.size == 0:
        return None
    position = None
    if item.graph_x is not None and item.graph_y is not None:
        position = StoredPosition(
            x=item.graph_x,
            y=item.graph_y,
            method=item.graph_method,
            computed_at=as_utc(item.graph_positioned_at),
        )
    return EmbeddingRecord(
        item_id=item.id,
        vector=vector,
        position=position,
        title=item.title or "",
        summary=item.summary,
        domain=item.domain,
        created_at=as_utc(item.created_at),
    )


class GraphStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def list_embeddings(self, owner_id: str) -> list[EmbeddingRecord]:
        result = await self._session.exec(
            select(Item)
            .where(Item.owner_id == owner_id)
            .where(Item.embedding_vector.is_not(None))
            .order_by(Item.created_at, Item.id)
        )
        records: list[EmbeddingRecord] = []
        for item in result.all():
            record = _to_record(item)
            if record is not None:
                records.append(record)
        return records

    async def get_item(self, owner_id: str, item_id: UUID) -> Item | None:
        item = await self._session.get(Item, item_id)
        if item is None or item.owner_id != owner_id:
            return None
        return item

    async def get_embedding(self, owner_id: str, item_id: UUID) -> EmbeddingRecord | None:
        item = await self.get_item(owner_id, item_id)
        if item is None:
            return None
        return _to_record(item)

    async def get_items(self, item_ids: Iterable[UUID]) -> dict[UUID, Item]:
        ids = list(item_ids)
        if not ids:
            return {}
        result = await self._session.exec(select(Item).where(Item.id.in_(ids)))
        return {item.id: item for item in result.all()}

    async def tags_for_items(self, item_ids: Iterable[UUID]) -> dict[UUID, set[str]]:
        ids = list(item_ids)
        tags: dict[UUID, set[str]] = defaultdict(set)
        if not ids:
            return tags
        result = await self._session.exec(select(ItemTag).where(ItemTag.item_id.in_(ids)))
        for row in result.all():
            tags[row.item_id].add(row.tag)
        return tags

    async def upsert_position(
        self,
        item_id: UUID,
        x: float,
        y: float,
        method: str,
        timestamp: datetime | None = None,
    ) -> None:
        try:
            await self._session.execute(
                update(Item)
                .where(Item.id == item_id)
                .values(
                    graph_x=float(x),
                    graph_y=float(y),
                    graph_method=method,
                    graph_positioned_at=timestamp or utc_now(),
                )
            )
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

    async def stage_relationship_edge(self, edge: EdgeDraft) -> Relationship:
        """Add or update ``edge`` on its natural key without committing."""

        result = await self._session.exec(
            select(Relationship).where(
                Relationship.owner_id == edge.owner_id,
                Relationship.source_type == edge.source_type,
                Relationship.source_id == edge.source_id,
                Relationship.target_type == edge.target_type,
                Relationship.target_id == edge.target_id,
                Relationship.relationship_type == edge.relationship_type,
            )
        )
        record = result.first()
        weight = float(np.clip(edge.weight, 0.0, 1.0))
        metadata_json = json.dumps(edge.metadata) if edge.metadata else None
        if record is None:
            record = Relationship(
                owner_id=edge.owner_id,
                source_type=edge.source_type,
                source_id=edge.source_id,
                target_type=edge.target_type,
                target_id=edge.target_id,
                relationship_type=edge.relationship_type,
                weight=weight,
                metadata_json=metadata_json,
            )
        else:
            record.weight = weight
            record.metadata_json = metadata_json
            record.updated_at = utc_now()
        self._session.add(record)
        return record

    async def upsert_relationship_edge(self, edge: EdgeDraft) -> Relationship:
        try:
            record = await self.stage_relationship_edge(edge)
            await self._session.commit()
            return record
        except Exception:
            await self._session.rollback()
            raise

    async def upsert_edge_pair(self, forward: EdgeDraft, backward: EdgeDraft) -> tuple[Relationship, Relationship]:
        """Write both directions of a symmetric edge in one commit.

        Either both rows are stored or, on failure, neither changes.
        """

        try:
            first = await self.stage_relationship_edge(forward)
            await self._session.flush()
            second = await self.stage_relationship_edge(backward)
            await self._session.commit()
            return first, second
        except Exception:
            await self._session.rollback()
            raise

    async def list_relationships(
        self,
        owner_id: str,
        *,
        source_type: str | None = None,
        source_id: UUID | None = None,
        target_types: Sequence[str] | None = None,
        relationship_type: str | None = None,
        limit: int | None = None,
    ) -> list[Relationship]:
        stmt = select(Relationship).where(Relationship.owner_id == owner_id)
        if source_type is not None:
            stmt = stmt.where(Relationship.source_type == source_type)
        if source_id is not None:
            stmt = stmt.where(Relationship.source_id == source_id)
        if target_types:
            stmt = stmt.where(Relationship.target_type.in_(list(target_types)))
        if relationship_type is not None:
            stmt = stmt.where(Relationship.relationship_type == relationship_type)
        stmt = stmt.order_by(
            Relationship.source_id,
            Relationship.weight.desc(),
            Relationship.target_id,
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.exec(stmt)
        return list(result.all())

    async def satellite_names(self, satellite_type: str, ids: Iterable[UUID]) -> dict[UUID, str]:
        model = _SATELLITE_MODELS.get(satellite_type)
        wanted = list(ids)
        if model is None or not wanted:
            return {}
        result = await self._session.exec(select(model).where(model.id.in_(wanted)))
        return {row.id: row.name for row in result.all()}

    async def upsert_concept(self, owner_id: str, name: str, normalized_name: str) -> Concept:
        try:
            result = await self._session.exec(
                select(Concept).where(
                    Concept.owner_id == owner_id,
                    Concept.normalized_name == normalized_name,
                )
            )
            concept = result.first()
            if concept is None:
                concept = Concept(owner_id=owner_id, name=name, normalized_name=normalized_name)
            else:
                concept.occurrence_count += 1
                concept.name = name
            self._session.add(concept)
            await self._session.commit()
            return concept
        except Exception:
            await self._session.rollback()
            raise

    async def set_concept_parent(self, concept_id: UUID, parent_id: UUID) -> None:
        try:
            await self._session.execute(
                update(Concept).where(Concept.id == concept_id).values(parent_id=parent_id)
            )
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

    async def upsert_entity(
        self,
        owner_id: str,
        name: str,
        normalized_name: str,
        entity_type: str,
    ) -> Entity:
        try:
            result = await self._session.exec(
                select(Entity).where(
                    Entity.owner_id == owner_id,
                    Entity.normalized_name == normalized_name,
                    Entity.entity_type == entity_type,
                )
            )
            entity = result.first()
            if entity is None:
                entity = Entity(
                    owner_id=owner_id,
                    name=name,
                    normalized_name=normalized_name,
                    entity_type=entity_type,
                )
            else:
                entity.occurrence_count += 1
                entity.name = name
                entity.last_seen_at = utc_now()
            self._session.add(entity)
            await self._session.commit()
            return entity
        except Exception:
            await self._session.rollback()
            raise

    async def replace_clusters(self, owner_id: str, drafts: Sequence[ClusterDraft]) -> list[Cluster]:
        """Atomically swap the owner's cluster set for ``drafts``.

        Old clusters and member pointers are removed and the new set written in a
        single commit, so readers observe either the previous or the new set.
        """

        try:
            await self._session.execute(
                update(Item).where(Item.owner_id == owner_id).values(cluster_id=None)
            )
            await self._session.execute(delete(Cluster).where(Cluster.owner_id == owner_id))
            created: list[Cluster] = []
            for draft in drafts:
                centroid = np.asarray(draft.centroid, dtype=float)
                cluster = Cluster(
                    owner_id=owner_id,
                    name=draft.name,
                    description=draft.description,
                    centroid_dim=int(centroid.size),
                    centroid_vector=encode_vector(centroid),
                    item_count=len(draft.member_ids),
                    coherence=float(draft.coherence),
                )
                self._session.add(cluster)
                await self._session.flush()
                if draft.member_ids:
                    await self._session.execute(
                        update(Item)
                        .where(Item.owner_id == owner_id)
                        .where(Item.id.in_(list(draft.member_ids)))
                        .values(cluster_id=cluster.id)
                    )
                created.append(cluster)
            await self._session.commit()
            return created
        except Exception:
            await self._session.rollback()
            raise

    async def list_clusters(self, owner_id: str, limit: Optional[int] = None) -> list[Cluster]:
        stmt = (
            select(Cluster)
            .where(Cluster.owner_id == owner_id)
            .order_by(Cluster.item_count.desc(), Cluster.name)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.exec(stmt)
        return list(result.all())

    async def get_cluster(self, owner_id: str, cluster_id: UUID) -> Cluster | None:
        cluster = await self._session.get(Cluster, cluster_id)
        if cluster is None or cluster.owner_id != owner_id:
            return None
        return cluster

    async def cluster_members(self, cluster_id: UUID) -> list[Item]:
        result = await self._session.exec(
            select(Item).where(Item.cluster_id == cluster_id).order_by(Item.created_at, Item.id)
        )
        return list(result.all())


__all__ = [
    "StoredPosition",
    "EmbeddingRecord",
    "EdgeDraft",
    "ClusterDraft",
    "GraphStore",
]
