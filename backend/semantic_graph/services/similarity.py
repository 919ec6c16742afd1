"""Pairwise similarity between items of one owner.

Classes:
    SimilarItem: Ranked neighbour of a query item, optionally with hybrid score components.
    HybridCandidate: Stage-one candidate carrying the signals used for re-ranking.
    BatchResult: Processed/failed counters from a batch run.
    SimilarityService: Vector and hybrid lookups plus bidirectional `similar_to` persistence.

Functions:
    rank_by_vector(query, candidate_ids, candidates, ...): Threshold and rank candidates by cosine similarity.
    tag_jaccard(left, right): Jaccard overlap of two tag sets.
    temporal_proximity(left, right, decay_days): Exponential decay on the creation-time gap.
    score_hybrid(source, candidates, ...): Weighted multi-signal re-ranking.

Similarity is expressed on ``s = 1 - d / 2`` where ``d`` is cosine distance, so
identical vectors score 1, orthogonal vectors 0.5 and opposite vectors 0.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

import numpy as np
from sqlmodel.ext.asyncio.session import AsyncSession

from semantic_graph.core.clock import as_utc
from semantic_graph.core.config import Settings, get_settings
from semantic_graph.services.store import EdgeDraft, GraphStore
from semantic_graph.services.vectors import (
    cosine_distance_matrix,
    is_zero_vector,
    similarity_from_distance,
    stack_vectors,
)

_LOGGER = logging.getLogger(__name__)

SIMILAR_TO = "similar_to"


@dataclass(slots=True)
class SimilarItem:
    item_id: UUID
    similarity: float
    title: str | None = None
    vector_similarity: float | None = None
    components: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class HybridCandidate:
    item_id: UUID
    vector_similarity: float
    tags: set[str] = field(default_factory=set)
    domain: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class BatchResult:
    processed: int = 0
    failed: int = 0


def rank_by_vector(
    query: np.ndarray,
    candidate_ids: Sequence[UUID],
    candidates: np.ndarray,
    *,
    threshold: float,
    limit: int,
    strict: bool = False,
) -> list[tuple[UUID, float]]:
    """Return ``(id, similarity)`` pairs above ``threshold`` ordered by similarity.

    ``strict`` switches the cut-off from ``>=`` to ``>``. Ties keep the order of
    ``candidate_ids``.
    """

    if limit <= 0 or len(candidate_ids) == 0 or is_zero_vector(query):
        return []
    distances = cosine_distance_matrix(query, candidates)[0]
    scores = similarity_from_distance(distances)
    order = np.argsort(-scores, kind="stable")
    ranked: list[tuple[UUID, float]] = []
    for index in order:
        score = float(scores[index])
        passes = score > threshold if strict else score >= threshold
        if not passes:
            break
        ranked.append((candidate_ids[index], score))
        if len(ranked) >= limit:
            break
    return ranked


def tag_jaccard(left: set[str], right: set[str]) -> float:
    if not left and not right:
        return 0.0
    union = left | right
    return len(left & right) / len(union)


def temporal_proximity(left: datetime | None, right: datetime | None, decay_days: float = 30.0) -> float:
    if left is None or right is None or decay_days <= 0:
        return 0.0
    delta_days = abs((as_utc(left) - as_utc(right)).total_seconds()) / 86400.0
    return math.exp(-delta_days / decay_days)


def score_hybrid(
    source: HybridCandidate,
    candidates: Sequence[HybridCandidate],
    *,
    vector_weight: float = 0.70,
    tag_weight: float = 0.20,
    temporal_weight: float = 0.05,
    domain_weight: float = 0.05,
    decay_days: float = 30.0,
    threshold: float = 0.65,
    limit: int = 20,
) -> list[SimilarItem]:
    scored: list[SimilarItem] = []
    for candidate in candidates:
        tag_score = tag_jaccard(source.tags, candidate.tags)
        temporal = temporal_proximity(source.created_at, candidate.created_at, decay_days)
        same_domain = 1.0 if source.domain and source.domain == candidate.domain else 0.0
        total = (
            vector_weight * candidate.vector_similarity
            + tag_weight * tag_score
            + temporal_weight * temporal
            + domain_weight * same_domain
        )
        if total < threshold:
            continue
        scored.append(
            SimilarItem(
                item_id=candidate.item_id,
                similarity=float(total),
                vector_similarity=float(candidate.vector_similarity),
                components={
                    "vector": float(candidate.vector_similarity),
                    "tags": float(tag_score),
                    "temporal": float(temporal),
                    "domain": same_domain,
                },
            )
        )
    scored.sort(key=lambda item: -item.similarity)
    return scored[:limit]


class SimilarityService:
    def __init__(self, *, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def find_similar(
        self,
        session: AsyncSession,
        owner_id: str,
        item_id: UUID,
        *,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[SimilarItem]:
        threshold = self._settings.similarity_threshold if threshold is None else threshold
        limit = self._settings.similarity_limit if limit is None else limit
        store = GraphStore(session)
        query, others = await self._load(store, owner_id, item_id)
        if query is None or not others:
            return []

        ranked = rank_by_vector(
            query.vector,
            [record.item_id for record in others],
            stack_vectors([record.vector for record in others]),
            threshold=threshold,
            limit=limit,
        )
        titles = {record.item_id: record.title for record in others}
        return [
            SimilarItem(item_id=other_id, similarity=score, title=titles.get(other_id), vector_similarity=score)
            for other_id, score in ranked
        ]

    async def find_similar_hybrid(
        self,
        session: AsyncSession,
        owner_id: str,
        item_id: UUID,
        *,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[SimilarItem]:
        threshold = self._settings.hybrid_threshold if threshold is None else threshold
        limit = self._settings.similarity_limit if limit is None else limit
        store = GraphStore(session)
        query, others = await self._load(store, owner_id, item_id)
        if query is None or not others:
            return []

        wide = rank_by_vector(
            query.vector,
            [record.item_id for record in others],
            stack_vectors([record.vector for record in others]),
            threshold=self._settings.hybrid_candidate_threshold,
            limit=limit * 2,
            strict=True,
        )
        if not wide:
            return []

        by_id = {record.item_id: record for record in others}
        tags = await store.tags_for_items([query.item_id, *(other_id for other_id, _ in wide)])
        source = HybridCandidate(
            item_id=query.item_id,
            vector_similarity=1.0,
            tags=set(tags.get(query.item_id, set())),
            domain=query.domain,
            created_at=query.created_at,
        )
        candidates = [
            HybridCandidate(
                item_id=other_id,
                vector_similarity=score,
                tags=set(tags.get(other_id, set())),
                domain=by_id[other_id].domain,
                created_at=by_id[other_id].created_at,
            )
            for other_id, score in wide
        ]
        results = score_hybrid(
            source,
            candidates,
            vector_weight=self._settings.hybrid_vector_weight,
            tag_weight=self._settings.hybrid_tag_weight,
            temporal_weight=self._settings.hybrid_temporal_weight,
            domain_weight=self._settings.hybrid_domain_weight,
            decay_days=self._settings.temporal_decay_days,
            threshold=threshold,
            limit=limit,
        )
        for result in results:
            result.title = by_id[result.item_id].title
        _LOGGER.debug(
            "Hybrid search for item %s kept %d of %d candidates",
            item_id,
            len(results),
            len(candidates),
        )
        return results

    async def save_similarities(
        self,
        session: AsyncSession,
        owner_id: str,
        item_id: UUID,
        similar: Sequence[SimilarItem],
        *,
        method: str = "vector",
    ) -> int:
        """Persist ``similar`` as `similar_to` edges in both directions.

        Each pair is written in one transaction. Returns the number of pairs
        written; failed pairs are logged and leave no edge in either direction.
        """

        store = GraphStore(session)
        saved = 0
        for entry in similar:
            metadata = {"method": method}
            forward, backward = (
                EdgeDraft(
                    owner_id=owner_id,
                    source_type="item",
                    source_id=source_id,
                    target_type="item",
                    target_id=target_id,
                    relationship_type=SIMILAR_TO,
                    weight=entry.similarity,
                    metadata=metadata,
                )
                for source_id, target_id in ((item_id, entry.item_id), (entry.item_id, item_id))
            )
            try:
                await store.upsert_edge_pair(forward, backward)
                saved += 1
            except Exception:
                _LOGGER.exception("Failed to save similarity %s <-> %s", item_id, entry.item_id)
        _LOGGER.info("Saved %d/%d similarity pairs for item %s", saved, len(similar), item_id)
        return saved

    async def get_similar_from_db(
        self,
        session: AsyncSession,
        owner_id: str,
        item_id: UUID,
        *,
        limit: Optional[int] = None,
    ) -> list[SimilarItem]:
        store = GraphStore(session)
        if await store.get_item(owner_id, item_id) is None:
            raise ValueError(f"Item {item_id} not found")
        edges = await store.list_relationships(
            owner_id,
            source_type="item",
            source_id=item_id,
            target_types=["item"],
            relationship_type=SIMILAR_TO,
            limit=limit or self._settings.similarity_limit,
        )
        items = await store.get_items(edge.target_id for edge in edges)
        return [
            SimilarItem(
                item_id=edge.target_id,
                similarity=float(edge.weight),
                title=items[edge.target_id].title if edge.target_id in items else None,
            )
            for edge in edges
        ]

    async def batch_compute_similarities(
        self,
        session: AsyncSession,
        owner_id: str,
        item_ids: Sequence[UUID],
        *,
        use_hybrid: bool = True,
    ) -> BatchResult:
        result = BatchResult()
        store = GraphStore(session)
        for item_id in item_ids:
            try:
                record = await store.get_embedding(owner_id, item_id)
                if record is None:
                    _LOGGER.warning("Skipping item %s: no embedding for owner %s", item_id, owner_id)
                    result.failed += 1
                    continue
                if use_hybrid:
                    similar = await self.find_similar_hybrid(session, owner_id, item_id)
                else:
                    similar = await self.find_similar(session, owner_id, item_id)
                if similar:
                    await self.save_similarities(
                        session,
                        owner_id,
                        item_id,
                        similar,
                        method="hybrid" if use_hybrid else "vector",
                    )
                result.processed += 1
            except Exception:
                _LOGGER.exception("Similarity computation failed for item %s", item_id)
                result.failed += 1
        _LOGGER.info(
            "Batch similarity for owner %s: %d processed, %d failed",
            owner_id,
            result.processed,
            result.failed,
        )
        return result

    async def _load(self, store: GraphStore, owner_id: str, item_id: UUID):
        if await store.get_item(owner_id, item_id) is None:
            raise ValueError(f"Item {item_id} not found")
        records = await store.list_embeddings(owner_id)
        query = next((record for record in records if record.item_id == item_id), None)
        if query is None or is_zero_vector(query.vector):
            _LOGGER.warning("Item %s has no usable embedding; returning no neighbours", item_id)
            return None, []
        others = [
            record
            for record in records
            if record.item_id != item_id and record.vector.shape == query.vector.shape
        ]
        return query, others


__all__ = [
    "SIMILAR_TO",
    "SimilarItem",
    "HybridCandidate",
    "BatchResult",
    "rank_by_vector",
    "tag_jaccard",
    "temporal_proximity",
    "score_hybrid",
    "SimilarityService",
]
