"""Topic clustering over an owner's embeddings.

Classes:
    KMeansResult: Labels and centroids from a cosine k-means run.
    ClusterResult: One persisted cluster with its members.
    ClusteringSummary: Outcome of a regeneration for an owner.
    ClusterDetails: Read-side view of a cluster and its member items.
    ClusterService: Regenerates, names, and persists clusters; serves cluster reads.

Functions:
    seed_centroids(matrix, k, rng): Distinct starting rows sampled by squared cosine distance.
    run_cosine_kmeans(matrix, k, ...): Relocation clustering with cosine-distance assignment.
    cluster_coherence(members, centroid): Mean member-to-centroid cosine similarity in [0, 1].
    fallback_label(titles, size): Deterministic name from the most frequent title word.
"""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Sequence
from uuid import UUID

import numpy as np
from sqlmodel.ext.asyncio.session import AsyncSession

from semantic_graph.core.config import Settings, get_settings
from semantic_graph.services.labeling import GroupLabel, OpenAIService
from semantic_graph.services.store import ClusterDraft, EmbeddingRecord, GraphStore
from semantic_graph.services.vectors import (
    cosine_distance_matrix,
    cosine_similarity_matrix,
    decode_vector,
    stack_vectors,
)

_LOGGER = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[A-Za-z0-9][\w'-]*")
_SNIPPET_CHARS = 150


@dataclass(slots=True)
class KMeansResult:
    labels: np.ndarray
    centroids: np.ndarray
    iterations: int
    converged: bool


@dataclass(slots=True)
class ClusterResult:
    id: UUID | None
    name: str
    description: str | None
    item_ids: list[UUID]
    coherence: float
    label_source: str = "llm"

    @property
    def item_count(self) -> int:
        return len(self.item_ids)


@dataclass(slots=True)
class ClusteringSummary:
    owner_id: str
    clusters: list[ClusterResult] = field(default_factory=list)
    unclustered_item_ids: list[UUID] = field(default_factory=list)
    total_items: int = 0
    degraded: bool = False
    compute_time_ms: float = 0.0


@dataclass(slots=True)
class ClusterDetails:
    id: UUID
    name: str
    description: str | None
    item_count: int
    coherence: float
    members: list[tuple[UUID, str]] = field(default_factory=list)
    centroid: np.ndarray | None = None


def seed_centroids(matrix: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    """Pick `k` distinct rows, each drawn with probability proportional to its
    squared cosine distance from the rows already chosen."""

    count = matrix.shape[0]
    chosen = [int(rng.integers(count))]
    nearest = cosine_distance_matrix(matrix, matrix[chosen[0]])[:, 0]
    while len(chosen) < k:
        weights = np.clip(nearest, 0.0, None) ** 2
        weights[chosen] = 0.0
        total = float(weights.sum())
        if total <= 0.0:
            remaining = np.setdiff1d(np.arange(count), chosen)
            index = int(rng.choice(remaining))
        else:
            index = int(rng.choice(count, p=weights / total))
        chosen.append(index)
        nearest = np.minimum(nearest, cosine_distance_matrix(matrix, matrix[index])[:, 0])
    return matrix[chosen].copy()


def run_cosine_kmeans(
    matrix: np.ndarray,
    k: int,
    *,
    max_iterations: int = 50,
    rng: np.random.Generator | None = None,
) -> KMeansResult:
    """Cluster rows of ``matrix`` into ``k`` groups by cosine distance.

    Centroids start from ``k`` distinct rows sampled k-means++ style and are
    recomputed as the coordinate-wise mean of their members. A centroid that
    loses all members keeps its previous value. Iteration stops once the
    assignment no longer changes or ``max_iterations`` is reached.
    """

    data = np.asarray(matrix, dtype=float)
    if data.ndim != 2 or data.shape[0] == 0:
        raise ValueError("run_cosine_kmeans expects a non-empty 2D matrix")
    if not 1 <= k <= data.shape[0]:
        raise ValueError(f"k must be between 1 and {data.shape[0]}, got {k}")
    rng = rng or np.random.default_rng()

    centroids = seed_centroids(data, k, rng)
    labels = np.full(data.shape[0], -1, dtype=int)
    iterations = 0
    converged = False
    while iterations < max_iterations:
        iterations += 1
        updated = np.argmin(cosine_distance_matrix(data, centroids), axis=1)
        if np.array_equal(updated, labels):
            converged = True
            break
        labels = updated
        for cluster_index in range(k):
            members = data[labels == cluster_index]
            if members.shape[0]:
                centroids[cluster_index] = members.mean(axis=0)
    return KMeansResult(labels=labels, centroids=centroids, iterations=iterations, converged=converged)


def cluster_coherence(members: np.ndarray, centroid: np.ndarray) -> float:
    if members.shape[0] == 0:
        return 0.0
    similarities = cosine_similarity_matrix(members, centroid)[:, 0]
    return float(np.clip(similarities.mean(), 0.0, 1.0))


def fallback_label(titles: Sequence[str], size: int | None = None) -> GroupLabel:
    counts: Counter[str] = Counter()
    display: dict[str, str] = {}
    for title in titles:
        for word in _WORD_RE.findall(title or ""):
            if len(word) <= 3:
                continue
            key = word.lower()
            counts[key] += 1
            display.setdefault(key, word)
    size = len(titles) if size is None else size
    description = f"Collection of {size} related items"
    if not counts:
        return GroupLabel(name="Untitled Cluster", description=description)
    key, _ = counts.most_common(1)[0]
    word = display[key]
    return GroupLabel(name=f"{word[0].upper()}{word[1:]} Cluster", description=description)


def _representatives(records: Sequence[EmbeddingRecord], centroid: np.ndarray, limit: int) -> list[str]:
    similarities = cosine_similarity_matrix(stack_vectors([record.vector for record in records]), centroid)[:, 0]
    order = np.argsort(-similarities, kind="stable")[:limit]
    snippets: list[str] = []
    for index in order:
        record = records[index]
        text = record.title or "Untitled"
        if record.summary:
            text = f"{text}: {record.summary[:_SNIPPET_CHARS]}"
        snippets.append(text)
    return snippets


class ClusterService:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        labeler: Optional[OpenAIService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._labeler = labeler or OpenAIService(settings=self._settings)

    async def generate_clusters(
        self,
        session: AsyncSession,
        owner_id: str,
        *,
        min_cluster_size: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> ClusteringSummary:
        started = time.perf_counter()
        min_size = max(1, min_cluster_size or self._settings.cluster_min_size)
        store = GraphStore(session)
        records = await store.list_embeddings(owner_id)
        summary = ClusteringSummary(owner_id=owner_id, total_items=len(records))

        if len(records) < 2 * min_size:
            _LOGGER.info(
                "Owner %s has %d items (< %d); clearing clusters",
                owner_id,
                len(records),
                2 * min_size,
            )
            summary.unclustered_item_ids = [record.item_id for record in records]
            try:
                await store.replace_clusters(owner_id, [])
            except Exception:
                _LOGGER.exception("Failed to clear clusters for owner %s", owner_id)
                summary.degraded = True
            return self._finish(summary, started)

        try:
            matrix = stack_vectors([record.vector for record in records])
            k = min(len(records) // min_size, self._settings.cluster_max_k)
            result = run_cosine_kmeans(
                matrix,
                k,
                max_iterations=self._settings.cluster_max_iterations,
                rng=np.random.default_rng(seed),
            )
        except Exception:
            _LOGGER.exception("Clustering failed for owner %s; keeping existing clusters", owner_id)
            summary.degraded = True
            return self._finish(summary, started)

        _LOGGER.info(
            "k-means for owner %s: k=%d, %d iterations (converged=%s)",
            owner_id,
            k,
            result.iterations,
            result.converged,
        )

        drafts: list[ClusterDraft] = []
        for cluster_index in range(k):
            member_rows = np.flatnonzero(result.labels == cluster_index)
            members = [records[row] for row in member_rows]
            if len(members) < min_size:
                summary.unclustered_item_ids.extend(record.item_id for record in members)
                continue
            centroid = result.centroids[cluster_index]
            coherence = cluster_coherence(matrix[member_rows], centroid)
            label, source = await self._label(members, centroid)
            drafts.append(
                ClusterDraft(
                    name=label.name,
                    description=label.description,
                    centroid=centroid,
                    member_ids=[record.item_id for record in members],
                    coherence=coherence,
                )
            )
            summary.clusters.append(
                ClusterResult(
                    id=None,
                    name=label.name,
                    description=label.description,
                    item_ids=[record.item_id for record in members],
                    coherence=coherence,
                    label_source=source,
                )
            )

        try:
            created = await store.replace_clusters(owner_id, drafts)
        except Exception:
            _LOGGER.exception("Failed to persist clusters for owner %s; keeping existing clusters", owner_id)
            summary.clusters = []
            summary.unclustered_item_ids = []
            summary.degraded = True
            return self._finish(summary, started)

        for cluster_result, row in zip(summary.clusters, created):
            cluster_result.id = row.id
        return self._finish(summary, started)

    async def list_clusters(self, session: AsyncSession, owner_id: str) -> list[ClusterDetails]:
        store = GraphStore(session)
        clusters = await store.list_clusters(owner_id)
        return [
            ClusterDetails(
                id=cluster.id,
                name=cluster.name,
                description=cluster.description,
                item_count=cluster.item_count,
                coherence=cluster.coherence,
            )
            for cluster in clusters
        ]

    async def get_cluster_details(self, session: AsyncSession, owner_id: str, cluster_id: UUID) -> ClusterDetails:
        store = GraphStore(session)
        cluster = await store.get_cluster(owner_id, cluster_id)
        if cluster is None:
            raise ValueError(f"Cluster {cluster_id} not found")
        members = await store.cluster_members(cluster.id)
        return ClusterDetails(
            id=cluster.id,
            name=cluster.name,
            description=cluster.description,
            item_count=cluster.item_count,
            coherence=cluster.coherence,
            members=[(item.id, item.title) for item in members],
            centroid=decode_vector(cluster.centroid_vector, cluster.centroid_dim),
        )

    async def _label(self, members: Sequence[EmbeddingRecord], centroid: np.ndarray) -> tuple[GroupLabel, str]:
        snippets = _representatives(members, centroid, self._settings.cluster_label_sample)
        try:
            label = await self._labeler.label_group(snippets)
            return label, "llm"
        except Exception as exc:
            _LOGGER.warning("Cluster labelling failed (%s); using frequency label", exc)
            return fallback_label([record.title for record in members]), "fallback"

    def _finish(self, summary: ClusteringSummary, started: float) -> ClusteringSummary:
        summary.compute_time_ms = round((time.perf_counter() - started) * 1000.0, 3)
        _LOGGER.info(
            "Clustering for owner %s finished in %.1fms: %d clusters, %d unclustered, degraded=%s",
            summary.owner_id,
            summary.compute_time_ms,
            len(summary.clusters),
            len(summary.unclustered_item_ids),
            summary.degraded,
        )
        return summary


__all__ = [
    "KMeansResult",
    "ClusterResult",
    "ClusteringSummary",
    "ClusterDetails",
    "ClusterService",
    "seed_centroids",
    "run_cosine_kmeans",
    "cluster_coherence",
    "fallback_label",
]
