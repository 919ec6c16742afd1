from datetime import datetime, timedelta, timezone
from uuid import uuid4

import numpy as np
import pytest

from semantic_graph.services import clustering as clustering_module
from semantic_graph.services.clustering import ClusterService, fallback_label, run_cosine_kmeans, seed_centroids
from semantic_graph.services.labeling import GroupLabel

BASE_TIME = datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)
TOPICS = ["Python packaging", "Mountain hiking", "Sourdough baking"]


class FakeLabeler:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[list[str]] = []

    @property
    def is_configured(self) -> bool:
        return not self.fail

    async def label_group(self, representatives, **_: object) -> GroupLabel:
        self.calls.append(list(representatives))
        if self.fail:
            raise TimeoutError("labeler timed out")
        return GroupLabel(name=f"Topic {len(self.calls)}", description="Generated label")


def _blob_vectors(rng: np.random.Generator, groups: int = 3, per_group: int = 3, dim: int = 6) -> list[np.ndarray]:
    vectors = []
    for group in range(groups):
        for _ in range(per_group):
            vector = np.zeros(dim)
            vector[group] = 1.0
            vector += rng.normal(scale=0.02, size=dim)
            vectors.append(vector)
    return vectors


async def _seed_topics(make_item, owner: str, per_group: int = 3):
    rng = np.random.default_rng(1)
    vectors = _blob_vectors(rng, per_group=per_group)
    items = []
    for index, vector in enumerate(vectors):
        topic = TOPICS[index // per_group]
        items.append(
            await make_item(
                owner,
                vector.tolist(),
                title=f"{topic} notes {index}",
                summary=f"Long form write-up about {topic.lower()} " * 20,
                created_at=BASE_TIME + timedelta(minutes=index),
            )
        )
    return items


def test_run_cosine_kmeans_separates_blobs_deterministically():
    matrix = np.vstack(_blob_vectors(np.random.default_rng(0)))
    first = run_cosine_kmeans(matrix, 3, rng=np.random.default_rng(42))
    second = run_cosine_kmeans(matrix, 3, rng=np.random.default_rng(42))
    assert np.array_equal(first.labels, second.labels)
    assert first.converged
    assert first.iterations <= 50
    groups = {tuple(np.flatnonzero(first.labels == label)) for label in range(3)}
    assert groups == {(0, 1, 2), (3, 4, 5), (6, 7, 8)}
    with pytest.raises(ValueError):
        run_cosine_kmeans(matrix, 10)


def test_seed_centroids_picks_distinct_rows_across_blobs():
    matrix = np.vstack(_blob_vectors(np.random.default_rng(0)))
    for seed in range(20):
        centroids = seed_centroids(matrix, 3, np.random.default_rng(seed))
        rows = [int(np.flatnonzero((matrix == centroid).all(axis=1))[0]) for centroid in centroids]
        assert len(set(rows)) == 3
        assert {row // 3 for row in rows} == {0, 1, 2}


def test_fallback_label_uses_most_frequent_long_word():
    label = fallback_label(["Learning python fast", "Python packaging", "Why PYTHON wins"])
    assert label.name == "Python Cluster"
    assert label.description == "Collection of 3 related items"
    assert fallback_label(["a b c", "the end"]).name == "Untitled Cluster"


@pytest.mark.asyncio
async def test_generate_clusters_finds_coherent_topics(session, make_item):
    owner = "owner-clusters"
    items = await _seed_topics(make_item, owner)
    labeler = FakeLabeler()
    service = ClusterService(labeler=labeler)

    summary = await service.generate_clusters(session, owner, min_cluster_size=3, seed=7)

    assert not summary.degraded
    assert len(summary.clusters) == 3
    assert summary.unclustered_item_ids == []
    expected = {frozenset(item.id for item in items[start : start + 3]) for start in (0, 3, 6)}
    assert {frozenset(cluster.item_ids) for cluster in summary.clusters} == expected
    for cluster in summary.clusters:
        assert 0.8 < cluster.coherence <= 1.0
        assert cluster.label_source == "llm"
        assert cluster.id is not None
    assert len(labeler.calls) == 3
    assert all(len(text.split(": ", 1)[1]) <= 150 for call in labeler.calls for text in call)

    stored = await service.list_clusters(session, owner)
    assert len(stored) == 3
    details = await service.get_cluster_details(session, owner, stored[0].id)
    assert len(details.members) == 3
    assert details.centroid is not None


@pytest.mark.asyncio
async def test_label_failure_uses_frequency_fallback(session, make_item):
    owner = "owner-fallback"
    await _seed_topics(make_item, owner)
    service = ClusterService(labeler=FakeLabeler(fail=True))

    summary = await service.generate_clusters(session, owner, seed=3)

    names = sorted(cluster.name for cluster in summary.clusters)
    assert names == ["Mountain Cluster", "Python Cluster", "Sourdough Cluster"]
    assert all(cluster.label_source == "fallback" for cluster in summary.clusters)
    assert all(cluster.description == "Collection of 3 related items" for cluster in summary.clusters)


@pytest.mark.asyncio
async def test_regeneration_replaces_previous_set(session, make_item):
    owner = "owner-replace"
    await _seed_topics(make_item, owner)
    service = ClusterService(labeler=FakeLabeler())

    first = await service.generate_clusters(session, owner, seed=1)
    second = await service.generate_clusters(session, owner, seed=2)

    stored = await service.list_clusters(session, owner)
    assert len(stored) == len(second.clusters) == 3
    assert {cluster.id for cluster in stored}.isdisjoint({cluster.id for cluster in first.clusters})
    assert sum(cluster.item_count for cluster in stored) == 9


@pytest.mark.asyncio
async def test_too_few_items_clears_clusters(session, make_item):
    owner = "owner-tiny"
    await _seed_topics(make_item, owner)
    service = ClusterService(labeler=FakeLabeler())
    await service.generate_clusters(session, owner, seed=1)

    summary = await service.generate_clusters(session, owner, min_cluster_size=5)

    assert summary.clusters == []
    assert len(summary.unclustered_item_ids) == 9
    assert await service.list_clusters(session, owner) == []


@pytest.mark.asyncio
async def test_compute_failure_keeps_existing_clusters(session, make_item, monkeypatch):
    owner = "owner-degraded"
    await _seed_topics(make_item, owner)
    service = ClusterService(labeler=FakeLabeler())
    await service.generate_clusters(session, owner, seed=1)

    def broken(*_, **__):
        raise FloatingPointError("diverged")

    monkeypatch.setattr(clustering_module, "run_cosine_kmeans", broken)
    summary = await service.generate_clusters(session, owner, seed=1)

    assert summary.degraded
    assert summary.clusters == []
    assert len(await service.list_clusters(session, owner)) == 3


@pytest.mark.asyncio
async def test_unknown_cluster_raises_not_found(session):
    with pytest.raises(ValueError, match="not found"):
        await ClusterService(labeler=FakeLabeler()).get_cluster_details(session, "owner", uuid4())
