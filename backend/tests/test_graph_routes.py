import math
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest


def _at_cosine(cosine: float) -> list[float]:
    return [cosine, math.sqrt(max(0.0, 1.0 - cosine**2)), 0.0]


@pytest.mark.asyncio
async def test_health_endpoint(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_positions_endpoint_places_items_and_satellites(client, make_item):
    owner = "owner-http"
    base = datetime(2024, 2, 1, tzinfo=timezone.utc)
    items = [
        await make_item(owner, _at_cosine(0.9 - 0.1 * index), title=f"Item {index}", created_at=base + timedelta(minutes=index))
        for index in range(3)
    ]
    saved = await client.post(
        f"/owners/{owner}/items/{items[0].id}/concepts",
        json={"concepts": [{"name": "Graph Layouts", "relevance": 0.7}]},
    )
    assert saved.status_code == 201
    assert saved.json()["saved"] == 1

    response = await client.get(f"/owners/{owner}/positions")
    assert response.status_code == 200
    payload = response.json()
    assert payload["total_items"] == 3
    assert payload["strategy"] == "fallback"
    assert {entry["item_id"] for entry in payload["items"]} == {str(item.id) for item in items}
    assert len(payload["satellites"]) == 1
    satellite = payload["satellites"][0]
    assert satellite["type"] == "concept"
    assert satellite["name"] == "Graph Layouts"
    assert satellite["connected_item_ids"] == [str(items[0].id)]

    again = (await client.get(f"/owners/{owner}/positions")).json()
    assert again["newly_positioned"] == 0
    first_coords = {entry["item_id"]: (entry["x"], entry["y"]) for entry in payload["items"]}
    second_coords = {entry["item_id"]: (entry["x"], entry["y"]) for entry in again["items"]}
    assert first_coords == second_coords


@pytest.mark.asyncio
async def test_similarity_endpoints(client, make_item):
    owner = "owner-http-sim"
    source = await make_item(owner, [1.0, 0.0, 0.0], title="Source", tags=["graphs"])
    neighbour = await make_item(owner, _at_cosine(0.9), title="Neighbour", tags=["graphs"])
    await make_item(owner, [0.0, 0.0, 1.0], title="Unrelated")

    response = await client.get(f"/owners/{owner}/items/{source.id}/similar", params={"mode": "vector"})
    assert response.status_code == 200
    payload = response.json()
    assert [entry["item_id"] for entry in payload["results"]] == [str(neighbour.id)]
    assert payload["saved"] == 0
    assert (await client.get(f"/owners/{owner}/items/{neighbour.id}/similar/stored")).json() == []

    saved = await client.post(f"/owners/{owner}/items/{source.id}/similarities", json={"mode": "vector"})
    assert saved.status_code == 200
    assert saved.json()["saved"] == 1
    assert [entry["item_id"] for entry in saved.json()["results"]] == [str(neighbour.id)]

    stored = await client.get(f"/owners/{owner}/items/{neighbour.id}/similar/stored")
    assert stored.status_code == 200
    assert [entry["item_id"] for entry in stored.json()] == [str(source.id)]

    hybrid = await client.get(f"/owners/{owner}/items/{source.id}/similar")
    assert hybrid.status_code == 200
    assert hybrid.json()["mode"] == "hybrid"
    assert hybrid.json()["results"][0]["components"]["tags"] == pytest.approx(1.0)

    missing = await client.get(f"/owners/{owner}/items/{uuid4()}/similar")
    assert missing.status_code == 404

    invalid = await client.get(f"/owners/{owner}/items/{source.id}/similar", params={"threshold": 2})
    assert invalid.status_code == 422

    batch = await client.post(
        f"/owners/{owner}/similarities/batch",
        json={"item_ids": [str(source.id), str(uuid4())], "use_hybrid": False},
    )
    assert batch.status_code == 200
    assert batch.json() == {"processed": 1, "failed": 1}


@pytest.mark.asyncio
async def test_cluster_endpoints(client, make_item):
    owner = "owner-http-clusters"
    for group in range(2):
        for index in range(3):
            vector = [0.0, 0.0, 0.0, 0.0]
            vector[group] = 1.0
            vector[2] = 0.01 * index
            await make_item(owner, vector, title=f"{'Rust' if group == 0 else 'Gardening'} article {index}")

    created = await client.post(f"/owners/{owner}/clusters", json={"min_cluster_size": 3, "seed": 4})
    assert created.status_code == 200
    payload = created.json()
    assert payload["degraded"] is False
    assert sorted(cluster["name"] for cluster in payload["clusters"]) == ["Gardening Cluster", "Rust Cluster"]
    assert all(cluster["label_source"] == "fallback" for cluster in payload["clusters"])

    listing = await client.get(f"/owners/{owner}/clusters")
    assert listing.status_code == 200
    clusters = listing.json()
    assert len(clusters) == 2

    detail = await client.get(f"/owners/{owner}/clusters/{clusters[0]['id']}")
    assert detail.status_code == 200
    assert len(detail.json()["members"]) == 3

    assert (await client.get(f"/owners/{owner}/clusters/{uuid4()}")).status_code == 404
    assert (await client.get(f"/owners/someone-else/clusters/{clusters[0]['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_entity_endpoint_rejects_unknown_item(client):
    response = await client.post(
        f"/owners/owner-x/items/{uuid4()}/entities",
        json={"entities": [{"text": "Linus Torvalds", "type": "person"}]},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_save_similarities_endpoint_rejects_unknown_item(client):
    response = await client.post(f"/owners/owner-y/items/{uuid4()}/similarities", json={})
    assert response.status_code == 404
