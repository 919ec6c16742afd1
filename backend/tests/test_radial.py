import math
from uuid import uuid4

import numpy as np
import pytest

from semantic_graph.services.projection import CanvasSpec
from semantic_graph.services.radial import RadialLayoutService, SatelliteEdge, resolve_satellite_positions
from semantic_graph.services.store import EdgeDraft, GraphStore
from semantic_graph.models import Concept

DISTANCES = {"concept": 400.0, "entity": 500.0}


def _resolve(anchors, edges, **kwargs):
    kwargs.setdefault("rng", np.random.default_rng(5))
    return resolve_satellite_positions(anchors, edges, distances=DISTANCES, **kwargs)


def test_single_connection_sits_on_type_radius():
    anchor = uuid4()
    concept = uuid4()
    entity = uuid4()
    anchors = {anchor: (2000.0, 1500.0)}
    positions = _resolve(
        anchors,
        [
            SatelliteEdge(anchor, concept, "concept", 0.9),
            SatelliteEdge(anchor, entity, "entity", 0.4),
        ],
        min_separation=0.0,
    )
    by_id = {pos.satellite_id: pos for pos in positions}
    assert math.hypot(by_id[concept].x - 2000.0, by_id[concept].y - 1500.0) == pytest.approx(400.0)
    assert math.hypot(by_id[entity].x - 2000.0, by_id[entity].y - 1500.0) == pytest.approx(500.0)
    assert by_id[concept].connected_anchor_ids == [anchor]


def test_unknown_anchor_places_satellite_at_canvas_centre():
    concept = uuid4()
    positions = _resolve({}, [SatelliteEdge(uuid4(), concept, "concept", 0.7)])
    assert (positions[0].x, positions[0].y) == CanvasSpec().center


def test_multiple_connections_use_weighted_centroid_with_default_weight():
    a, b, concept = uuid4(), uuid4(), uuid4()
    anchors = {a: (1000.0, 1000.0), b: (2000.0, 1000.0)}
    positions = _resolve(
        anchors,
        [SatelliteEdge(a, concept, "concept", 0.5), SatelliteEdge(b, concept, "concept", 0.0)],
    )
    # zero weight counts as 0.5, so both anchors pull equally
    assert positions[0].x == pytest.approx(1500.0)
    assert positions[0].y == pytest.approx(1000.0)

    weighted = _resolve(
        anchors,
        [SatelliteEdge(a, concept, "concept", 0.9), SatelliteEdge(b, concept, "concept", 0.3)],
    )
    assert weighted[0].x == pytest.approx((1000.0 * 0.9 + 2000.0 * 0.3) / 1.2)


def test_only_top_five_anchors_contribute():
    concept = uuid4()
    anchors = {}
    edges = []
    for index in range(7):
        anchor = uuid4()
        anchors[anchor] = (100.0 * index, 0.0)
        edges.append(SatelliteEdge(anchor, concept, "concept", 0.9 if index < 5 else 0.1))
    positions = _resolve(anchors, edges)
    assert positions[0].x == pytest.approx(200.0)
    assert len(positions[0].connected_anchor_ids) == 7


def test_fanout_caps_satellites_per_anchor_and_type():
    anchor = uuid4()
    edges = [SatelliteEdge(anchor, uuid4(), "concept", (index + 1) / 20.0) for index in range(15)]
    edges.append(SatelliteEdge(anchor, uuid4(), "entity", 0.5))
    positions = _resolve({anchor: (2000.0, 1500.0)}, edges, fanout=10, min_separation=0.0)
    concepts = [pos for pos in positions if pos.satellite_type == "concept"]
    assert len(concepts) == 10
    kept = {pos.satellite_id for pos in concepts}
    strongest = {edge.satellite_id for edge in sorted(edges[:15], key=lambda e: -e.weight)[:10]}
    assert kept == strongest
    assert len([pos for pos in positions if pos.satellite_type == "entity"]) == 1


def test_unconfigured_satellite_types_are_ignored():
    anchor = uuid4()
    positions = _resolve({anchor: (0.0, 0.0)}, [SatelliteEdge(anchor, uuid4(), "tag", 1.0)])
    assert positions == []


def test_collision_pass_nudges_later_overlapping_satellite():
    a, b = uuid4(), uuid4()
    first, second = uuid4(), uuid4()
    anchors = {a: (1000.0, 1000.0), b: (1200.0, 1000.0)}
    edges = [
        SatelliteEdge(a, first, "concept", 0.5),
        SatelliteEdge(b, first, "concept", 0.5),
        SatelliteEdge(a, second, "concept", 0.5),
        SatelliteEdge(b, second, "concept", 0.5),
    ]
    positions = _resolve(anchors, edges, collision_jitter=25.0)
    assert (positions[0].x, positions[0].y) == (1100.0, 1000.0)
    assert (positions[1].x, positions[1].y) != (1100.0, 1000.0)
    assert abs(positions[1].x - 1100.0) <= 25.0
    assert abs(positions[1].y - 1000.0) <= 25.0


@pytest.mark.asyncio
async def test_service_reads_edges_and_names(session, make_item):
    item = await make_item("owner-radial", [1.0, 0.0], title="Vector search")
    concept = Concept(owner_id="owner-radial", name="Embeddings", normalized_name="embeddings")
    session.add(concept)
    await session.commit()
    await GraphStore(session).upsert_relationship_edge(
        EdgeDraft(
            owner_id="owner-radial",
            source_type="item",
            source_id=item.id,
            target_type="concept",
            target_id=concept.id,
            relationship_type="about",
            weight=0.8,
        )
    )

    service = RadialLayoutService(rng=np.random.default_rng(1))
    positions = await service.compute_positions(session, "owner-radial", {item.id: (2000.0, 1500.0)})

    assert len(positions) == 1
    assert positions[0].name == "Embeddings"
    assert positions[0].satellite_type == "concept"
    assert math.hypot(positions[0].x - 2000.0, positions[0].y - 1500.0) == pytest.approx(400.0)
