from uuid import uuid4

import pytest
from sqlmodel import select

from semantic_graph.models import Concept, Entity
from semantic_graph.services.graph_builder import (
    ConceptGraphBuilder,
    ConceptInput,
    EntityInput,
    EntityType,
    coerce_entity_type,
    normalize_concept_name,
    normalize_entity_name,
)
from semantic_graph.services.store import GraphStore


def test_concept_names_are_normalised():
    assert normalize_concept_name("  Machine   Learning ") == "machine learning"
    assert normalize_concept_name("Topic") is None
    assert normalize_concept_name("x") is None
    assert normalize_concept_name(None) is None


def test_entity_names_follow_type_rules():
    assert normalize_entity_name("ada  lovelace", EntityType.PERSON) == "Ada Lovelace"
    assert normalize_entity_name("new YORK", EntityType.LOCATION) == "New York"
    assert normalize_entity_name("OpenAI", EntityType.COMPANY) == "OpenAI"
    assert normalize_entity_name("API", EntityType.TECHNOLOGY) is None
    assert coerce_entity_type("Organization") is EntityType.COMPANY
    assert coerce_entity_type("gadget") is EntityType.TECHNOLOGY


@pytest.mark.asyncio
async def test_save_concepts_links_parents_in_second_pass(session, make_item):
    owner = "owner-concepts"
    item = await make_item(owner, [1.0, 0.0])
    builder = ConceptGraphBuilder()

    created = await builder.save_concepts(
        session,
        owner,
        item.id,
        [
            ConceptInput(name="Neural Networks", relevance=0.6, parent="Machine Learning"),
            ConceptInput(name="machine learning", relevance=0.9),
            ConceptInput(name="neural  networks", relevance=0.8),
            ConceptInput(name="Quantum Widgets", relevance=0.4, parent="Unlisted Parent"),
            ConceptInput(name="stuff", relevance=1.0),
        ],
    )

    assert set(created) == {"neural networks", "machine learning", "quantum widgets"}
    child = await session.get(Concept, created["neural networks"])
    assert child.parent_id == created["machine learning"]
    orphan = await session.get(Concept, created["quantum widgets"])
    assert orphan.parent_id is None

    store = GraphStore(session)
    about = await store.list_relationships(owner, source_id=item.id, relationship_type="about")
    weights = {edge.target_id: edge.weight for edge in about}
    assert weights[created["neural networks"]] == pytest.approx(0.8)
    hierarchy = await store.list_relationships(owner, source_type="concept", relationship_type="related_to")
    assert [(edge.source_id, edge.target_id, edge.weight) for edge in hierarchy] == [
        (created["neural networks"], created["machine learning"], 1.0)
    ]

    again = await builder.save_concepts(session, owner, item.id, [ConceptInput(name="Machine Learning")])
    assert again == {"machine learning": created["machine learning"]}
    refreshed = await session.get(Concept, created["machine learning"])
    assert refreshed.occurrence_count == 2


@pytest.mark.asyncio
async def test_save_entities_upserts_and_writes_mentions(session, make_item):
    owner = "owner-entities"
    item = await make_item(owner, [1.0, 0.0])
    builder = ConceptGraphBuilder()

    result = await builder.save_entities(
        session,
        owner,
        item.id,
        [
            EntityInput(text="grace hopper", entity_type="person", confidence=0.9, mentions=2),
            EntityInput(text="Grace  Hopper", entity_type=EntityType.PERSON, confidence=0.7, mentions=1),
            EntityInput(text="PostgreSQL", entity_type="database"),
            EntityInput(text="server", entity_type="technology"),
        ],
    )

    assert result.saved == 2
    assert result.failed == 0
    rows = (await session.exec(select(Entity).where(Entity.owner_id == owner))).all()
    assert {(row.normalized_name, row.entity_type) for row in rows} == {
        ("Grace Hopper", "person"),
        ("PostgreSQL", "technology"),
    }
    mentions = await GraphStore(session).list_relationships(owner, relationship_type="mentions")
    assert len(mentions) == 2
    assert max(edge.weight for edge in mentions) == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_builder_rejects_unknown_item(session):
    with pytest.raises(ValueError, match="not found"):
        await ConceptGraphBuilder().save_concepts(session, "owner", uuid4(), [ConceptInput(name="Graphs")])
