"""Persist extracted concepts and entities as satellite nodes of an item.

Classes:
    EntityType: Supported entity categories.
    ConceptInput: Concept extracted for an item, with an optional parent concept name.
    EntityInput: Entity mention extracted for an item.
    SaveResult: Counters returned by the save operations.
    ConceptGraphBuilder: Two-pass concept writer and single-pass entity writer.

Functions:
    normalize_concept_name(name): Lowercased, whitespace-collapsed concept key or None.
    normalize_entity_name(text, entity_type): Cleaned entity key or None.
    coerce_entity_type(value): Map free-form type strings onto EntityType.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence
from uuid import UUID

from sqlmodel.ext.asyncio.session import AsyncSession

from semantic_graph.services.store import EdgeDraft, GraphStore

_LOGGER = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

GENERIC_CONCEPTS = frozenset(
    {"topic", "concept", "idea", "thing", "stuff", "content", "information", "data"}
)
GENERIC_ENTITIES = frozenset(
    {"user", "system", "data", "code", "app", "software", "website", "api", "database", "server", "client"}
)


class EntityType(str, Enum):
    PERSON = "person"
    COMPANY = "company"
    TECHNOLOGY = "technology"
    LOCATION = "location"
    PRODUCT = "product"


_ENTITY_TYPE_ALIASES = {
    "person": EntityType.PERSON,
    "people": EntityType.PERSON,
    "company": EntityType.COMPANY,
    "organization": EntityType.COMPANY,
    "org": EntityType.COMPANY,
    "technology": EntityType.TECHNOLOGY,
    "tech": EntityType.TECHNOLOGY,
    "framework": EntityType.TECHNOLOGY,
    "library": EntityType.TECHNOLOGY,
    "language": EntityType.TECHNOLOGY,
    "product": EntityType.PRODUCT,
    "software": EntityType.PRODUCT,
    "app": EntityType.PRODUCT,
    "service": EntityType.PRODUCT,
    "location": EntityType.LOCATION,
    "place": EntityType.LOCATION,
    "city": EntityType.LOCATION,
    "country": EntityType.LOCATION,
}


@dataclass(slots=True)
class ConceptInput:
    name: str
    relevance: float = 1.0
    parent: Optional[str] = None
    confidence: float = 0.85


@dataclass(slots=True)
class EntityInput:
    text: str
    entity_type: EntityType | str
    confidence: float = 0.85
    mentions: int = 0
    context: Optional[str] = None


@dataclass(slots=True)
class SaveResult:
    saved: int = 0
    failed: int = 0


def normalize_concept_name(name: str | None) -> str | None:
    cleaned = (name or "").strip()
    if len(cleaned) < 2:
        return None
    cleaned = cleaned.lower()
    if cleaned in GENERIC_CONCEPTS:
        return None
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def coerce_entity_type(value: EntityType | str) -> EntityType:
    if isinstance(value, EntityType):
        return value
    return _ENTITY_TYPE_ALIASES.get(str(value).strip().lower(), EntityType.TECHNOLOGY)


def _title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split(" "))


def normalize_entity_name(text: str | None, entity_type: EntityType) -> str | None:
    cleaned = (text or "").strip()
    if len(cleaned) < 2 or cleaned.lower() in GENERIC_ENTITIES:
        return None
    cleaned = _WHITESPACE_RE.sub(" ", cleaned)
    if entity_type in (EntityType.PERSON, EntityType.LOCATION):
        cleaned = _title_case(cleaned)
    return cleaned


class ConceptGraphBuilder:
    """Writes concept and entity nodes plus their edges for one item."""

    async def save_concepts(
        self,
        session: AsyncSession,
        owner_id: str,
        item_id: UUID,
        concepts: Sequence[ConceptInput],
    ) -> dict[str, UUID]:
        """Upsert ``concepts`` and wire their hierarchy.

        Pass one writes every concept with an ``about`` edge from the item and
        collects ``normalized_name -> id``. Pass two points each child at its
        parent (``parent_id`` plus a ``related_to`` edge) when both were written.
        """

        merged: dict[str, tuple[ConceptInput, Optional[str]]] = {}
        for concept in concepts:
            key = normalize_concept_name(concept.name)
            if key is None:
                continue
            parent_key = normalize_concept_name(concept.parent) if concept.parent else None
            existing = merged.get(key)
            if existing is None:
                merged[key] = (
                    ConceptInput(
                        name=concept.name.strip(),
                        relevance=concept.relevance,
                        parent=concept.parent,
                        confidence=concept.confidence,
                    ),
                    parent_key,
                )
            else:
                existing[0].relevance = max(existing[0].relevance, concept.relevance)

        store = GraphStore(session)
        if await store.get_item(owner_id, item_id) is None:
            raise ValueError(f"Item {item_id} not found")
        if not merged:
            _LOGGER.info("No concepts to save for item %s", item_id)
            return {}

        created: dict[str, UUID] = {}
        for key, (concept, _) in merged.items():
            try:
                row = await store.upsert_concept(owner_id, concept.name, key)
                created[key] = row.id
                await store.upsert_relationship_edge(
                    EdgeDraft(
                        owner_id=owner_id,
                        source_type="item",
                        source_id=item_id,
                        target_type="concept",
                        target_id=row.id,
                        relationship_type="about",
                        weight=concept.relevance,
                        metadata={"confidence": concept.confidence},
                    )
                )
            except Exception:
                _LOGGER.exception("Failed to save concept %r for item %s", concept.name, item_id)

        for key, (concept, parent_key) in merged.items():
            if not parent_key:
                continue
            child_id = created.get(key)
            parent_id = created.get(parent_key)
            if child_id is None or parent_id is None or child_id == parent_id:
                _LOGGER.warning("Cannot link concept %r to parent %r (missing ids)", concept.name, concept.parent)
                continue
            try:
                await store.set_concept_parent(child_id, parent_id)
                await store.upsert_relationship_edge(
                    EdgeDraft(
                        owner_id=owner_id,
                        source_type="concept",
                        source_id=child_id,
                        target_type="concept",
                        target_id=parent_id,
                        relationship_type="related_to",
                        weight=1.0,
                        metadata={"hierarchy_type": "parent-child"},
                    )
                )
            except Exception:
                _LOGGER.exception("Failed to link concept %r to parent %r", concept.name, concept.parent)

        _LOGGER.info("Saved %d/%d concepts for item %s", len(created), len(merged), item_id)
        return created

    async def save_entities(
        self,
        session: AsyncSession,
        owner_id: str,
        item_id: UUID,
        entities: Sequence[EntityInput],
    ) -> SaveResult:
        result = SaveResult()
        merged: dict[tuple[str, EntityType], EntityInput] = {}
        for entity in entities:
            entity_type = coerce_entity_type(entity.entity_type)
            key = normalize_entity_name(entity.text, entity_type)
            if key is None:
                continue
            existing = merged.get((key, entity_type))
            if existing is None:
                merged[(key, entity_type)] = EntityInput(
                    text=entity.text.strip(),
                    entity_type=entity_type,
                    confidence=entity.confidence,
                    mentions=entity.mentions,
                    context=entity.context,
                )
            else:
                existing.mentions += entity.mentions
                existing.confidence = max(existing.confidence, entity.confidence)

        store = GraphStore(session)
        if await store.get_item(owner_id, item_id) is None:
            raise ValueError(f"Item {item_id} not found")
        for (key, entity_type), entity in merged.items():
            try:
                row = await store.upsert_entity(owner_id, entity.text, key, entity_type.value)
                await store.upsert_relationship_edge(
                    EdgeDraft(
                        owner_id=owner_id,
                        source_type="item",
                        source_id=item_id,
                        target_type="entity",
                        target_id=row.id,
                        relationship_type="mentions",
                        weight=entity.confidence,
                        metadata={"mentions": entity.mentions, "context": entity.context},
                    )
                )
                result.saved += 1
            except Exception:
                result.failed += 1
                _LOGGER.exception("Failed to save entity %r for item %s", entity.text, item_id)

        _LOGGER.info("Saved %d entities for item %s (%d failed)", result.saved, item_id, result.failed)
        return result


__all__ = [
    "EntityType",
    "ConceptInput",
    "EntityInput",
    "SaveResult",
    "ConceptGraphBuilder",
    "normalize_concept_name",
    "normalize_entity_name",
    "coerce_entity_type",
    "GENERIC_CONCEPTS",
    "GENERIC_ENTITIES",
]
