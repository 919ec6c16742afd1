"""Satellite node models.

Classes:
    Concept: Topic node attached to items, optionally nested under a parent concept.
    Entity: Named entity (person, company, technology, ...) mentioned by items.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from semantic_graph.core.clock import utc_now


class Concept(SQLModel, table=True):
    __tablename__ = "concepts"
    __table_args__ = (
        UniqueConstraint("owner_id", "normalized_name", name="uq_concept_owner_name"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(index=True)
    name: str
    normalized_name: str
    parent_id: Optional[UUID] = Field(default=None, foreign_key="concepts.id")
    occurrence_count: int = 1
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class Entity(SQLModel, table=True):
    __tablename__ = "entities"
    __table_args__ = (
        UniqueConstraint("owner_id", "normalized_name", "entity_type", name="uq_entity_owner_name_type"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(index=True)
    name: str
    normalized_name: str
    entity_type: str
    occurrence_count: int = 1
    first_seen_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    last_seen_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
