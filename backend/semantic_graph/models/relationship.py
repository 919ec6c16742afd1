"""Directed relationship edge model.

Classes:
    Relationship: Weighted edge between two graph nodes, unique on its natural key per owner.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from semantic_graph.core.clock import utc_now


class Relationship(SQLModel, table=True):
    __tablename__ = "relationships"
    __table_args__ = (
        UniqueConstraint(
            "owner_id",
            "source_type",
            "source_id",
            "target_type",
            "target_id",
            "relationship_type",
            name="uq_relationship_natural_key",
        ),
        Index("ix_relationships_source", "owner_id", "source_type", "source_id"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(index=True)
    source_type: str
    source_id: UUID
    target_type: str
    target_id: UUID
    relationship_type: str
    weight: float = Field(default=0.5)
    metadata_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
