"""Embedded content item model.

Classes:
    Item: An owner's content item with its embedding vector and stored map position.
    ItemTag: Tag assignments used for tag-overlap scoring in hybrid similarity.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, LargeBinary, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from semantic_graph.core.clock import utc_now


class Item(SQLModel, table=True):
    __tablename__ = "items"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(index=True)
    title: str = Field(default="")
    summary: Optional[str] = Field(default=None, sa_column=Column(Text))
    url: Optional[str] = None
    domain: Optional[str] = Field(default=None, index=True)
    embedding_dim: Optional[int] = None
    embedding_vector: Optional[bytes] = Field(default=None, sa_column=Column(LargeBinary))
    graph_x: Optional[float] = None
    graph_y: Optional[float] = None
    graph_method: Optional[str] = None
    graph_positioned_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cluster_id: Optional[UUID] = Field(default=None, foreign_key="clusters.id", index=True)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True), index=True)


class ItemTag(SQLModel, table=True):
    __tablename__ = "item_tags"
    __table_args__ = (
        UniqueConstraint("item_id", "tag", name="uq_item_tag"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: UUID = Field(foreign_key="items.id", index=True)
    tag: str
