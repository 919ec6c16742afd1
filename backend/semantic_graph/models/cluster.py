"""Topic cluster ORM model definition.

Classes:
    Cluster: Stores a labelled group of an owner's items with its centroid vector and coherence.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, LargeBinary, Text
from sqlmodel import Field, SQLModel

from semantic_graph.core.clock import utc_now


class Cluster(SQLModel, table=True):
    __tablename__ = "clusters"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(index=True)
    name: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    centroid_dim: int = 0
    centroid_vector: Optional[bytes] = Field(default=None, sa_column=Column(LargeBinary))
    item_count: int = 0
    coherence: float = 0.0
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
