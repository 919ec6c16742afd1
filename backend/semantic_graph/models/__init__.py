"""Convenience exports for ORM models.

Surface the SQLModel tables so calling code can import them from a single module.
"""

from .cluster import Cluster
from .item import Item, ItemTag
from .relationship import Relationship
from .concept import Concept, Entity

__all__ = [
    "Cluster",
    "Item",
    "ItemTag",
    "Relationship",
    "Concept",
    "Entity",
]
