"""Satellite placement around positioned items.

Concepts and entities have no embedding of their own, so they are placed
relative to the items that reference them: a single connection puts the
satellite on a ring around its item, several connections pull it towards the
weighted centre of its strongest items. A final sweep nudges satellites that
land on top of each other.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping, Sequence
from uuid import UUID

import numpy as np
from sqlmodel.ext.asyncio.session import AsyncSession

from semantic_graph.core.config import Settings, get_settings
from semantic_graph.services.projection import CanvasSpec
from semantic_graph.services.store import GraphStore

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SatelliteEdge:
    anchor_id: UUID
    satellite_id: UUID
    satellite_type: str
    weight: float | None = None


@dataclass(slots=True)
class SatellitePosition:
    satellite_id: UUID
    satellite_type: str
    x: float
    y: float
    connected_anchor_ids: list[UUID] = field(default_factory=list)
    name: str | None = None


def _effective_weight(weight: float | None, default_weight: float) -> float:
    if weight is None or not math.isfinite(weight) or weight <= 0:
        return default_weight
    return float(weight)


def _cap_fanout(
    edges: Sequence[SatelliteEdge],
    fanout: int,
    default_weight: float,
) -> list[SatelliteEdge]:
    by_anchor: dict[tuple[UUID, str], list[SatelliteEdge]] = defaultdict(list)
    for edge in edges:
        by_anchor[(edge.anchor_id, edge.satellite_type)].append(edge)
    kept: list[SatelliteEdge] = []
    for group in by_anchor.values():
        group.sort(key=lambda edge: -_effective_weight(edge.weight, default_weight))
        kept.extend(group[:fanout])
    return kept


def _resolve_collisions(
    points: np.ndarray,
    min_separation: float,
    jitter: float,
    rng: np.random.Generator,
) -> np.ndarray:
    # single pass, later satellite moves
    for i in range(len(points)):
        for j in range(i + 1, len(points)):
            distance = float(np.hypot(*(points[i] - points[j])))
            if distance < min_separation:
                points[j] = points[j] + rng.uniform(-jitter, jitter, size=2)
    return points


def resolve_satellite_positions(
    anchor_positions: Mapping[UUID, tuple[float, float]],
    edges: Sequence[SatelliteEdge],
    *,
    distances: Mapping[str, float],
    canvas: CanvasSpec | None = None,
    fanout: int = 10,
    top_anchors: int = 5,
    min_separation: float = 100.0,
    collision_jitter: float = 25.0,
    default_weight: float = 0.5,
    rng: np.random.Generator | None = None,
) -> list[SatellitePosition]:
    """Compute satellite positions from item positions and item->satellite edges.

    Edges whose satellite type has no configured distance are ignored. The
    returned list preserves the order in which satellites first appear in
    ``edges``.
    """

    canvas = canvas or CanvasSpec()
    rng = rng or np.random.default_rng()
    center = canvas.center

    usable = [edge for edge in edges if edge.satellite_type in distances]
    capped = _cap_fanout(usable, fanout, default_weight)

    connections: dict[tuple[str, UUID], list[SatelliteEdge]] = {}
    for edge in usable:
        connections.setdefault((edge.satellite_type, edge.satellite_id), [])
    for edge in capped:
        connections[(edge.satellite_type, edge.satellite_id)].append(edge)

    resolved: list[SatellitePosition] = []
    for (satellite_type, satellite_id), linked in connections.items():
        if not linked:
            continue
        linked.sort(key=lambda edge: -_effective_weight(edge.weight, default_weight))
        anchor_ids = [edge.anchor_id for edge in linked]

        if len(linked) == 1:
            anchor = anchor_positions.get(linked[0].anchor_id)
            if anchor is None:
                x, y = center
            else:
                angle = rng.uniform(0.0, 2.0 * math.pi)
                radius = float(distances[satellite_type])
                x = anchor[0] + radius * math.cos(angle)
                y = anchor[1] + radius * math.sin(angle)
        else:
            coords: list[tuple[float, float]] = []
            weights: list[float] = []
            for edge in linked[:top_anchors]:
                anchor = anchor_positions.get(edge.anchor_id)
                if anchor is None:
                    continue
                coords.append(anchor)
                weights.append(_effective_weight(edge.weight, default_weight))
            total = sum(weights)
            if not coords or total <= 0:
                x, y = center
            else:
                x = sum(c[0] * w for c, w in zip(coords, weights)) / total
                y = sum(c[1] * w for c, w in zip(coords, weights)) / total

        resolved.append(
            SatellitePosition(
                satellite_id=satellite_id,
                satellite_type=satellite_type,
                x=float(x),
                y=float(y),
                connected_anchor_ids=anchor_ids,
            )
        )

    if len(resolved) > 1:
        points = np.array([(pos.x, pos.y) for pos in resolved], dtype=float)
        points = _resolve_collisions(points, min_separation, collision_jitter, rng)
        for pos, (x, y) in zip(resolved, points):
            pos.x = float(x)
            pos.y = float(y)
    return resolved


class RadialLayoutService:
    def __init__(self, *, settings: Settings | None = None, rng: np.random.Generator | None = None) -> None:
        self._settings = settings or get_settings()
        self._canvas = CanvasSpec.from_settings(self._settings)
        self._rng = rng or np.random.default_rng()

    async def compute_positions(
        self,
        session: AsyncSession,
        owner_id: str,
        anchor_positions: Mapping[UUID, tuple[float, float]],
    ) -> list[SatellitePosition]:
        store = GraphStore(session)
        distances = self._settings.radial_distances
        relationships = await store.list_relationships(
            owner_id,
            source_type="item",
            target_types=list(distances),
        )
        edges = [
            SatelliteEdge(
                anchor_id=rel.source_id,
                satellite_id=rel.target_id,
                satellite_type=rel.target_type,
                weight=rel.weight,
            )
            for rel in relationships
        ]
        positions = resolve_satellite_positions(
            anchor_positions,
            edges,
            distances=distances,
            canvas=self._canvas,
            fanout=self._settings.radial_fanout,
            top_anchors=self._settings.radial_top_anchors,
            min_separation=self._settings.radial_min_separation,
            collision_jitter=self._settings.radial_collision_jitter,
            default_weight=self._settings.radial_default_weight,
            rng=self._rng,
        )

        for satellite_type in distances:
            ids = [pos.satellite_id for pos in positions if pos.satellite_type == satellite_type]
            names = await store.satellite_names(satellite_type, ids)
            for pos in positions:
                if pos.satellite_type == satellite_type:
                    pos.name = names.get(pos.satellite_id)

        _LOGGER.info(
            "Resolved %d satellite positions for owner %s from %d edges",
            len(positions),
            owner_id,
            len(edges),
        )
        return positions


__all__ = [
    "SatelliteEdge",
    "SatellitePosition",
    "resolve_satellite_positions",
    "RadialLayoutService",
]
