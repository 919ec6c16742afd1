"""Stable 2D layout for an owner's embedded items.

Items that already carry a stored position keep it forever. Only items that were
never positioned are placed, using one of three strategies:

* ``fallback``: deterministic grid when there are too few items to reduce.
* ``reduced``: UMAP over every embedding of the owner on the first real run,
  seeded from the owner id and rescaled into the canvas.
* ``interpolated``: similarity-weighted centroid of the nearest positioned items
  plus a small jitter once enough geometry exists.

Classes:
    PositionMethod: How a position was obtained.
    CanvasSpec: Fixed canvas rectangle the layout is expressed in.
    ItemPosition: Resolved position for one item.
    ProjectionSummary: Result of a projection pass for an owner.
    ProjectionService: Loads embeddings, places new items, and persists their positions.

Functions:
    owner_seed(owner_id): Stable 32-bit seed derived from an owner id.
    compute_umap_layout(matrix, random_state, ...): Raw 2D UMAP coordinates.
    normalise_to_canvas(coords, canvas): Per-axis rescale of raw coordinates into the padded canvas.
    grid_layout(count, canvas, ...): Deterministic centred grid placement.
    interpolate_positions(...): K-nearest-neighbour placement relative to stored positions.
    shutdown_reduction_executor(): Stop the shared UMAP worker pool (called on app shutdown).
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Callable, Optional, Sequence
from uuid import UUID

import numpy as np
from sqlmodel.ext.asyncio.session import AsyncSession
from umap import UMAP

from semantic_graph.core.clock import utc_now
from semantic_graph.core.config import Settings, get_settings
from semantic_graph.services.store import EmbeddingRecord, GraphStore
from semantic_graph.services.vectors import cosine_similarity_matrix, stack_vectors, weighted_centroid

_LOGGER = logging.getLogger(__name__)

Reducer = Callable[[np.ndarray, int], np.ndarray]

_EXECUTOR: ThreadPoolExecutor | None = None


class PositionMethod(str, Enum):
    REDUCED = "reduced"
    INTERPOLATED = "interpolated"
    FALLBACK = "fallback"
    STORED = "stored"


@dataclass(frozen=True, slots=True)
class CanvasSpec:
    width: float = 4000.0
    height: float = 3000.0
    padding: float = 200.0

    @property
    def center(self) -> tuple[float, float]:
        return self.width / 2.0, self.height / 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "CanvasSpec":
        return cls(
            width=settings.canvas_width,
            height=settings.canvas_height,
            padding=settings.canvas_padding,
        )


@dataclass(slots=True)
class ItemPosition:
    item_id: UUID
    x: float
    y: float
    method: PositionMethod
    computed_at: datetime | None = None


@dataclass(slots=True)
class ProjectionSummary:
    owner_id: str
    positions: list[ItemPosition] = field(default_factory=list)
    total_items: int = 0
    stored_count: int = 0
    newly_positioned: int = 0
    strategy: str | None = None
    failed_writes: int = 0
    compute_time_ms: float = 0.0

    def as_mapping(self) -> dict[UUID, tuple[float, float]]:
        return {position.item_id: (position.x, position.y) for position in self.positions}


def owner_seed(owner_id: str) -> int:
    digest = hashlib.sha256(owner_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big", signed=False)


def compute_umap_layout(
    matrix: np.ndarray,
    random_state: int,
    *,
    n_neighbors: int = 15,
    min_dist: float = 0.3,
    spread: float = 2.5,
    n_epochs: int = 200,
) -> np.ndarray:
    data = np.asarray(matrix, dtype=np.float32)
    count = data.shape[0]
    if count < 3:
        raise ValueError("UMAP needs at least three points")
    reducer = UMAP(
        n_components=2,
        n_neighbors=max(2, min(n_neighbors, count - 1)),
        min_dist=min_dist,
        spread=spread,
        n_epochs=n_epochs,
        metric="cosine",
        random_state=random_state,
    )
    return np.asarray(reducer.fit_transform(data), dtype=float)


def normalise_to_canvas(coords: np.ndarray, canvas: CanvasSpec) -> np.ndarray:
    points = np.asarray(coords, dtype=float)
    if points.size == 0:
        return points.reshape(0, 2)
    usable = np.array(
        [canvas.width - 2 * canvas.padding, canvas.height - 2 * canvas.padding],
        dtype=float,
    )
    lower = points.min(axis=0)
    span = points.max(axis=0) - lower
    scaled = np.empty_like(points)
    for axis in range(2):
        if span[axis] > 0:
            scaled[:, axis] = (points[:, axis] - lower[axis]) / span[axis] * usable[axis] + canvas.padding
        else:
            # a collapsed axis is centred instead of pinned to the padding edge
            scaled[:, axis] = canvas.padding + usable[axis] / 2.0
    return scaled


def grid_layout(
    count: int,
    canvas: CanvasSpec,
    *,
    spacing: float = 200.0,
    start_index: int = 0,
    total: int | None = None,
) -> np.ndarray:
    """Place ``count`` points on a centred grid sized for ``total`` slots.

    Slots ``start_index .. start_index + count - 1`` are returned so items added
    later do not reuse the slots of items placed by an earlier grid pass.
    """

    if count <= 0:
        return np.zeros((0, 2), dtype=float)
    slots = max(total or 0, start_index + count, 1)
    cols = max(1, math.ceil(math.sqrt(slots)))
    rows = max(1, math.ceil(slots / cols))
    usable_w = canvas.width - 2 * canvas.padding
    usable_h = canvas.height - 2 * canvas.padding
    step = min(spacing, usable_w / cols, usable_h / rows)
    center_x, center_y = canvas.center
    points = np.empty((count, 2), dtype=float)
    for offset in range(count):
        index = start_index + offset
        col = index % cols
        row = index // cols
        points[offset, 0] = center_x + (col - (cols - 1) / 2.0) * step
        points[offset, 1] = center_y + (row - (rows - 1) / 2.0) * step
    return points


def interpolate_positions(
    new_vectors: np.ndarray,
    anchor_vectors: np.ndarray,
    anchor_coords: np.ndarray,
    *,
    k: int,
    jitter: float,
    rng: np.random.Generator,
) -> np.ndarray:
    similarities = cosine_similarity_matrix(new_vectors, anchor_vectors)
    neighbours = max(1, min(k, anchor_vectors.shape[0]))
    coords = np.asarray(anchor_coords, dtype=float)
    placed = np.empty((similarities.shape[0], 2), dtype=float)
    for row_index, row in enumerate(similarities):
        nearest = np.argsort(-row, kind="stable")[:neighbours]
        centre = weighted_centroid(coords[nearest], row[nearest])
        offset = rng.uniform(-jitter, jitter, size=2) if jitter > 0 else np.zeros(2)
        placed[row_index] = centre + offset
        _LOGGER.debug(
            "Interpolated item %d from %d neighbours (mean similarity %.3f)",
            row_index,
            neighbours,
            float(row[nearest].mean()),
        )
    return placed


def _reduction_executor(max_workers: int) -> ThreadPoolExecutor:
    global _EXECUTOR
    if _EXECUTOR is None:
        _EXECUTOR = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="umap")
    return _EXECUTOR


def shutdown_reduction_executor() -> None:
    global _EXECUTOR
    if _EXECUTOR is not None:
        _EXECUTOR.shutdown(wait=False, cancel_futures=True)
        _EXECUTOR = None


class ProjectionService:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        reducer: Reducer | None = None,
        rng: np.random.Generator | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._canvas = CanvasSpec.from_settings(self._settings)
        self._reducer = reducer or partial(
            compute_umap_layout,
            n_neighbors=self._settings.umap_n_neighbors,
            min_dist=self._settings.umap_min_dist,
            spread=self._settings.umap_spread,
            n_epochs=self._settings.umap_n_epochs,
        )
        self._rng = rng or np.random.default_rng()
        self._executor = executor

    @property
    def canvas(self) -> CanvasSpec:
        return self._canvas

    async def compute_positions(self, session: AsyncSession, owner_id: str) -> ProjectionSummary:
        started = time.perf_counter()
        store = GraphStore(session)
        records = await store.list_embeddings(owner_id)

        positioned = [record for record in records if record.position is not None]
        pending = [record for record in records if record.position is None]
        _LOGGER.info(
            "Projecting owner %s: %d stored positions, %d items need positioning",
            owner_id,
            len(positioned),
            len(pending),
        )

        summary = ProjectionSummary(
            owner_id=owner_id,
            total_items=len(records),
            stored_count=len(positioned),
        )
        summary.positions = [
            ItemPosition(
                item_id=record.item_id,
                x=record.position.x,
                y=record.position.y,
                method=PositionMethod.STORED,
                computed_at=record.position.computed_at,
            )
            for record in positioned
        ]

        if pending:
            new_positions, strategy = await self._place_pending(owner_id, positioned, pending)
            summary.strategy = strategy
            summary.failed_writes = await self._persist_positions(store, new_positions)
            summary.positions.extend(new_positions)
            summary.newly_positioned = len(new_positions)

        summary.compute_time_ms = round((time.perf_counter() - started) * 1000.0, 3)
        _LOGGER.info(
            "Projection for owner %s finished in %.1fms (%d items, strategy=%s)",
            owner_id,
            summary.compute_time_ms,
            summary.total_items,
            summary.strategy or "stored",
        )
        return summary

    async def _place_pending(
        self,
        owner_id: str,
        positioned: Sequence[EmbeddingRecord],
        pending: Sequence[EmbeddingRecord],
    ) -> tuple[list[ItemPosition], str]:
        minimum = self._settings.projection_min_items
        total = len(positioned) + len(pending)

        if total < minimum:
            _LOGGER.info("Owner %s has %d items (< %d); using grid layout", owner_id, total, minimum)
            return self._fallback(positioned, pending), PositionMethod.FALLBACK.value

        if len(positioned) < minimum:
            reduced = await self._reduce(owner_id, [*positioned, *pending], len(positioned))
            if reduced is None:
                return self._fallback(positioned, pending), PositionMethod.FALLBACK.value
            return reduced, PositionMethod.REDUCED.value

        try:
            return self._interpolate(positioned, pending), PositionMethod.INTERPOLATED.value
        except Exception:
            _LOGGER.exception("Interpolation failed for owner %s; using grid layout", owner_id)
            return self._fallback(positioned, pending), PositionMethod.FALLBACK.value

    def _fallback(
        self,
        positioned: Sequence[EmbeddingRecord],
        pending: Sequence[EmbeddingRecord],
    ) -> list[ItemPosition]:
        coords = grid_layout(
            len(pending),
            self._canvas,
            spacing=self._settings.grid_spacing,
            start_index=len(positioned),
            total=len(positioned) + len(pending),
        )
        return [
            ItemPosition(item_id=record.item_id, x=float(x), y=float(y), method=PositionMethod.FALLBACK)
            for record, (x, y) in zip(pending, coords)
        ]

    def _interpolate(
        self,
        positioned: Sequence[EmbeddingRecord],
        pending: Sequence[EmbeddingRecord],
    ) -> list[ItemPosition]:
        anchor_vectors = stack_vectors([record.vector for record in positioned])
        anchor_coords = np.array(
            [(record.position.x, record.position.y) for record in positioned],
            dtype=float,
        )
        new_vectors = stack_vectors([record.vector for record in pending])
        coords = interpolate_positions(
            new_vectors,
            anchor_vectors,
            anchor_coords,
            k=self._settings.projection_neighbors,
            jitter=self._settings.projection_jitter,
            rng=self._rng,
        )
        return [
            ItemPosition(item_id=record.item_id, x=float(x), y=float(y), method=PositionMethod.INTERPOLATED)
            for record, (x, y) in zip(pending, coords)
        ]

    async def _reduce(
        self,
        owner_id: str,
        records: Sequence[EmbeddingRecord],
        pending_offset: int,
    ) -> Optional[list[ItemPosition]]:
        """Run the reducer for all ``records`` and return positions for the pending tail.

        Returns ``None`` on timeout, error, or malformed output so the caller can
        fall back to the grid layout.
        """

        seed = owner_seed(owner_id)
        timeout = self._settings.projection_timeout_seconds
        _LOGGER.info("Initial UMAP layout for owner %s over %d items (seed=%d)", owner_id, len(records), seed)
        try:
            matrix = stack_vectors([record.vector for record in records])
            if not np.all(np.isfinite(matrix)):
                raise ValueError("embeddings contain non-finite values")
            loop = asyncio.get_running_loop()
            executor = self._executor or _reduction_executor(self._settings.projection_max_workers)
            raw = await asyncio.wait_for(
                loop.run_in_executor(executor, self._reducer, matrix, seed),
                timeout=timeout,
            )
            raw = np.asarray(raw, dtype=float)
            if raw.shape != (len(records), 2) or not np.all(np.isfinite(raw)):
                raise ValueError(f"reducer returned invalid coordinates with shape {raw.shape}")
        except asyncio.TimeoutError:
            _LOGGER.warning("UMAP timed out after %.1fs for owner %s; using grid layout", timeout, owner_id)
            return None
        except Exception:
            _LOGGER.exception("UMAP computation failed for owner %s; using grid layout", owner_id)
            return None

        coords = normalise_to_canvas(raw, self._canvas)
        return [
            ItemPosition(item_id=record.item_id, x=float(x), y=float(y), method=PositionMethod.REDUCED)
            for record, (x, y) in zip(records[pending_offset:], coords[pending_offset:])
        ]

    async def _persist_positions(self, store: GraphStore, positions: Sequence[ItemPosition]) -> int:
        timestamp = utc_now()
        failed = 0
        for position in positions:
            position.computed_at = timestamp
            try:
                await store.upsert_position(
                    position.item_id,
                    position.x,
                    position.y,
                    position.method.value,
                    timestamp,
                )
            except Exception:
                failed += 1
                _LOGGER.exception("Failed to persist position for item %s", position.item_id)
        if positions:
            _LOGGER.info("Saved %d positions (%d failed)", len(positions) - failed, failed)
        return failed


__all__ = [
    "PositionMethod",
    "CanvasSpec",
    "ItemPosition",
    "ProjectionSummary",
    "ProjectionService",
    "owner_seed",
    "compute_umap_layout",
    "normalise_to_canvas",
    "grid_layout",
    "interpolate_positions",
    "shutdown_reduction_executor",
]
