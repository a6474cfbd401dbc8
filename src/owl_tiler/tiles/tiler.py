"""Per-changeset tiling.

For one changeset and zoom level, every geometry of every change is matched
against the tiles its bounding box covers. Non-empty intersections are
unioned into a ``changeset_tiles`` row per tile, creating the row on first
use. Existing tiles are only cleared when asked for with
``TilingOptions(retile=True)``: without it, running :meth:`Tiler.generate`
twice adds the same fragments again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging

from ..errors import TileLimitExceeded
from .changes import ChangeSource, GeometryRef
from .engine import SpatialEngine, is_empty
from .grid import Tile, bbox_to_tiles, tile_bounds
from .store import TileStore


LOGGER = logging.getLogger(__name__)

TILE_LIMIT_EXCEEDED = -1


@dataclass(frozen=True)
class TilingOptions:
    max_tiles: Optional[int] = None
    "Abort before writing when a changeset covers more candidate tiles than this."
    retile: bool = False
    "Delete the changeset's existing tiles at this zoom before tiling it again."


class Tiler:
    """Implements tiling logic for single changesets."""

    def __init__(self, changes: ChangeSource, engine: SpatialEngine, store: TileStore) -> None:
        self.changes = changes
        self.engine = engine
        self.store = store

    def generate(
        self,
        zoom: int,
        changeset_id: int,
        options: TilingOptions | None = None,
    ) -> int:
        """Tile ``changeset_id`` at ``zoom`` and return the number of tiles touched.

        Each non-empty intersection of a change geometry with a tile counts
        once, so a tile touched by several geometries is counted several
        times. Returns :data:`TILE_LIMIT_EXCEEDED` without writing anything,
        clearing included, when ``options.max_tiles`` is exceeded.
        """

        options = options or TilingOptions()
        if options.max_tiles is not None:
            try:
                self.candidate_tiles(zoom, changeset_id, limit=options.max_tiles)
            except TileLimitExceeded as exc:
                LOGGER.warning("%s; skipping", exc)
                return TILE_LIMIT_EXCEEDED

        if options.retile:
            deleted = self.clear_tiles(changeset_id, zoom)
            LOGGER.debug("Cleared %s tiles of changeset %s at zoom %s", deleted, changeset_id, zoom)

        count = 0
        for change in self.changes.iter_changes(changeset_id):
            for geometry, bbox in change.geometries():
                tiles = bbox_to_tiles(zoom, bbox)
                LOGGER.debug(
                    "Change %s (%s): %d candidate tiles", change.id, geometry.slot, len(tiles)
                )
                for x, y in sorted(tiles):
                    count += self._tile_geometry(changeset_id, zoom, geometry, x, y)
        return count

    def candidate_tiles(
        self,
        zoom: int,
        changeset_id: int,
        *,
        limit: int | None = None,
    ) -> set[Tile]:
        """Union of the candidate tiles of every geometry in the changeset.

        Raises :class:`TileLimitExceeded` as soon as the set grows past ``limit``.
        """

        tiles: set[Tile] = set()
        for change in self.changes.iter_changes(changeset_id):
            for _, bbox in change.geometries():
                tiles |= bbox_to_tiles(zoom, bbox)
                if limit is not None and len(tiles) > limit:
                    raise TileLimitExceeded(changeset_id, zoom, len(tiles), limit)
        return tiles

    def clear_tiles(self, changeset_id: int, zoom: int) -> int:
        return self.store.delete_tiles(changeset_id, zoom)

    def mark_tiled(self, changeset_id: int) -> None:
        self.store.mark_tiled(changeset_id)

    def _tile_geometry(self, changeset_id: int, zoom: int, geometry: GeometryRef, x: int, y: int) -> int:
        fragment = self.engine.intersect(geometry, tile_bounds(x, y, zoom))
        if is_empty(fragment):
            return 0
        LOGGER.debug("    Got geometry for tile (%s, %s)", x, y)
        self._ensure_tile(changeset_id, zoom, x, y)
        self.store.union_into_tile(changeset_id, zoom, x, y, fragment)
        return 1

    def _ensure_tile(self, changeset_id: int, zoom: int, x: int, y: int) -> None:
        if not self.store.tile_exists(changeset_id, zoom, x, y):
            self.store.insert_tile(changeset_id, zoom, x, y)


__all__ = ["Tiler", "TilingOptions", "TILE_LIMIT_EXCEEDED"]
