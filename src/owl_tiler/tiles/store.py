"""Persistence of changeset tiles and summary tiles."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any
import logging

from ..db.postgres import PostgresSession


LOGGER = logging.getLogger(__name__)

# Fine-grained tiles that summary tiles are rolled up from.
SUMMARY_BASE_ZOOM = 16


class TileStore(ABC):
    """Keyed storage for ``(changeset_id, zoom, x, y)`` tiles and ``(zoom, x, y)`` summaries."""

    @abstractmethod
    def tile_exists(self, changeset_id: int, zoom: int, x: int, y: int) -> bool: ...

    @abstractmethod
    def insert_tile(self, changeset_id: int, zoom: int, x: int, y: int) -> None: ...

    @abstractmethod
    def union_into_tile(self, changeset_id: int, zoom: int, x: int, y: int, geometry: Any) -> None:
        """Merge ``geometry`` into the aggregated geometry of an existing tile."""

    @abstractmethod
    def delete_tiles(self, changeset_id: int, zoom: int) -> int: ...

    @abstractmethod
    def delete_all_summary_tiles(self, zoom: int) -> int: ...

    @abstractmethod
    def insert_summary_tile(self, zoom: int, x: int, y: int, count: int) -> None: ...

    @abstractmethod
    def count_distinct_changesets_in_range(
        self,
        zoom: int,
        x_range: range,
        y_range: range,
    ) -> int:
        """Distinct changesets with a tile at ``zoom`` inside the half-open ranges."""

    @abstractmethod
    def count_changesets_by_cell(self, zoom: int, subtiles_per_tile: int) -> dict[tuple[int, int], int]:
        """Distinct changesets per ``(x // subtiles_per_tile, y // subtiles_per_tile)`` cell.

        Cells without tiles are absent from the result.
        """

    @abstractmethod
    def mark_tiled(self, changeset_id: int) -> None: ...


class PostgisTileStore(TileStore):
    """Stores tiles in ``changeset_tiles`` and ``summary_tiles``.

    Geometry aggregation happens in SQL; tile geometry is never read back
    into the process.
    """

    def __init__(self, session: PostgresSession) -> None:
        self.session = session

    def tile_exists(self, changeset_id: int, zoom: int, x: int, y: int) -> bool:
        row = self.session.fetch_one(
            """
            SELECT 1 FROM changeset_tiles
            WHERE changeset_id = %s AND zoom = %s AND x = %s AND y = %s
            """,
            (changeset_id, zoom, x, y),
        )
        return row is not None

    def insert_tile(self, changeset_id: int, zoom: int, x: int, y: int) -> None:
        self.session.execute(
            """
            INSERT INTO changeset_tiles (changeset_id, zoom, x, y)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (changeset_id, zoom, x, y) DO NOTHING
            """,
            (changeset_id, zoom, x, y),
        )

    def union_into_tile(self, changeset_id: int, zoom: int, x: int, y: int, geometry: Any) -> None:
        self.session.execute(
            """
            UPDATE changeset_tiles
            SET geom = CASE
                WHEN geom IS NULL THEN %s::geometry
                ELSE ST_Union(geom, %s::geometry)
            END
            WHERE changeset_id = %s AND zoom = %s AND x = %s AND y = %s
            """,
            (geometry, geometry, changeset_id, zoom, x, y),
        )

    def delete_tiles(self, changeset_id: int, zoom: int) -> int:
        deleted = self.session.execute(
            "DELETE FROM changeset_tiles WHERE changeset_id = %s AND zoom = %s",
            (changeset_id, zoom),
        )
        LOGGER.debug("Deleted %s tiles of changeset %s at zoom %s", deleted, changeset_id, zoom)
        return deleted

    def delete_all_summary_tiles(self, zoom: int) -> int:
        return self.session.execute("DELETE FROM summary_tiles WHERE zoom = %s", (zoom,))

    def insert_summary_tile(self, zoom: int, x: int, y: int, count: int) -> None:
        self.session.execute(
            "INSERT INTO summary_tiles (num_changesets, zoom, x, y) VALUES (%s, %s, %s, %s)",
            (count, zoom, x, y),
        )

    def count_distinct_changesets_in_range(
        self,
        zoom: int,
        x_range: range,
        y_range: range,
    ) -> int:
        row = self.session.fetch_one(
            """
            SELECT COUNT(DISTINCT changeset_id) AS num_changesets
            FROM changeset_tiles
            WHERE zoom = %s
              AND x >= %s AND x < %s
              AND y >= %s AND y < %s
            """,
            (zoom, x_range.start, x_range.stop, y_range.start, y_range.stop),
        )
        return int(row[0]) if row else 0

    def count_changesets_by_cell(self, zoom: int, subtiles_per_tile: int) -> dict[tuple[int, int], int]:
        rows = self.session.fetch_all(
            """
            SELECT x / %s AS cell_x, y / %s AS cell_y, COUNT(DISTINCT changeset_id)
            FROM changeset_tiles
            WHERE zoom = %s AND x >= 0 AND y >= 0
            GROUP BY cell_x, cell_y
            """,
            (subtiles_per_tile, subtiles_per_tile, zoom),
        )
        return {(int(row[0]), int(row[1])): int(row[2]) for row in rows}

    def mark_tiled(self, changeset_id: int) -> None:
        self.session.execute(
            "UPDATE changesets SET last_tiled_at = NOW() WHERE id = %s",
            (changeset_id,),
        )


__all__ = ["SUMMARY_BASE_ZOOM", "TileStore", "PostgisTileStore"]
