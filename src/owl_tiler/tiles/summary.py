"""Summary tiles: number of changesets touching each coarse tile.

Summary tiles at zoom ``z`` are rebuilt from scratch from the zoom 16
changeset tiles. Each of the ``2**z * 2**z`` cells covers a square block of
``2**16 / 2**z`` zoom 16 tiles per side and records how many distinct
changesets have at least one tile inside it.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from .store import SUMMARY_BASE_ZOOM, TileStore


LOGGER = logging.getLogger(__name__)


@dataclass
class SummaryAggregator:
    store: TileStore
    strategy: str = "per_cell"

    def generate(self, summary_zoom: int) -> int:
        """Rebuild the summary tiles of ``summary_zoom``; returns the number of rows written."""

        if not 0 <= summary_zoom <= SUMMARY_BASE_ZOOM:
            raise ValueError(
                f"Summary zoom must be between 0 and {SUMMARY_BASE_ZOOM}, got {summary_zoom}"
            )
        if self.strategy not in ("per_cell", "grouped"):
            raise ValueError(f"Unknown summary strategy {self.strategy!r}")

        deleted = self.store.delete_all_summary_tiles(summary_zoom)
        LOGGER.debug("Cleared %s summary tiles at zoom %s", deleted, summary_zoom)

        subtiles_per_tile = 2**SUMMARY_BASE_ZOOM // 2**summary_zoom
        cells_per_side = 2**summary_zoom

        if self.strategy == "grouped":
            counts = self.store.count_changesets_by_cell(SUMMARY_BASE_ZOOM, subtiles_per_tile)
        else:
            counts = None

        written = 0
        for x in range(cells_per_side):
            for y in range(cells_per_side):
                if counts is None:
                    num_changesets = self.store.count_distinct_changesets_in_range(
                        SUMMARY_BASE_ZOOM,
                        range(x * subtiles_per_tile, (x + 1) * subtiles_per_tile),
                        range(y * subtiles_per_tile, (y + 1) * subtiles_per_tile),
                    )
                else:
                    num_changesets = counts.get((x, y), 0)
                LOGGER.debug("Tile (%s, %s), num_changesets = %s", x, y, num_changesets)
                self.store.insert_summary_tile(summary_zoom, x, y, num_changesets)
                written += 1
        return written


__all__ = ["SummaryAggregator"]
