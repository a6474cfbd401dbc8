"""Changeset tiling and summary tile aggregation."""

from .changes import Change, Changeset, ChangeSource, GeometryRef, PostgisChangeSource
from .engine import EMPTY_GEOMETRY, PostgisSpatialEngine, SpatialEngine, is_empty
from .grid import bbox_to_tiles, box2d_to_bbox, lat_lon_to_tile, tile_bounds, tile_to_lat_lon
from .selection import ALL_CHANGESETS, select_changeset_ids
from .store import PostgisTileStore, TileStore
from .summary import SummaryAggregator
from .tiler import TILE_LIMIT_EXCEEDED, Tiler, TilingOptions

__all__ = [
    "ALL_CHANGESETS",
    "Change",
    "Changeset",
    "ChangeSource",
    "EMPTY_GEOMETRY",
    "GeometryRef",
    "PostgisChangeSource",
    "PostgisSpatialEngine",
    "PostgisTileStore",
    "SpatialEngine",
    "SummaryAggregator",
    "TILE_LIMIT_EXCEEDED",
    "Tiler",
    "TileStore",
    "TilingOptions",
    "bbox_to_tiles",
    "box2d_to_bbox",
    "is_empty",
    "lat_lon_to_tile",
    "select_changeset_ids",
    "tile_bounds",
    "tile_to_lat_lon",
]
