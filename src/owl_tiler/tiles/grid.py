"""Slippy map tile arithmetic.

Formulas follow https://wiki.openstreetmap.org/wiki/Slippy_map_tilenames.
Bounding boxes use the ``[xmin, ymin, xmax, ymax]`` layout produced by
PostGIS ``Box2D`` on the ``changes`` geometry columns, where each corner is a
``(lat, lon)`` pair: the first two values are read as the top-left point and
the last two as the bottom-right point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
import math
import re

from ..errors import CoordinateDomainError, InvalidGeometryInput


Tile = tuple[int, int]

_BOX2D_PATTERN = re.compile(
    r"^\s*BOX\(\s*(\S+)\s+(\S+)\s*,\s*(\S+)\s+(\S+)\s*\)\s*$", re.IGNORECASE
)


@dataclass(frozen=True)
class TileBounds:
    """Geographic rectangle covered by a tile."""

    lat1: float
    lon1: float
    lat2: float
    lon2: float


def lat_lon_to_tile(lat: float, lon: float, zoom: int) -> Tile:
    """Return the ``(x, y)`` tile containing ``(lat, lon)`` at ``zoom``.

    Results are not clamped to the grid. Latitudes at or beyond the poles have
    no Mercator projection and raise :class:`CoordinateDomainError`.
    """

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise CoordinateDomainError(f"Non-finite coordinate ({lat}, {lon})")
    if not -90.0 < lat < 90.0:
        raise CoordinateDomainError(f"Latitude {lat} is outside (-90, 90)")

    lat_rad = math.radians(lat)
    n = 2.0 ** zoom
    try:
        x = math.floor((lon + 180.0) / 360.0 * n)
        y = math.floor(
            (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
        )
    except (ValueError, OverflowError) as exc:
        raise CoordinateDomainError(f"Cannot project ({lat}, {lon}) at zoom {zoom}: {exc}") from exc
    return x, y


def tile_to_lat_lon(x: int, y: int, zoom: int) -> tuple[float, float]:
    """Return the ``(lat, lon)`` of the upper-left corner of tile ``(x, y)``."""

    n = 2.0 ** zoom
    lon = x / n * 360.0 - 180.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y / n))))
    return lat, lon


def tile_bounds(x: int, y: int, zoom: int) -> TileBounds:
    lat1, lon1 = tile_to_lat_lon(x, y, zoom)
    lat2, lon2 = tile_to_lat_lon(x + 1, y + 1, zoom)
    return TileBounds(lat1=lat1, lon1=lon1, lat2=lat2, lon2=lon2)


def bbox_to_tiles(zoom: int, bbox: Sequence[float]) -> set[Tile]:
    """Enumerate every tile in the rectangle spanned by the corners of ``bbox``.

    The result is a superset of the tiles a geometry actually touches. The
    x range is taken literally, so boxes crossing the antimeridian are not
    wrapped.
    """

    if len(bbox) != 4:
        raise InvalidGeometryInput(f"Bounding box needs 4 values, got {len(bbox)}")
    try:
        xmin, ymin, xmax, ymax = (float(value) for value in bbox)
    except (TypeError, ValueError) as exc:
        raise InvalidGeometryInput(f"Bounding box is not numeric: {bbox!r}") from exc
    top_left = lat_lon_to_tile(xmin, ymin, zoom)
    bottom_right = lat_lon_to_tile(xmax, ymax, zoom)
    min_x, max_x = sorted((top_left[0], bottom_right[0]))
    min_y, max_y = sorted((top_left[1], bottom_right[1]))
    return {
        (x, y)
        for x in range(min_x, max_x + 1)
        for y in range(min_y, max_y + 1)
    }


def box2d_to_bbox(box2d: str) -> list[float]:
    """Convert PostGIS' ``BOX(a b,c d)`` text representation to ``[a, b, c, d]``."""

    match = _BOX2D_PATTERN.match(box2d or "")
    if not match:
        raise InvalidGeometryInput(f"Malformed BOX2D value: {box2d!r}")
    try:
        bbox = [float(value) for value in match.groups()]
    except ValueError as exc:
        raise InvalidGeometryInput(f"Malformed BOX2D value: {box2d!r}") from exc
    if not all(math.isfinite(value) for value in bbox):
        raise InvalidGeometryInput(f"Non-finite BOX2D value: {box2d!r}")
    return bbox


__all__ = [
    "Tile",
    "TileBounds",
    "lat_lon_to_tile",
    "tile_to_lat_lon",
    "tile_bounds",
    "bbox_to_tiles",
    "box2d_to_bbox",
]
