"""Geometry intersection against tile rectangles."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any
import logging

import psycopg

from ..db.postgres import PostgresSession
from ..errors import EngineUnavailable, InvalidGeometryInput, StoreUnavailable
from .changes import CURRENT, NEW, GeometryRef
from .grid import TileBounds


LOGGER = logging.getLogger(__name__)

GEOMETRY_COLUMNS = {
    CURRENT: "current_geom",
    NEW: "new_geom",
}


class _EmptyGeometry:
    """Marker returned when a geometry and a rectangle do not overlap."""

    _instance: "_EmptyGeometry | None" = None

    def __new__(cls) -> "_EmptyGeometry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "EMPTY_GEOMETRY"


EMPTY_GEOMETRY = _EmptyGeometry()


def is_empty(result: Any) -> bool:
    """True for the engine's empty sentinel and for a missing (``None``) result."""

    return result is None or result is EMPTY_GEOMETRY


class SpatialEngine(ABC):
    @abstractmethod
    def intersect(self, geometry: GeometryRef, bounds: TileBounds) -> Any:
        """Return the part of ``geometry`` inside ``bounds`` or :data:`EMPTY_GEOMETRY`.

        Non-empty results are opaque values accepted by
        :meth:`TileStore.union_into_tile`.
        """


class PostgisSpatialEngine(SpatialEngine):
    """Evaluates ``ST_Intersection`` next to the data.

    Emptiness is decided by ``ST_IsEmpty`` in the database, so the returned
    EWKB is never compared against a particular encoding.
    """

    def __init__(self, session: PostgresSession) -> None:
        self.session = session

    def intersect(self, geometry: GeometryRef, bounds: TileBounds) -> Any:
        column = GEOMETRY_COLUMNS[geometry.slot]
        sql = f"""
            SELECT ST_IsEmpty(clipped), clipped
            FROM (
                SELECT ST_Intersection(
                    {column}::geometry,
                    ST_SetSRID(ST_MakeBox2D(ST_Point(%s, %s), ST_Point(%s, %s)), 4326)::geometry
                ) AS clipped
                FROM changes
                WHERE id = %s
            ) AS intersection
        """
        params = (bounds.lat1, bounds.lon1, bounds.lat2, bounds.lon2, geometry.change_id)
        try:
            row = self.session.fetch_one(sql, params)
        except StoreUnavailable as exc:
            raise EngineUnavailable(str(exc)) from exc
        except psycopg.InternalError as exc:
            raise InvalidGeometryInput(
                f"Cannot intersect {geometry.slot} geometry of change {geometry.change_id}: {exc}"
            ) from exc
        if row is None or row[1] is None or row[0]:
            return EMPTY_GEOMETRY
        return row[1]


__all__ = [
    "EMPTY_GEOMETRY",
    "GEOMETRY_COLUMNS",
    "is_empty",
    "SpatialEngine",
    "PostgisSpatialEngine",
]
