"""Exceptions raised by the tiler core and its collaborators."""

from __future__ import annotations


class OwlTilerError(RuntimeError):
    """Base class for all tiler errors."""


class ConfigurationError(OwlTilerError):
    """Raised when required settings are missing or malformed."""


class InvalidGeometryInput(OwlTilerError, ValueError):
    """Raised when a bounding box or geometry from upstream cannot be used."""


class CoordinateDomainError(OwlTilerError, ValueError):
    """Raised when a coordinate falls outside the Web Mercator formula's domain."""


class TileLimitExceeded(OwlTilerError):
    """Raised when a changeset would touch more candidate tiles than allowed."""

    def __init__(self, changeset_id: int, zoom: int, tile_count: int, limit: int) -> None:
        super().__init__(
            f"Changeset {changeset_id} touches {tile_count} tiles at zoom {zoom} (limit {limit})"
        )
        self.changeset_id = changeset_id
        self.zoom = zoom
        self.tile_count = tile_count
        self.limit = limit


class StoreUnavailable(OwlTilerError):
    """Raised when the tile store cannot be reached or drops the connection."""


class EngineUnavailable(OwlTilerError):
    """Raised when the spatial engine fails to evaluate an intersection."""


__all__ = [
    "OwlTilerError",
    "ConfigurationError",
    "InvalidGeometryInput",
    "CoordinateDomainError",
    "TileLimitExceeded",
    "StoreUnavailable",
    "EngineUnavailable",
]
