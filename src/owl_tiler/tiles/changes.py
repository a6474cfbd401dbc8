"""Changesets and changes as read from the edit history tables."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Sequence
import logging

from ..db.postgres import PostgresSession
from .grid import box2d_to_bbox


LOGGER = logging.getLogger(__name__)

CURRENT = "current"
NEW = "new"
GEOMETRY_SLOTS: tuple[str, ...] = (CURRENT, NEW)


@dataclass(frozen=True)
class Changeset:
    id: int
    num_changes: int
    created_at: datetime
    last_tiled_at: Optional[datetime] = None

    @property
    def is_tiled(self) -> bool:
        return self.last_tiled_at is not None


@dataclass(frozen=True)
class GeometryRef:
    """Points at one geometry column of one change, without loading it."""

    change_id: int
    slot: str

    def __post_init__(self) -> None:
        if self.slot not in GEOMETRY_SLOTS:
            raise ValueError(f"Unknown geometry slot {self.slot!r}")


@dataclass(frozen=True)
class Change:
    """A single edit with the bounding boxes of its current and new geometries.

    A missing geometry has a ``None`` box. The geometries themselves stay in
    the store and are addressed through :class:`GeometryRef`.
    """

    id: int
    changeset_id: int
    current_box: Optional[Sequence[float]] = None
    new_box: Optional[Sequence[float]] = None

    def geometries(self) -> Iterator[tuple[GeometryRef, Sequence[float]]]:
        if self.current_box is not None:
            yield GeometryRef(self.id, CURRENT), self.current_box
        if self.new_box is not None:
            yield GeometryRef(self.id, NEW), self.new_box


class ChangeSource(ABC):
    """Read access to changesets and their changes."""

    @abstractmethod
    def iter_changes(self, changeset_id: int) -> Iterator[Change]:
        """Yield every change of ``changeset_id`` with at least one geometry.

        Each call starts a fresh scan.
        """

    @abstractmethod
    def list_changeset_ids(self, max_changes: int, exclude_tiled: bool) -> list[int]:
        """Ids of changesets below ``max_changes`` changes, newest first."""


class PostgisChangeSource(ChangeSource):
    """Streams changes out of the ``changes`` table in bounded batches."""

    def __init__(self, session: PostgresSession, *, batch_size: int = 500) -> None:
        self.session = session
        self.batch_size = batch_size

    def iter_changes(self, changeset_id: int) -> Iterator[Change]:
        rows = self.session.iter_rows(
            """
            SELECT id, changeset_id,
                Box2D(current_geom::geometry)::text AS current_box,
                Box2D(new_geom::geometry)::text AS new_box
            FROM changes
            WHERE changeset_id = %s
              AND (current_geom IS NOT NULL OR new_geom IS NOT NULL)
            ORDER BY id
            """,
            (changeset_id,),
            batch_size=self.batch_size,
        )
        for change_id, owner_id, current_box, new_box in rows:
            yield Change(
                id=int(change_id),
                changeset_id=int(owner_id),
                current_box=box2d_to_bbox(current_box) if current_box else None,
                new_box=box2d_to_bbox(new_box) if new_box else None,
            )

    def list_changeset_ids(self, max_changes: int, exclude_tiled: bool) -> list[int]:
        sql = "SELECT id FROM changesets WHERE num_changes < %s"
        if exclude_tiled:
            sql += " AND last_tiled_at IS NULL"
        sql += " ORDER BY created_at DESC"
        return [int(row[0]) for row in self.session.fetch_all(sql, (max_changes,))]


__all__ = [
    "CURRENT",
    "NEW",
    "GEOMETRY_SLOTS",
    "Changeset",
    "Change",
    "GeometryRef",
    "ChangeSource",
    "PostgisChangeSource",
]
