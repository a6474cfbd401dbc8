from __future__ import annotations

from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any, Iterator

import pytest
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from owl_tiler.runner import TilingUnit
from owl_tiler.tiles.changes import Change, Changeset, ChangeSource, GeometryRef
from owl_tiler.tiles.engine import EMPTY_GEOMETRY, SpatialEngine
from owl_tiler.tiles.grid import TileBounds
from owl_tiler.tiles.store import TileStore


class FakeChangeSource(ChangeSource):
    """Changesets and changes kept in memory; geometries use (lat, lon) axes."""

    def __init__(self) -> None:
        self.changesets: dict[int, Changeset] = {}
        self.changes: list[Change] = []
        self.geometries: dict[GeometryRef, BaseGeometry] = {}
        self._next_change_id = 1

    def add_changeset(
        self,
        changeset_id: int,
        *,
        num_changes: int = 1,
        age_days: int = 0,
        tiled: bool = False,
    ) -> Changeset:
        created_at = datetime(2024, 1, 31, tzinfo=UTC) - timedelta(days=age_days)
        changeset = Changeset(
            id=changeset_id,
            num_changes=num_changes,
            created_at=created_at,
            last_tiled_at=created_at if tiled else None,
        )
        self.changesets[changeset_id] = changeset
        return changeset

    def add_change(
        self,
        changeset_id: int,
        current: BaseGeometry | None = None,
        new: BaseGeometry | None = None,
    ) -> Change:
        change = Change(
            id=self._next_change_id,
            changeset_id=changeset_id,
            current_box=list(current.bounds) if current is not None else None,
            new_box=list(new.bounds) if new is not None else None,
        )
        self._next_change_id += 1
        self.changes.append(change)
        if current is not None:
            self.geometries[GeometryRef(change.id, "current")] = current
        if new is not None:
            self.geometries[GeometryRef(change.id, "new")] = new
        return change

    def iter_changes(self, changeset_id: int) -> Iterator[Change]:
        for change in self.changes:
            if change.changeset_id != changeset_id:
                continue
            if change.current_box is None and change.new_box is None:
                continue
            yield change

    def list_changeset_ids(self, max_changes: int, exclude_tiled: bool) -> list[int]:
        selected = [
            changeset
            for changeset in self.changesets.values()
            if changeset.num_changes < max_changes and not (exclude_tiled and changeset.is_tiled)
        ]
        selected.sort(key=lambda changeset: changeset.created_at, reverse=True)
        return [changeset.id for changeset in selected]


class FakeSpatialEngine(SpatialEngine):
    def __init__(self, source: FakeChangeSource) -> None:
        self.source = source
        self.calls = 0
        self.failures: list[Exception] = []

    def intersect(self, geometry: GeometryRef, bounds: TileBounds) -> Any:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        shape = self.source.geometries[geometry]
        rectangle = box(
            min(bounds.lat1, bounds.lat2),
            min(bounds.lon1, bounds.lon2),
            max(bounds.lat1, bounds.lat2),
            max(bounds.lon1, bounds.lon2),
        )
        clipped = shape.intersection(rectangle)
        if clipped.is_empty:
            return EMPTY_GEOMETRY
        return clipped


class FakeTileStore(TileStore):
    def __init__(self) -> None:
        self.tiles: dict[tuple[int, int, int, int], BaseGeometry | None] = {}
        self.summary: dict[tuple[int, int, int], int] = {}
        self.tiled: dict[int, int] = {}
        self.writes: list[tuple] = []

    def tile_exists(self, changeset_id: int, zoom: int, x: int, y: int) -> bool:
        return (changeset_id, zoom, x, y) in self.tiles

    def insert_tile(self, changeset_id: int, zoom: int, x: int, y: int) -> None:
        self.writes.append(("insert_tile", changeset_id, zoom, x, y))
        self.tiles.setdefault((changeset_id, zoom, x, y), None)

    def union_into_tile(self, changeset_id: int, zoom: int, x: int, y: int, geometry: Any) -> None:
        self.writes.append(("union_into_tile", changeset_id, zoom, x, y))
        key = (changeset_id, zoom, x, y)
        if key not in self.tiles:
            return
        current = self.tiles[key]
        self.tiles[key] = geometry if current is None else current.union(geometry)

    def delete_tiles(self, changeset_id: int, zoom: int) -> int:
        self.writes.append(("delete_tiles", changeset_id, zoom))
        doomed = [key for key in self.tiles if key[0] == changeset_id and key[1] == zoom]
        for key in doomed:
            del self.tiles[key]
        return len(doomed)

    def delete_all_summary_tiles(self, zoom: int) -> int:
        doomed = [key for key in self.summary if key[0] == zoom]
        for key in doomed:
            del self.summary[key]
        return len(doomed)

    def insert_summary_tile(self, zoom: int, x: int, y: int, count: int) -> None:
        if (zoom, x, y) in self.summary:
            raise AssertionError(f"Duplicate summary tile {(zoom, x, y)}")
        self.summary[(zoom, x, y)] = count

    def count_distinct_changesets_in_range(self, zoom: int, x_range: range, y_range: range) -> int:
        return len(
            {
                changeset_id
                for changeset_id, tile_zoom, x, y in self.tiles
                if tile_zoom == zoom and x in x_range and y in y_range
            }
        )

    def count_changesets_by_cell(self, zoom: int, subtiles_per_tile: int) -> dict[tuple[int, int], int]:
        cells: dict[tuple[int, int], set[int]] = {}
        for changeset_id, tile_zoom, x, y in self.tiles:
            if tile_zoom != zoom or x < 0 or y < 0:
                continue
            cells.setdefault((x // subtiles_per_tile, y // subtiles_per_tile), set()).add(changeset_id)
        return {cell: len(ids) for cell, ids in cells.items()}

    def mark_tiled(self, changeset_id: int) -> None:
        self.writes.append(("mark_tiled", changeset_id))
        self.tiled[changeset_id] = self.tiled.get(changeset_id, 0) + 1


@pytest.fixture()
def source() -> FakeChangeSource:
    return FakeChangeSource()


@pytest.fixture()
def engine(source: FakeChangeSource) -> FakeSpatialEngine:
    return FakeSpatialEngine(source)


@pytest.fixture()
def store() -> FakeTileStore:
    return FakeTileStore()


@pytest.fixture()
def open_unit(source: FakeChangeSource, engine: FakeSpatialEngine, store: FakeTileStore):
    units: list[TilingUnit] = []

    @contextmanager
    def factory() -> Iterator[TilingUnit]:
        unit = TilingUnit(changes=source, engine=engine, store=store)
        units.append(unit)
        yield unit

    factory.units = units
    return factory
