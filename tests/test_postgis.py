from __future__ import annotations

import psycopg
import pytest

from owl_tiler.errors import EngineUnavailable, InvalidGeometryInput, StoreUnavailable
from owl_tiler.tiles.changes import Change, GeometryRef, PostgisChangeSource
from owl_tiler.tiles.engine import EMPTY_GEOMETRY, PostgisSpatialEngine, is_empty
from owl_tiler.tiles.grid import tile_bounds
from owl_tiler.tiles.store import PostgisTileStore


class FakeSession:
    """Records statements and replays canned results."""

    def __init__(self, results=None) -> None:
        self.statements: list[tuple[str, tuple]] = []
        self.results = list(results or [])
        self.error: Exception | None = None
        self.rowcount = 0

    def _next(self, sql, params):
        self.statements.append((" ".join(sql.split()), tuple(params or ())))
        if self.error is not None:
            raise self.error
        return self.results.pop(0) if self.results else None

    def execute(self, sql, params=None):
        self._next(sql, params)
        return self.rowcount

    def fetch_one(self, sql, params=None):
        return self._next(sql, params)

    def fetch_all(self, sql, params=None):
        return self._next(sql, params) or []

    def iter_rows(self, sql, params=None, *, batch_size=500):
        self.batch_size = batch_size
        yield from self._next(sql, params) or []


def test_empty_sentinel_is_a_falsy_singleton():
    assert is_empty(EMPTY_GEOMETRY)
    assert is_empty(None)
    assert not EMPTY_GEOMETRY
    assert type(EMPTY_GEOMETRY)() is EMPTY_GEOMETRY
    assert repr(EMPTY_GEOMETRY) == "EMPTY_GEOMETRY"


def test_non_empty_results_are_opaque():
    assert not is_empty("0101000020E6100000000000000000F03F0000000000000040")
    assert not is_empty(b"\x01")


@pytest.mark.parametrize(
    "row",
    [None, (None, None), (True, "0107000020E610000000000000")],
)
def test_engine_maps_missing_and_empty_results_to_sentinel(row):
    session = FakeSession([row])
    engine = PostgisSpatialEngine(session)

    assert engine.intersect(GeometryRef(5, "current"), tile_bounds(964, 1834, 12)) is EMPTY_GEOMETRY


def test_engine_returns_fragment_and_binds_rectangle():
    session = FakeSession([(False, "01020000")])
    engine = PostgisSpatialEngine(session)
    bounds = tile_bounds(964, 1834, 12)

    assert engine.intersect(GeometryRef(5, "new"), bounds) == "01020000"
    sql, params = session.statements[0]
    assert "new_geom::geometry" in sql
    assert "ST_IsEmpty" in sql
    assert params == (bounds.lat1, bounds.lon1, bounds.lat2, bounds.lon2, 5)


def test_engine_translates_connection_failures():
    session = FakeSession()
    session.error = StoreUnavailable("server closed the connection")

    with pytest.raises(EngineUnavailable):
        PostgisSpatialEngine(session).intersect(GeometryRef(1, "current"), tile_bounds(0, 0, 0))


def test_engine_reports_geometry_errors():
    session = FakeSession()
    session.error = psycopg.InternalError("GEOSIntersects: TopologyException")

    with pytest.raises(InvalidGeometryInput):
        PostgisSpatialEngine(session).intersect(GeometryRef(1, "current"), tile_bounds(0, 0, 0))


def test_geometry_ref_rejects_unknown_slot():
    with pytest.raises(ValueError):
        GeometryRef(1, "prev")


def test_change_source_parses_boxes():
    rows = [
        (1, 9, "BOX(18.45 -95.2,18.45 -95.17)", None),
        (2, 9, None, "BOX(5.8243191 45.1378079,5.8243191 45.1378079)"),
    ]
    session = FakeSession([rows])
    source = PostgisChangeSource(session, batch_size=50)

    changes = list(source.iter_changes(9))

    assert changes == [
        Change(id=1, changeset_id=9, current_box=[18.45, -95.2, 18.45, -95.17], new_box=None),
        Change(id=2, changeset_id=9, current_box=None, new_box=[5.8243191, 45.1378079, 5.8243191, 45.1378079]),
    ]
    assert session.batch_size == 50
    assert session.statements[0][1] == (9,)


def test_change_source_rejects_malformed_boxes():
    session = FakeSession([[(1, 9, "BOX(oops)", None)]])

    with pytest.raises(InvalidGeometryInput):
        list(PostgisChangeSource(session).iter_changes(9))


def test_change_geometries_skip_missing_slots():
    change = Change(id=3, changeset_id=1, current_box=None, new_box=[1.0, 2.0, 1.0, 2.0])

    assert [(ref.slot, bbox) for ref, bbox in change.geometries()] == [("new", [1.0, 2.0, 1.0, 2.0])]


@pytest.mark.parametrize("exclude_tiled", [True, False])
def test_list_changeset_ids_query(exclude_tiled):
    session = FakeSession([[(3,), (1,)]])

    ids = PostgisChangeSource(session).list_changeset_ids(5000, exclude_tiled)

    assert ids == [3, 1]
    sql, params = session.statements[0]
    assert params == (5000,)
    assert ("last_tiled_at IS NULL" in sql) is exclude_tiled
    assert sql.endswith("ORDER BY created_at DESC")


def test_tile_store_statements():
    session = FakeSession([None, (1,)])
    store = PostgisTileStore(session)

    assert store.tile_exists(1, 12, 964, 1834) is False
    assert store.tile_exists(1, 12, 964, 1834) is True
    store.insert_tile(1, 12, 964, 1834)
    store.union_into_tile(1, 12, 964, 1834, "0102")
    store.mark_tiled(1)

    insert_sql, insert_params = session.statements[2]
    assert insert_sql.startswith("INSERT INTO changeset_tiles")
    assert insert_params == (1, 12, 964, 1834)
    union_sql, union_params = session.statements[3]
    assert "ST_Union(geom, %s::geometry)" in union_sql
    assert union_params == ("0102", "0102", 1, 12, 964, 1834)
    assert session.statements[4] == ("UPDATE changesets SET last_tiled_at = NOW() WHERE id = %s", (1,))


def test_tile_store_range_count_uses_half_open_ranges():
    session = FakeSession([(4,)])

    count = PostgisTileStore(session).count_distinct_changesets_in_range(16, range(0, 256), range(256, 512))

    assert count == 4
    assert session.statements[0][1] == (16, 0, 256, 256, 512)


def test_tile_store_grouped_counts():
    session = FakeSession([[(0, 0, 2), (1, 1, 1)]])

    counts = PostgisTileStore(session).count_changesets_by_cell(16, 32768)

    assert counts == {(0, 0): 2, (1, 1): 1}
    assert session.statements[0][1] == (32768, 32768, 16)
