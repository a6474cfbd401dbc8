"""Bootstrap helpers for the PostGIS tables read and written by the tiler."""

from __future__ import annotations

import logging

from .postgres import PostgresClient


LOGGER = logging.getLogger(__name__)

BASE_TABLE_DDLS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS changesets (
        id BIGINT PRIMARY KEY,
        num_changes INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        last_tiled_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS changes (
        id BIGINT PRIMARY KEY,
        changeset_id BIGINT NOT NULL REFERENCES changesets (id) ON DELETE CASCADE,
        current_geom geometry(GEOMETRY, 4326),
        new_geom geometry(GEOMETRY, 4326)
    )
    """,
    "CREATE INDEX IF NOT EXISTS changes_changeset_id_idx ON changes (changeset_id)",
    """
    CREATE TABLE IF NOT EXISTS changeset_tiles (
        changeset_id BIGINT NOT NULL,
        zoom SMALLINT NOT NULL,
        x INTEGER NOT NULL,
        y INTEGER NOT NULL,
        geom geometry(GEOMETRY, 4326),
        PRIMARY KEY (changeset_id, zoom, x, y)
    )
    """,
    "CREATE INDEX IF NOT EXISTS changeset_tiles_zoom_xy_idx ON changeset_tiles (zoom, x, y)",
    """
    CREATE TABLE IF NOT EXISTS summary_tiles (
        zoom SMALLINT NOT NULL,
        x INTEGER NOT NULL,
        y INTEGER NOT NULL,
        num_changesets INTEGER NOT NULL,
        PRIMARY KEY (zoom, x, y)
    )
    """,
)


def ensure_base_tables(client: PostgresClient) -> None:
    """Create the changeset, change and tile tables when they are missing."""

    client.ensure_extensions()
    for ddl in BASE_TABLE_DDLS:
        client.execute(ddl)
    LOGGER.info("Ensured %d tiler schema statements", len(BASE_TABLE_DDLS))


__all__ = ["ensure_base_tables", "BASE_TABLE_DDLS"]
