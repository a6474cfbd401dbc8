"""Command line interface for generating changeset and summary tiles."""

from __future__ import annotations

import argparse
import concurrent.futures
import dataclasses
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, ContextManager, Iterator, Sequence

import dotenv
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .db.bootstrap import ensure_base_tables
from .db.config import SUMMARY_STRATEGIES, DatabaseConfig, TilerConfig
from .db.postgres import PostgresClient
from .errors import EngineUnavailable, StoreUnavailable
from .tiles.changes import ChangeSource, PostgisChangeSource
from .tiles.engine import PostgisSpatialEngine, SpatialEngine
from .tiles.selection import ALL_CHANGESETS, select_changeset_ids
from .tiles.store import PostgisTileStore, TileStore
from .tiles.summary import SummaryAggregator
from .tiles.tiler import TILE_LIMIT_EXCEEDED, Tiler, TilingOptions


LOGGER = logging.getLogger(__name__)

TRANSIENT_ERRORS = (StoreUnavailable, EngineUnavailable)


@dataclass
class TilingUnit:
    """Collaborators bound to one transaction."""

    changes: ChangeSource
    engine: SpatialEngine
    store: TileStore

    @property
    def tiler(self) -> Tiler:
        return Tiler(self.changes, self.engine, self.store)


UnitFactory = Callable[[], ContextManager[TilingUnit]]


def postgis_units(client: PostgresClient, *, batch_size: int = 500) -> UnitFactory:
    """Build a factory that opens one PostGIS transaction per unit of work."""

    @contextmanager
    def open_unit() -> Iterator[TilingUnit]:
        with client.transaction() as session:
            yield TilingUnit(
                changes=PostgisChangeSource(session, batch_size=batch_size),
                engine=PostgisSpatialEngine(session),
                store=PostgisTileStore(session),
            )

    return open_unit


@dataclass
class TilingRequest:
    geometry_zooms: Sequence[int] = ()
    summary_zooms: Sequence[int] = ()
    changesets: Sequence[int | str] = (ALL_CHANGESETS,)
    retile: bool = False


@dataclass
class TilingRunner:
    """Drives summary and changeset tiling, one transaction per unit of work.

    Transient store or engine failures retry the whole transaction; anything
    else aborts the run.
    """

    open_unit: UnitFactory
    config: TilerConfig = dataclasses.field(default_factory=TilerConfig)
    retry_wait: Callable = dataclasses.field(
        default_factory=lambda: wait_exponential(multiplier=1, min=1, max=30)
    )

    def run(self, request: TilingRequest) -> dict[tuple[int, int | str], int]:
        for summary_zoom in request.summary_zooms:
            self.generate_summary_tiles(summary_zoom)

        results: dict[tuple[int, int | str], int] = {}
        if not request.geometry_zooms:
            return results

        changeset_ids = self.select_changesets(request.changesets, retile=request.retile)
        for zoom in request.geometry_zooms:
            for changeset_id, tile_count in self._tile_all(zoom, changeset_ids, request.retile):
                results[(zoom, changeset_id)] = tile_count
        return results

    def select_changesets(self, changesets: Sequence[int | str], *, retile: bool) -> list[int | str]:
        with self.open_unit() as unit:
            return select_changeset_ids(
                unit.changes,
                changesets,
                max_changes=self.config.max_changes,
                retile=retile,
            )

    def generate_summary_tiles(self, summary_zoom: int) -> int:
        before = time.perf_counter()
        LOGGER.info("Generating summary tiles for zoom level %s...", summary_zoom)

        def attempt() -> int:
            with self.open_unit() as unit:
                aggregator = SummaryAggregator(unit.store, strategy=self.config.summary_strategy)
                return aggregator.generate(summary_zoom)

        written = self._retrying(attempt)
        LOGGER.info("Took %.2fs", time.perf_counter() - before)
        return written

    def tile_changeset(self, zoom: int, changeset_id: int | str, *, retile: bool = False) -> int:
        before = time.perf_counter()
        options = TilingOptions(max_tiles=self.config.max_tiles, retile=retile)

        def attempt() -> int:
            with self.open_unit() as unit:
                tiler = unit.tiler
                LOGGER.info(
                    "Generating tiles for changeset %s at zoom level %s...", changeset_id, zoom
                )
                tile_count = tiler.generate(zoom, changeset_id, options)
                if tile_count != TILE_LIMIT_EXCEEDED:
                    tiler.mark_tiled(changeset_id)
                return tile_count

        tile_count = self._retrying(attempt)
        if tile_count == TILE_LIMIT_EXCEEDED:
            LOGGER.info("Skipped changeset %s: too many tiles", changeset_id)
        else:
            LOGGER.info("Done, tile count: %s", tile_count)
        LOGGER.info("Changeset %s took %.2fs", changeset_id, time.perf_counter() - before)
        return tile_count

    def _tile_all(
        self,
        zoom: int,
        changeset_ids: Sequence[int | str],
        retile: bool,
    ) -> Iterator[tuple[int | str, int]]:
        if self.config.workers <= 1:
            for changeset_id in changeset_ids:
                yield changeset_id, self.tile_changeset(zoom, changeset_id, retile=retile)
            return

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.workers, thread_name_prefix="owl-tiler"
        )
        try:
            futures = {
                executor.submit(self.tile_changeset, zoom, changeset_id, retile=retile): changeset_id
                for changeset_id in changeset_ids
            }
            for future in concurrent.futures.as_completed(futures):
                yield futures[future], future.result()
        except BaseException:
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

    def _retrying(self, attempt: Callable[[], int]) -> int:
        retrying = Retrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=self.retry_wait,
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )
        return retrying(attempt)


def _zoom_list(value: str) -> list[int]:
    try:
        zooms = [int(item) for item in value.split(",") if item.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid zoom list: {value!r}") from exc
    if any(zoom < 0 for zoom in zooms):
        raise argparse.ArgumentTypeError(f"Zoom levels must be non-negative: {value!r}")
    return zooms


def _changeset_list(value: str) -> list[int | str]:
    items = [item.strip() for item in value.split(",") if item.strip()]
    if items == [ALL_CHANGESETS]:
        return items
    try:
        return [int(item) for item in items]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"Expected 'all' or a list of changeset ids, got {value!r}"
        ) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="owl-tiler",
        description="Generate changeset geometry tiles and summary tiles",
    )

    geometry = parser.add_argument_group("Geometry tiles")
    geometry.add_argument(
        "--geometry-tiles",
        type=_zoom_list,
        metavar="x,y,z",
        help="Comma-separated list of zoom levels for which to generate geometry tiles",
    )
    geometry.add_argument(
        "--changesets",
        type=_changeset_list,
        default=[ALL_CHANGESETS],
        metavar="x,y,z",
        help="'all' for all changesets from the database or a list of specific changeset ids "
        "to process. Default is 'all'.",
    )
    geometry.add_argument(
        "--retile",
        action="store_true",
        help="Remove existing tiles and regenerate tiles from scratch",
    )
    geometry.add_argument("--max-tiles", type=int, help="Skip changesets covering more tiles than this")
    geometry.add_argument("--max-changes", type=int, help="Only select changesets with fewer changes")
    geometry.add_argument("--workers", type=int, help="Number of changesets tiled in parallel")

    summary = parser.add_argument_group("Summary tiles")
    summary.add_argument(
        "--summary-tiles",
        type=_zoom_list,
        metavar="x,y,z",
        help="Comma-separated list of zoom levels for which to generate summary tiles",
    )
    summary.add_argument("--summary-strategy", choices=SUMMARY_STRATEGIES)

    parser.add_argument("--database-url", help="PostgreSQL DSN (defaults to DATABASE_URL)")
    parser.add_argument(
        "--ensure-schema",
        action="store_true",
        help="Create the changeset and tile tables when missing",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.geometry_tiles and not args.summary_tiles:
        parser.print_help()
        return 1

    dotenv.load_dotenv()
    logging.basicConfig(level=args.log_level.upper(), format="[%(levelname)s] %(message)s")

    config = TilerConfig.from_env()
    overrides = {
        "max_tiles": args.max_tiles,
        "max_changes": args.max_changes,
        "workers": args.workers,
        "summary_strategy": args.summary_strategy,
    }
    config = dataclasses.replace(
        config, **{key: value for key, value in overrides.items() if value is not None}
    )

    if args.database_url:
        database = DatabaseConfig.from_dsn(args.database_url)
    else:
        database = DatabaseConfig.from_env()
    client = PostgresClient(
        database.dsn,
        application_name=database.application_name,
        connect_timeout=database.connect_timeout,
        statement_timeout_ms=database.statement_timeout_ms,
    )
    if args.ensure_schema:
        ensure_base_tables(client)

    runner = TilingRunner(postgis_units(client, batch_size=config.change_batch_size), config)
    runner.run(
        TilingRequest(
            geometry_zooms=args.geometry_tiles or (),
            summary_zooms=args.summary_tiles or (),
            changesets=args.changesets,
            retile=args.retile,
        )
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
