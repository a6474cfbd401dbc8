"""Choosing which changesets a run should tile."""

from __future__ import annotations

from typing import Sequence
import logging

from .changes import ChangeSource


LOGGER = logging.getLogger(__name__)

ALL_CHANGESETS = "all"


def select_changeset_ids(
    source: ChangeSource,
    changesets: Sequence[int | str],
    *,
    max_changes: int,
    retile: bool = False,
) -> list[int | str]:
    """Resolve the ``--changesets`` selector into changeset ids.

    ``["all"]`` selects every changeset with fewer than ``max_changes``
    changes, most recent first, skipping those already tiled unless
    ``retile`` is set. Any other list is returned as given.
    """

    if list(changesets) == [ALL_CHANGESETS]:
        ids = source.list_changeset_ids(max_changes, exclude_tiled=not retile)
        LOGGER.info("Selected %d changesets (max changes %d, retile=%s)", len(ids), max_changes, retile)
        return list(ids)
    return list(changesets)


__all__ = ["ALL_CHANGESETS", "select_changeset_ids"]
