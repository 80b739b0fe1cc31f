"""Merging the backend's session with the one the embedded frame reports.

Two actors establish "the" session independently and in no fixed order:

- the backend, which opens a session eagerly when render is called so reads
  do not wait on a round trip later;
- the embedded frame, which opens its own session during its handshake with
  the platform and reports it through the relay.

Both results are folded into the single session of record by the merge
functions below. Applying a backend init result A and a frame report B in
either order yields the same cache, session id, revision and live binding:
the frame's identity always wins, the frame's cell values win on collision,
and the backend only fills keys the cache does not have yet.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from nexsview.session import (
    CachedCell,
    Session,
    SessionStore,
    session_from_init,
)
from nexsview.transport import CellInfo, CellValue, InitResult, View, parse_cell_info


@dataclass(frozen=True)
class FrameCellMap:
    """Cells the frame reported for one of its views."""

    view_index: int
    cells: tuple[CellInfo, ...]


@dataclass(frozen=True)
class FrameReport:
    """The frame's own session identity and the state it is displaying."""

    session_id: str
    revision: int
    views: tuple[View, ...] = ()
    cell_maps: tuple[FrameCellMap, ...] = field(default_factory=tuple)


def parse_cell_maps(raw: Any) -> tuple[FrameCellMap, ...]:
    """Parse per-view cell maps relayed from the frame.

    Each map is ``{"view_index": int, "cells": [...]}``; cells may be a list
    of cellInfo objects or an object keyed by address. A list of maps without
    explicit indexes is read positionally.
    """
    if not isinstance(raw, list):
        return ()

    maps: list[FrameCellMap] = []
    for position, item in enumerate(raw):
        if isinstance(item, dict) and "cells" in item:
            index = item.get("view_index", item.get("viewIndex", position))
            raw_cells = item["cells"]
        else:
            index, raw_cells = position, item
        if not isinstance(index, int) or isinstance(index, bool) or index < 0:
            continue

        if isinstance(raw_cells, dict):
            raw_cells = [
                {"addr": addr, **info} if isinstance(info, dict) else None
                for addr, info in raw_cells.items()
            ]
        if not isinstance(raw_cells, list):
            continue

        cells = tuple(info for info in map(parse_cell_info, raw_cells) if info is not None)
        maps.append(FrameCellMap(view_index=index, cells=cells))
    return tuple(maps)


def cell_values_for_views(
    cell_maps: Iterable[FrameCellMap], views: Sequence[View]
) -> tuple[list[CellValue], list[FrameCellMap]]:
    """Attach sheet names to frame cells through the view list order.

    Returns the placed values and the maps whose view is not known yet.
    """
    values: list[CellValue] = []
    unplaced: list[FrameCellMap] = []
    for cell_map in cell_maps:
        if cell_map.view_index >= len(views) or not views[cell_map.view_index].sheet_name:
            unplaced.append(cell_map)
            continue
        sheet_name = views[cell_map.view_index].sheet_name
        values.extend(CellValue(sheet_name=sheet_name, info=info) for info in cell_map.cells)
    return values, unplaced


def _place_frame_cells(session: Session, cell_maps: Iterable[FrameCellMap]) -> list[CachedCell]:
    """Write frame cells into the cache, holding back maps for unknown views."""
    values, unplaced = cell_values_for_views(cell_maps, session.views)
    if unplaced and session.views:
        logger.debug(
            "Dropping cells for unknown views",
            extra={"view_indexes": [m.view_index for m in unplaced], "views": len(session.views)},
        )
    elif unplaced:
        # No view list yet; place these once a backend init supplies one.
        session.unplaced_frame_cells.extend(unplaced)

    changed = [CachedCell.from_value(value) for value in values]
    for cell in changed:
        session.cell_cache[cell.key] = cell
    return changed


def merge_frame_report(store: SessionStore, app_id: str, report: FrameReport) -> Session:
    """Bind the session of record to the session the frame is displaying.

    - No session (or one for another app): create it from the report.
    - Existing session: adopt the frame's session id onto it, keeping the
      cache, and overwrite colliding cells with the frame's values.
    - Already live-bound with the same id: a refresh; the revision only moves
      forward.
    """
    session = store.session
    if session is None or session.app_id != app_id:
        session = Session(
            app_id=app_id,
            session_id=report.session_id,
            revision=report.revision,
            views=list(report.views),
            live_bound=True,
        )
        logger.info(
            "Created session from frame report",
            extra={"app_id": app_id, "session_id": report.session_id},
        )
    else:
        if session.session_id != report.session_id:
            logger.info(
                "Adopting frame session",
                extra={
                    "app_id": app_id,
                    "previous_session_id": session.session_id,
                    "session_id": report.session_id,
                },
            )
            session.session_id = report.session_id
            # A different session has its own revision sequence.
            session.revision = report.revision
        else:
            session.revision = max(session.revision, report.revision)
        if report.views:
            session.views = list(report.views)
        session.live_bound = True
        session.expired = False

    _place_frame_cells(session, report.cell_maps)
    store.install(session)
    return session


def merge_backend_init(store: SessionStore, app_id: str, init: InitResult) -> Session:
    """Fold the result of a backend-initiated session into the store.

    The backend session becomes the session of record only when there is
    nothing usable to keep. Otherwise it backfills cells the cache lacks and
    never replaces present ones.
    """
    session = store.session
    if session is None or session.app_id != app_id or session.expired:
        session = session_from_init(app_id, init)
        store.install(session)
        logger.info(
            "Installed backend session",
            extra={"app_id": app_id, "session_id": init.session_id, "cells": len(init.values)},
        )
        return session

    backfilled = 0
    for value in init.values:
        cell = CachedCell.from_value(value)
        if cell.key not in session.cell_cache:
            session.cell_cache[cell.key] = cell
            backfilled += 1
    if not session.views and init.views:
        session.views = list(init.views)
        held, session.unplaced_frame_cells = session.unplaced_frame_cells, []
        _place_frame_cells(session, held)
    logger.debug(
        "Backfilled session from backend init",
        extra={"app_id": app_id, "backfilled": backfilled, "live_bound": session.live_bound},
    )
    return session


def apply_frame_update(session: Session, cell_maps: Iterable[FrameCellMap]) -> list[CachedCell]:
    """Apply the frame's live change notifications to the cache.

    Frame changes carry no revision, so the revision is left alone; the next
    interact poll brings it up to date.
    """
    return _place_frame_cells(session, cell_maps)
