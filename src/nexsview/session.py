"""In-process model of the NExS session the backend is working with.

A Session holds what the backend currently believes the spreadsheet looks
like. Its cell cache always holds full state: it is seeded from complete
snapshots and then patched with deltas, and every cell lookup reads from it.

The SessionStore owns the session for one conversation, along with the
queue of agent writes waiting to be replayed into the embedded frame. It is
created by whoever manages the conversation and passed to the operations
that need it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from nexsview.cells import normalize_address
from nexsview.transport import CellData, CellValue, InitResult, InteractResult, View

CacheKey = tuple[str, str]

# Writes kept for replay when no view drains the queue (e.g. hosts without
# an embedded view); the oldest are dropped first.
MAX_PENDING_WRITES = 256


@dataclass(frozen=True)
class CachedCell:
    """A cell as stored in the cache. ``addr`` is uppercase."""

    sheet_name: str
    addr: str
    value: CellData
    text: str
    datatype: str
    formula: str | None = None

    @classmethod
    def from_value(cls, cell: CellValue) -> CachedCell:
        return cls(
            sheet_name=cell.sheet_name,
            addr=normalize_address(cell.info.addr),
            value=cell.info.data,
            text=cell.info.text,
            datatype=cell.info.datatype,
            formula=cell.info.formula,
        )

    @property
    def key(self) -> CacheKey:
        return (self.sheet_name, self.addr)

    def to_dict(self) -> dict[str, CellData]:
        return {
            "sheet": self.sheet_name,
            "addr": self.addr,
            "value": self.value,
            "text": self.text,
            "datatype": self.datatype,
        }


@dataclass
class Session:
    """One logical connection to a published NExS app.

    ``session_id`` is a single mutable identity: it starts as the id of a
    session the backend opened itself and may be replaced by the id of the
    session the user's embedded frame is displaying. ``live_bound`` records
    that the replacement happened.
    """

    app_id: str
    session_id: str
    revision: int
    views: list[View] = field(default_factory=list)
    cell_cache: dict[CacheKey, CachedCell] = field(default_factory=dict)
    live_bound: bool = False
    # Set when a live-bound session stopped answering; render may replace it.
    expired: bool = False
    # Frame cell maps received before any view list was known (FrameCellMap).
    unplaced_frame_cells: list[Any] = field(default_factory=list)

    def get(self, sheet_name: str, addr: str) -> CachedCell | None:
        return self.cell_cache.get((sheet_name, normalize_address(addr)))

    def find_any_sheet(self, addr: str) -> CachedCell | None:
        """Find an address on any sheet. The first match in cache order wins."""
        addr = normalize_address(addr)
        for (_, cached_addr), cell in self.cell_cache.items():
            if cached_addr == addr:
                return cell
        return None

    def known_sheets(self) -> list[str]:
        """Distinct sheet names present in the cache, in first-seen order."""
        return list(dict.fromkeys(sheet for sheet, _ in self.cell_cache))

    def view_index(self, sheet_name: str) -> int | None:
        """Index of the first view showing a sheet, as the frame numbers views."""
        for index, view in enumerate(self.views):
            if view.sheet_name == sheet_name:
                return index
        return None


@dataclass(frozen=True)
class PendingWrite:
    """An agent write waiting to be replayed into the embedded frame."""

    view_index: int | None
    sheet: str
    addr: str
    value: CellData

    def to_dict(self) -> dict[str, CellData | None]:
        return {
            "view_index": self.view_index,
            "sheet": self.sheet,
            "addr": self.addr,
            "value": self.value,
        }


def session_from_init(app_id: str, init: InitResult, *, live_bound: bool = False) -> Session:
    """Build a session from a backend init response."""
    session = Session(
        app_id=app_id,
        session_id=init.session_id,
        revision=init.revision,
        views=list(init.views),
        live_bound=live_bound,
    )
    apply_full_snapshot(session, init.values)
    return session


def apply_full_snapshot(session: Session, values: Iterable[CellValue]) -> None:
    """Upsert every cell of a full snapshot into the cache.

    Cells absent from the snapshot are kept: a spreadsheet never shrinks
    implicitly, so a missing cell is unchanged, not deleted.
    """
    for value in values:
        cell = CachedCell.from_value(value)
        session.cell_cache[cell.key] = cell


def apply_delta(session: Session, result: InteractResult) -> list[CachedCell]:
    """Merge an interact delta into the cache and advance the revision.

    Returns the changed cells in the order the platform reported them.
    """
    changed = [CachedCell.from_value(value) for value in result.values]
    for cell in changed:
        session.cell_cache[cell.key] = cell
    session.revision = max(session.revision, result.revision)
    return changed


def resolve_sheet_name(
    session: Session,
    explicit: str | None = None,
    parsed: str | None = None,
) -> str | None:
    """Decide which sheet a cell reference targets.

    Precedence: explicit argument, then the sheet prefix of the reference,
    then the first visible view's sheet. None when nothing applies.
    """
    if explicit:
        return explicit
    if parsed:
        return parsed
    for view in session.views:
        if view.is_visible and view.sheet_name:
            return view.sheet_name
    return None


class SessionStore:
    """Conversation-scoped state: the session plus its coordination primitives."""

    def __init__(self, max_pending_writes: int = MAX_PENDING_WRITES) -> None:
        self.session: Session | None = None
        # Last rendered URL, used by the view to recover after a page refresh.
        self.last_app_url: str | None = None
        self.pending_writes: deque[PendingWrite] = deque(maxlen=max_pending_writes)
        # interact calls are serialized so a delta from an older baseline can
        # never land after a newer one.
        self.interact_lock = asyncio.Lock()
        # Set once the frame has reported its own session.
        self.live_confirmed = asyncio.Event()

    def install(self, session: Session) -> None:
        """Make a session the session of record."""
        self.session = session
        if session.live_bound:
            self.live_confirmed.set()
        else:
            self.live_confirmed.clear()

    def enqueue_write(self, write: PendingWrite) -> None:
        if self.pending_writes and len(self.pending_writes) == self.pending_writes.maxlen:
            dropped = self.pending_writes[0]
            logger.warning(
                "Replay queue full, dropping oldest write",
                extra={"cell": f"{dropped.sheet}!{dropped.addr}"},
            )
        self.pending_writes.append(write)

    def take_pending_writes(self, limit: int | None = None) -> list[PendingWrite]:
        """Remove and return queued writes, oldest first."""
        taken: list[PendingWrite] = []
        while self.pending_writes and (limit is None or len(taken) < limit):
            taken.append(self.pending_writes.popleft())
        return taken
