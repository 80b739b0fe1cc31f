"""Cell operations exposed to the agent.

SpreadsheetService is the seam between tool calls and session state. It
renders apps, reads and writes cells against the session of record, and
accepts the embedded frame's reports through the relay.

Every interact call runs under the store's interact lock, and a delta is only
applied if the session id it was requested for is still the session of
record when it arrives.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger

from nexsview.cells import extract_app_id, is_platform_url, parse_cell_ref
from nexsview.exceptions import (
    AmbiguousSheet,
    CellNotFound,
    InvalidAppUrl,
    NoActiveSession,
    RemoteUnavailable,
    SessionExpired,
)
from nexsview.reconcile import (
    FrameReport,
    apply_frame_update,
    merge_backend_init,
    merge_frame_report,
    parse_cell_maps,
)
from nexsview.session import (
    CachedCell,
    PendingWrite,
    Session,
    SessionStore,
    apply_delta,
    resolve_sheet_name,
    session_from_init,
)
from nexsview.transport import (
    DEFAULT_PLATFORM_URL,
    CellData,
    InputTriple,
    InteractResult,
    Transport,
    parse_views,
)


@dataclass(frozen=True)
class SetCellResult:
    """Outcome of a write, with what the frame needs to replay it."""

    revision: int
    sheet: str
    addr: str
    value: CellData
    changed: list[CachedCell]
    replay: PendingWrite

    def summary(self) -> str:
        if self.changed:
            changes = ", ".join(f"{c.sheet_name}!{c.addr} = {c.text}" for c in self.changed)
        else:
            changes = f"{self.sheet}!{self.addr} set (no downstream changes detected)"
        return f"Set {self.sheet}!{self.addr} = {self.value}. {changes}"


class SpreadsheetService:
    """Render, read and write a published NExS app for one conversation.

    Example:
        >>> service = SpreadsheetService(SessionStore(), NexsTransport())
        >>> await service.render("https://platform.nexs.com/app/<uuid>")
        >>> cell = await service.get_cell("Sheet1!B2")
    """

    def __init__(
        self,
        store: SessionStore,
        transport: Transport,
        *,
        platform_url: str = DEFAULT_PLATFORM_URL,
        live_confirm_timeout: float = 3.0,
    ) -> None:
        """Initialize the service.

        Args:
            store: Conversation-scoped session store
            transport: Transport for the NExS platform
            platform_url: Only URLs on this origin can be rendered
            live_confirm_timeout: Seconds the first cell operation after a
                render waits for the eager session and the frame's report
        """
        self._store = store
        self._transport = transport
        self._platform_url = platform_url
        self._live_confirm_timeout = live_confirm_timeout
        self._init_task: asyncio.Task[None] | None = None
        self._init_app_id: str | None = None
        self._awaiting_live = False

    @property
    def store(self) -> SessionStore:
        return self._store

    # ------------------------------------------------------------------
    # render / restore
    # ------------------------------------------------------------------

    async def render(self, app_url: str) -> str:
        """Start showing an app and seed a backend session for it.

        The backend session is opened in the background so cell reads have a
        baseline before the frame reports its own session. An existing usable
        session for the same app is kept: re-fetching would reset state the
        session already reflects.
        """
        app_id = extract_app_id(app_url) if is_platform_url(app_url, self._platform_url) else None
        if app_id is None:
            raise InvalidAppUrl(app_url, self._platform_url)

        self._store.last_app_url = app_url
        session = self._store.session

        if session is not None and session.app_id != app_id:
            logger.info(
                "Switching app, dropping previous session",
                extra={"previous_app_id": session.app_id, "app_id": app_id},
            )
            self._store.session = None
            self._store.pending_writes.clear()
            self._store.live_confirmed.clear()
            session = None

        if session is not None and not session.expired:
            logger.info(
                "Reusing existing session",
                extra={"app_id": app_id, "live_bound": session.live_bound},
            )
            return app_url

        self._awaiting_live = True
        task = self._init_task
        if task is not None and not task.done():
            if self._init_app_id == app_id:
                return app_url
            task.cancel()
        self._init_app_id = app_id
        self._init_task = asyncio.create_task(self._eager_init(app_id))
        return app_url

    def restore_last_session(self) -> str | None:
        """Last rendered URL, for the view's refresh recovery."""
        return self._store.last_app_url

    async def _eager_init(self, app_id: str) -> None:
        try:
            init = await self._transport.init(app_id)
        except RemoteUnavailable as e:
            # The frame may still report its own session.
            logger.warning(
                "Background session init failed", extra={"app_id": app_id, "error": str(e)}
            )
            return

        last_url = self._store.last_app_url
        if last_url is None or extract_app_id(last_url) != app_id:
            logger.info(
                "Discarding session init for an app no longer rendered",
                extra={"app_id": app_id, "last_app_url": last_url},
            )
            return
        merge_backend_init(self._store, app_id, init)

    async def _settle(self) -> None:
        """Wait once, bounded, for the eager init and the frame's live session.

        Fails open: on timeout the operation proceeds with whatever state
        exists.
        """
        timeout = self._live_confirm_timeout
        task = self._init_task
        if task is not None and not task.done() and timeout > 0:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout)
            except TimeoutError:
                logger.warning("Background session init still pending, continuing")

        if self._awaiting_live:
            self._awaiting_live = False
            if not self._store.live_confirmed.is_set() and timeout > 0:
                try:
                    await asyncio.wait_for(self._store.live_confirmed.wait(), timeout)
                except TimeoutError:
                    logger.debug("No live session reported by the view, continuing")

    # ------------------------------------------------------------------
    # get_cell / set_cell
    # ------------------------------------------------------------------

    async def get_cell(self, cell_ref: str, sheet: str | None = None) -> CachedCell:
        """Read a cell after synchronizing with the platform.

        Raises:
            NoActiveSession: Nothing has been rendered yet
            InvalidCellRef: The reference is not an A1-style address
            SessionExpired: The live session stopped answering
            CellNotFound: The address is not on the resolved sheet(s)
        """
        await self._settle()
        ref = parse_cell_ref(cell_ref)

        async with self._store.interact_lock:
            session = await self._sync(self._require_session())

        sheet_name = resolve_sheet_name(session, sheet, ref.sheet)
        if sheet_name:
            found = session.get(sheet_name, ref.addr)
        else:
            found = session.find_any_sheet(ref.addr)

        if found is None:
            raise CellNotFound(cell_ref, session.known_sheets())
        return found

    async def set_cell(
        self, cell_ref: str, value: CellData, sheet: str | None = None
    ) -> SetCellResult:
        """Write a cell and queue the write for replay into the frame.

        A backend-only session that fails is re-initialised and the write
        retried once. A live-bound session is never replaced behind the
        user's back; its failure is reported as SessionExpired.

        Raises:
            NoActiveSession: Nothing has been rendered yet
            InvalidCellRef: The reference is not an A1-style address
            AmbiguousSheet: No sheet could be resolved for the reference
            RemoteUnavailable: The write failed, including after the retry
            SessionExpired: The live session stopped answering
        """
        await self._settle()
        ref = parse_cell_ref(cell_ref)

        async with self._store.interact_lock:
            session = self._require_session()
            sheet_name = resolve_sheet_name(session, sheet, ref.sheet)
            if not sheet_name:
                raise AmbiguousSheet(cell_ref)
            inputs: list[InputTriple] = [(sheet_name, ref.addr, value)]

            try:
                session, changed, revision = await self._interact(session, inputs)
            except RemoteUnavailable as e:
                if session.live_bound:
                    raise self._expire(session, e) from e

                logger.warning(
                    "Write failed, re-initialising session",
                    extra={"app_id": session.app_id, "error": str(e)},
                )
                try:
                    session = await self._reinit(session.app_id)
                    session, changed, revision = await self._interact(session, inputs)
                except RemoteUnavailable as retry_err:
                    raise RemoteUnavailable(
                        f"Failed to write to NExS spreadsheet: {retry_err}",
                        status_code=retry_err.status_code,
                        body=retry_err.body,
                    ) from retry_err

            replay = PendingWrite(
                view_index=session.view_index(sheet_name),
                sheet=sheet_name,
                addr=ref.addr,
                value=value,
            )
            self._store.enqueue_write(replay)

        logger.info(
            "Cell written",
            extra={
                "cell": f"{sheet_name}!{ref.addr}",
                "revision": revision,
                "changed": len(changed),
            },
        )
        return SetCellResult(
            revision=revision,
            sheet=sheet_name,
            addr=ref.addr,
            value=value,
            changed=changed,
            replay=replay,
        )

    def _require_session(self) -> Session:
        session = self._store.session
        if session is None:
            raise NoActiveSession()
        return session

    async def _interact(
        self, session: Session, inputs: Sequence[InputTriple]
    ) -> tuple[Session, list[CachedCell], int]:
        """Run one interact call and merge its delta if it is still current.

        Must be called with the interact lock held.
        """
        session_id = session.session_id
        result = await self._transport.interact(
            session.app_id, session_id, session.revision, inputs
        )
        return session, self._apply_if_current(session, session_id, result), result.revision

    def _apply_if_current(
        self, session: Session, session_id: str, result: InteractResult
    ) -> list[CachedCell]:
        if self._store.session is session and session.session_id == session_id:
            session.expired = False
            return apply_delta(session, result)

        # The frame's session was adopted while this call was in flight; its
        # revision belongs to another session and must not touch the cache.
        logger.debug(
            "Discarding delta for superseded session",
            extra={"session_id": session_id, "revision": result.revision},
        )
        return [CachedCell.from_value(value) for value in result.values]

    async def _sync(self, session: Session) -> Session:
        """Bring the cache up to date with a zero-write interact poll."""
        try:
            session, _, _ = await self._interact(session, ())
        except RemoteUnavailable as e:
            if session.live_bound:
                raise self._expire(session, e) from e

            logger.warning(
                "Sync failed, re-initialising session",
                extra={"app_id": session.app_id, "error": str(e)},
            )
            try:
                return await self._reinit(session.app_id)
            except RemoteUnavailable as init_err:
                logger.warning(
                    "Re-init failed, reading from cached state",
                    extra={"app_id": session.app_id, "error": str(init_err)},
                )
        return self._store.session or session

    async def _reinit(self, app_id: str) -> Session:
        """Open a fresh backend session and rebuild the cache from it.

        If the frame bound the store to its live session while the call was
        in flight, the live session is kept and only backfilled.
        """
        init = await self._transport.init(app_id)
        current = self._store.session
        if current is not None and current.app_id == app_id and current.live_bound:
            return merge_backend_init(self._store, app_id, init)

        session = session_from_init(app_id, init)
        self._store.install(session)
        logger.info(
            "Re-initialised backend session",
            extra={"app_id": app_id, "session_id": session.session_id},
        )
        return session

    def _expire(self, session: Session, error: RemoteUnavailable) -> SessionExpired:
        session.expired = True
        logger.warning(
            "Live session expired",
            extra={"app_id": session.app_id, "session_id": session.session_id, "error": str(error)},
        )
        return SessionExpired(str(error))

    # ------------------------------------------------------------------
    # frame relay entry points
    # ------------------------------------------------------------------

    def sync_from_frame(
        self,
        cell_maps: list[Any],
        is_initial: bool,
        session_id: str | None = None,
        revision: int | None = None,
        views: list[Any] | None = None,
    ) -> Session | None:
        """Apply a report relayed from the embedded frame.

        The initial report carries the frame's own session identity and is
        reconciled with the session of record; later reports are incremental
        cell changes. Reports that arrive before any render are ignored.
        """
        app_id = extract_app_id(self._store.last_app_url) if self._store.last_app_url else None
        if app_id is None and self._store.session is not None:
            app_id = self._store.session.app_id
        if app_id is None:
            logger.debug("Ignoring frame report before render")
            return None

        maps = parse_cell_maps(cell_maps)
        if is_initial and session_id:
            report = FrameReport(
                session_id=session_id,
                revision=revision or 0,
                views=parse_views(views),
                cell_maps=maps,
            )
            return merge_frame_report(self._store, app_id, report)

        session = self._store.session
        if session is None:
            logger.debug("Ignoring frame update without a session")
            return None
        apply_frame_update(session, maps)
        return session

    def take_pending_writes(self, limit: int | None = None) -> list[PendingWrite]:
        """Drain agent writes awaiting replay into the frame."""
        return self._store.take_pending_writes(limit)

    async def close(self) -> None:
        """Cancel background work and close the transport."""
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        await self._transport.close()
