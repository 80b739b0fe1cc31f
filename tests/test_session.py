"""Unit tests for the session model and cache merges."""

from nexsview.session import (
    MAX_PENDING_WRITES,
    PendingWrite,
    Session,
    SessionStore,
    apply_delta,
    apply_full_snapshot,
    resolve_sheet_name,
    session_from_init,
)
from nexsview.transport import CellInfo, CellValue
from tests.fakes import APP_ID, init_result, interact_result, numeric, view


def make_session(**kwargs) -> Session:
    defaults = {"app_id": APP_ID, "session_id": "s1", "revision": 1}
    defaults.update(kwargs)
    return Session(**defaults)


class TestSnapshotAndDelta:
    """Tests for apply_full_snapshot and apply_delta."""

    def test_session_from_init_seeds_cache(self) -> None:
        session = session_from_init(
            APP_ID,
            init_result(revision=2, views=[view("Sheet1")], values=[numeric("Sheet1", "A1", 5)]),
        )
        assert session.session_id == "backend-session"
        assert session.revision == 2
        assert session.live_bound is False
        assert session.get("Sheet1", "a1").value == 5

    def test_snapshot_keys_are_uppercased(self) -> None:
        session = make_session()
        lower = CellValue(
            sheet_name="Sheet1",
            info=CellInfo(addr="b2", data=1, datatype="numeric", text="1"),
        )
        apply_full_snapshot(session, [lower])
        assert ("Sheet1", "B2") in session.cell_cache

    def test_snapshot_never_deletes(self) -> None:
        session = make_session()
        apply_full_snapshot(session, [numeric("Sheet1", "A1", 1), numeric("Sheet1", "A2", 2)])
        apply_full_snapshot(session, [numeric("Sheet1", "A1", 3)])
        assert session.get("Sheet1", "A1").value == 3
        assert session.get("Sheet1", "A2").value == 2

    def test_delta_returns_changes_in_order_and_advances_revision(self) -> None:
        session = make_session(revision=4)
        changed = apply_delta(
            session,
            interact_result(5, [numeric("Sheet1", "C2", 10), numeric("Sheet1", "B2", 5)]),
        )
        assert [c.addr for c in changed] == ["C2", "B2"]
        assert session.revision == 5

    def test_delta_is_idempotent(self) -> None:
        session = make_session()
        delta = interact_result(2, [numeric("Sheet1", "A1", 7)])
        apply_delta(session, delta)
        cache = dict(session.cell_cache)
        apply_delta(session, delta)
        assert session.cell_cache == cache
        assert session.revision == 2

    def test_older_delta_never_lowers_revision(self) -> None:
        session = make_session(revision=9)
        apply_delta(session, interact_result(3, [numeric("Sheet1", "A1", 1)]))
        assert session.revision == 9
        assert session.get("Sheet1", "A1").value == 1


class TestLookups:
    """Tests for cache lookups and view indexes."""

    def test_find_any_sheet_first_in_cache_order(self) -> None:
        session = make_session()
        apply_full_snapshot(session, [numeric("Calc", "A1", 1), numeric("Sheet1", "A1", 2)])
        assert session.find_any_sheet("a1").sheet_name == "Calc"
        assert session.find_any_sheet("Z9") is None

    def test_known_sheets_distinct_in_first_seen_order(self) -> None:
        session = make_session()
        apply_full_snapshot(
            session,
            [numeric("Calc", "A1", 1), numeric("Sheet1", "A1", 2), numeric("Calc", "A2", 3)],
        )
        assert session.known_sheets() == ["Calc", "Sheet1"]

    def test_view_index(self) -> None:
        session = make_session(views=[view("Intro"), view("Sheet1"), view("Sheet1")])
        assert session.view_index("Sheet1") == 1
        assert session.view_index("Missing") is None


class TestResolveSheetName:
    """Sheet resolution precedence: explicit, parsed, first visible view."""

    def test_explicit_wins(self) -> None:
        session = make_session(views=[view("Sheet1")])
        assert resolve_sheet_name(session, "Other", "Parsed") == "Other"

    def test_parsed_prefix_next(self) -> None:
        session = make_session(views=[view("Sheet1")])
        assert resolve_sheet_name(session, None, "Parsed") == "Parsed"

    def test_first_visible_view(self) -> None:
        session = make_session(views=[view("Hidden", visible=False), view("Shown")])
        assert resolve_sheet_name(session) == "Shown"

    def test_none_when_nothing_applies(self) -> None:
        session = make_session(views=[view("Hidden", visible=False)])
        assert resolve_sheet_name(session) is None


class TestSessionStore:
    """Tests for the write queue and live confirmation."""

    def test_queue_is_fifo_and_drains(self) -> None:
        store = SessionStore()
        first = PendingWrite(0, "Sheet1", "A1", 1)
        second = PendingWrite(0, "Sheet1", "A2", 2)
        store.enqueue_write(first)
        store.enqueue_write(second)

        assert store.take_pending_writes(limit=1) == [first]
        assert store.take_pending_writes() == [second]
        assert store.take_pending_writes() == []

    def test_queue_drops_oldest_when_full(self) -> None:
        store = SessionStore(max_pending_writes=2)
        writes = [PendingWrite(0, "Sheet1", f"A{row}", row) for row in (1, 2, 3)]
        for write in writes:
            store.enqueue_write(write)

        assert store.take_pending_writes() == writes[1:]

    def test_queue_is_bounded_by_default(self) -> None:
        store = SessionStore()
        for row in range(1, MAX_PENDING_WRITES + 11):
            store.enqueue_write(PendingWrite(0, "Sheet1", f"A{row}", row))

        taken = store.take_pending_writes()
        assert len(taken) == MAX_PENDING_WRITES
        assert taken[0].addr == "A11"

    def test_install_tracks_live_binding(self) -> None:
        store = SessionStore()
        store.install(make_session(live_bound=True))
        assert store.live_confirmed.is_set()

        store.install(make_session(live_bound=False))
        assert not store.live_confirmed.is_set()

    def test_pending_write_to_dict(self) -> None:
        assert PendingWrite(None, "Sheet1", "B2", "x").to_dict() == {
            "view_index": None,
            "sheet": "Sheet1",
            "addr": "B2",
            "value": "x",
        }
