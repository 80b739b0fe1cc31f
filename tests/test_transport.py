"""Unit tests for NexsTransport using httpx.MockTransport."""

import json

import httpx
import pytest

from nexsview.exceptions import RemoteUnavailable
from nexsview.transport import (
    NexsTransport,
    View,
    parse_cell_info,
    parse_cell_values,
    parse_views,
)
from tests.fakes import APP_ID

INIT_BODY = {
    "session": "sess-1",
    "revision": 3,
    "views": [
        {"name": "Inputs", "sheetName": "Sheet1", "range": "A1:D20"},
        {"name": "Hidden", "sheetName": "Calc", "range": "A1:B5", "isInvisible": True},
    ],
    "values": [
        ["Sheet1", {"addr": "A1", "data": 5, "datatype": "numeric", "text": "5"}],
        ["Calc", {"addr": "B2", "data": "hi", "datatype": "string", "text": "hi"}],
    ],
}


def make_transport(handler) -> NexsTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NexsTransport(platform_url="https://platform.nexs.com", client=client)


class TestInit:
    """Tests for the init endpoint."""

    @pytest.mark.asyncio
    async def test_parses_session_views_and_values(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=INIT_BODY)

        transport = make_transport(handler)
        result = await transport.init(APP_ID)
        await transport.close()

        assert seen[0].method == "POST"
        assert seen[0].url.path == f"/api/app/{APP_ID}/init"
        assert result.session_id == "sess-1"
        assert result.revision == 3
        assert result.views[0] == View("Inputs", "Sheet1", "A1:D20", True)
        assert result.views[1].is_visible is False
        assert [(v.sheet_name, v.info.addr, v.info.data) for v in result.values] == [
            ("Sheet1", "A1", 5),
            ("Calc", "B2", "hi"),
        ]

    @pytest.mark.asyncio
    async def test_missing_session_id_fails(self) -> None:
        transport = make_transport(lambda r: httpx.Response(200, json={"revision": 0}))
        with pytest.raises(RemoteUnavailable, match="no session id"):
            await transport.init(APP_ID)

    @pytest.mark.asyncio
    async def test_http_error_carries_status_and_body(self) -> None:
        transport = make_transport(lambda r: httpx.Response(404, text="no such app"))
        with pytest.raises(RemoteUnavailable) as exc_info:
            await transport.init(APP_ID)
        assert exc_info.value.status_code == 404
        assert exc_info.value.body == "no such app"
        assert "404" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_transport(handler)
        with pytest.raises(RemoteUnavailable, match="network error"):
            await transport.init(APP_ID)

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        transport = make_transport(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(RemoteUnavailable, match="invalid JSON"):
            await transport.init(APP_ID)

    @pytest.mark.asyncio
    async def test_non_object_response(self) -> None:
        transport = make_transport(lambda r: httpx.Response(200, json=[1, 2]))
        with pytest.raises(RemoteUnavailable, match="unexpected response shape"):
            await transport.init(APP_ID)


class TestInteract:
    """Tests for the interact endpoint."""

    @pytest.mark.asyncio
    async def test_sends_session_revision_and_inputs(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "revision": 8,
                    "values": [
                        ["Sheet1", {"addr": "C2", "data": 10, "datatype": "numeric", "text": "10"}]
                    ],
                },
            )

        transport = make_transport(handler)
        result = await transport.interact(APP_ID, "sess-1", 7, [("Sheet1", "B2", 5)])

        assert bodies == [{"session": "sess-1", "revision": 7, "inputs": [["Sheet1", "B2", 5]]}]
        assert result.revision == 8
        assert result.values[0].info.addr == "C2"

    @pytest.mark.asyncio
    async def test_poll_sends_empty_inputs(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"values": []})

        transport = make_transport(handler)
        result = await transport.interact(APP_ID, "sess-1", 4)

        assert bodies[0]["inputs"] == []
        # No revision in the response keeps the baseline.
        assert result.revision == 4
        assert result.values == ()


class TestParsers:
    """Tests for the response parsers."""

    def test_unknown_datatype_becomes_na(self) -> None:
        info = parse_cell_info({"addr": "A1", "data": 1, "datatype": "date"})
        assert info is not None
        assert info.datatype == "n/a"
        assert info.text == "1"

    def test_cell_info_without_addr(self) -> None:
        assert parse_cell_info({"data": 1}) is None

    def test_malformed_value_entries_are_skipped(self) -> None:
        values = parse_cell_values(
            [
                ["Sheet1", {"addr": "A1", "data": 1, "datatype": "numeric", "text": "1"}],
                ["Sheet1"],
                "junk",
                [None, {"addr": "A2", "data": 2}],
                ["Sheet1", {"no_addr": True}],
            ]
        )
        assert [v.info.addr for v in values] == ["A1"]

    def test_bad_views_keep_their_position(self) -> None:
        views = parse_views([{"name": "x"}, {"sheetName": "Sheet2"}])
        assert len(views) == 2
        assert views[0].sheet_name == ""
        assert views[0].is_visible is False
        assert views[1].sheet_name == "Sheet2"
        assert views[1].name == "Sheet2"

    def test_non_list_inputs(self) -> None:
        assert parse_views(None) == ()
        assert parse_cell_values({"a": 1}) == ()
