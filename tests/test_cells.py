"""Unit tests for cell reference and URL helpers."""

import pytest

from nexsview.cells import (
    CellRef,
    extract_app_id,
    is_platform_url,
    normalize_address,
    parse_cell_ref,
)
from nexsview.exceptions import InvalidCellRef
from tests.fakes import APP_ID, APP_URL


class TestParseCellRef:
    """Tests for parse_cell_ref."""

    def test_bare_address(self) -> None:
        assert parse_cell_ref("A1") == CellRef(sheet=None, addr="A1")

    def test_lowercase_address_is_uppercased(self) -> None:
        assert parse_cell_ref("b17") == CellRef(sheet=None, addr="B17")

    def test_sheet_prefix(self) -> None:
        assert parse_cell_ref("Sheet1!a1") == CellRef(sheet="Sheet1", addr="A1")

    def test_quoted_sheet_name(self) -> None:
        """Quoted sheet names may contain spaces and escaped quotes."""
        assert parse_cell_ref("'My Sheet'!B3") == CellRef(sheet="My Sheet", addr="B3")
        assert parse_cell_ref("'Bob''s'!C4") == CellRef(sheet="Bob's", addr="C4")

    def test_absolute_markers_are_stripped(self) -> None:
        assert parse_cell_ref("Sheet1!$A$1").addr == "A1"

    def test_empty_sheet_prefix_is_none(self) -> None:
        assert parse_cell_ref("!A1") == CellRef(sheet=None, addr="A1")

    @pytest.mark.parametrize("cell_ref", ["", "Sheet1!", "hello", "A0", "1A", "B2:C3", "AAAA1"])
    def test_non_cell_addresses_rejected(self, cell_ref: str) -> None:
        with pytest.raises(InvalidCellRef) as exc_info:
            parse_cell_ref(cell_ref)
        assert exc_info.value.cell_ref == cell_ref


class TestNormalizeAddress:
    def test_whitespace_and_case(self) -> None:
        assert normalize_address("  c10 ") == "C10"


class TestAppUrls:
    """Tests for app URL validation and UUID extraction."""

    def test_extract_app_id(self) -> None:
        assert extract_app_id(APP_URL) == APP_ID

    def test_extract_app_id_ignores_query(self) -> None:
        assert extract_app_id(f"{APP_URL}?embed=1") == APP_ID

    def test_extract_app_id_missing(self) -> None:
        assert extract_app_id("https://platform.nexs.com/apps") is None

    def test_is_platform_url(self) -> None:
        assert is_platform_url(APP_URL, "https://platform.nexs.com")

    def test_other_host_rejected(self) -> None:
        assert not is_platform_url(
            f"https://evil.example.com/app/{APP_ID}", "https://platform.nexs.com"
        )

    def test_http_rejected(self) -> None:
        assert not is_platform_url(
            f"http://platform.nexs.com/app/{APP_ID}", "https://platform.nexs.com"
        )

    def test_bare_origin_rejected(self) -> None:
        assert not is_platform_url("https://platform.nexs.com/", "https://platform.nexs.com")
