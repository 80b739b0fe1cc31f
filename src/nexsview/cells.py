"""Cell reference and app URL helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from nexsview.exceptions import InvalidCellRef

# App UUIDs appear as a path segment of published URLs, e.g.
# https://platform.nexs.com/app/3f2c...-...
_APP_UUID_RE = re.compile(
    r"/([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})",
    re.IGNORECASE,
)

# Column letters then a row number, after normalization ('$A$1' -> 'A1')
_A1_ADDRESS_RE = re.compile(r"^[A-Z]{1,3}[1-9][0-9]*$")


@dataclass(frozen=True)
class CellRef:
    """A parsed cell reference.

    ``sheet`` is None when the reference carried no sheet prefix.
    ``addr`` is always uppercase.
    """

    sheet: str | None
    addr: str


def normalize_address(addr: str) -> str:
    """Normalize a cell address for cache keys ('b2' -> 'B2')."""
    return addr.strip().replace("$", "").upper()


def parse_cell_ref(cell_ref: str) -> CellRef:
    """Split 'Sheet1!A1' into its sheet and address parts.

    Sheet names may be quoted the way spreadsheet formulas quote them
    ("'My Sheet'!B3", with '' for an embedded quote). Addresses never contain
    '!', so the last '!' is the separator.

    Raises:
        InvalidCellRef: The address part is not an A1-style cell address
    """
    sheet, bang, addr = cell_ref.strip().rpartition("!")
    addr = normalize_address(addr)
    if not _A1_ADDRESS_RE.match(addr):
        raise InvalidCellRef(cell_ref)
    if not bang:
        return CellRef(sheet=None, addr=addr)

    sheet = sheet.strip()
    if len(sheet) >= 2 and sheet[0] == "'" and sheet[-1] == "'":
        sheet = sheet[1:-1].replace("''", "'")
    return CellRef(sheet=sheet or None, addr=addr)


def extract_app_id(url: str) -> str | None:
    """Extract the app UUID from a published NExS URL."""
    match = _APP_UUID_RE.search(urlsplit(url).path)
    return match.group(1) if match else None


def is_platform_url(url: str, platform_url: str) -> bool:
    """Check that a URL is an https URL on the platform's origin."""
    try:
        parts = urlsplit(url)
        platform = urlsplit(platform_url)
    except ValueError:
        return False
    return (
        parts.scheme == platform.scheme
        and parts.netloc.lower() == platform.netloc.lower()
        and bool(parts.path.strip("/"))
    )
