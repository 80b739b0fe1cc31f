"""Errors raised by nexsview cell operations.

Every error here is user-facing: its message is what the agent sees when a
tool call fails, so it says what went wrong and how to recover.
"""

from __future__ import annotations


class NexsError(Exception):
    """Base exception for nexsview errors."""

    pass


class NoActiveSession(NexsError):
    """Raised when a cell operation runs before any spreadsheet was rendered."""

    def __init__(self) -> None:
        super().__init__(
            "No NExS spreadsheet is loaded. Call render_nexs_spreadsheet first."
        )


class AmbiguousSheet(NexsError):
    """Raised when a write cannot determine which sheet it targets."""

    def __init__(self, cell_ref: str) -> None:
        self.cell_ref = cell_ref
        super().__init__(
            f"Cannot determine sheet name for '{cell_ref}'. Use the 'sheet' "
            "parameter or include it in the cell reference (e.g. 'Sheet1!A1')."
        )


class InvalidCellRef(NexsError):
    """Raised when a cell reference does not name a single A1-style cell."""

    def __init__(self, cell_ref: str) -> None:
        self.cell_ref = cell_ref
        super().__init__(
            f"Invalid cell reference '{cell_ref}'. Use an address such as 'A1', "
            "'B17' or 'Sheet1!A1'."
        )


class CellNotFound(NexsError):
    """Raised when a cell is not present in the session's cell cache."""

    def __init__(self, cell_ref: str, known_sheets: list[str]) -> None:
        self.cell_ref = cell_ref
        self.known_sheets = known_sheets
        super().__init__(
            f"Cell '{cell_ref}' not found in the spreadsheet. "
            f"Known sheets: {', '.join(known_sheets)}"
        )


class RemoteUnavailable(NexsError):
    """Raised when a call to the NExS platform fails.

    A failed interact call does not mean the write was not applied on the
    platform side; the outcome is unknown.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SessionExpired(NexsError):
    """Raised when the session the user's view is showing is no longer reachable.

    The session is never silently replaced: a fresh session would show the
    user a reset spreadsheet instead of the one they have been editing.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(
            f"NExS session expired ({reason}). Please reload the spreadsheet view."
        )


class InvalidAppUrl(NexsError):
    """Raised when render is given a URL that is not a published NExS app."""

    def __init__(self, url: str, platform_url: str) -> None:
        self.url = url
        super().__init__(
            f"Only URLs from {platform_url} are supported. Received: {url}"
        )
