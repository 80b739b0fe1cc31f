"""nexsview - Live NExS spreadsheets for conversational agents.

Renders a published NExS app inline in a chat surface and lets the agent
read and write its cells while the user edits the same session in the
embedded view.

The embed protocol spoken with the NExS frame is implemented by
FrameRelay and parse_frame_message; the bundled view script is a browser
port of them.
"""

__version__ = "0.1.0"

from nexsview.exceptions import (
    AmbiguousSheet,
    CellNotFound,
    InvalidAppUrl,
    InvalidCellRef,
    NexsError,
    NoActiveSession,
    RemoteUnavailable,
    SessionExpired,
)
from nexsview.relay import FrameRelay, parse_frame_message
from nexsview.service import SetCellResult, SpreadsheetService
from nexsview.session import Session, SessionStore
from nexsview.transport import NexsTransport, Transport

__all__ = [
    "AmbiguousSheet",
    "CellNotFound",
    "FrameRelay",
    "InvalidAppUrl",
    "InvalidCellRef",
    "NexsError",
    "NexsTransport",
    "NoActiveSession",
    "RemoteUnavailable",
    "Session",
    "SessionExpired",
    "SessionStore",
    "SetCellResult",
    "SpreadsheetService",
    "Transport",
    "__version__",
    "parse_frame_message",
]
