"""Transport layer for the NExS interact API.

Defines the Transport protocol and its production implementation:
- NexsTransport: talks to the platform's public init/interact endpoints

Both endpoints return cell values in the same shape, a list of
``[sheetName, cellInfo]`` pairs, which is parsed into CellValue objects here
so nothing above this layer touches raw JSON.
"""

from __future__ import annotations

import ssl
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

import certifi
import httpx
from loguru import logger

from nexsview.exceptions import RemoteUnavailable

# API constants
DEFAULT_PLATFORM_URL = "https://platform.nexs.com"
DEFAULT_TIMEOUT = 30

DataType = Literal["numeric", "string", "error", "n/a"]
DATA_TYPES: frozenset[str] = frozenset({"numeric", "string", "error", "n/a"})

CellData = str | int | float

# (sheet name, cell address, value) as sent in interact "inputs"
InputTriple = tuple[str, str, CellData]


@dataclass(frozen=True)
class CellInfo:
    """One cell as reported by the platform."""

    addr: str
    data: CellData
    datatype: DataType
    text: str
    formula: str | None = None


@dataclass(frozen=True)
class CellValue:
    """A cell together with the sheet it belongs to."""

    sheet_name: str
    info: CellInfo


@dataclass(frozen=True)
class View:
    """A published view of the app.

    The position of a view in the app's view list is the view index the
    embedded frame uses when it reports changes.
    """

    name: str
    sheet_name: str
    range: str
    is_visible: bool


@dataclass(frozen=True)
class InitResult:
    """Response of POST /api/app/{uuid}/init: a new session and a full snapshot."""

    session_id: str
    revision: int
    views: tuple[View, ...]
    values: tuple[CellValue, ...]


@dataclass(frozen=True)
class InteractResult:
    """Response of POST /api/app/{uuid}/interact: cells changed since the baseline."""

    revision: int
    values: tuple[CellValue, ...]


class Transport(ABC):
    """Abstract base class for NExS platform access.

    Implementations must not retry internally; retry policy belongs to the
    caller.
    """

    @abstractmethod
    async def init(self, app_id: str) -> InitResult:
        """Create a new session for an app.

        Args:
            app_id: The app UUID taken from the published URL

        Returns:
            InitResult with the session identity and every cell value
        """
        ...

    @abstractmethod
    async def interact(
        self,
        app_id: str,
        session_id: str,
        revision: int,
        inputs: Sequence[InputTriple] = (),
    ) -> InteractResult:
        """Operate on an existing session.

        Args:
            app_id: The app UUID
            session_id: Session to operate on
            revision: Baseline revision; only cells changed after it are returned
            inputs: Cells to write. Empty for a pure synchronization poll.

        Returns:
            InteractResult with the new revision and the changed cells
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        ...


class NexsTransport(Transport):
    """Production transport for the NExS platform.

    The init and interact endpoints accept unauthenticated requests for
    published apps, so no credentials are sent.
    """

    def __init__(
        self,
        platform_url: str = DEFAULT_PLATFORM_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            platform_url: Base URL of the platform, without trailing slash
            timeout: Request timeout in seconds
            client: Optional preconfigured client (used by tests)
        """
        self._base_url = platform_url.rstrip("/")
        if client is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            client = httpx.AsyncClient(
                timeout=timeout,
                verify=ssl_context,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        self._client = client

    async def init(self, app_id: str) -> InitResult:
        """Create a session via the init endpoint."""
        data = await self._post(f"/api/app/{app_id}/init", {}, op="init")

        session_id = data.get("session")
        if not isinstance(session_id, str) or not session_id:
            raise RemoteUnavailable("NExS init failed: response has no session id")

        return InitResult(
            session_id=session_id,
            revision=_as_int(data.get("revision")),
            views=parse_views(data.get("views")),
            values=parse_cell_values(data.get("values")),
        )

    async def interact(
        self,
        app_id: str,
        session_id: str,
        revision: int,
        inputs: Sequence[InputTriple] = (),
    ) -> InteractResult:
        """Poll for or write changes via the interact endpoint."""
        body = {
            "session": session_id,
            "revision": revision,
            "inputs": [list(triple) for triple in inputs],
        }
        data = await self._post(f"/api/app/{app_id}/interact", body, op="interact")

        return InteractResult(
            revision=_as_int(data.get("revision"), default=revision),
            values=parse_cell_values(data.get("values")),
        )

    async def _post(self, path: str, body: dict[str, Any], *, op: str) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON object."""
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.post(url, json=body)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            text = e.response.text
            raise RemoteUnavailable(
                f"NExS {op} failed ({status}): {text}", status_code=status, body=text
            ) from e
        except httpx.RequestError as e:
            raise RemoteUnavailable(f"NExS {op} failed: network error: {e}") from e
        except ValueError as e:
            raise RemoteUnavailable(f"NExS {op} failed: invalid JSON response") from e

        if not isinstance(result, dict):
            raise RemoteUnavailable(f"NExS {op} failed: unexpected response shape")
        return result

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def parse_cell_info(raw: Any) -> CellInfo | None:
    """Parse a cellInfo object, returning None if it is not one."""
    if not isinstance(raw, dict):
        return None
    addr = raw.get("addr")
    if not isinstance(addr, str) or not addr:
        return None

    data = raw.get("data", "")
    if not isinstance(data, str | int | float) or isinstance(data, bool):
        data = str(data)
    datatype = raw.get("datatype")
    if datatype not in DATA_TYPES:
        datatype = "n/a"
    text = raw.get("text")
    formula = raw.get("formula")

    return CellInfo(
        addr=addr,
        data=data,
        datatype=datatype,
        text=text if isinstance(text, str) else str(data),
        formula=formula if isinstance(formula, str) else None,
    )


def parse_cell_values(raw: Any) -> tuple[CellValue, ...]:
    """Parse a list of ``[sheetName, cellInfo]`` pairs.

    Entries that do not have that shape are skipped.
    """
    if not isinstance(raw, list):
        return ()

    values: list[CellValue] = []
    for entry in raw:
        if not isinstance(entry, list | tuple) or len(entry) != 2:
            logger.debug("Skipping malformed cell entry", extra={"entry": repr(entry)})
            continue
        sheet_name, raw_info = entry
        info = parse_cell_info(raw_info)
        if not isinstance(sheet_name, str) or not sheet_name or info is None:
            logger.debug("Skipping malformed cell entry", extra={"entry": repr(entry)})
            continue
        values.append(CellValue(sheet_name=sheet_name, info=info))
    return tuple(values)


def parse_views(raw: Any) -> tuple[View, ...]:
    """Parse the platform's view list, preserving order.

    View positions are significant, so an unreadable entry becomes an
    invisible placeholder with an empty sheet name instead of being dropped.
    """
    if not isinstance(raw, list):
        return ()

    views: list[View] = []
    for item in raw:
        sheet_name = item.get("sheetName") if isinstance(item, dict) else None
        if not isinstance(sheet_name, str) or not sheet_name:
            views.append(View(name="", sheet_name="", range="", is_visible=False))
            continue
        views.append(
            View(
                name=str(item.get("name", sheet_name)),
                sheet_name=sheet_name,
                range=str(item.get("range", "")),
                is_visible=not bool(item.get("isInvisible", False)),
            )
        )
    return tuple(views)


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default
