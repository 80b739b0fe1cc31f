"""Relay between the embedded NExS frame and the backend.

The relay runs on the view side. It speaks the platform's private embed
protocol with the frame and forwards what it learns to the backend's
internal tools:

1. The frame sends ``"hello"``; the relay echoes it.
2. Once the frame has loaded (and said hello), the relay sends
   ``{"op": "init", "id": <frame id>}``.
3. The frame answers with ``{"op": "initApp", ...}``, its own session, revision
   and per-view cells. This is relayed as the initial report.
4. Every recalculation produces ``{"op": "updateCellMap", "cells": [...]}``,
   relayed as an incremental report.

Separately, agent writes queued on the backend are drained on a fixed
interval and posted to the frame as ``{"op": "input", ...}``, the same
message the frame's own UI uses for user input.

Messages from any origin but the frame's are ignored before parsing, and
payloads matching no known shape are dropped: the frame is an uncontrolled
third party and unknown messages are expected noise.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal

from loguru import logger
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    TypeAdapter,
    ValidationError,
)

SYNC_TOOL = "sync_from_live_frame"
DRAIN_TOOL = "take_pending_writes"

PostToFrame = Callable[[Any, str], Awaitable[None]]
CallTool = Callable[[str, dict[str, Any]], Awaitable[Any]]


class _FrameModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class InitAppView(_FrameModel):
    name: str = ""
    sheet_name: str = Field(default="", alias="sheetName")
    range: str = ""
    is_invisible: bool = Field(default=False, alias="isInvisible")
    cells: list[Any] | dict[str, Any] = Field(default_factory=list)


class InitApp(_FrameModel):
    op: Literal["initApp"]
    session: str | None = Field(
        default=None, validation_alias=AliasChoices("session", "sessionId", "session_id")
    )
    revision: StrictInt = 0
    views: list[InitAppView] = Field(default_factory=list)


class UpdateCellMap(_FrameModel):
    op: Literal["updateCellMap"]
    cells: list[Any]


@dataclass(frozen=True)
class Hello:
    pass


FrameMessage = Hello | InitApp | UpdateCellMap

_message_adapter: TypeAdapter[InitApp | UpdateCellMap] = TypeAdapter(
    Annotated[InitApp | UpdateCellMap, Field(discriminator="op")]
)


def parse_frame_message(data: Any) -> FrameMessage | None:
    """Match a raw postMessage payload against the known frame messages."""
    if data == "hello":
        return Hello()
    if isinstance(data, str | bytes):
        try:
            data = json.loads(data)
        except ValueError:
            return None
    if not isinstance(data, dict):
        return None
    try:
        return _message_adapter.validate_python(data)
    except ValidationError:
        return None


class RelayState(Enum):
    AWAITING_HELLO = "awaiting_hello"
    AWAITING_LOAD = "awaiting_load"
    AWAITING_INIT_APP = "awaiting_init_app"
    LIVE = "live"


class FrameRelay:
    """Handshake, change relaying and write replay for one embedded frame."""

    def __init__(
        self,
        frame_origin: str,
        post_to_frame: PostToFrame,
        call_tool: CallTool,
        frame_id: str | None = None,
    ) -> None:
        """Initialize the relay.

        Args:
            frame_origin: Only messages from this origin are accepted, and
                messages to the frame are targeted at it
            post_to_frame: Posts a message to the frame window
            call_tool: Calls an internal backend tool by name
            frame_id: Identifier sent in the init instruction
        """
        self._frame_origin = frame_origin
        self._post_to_frame = post_to_frame
        self._call_tool = call_tool
        self.frame_id = frame_id or uuid.uuid4().hex
        self._hello_seen = False
        self._loaded = False
        self._init_sent = False
        self._live = False
        # Writes drained from the backend before the frame went live.
        self._outbox: deque[dict[str, Any]] = deque()

    @property
    def state(self) -> RelayState:
        if self._live:
            return RelayState.LIVE
        if self._init_sent:
            return RelayState.AWAITING_INIT_APP
        if self._hello_seen:
            return RelayState.AWAITING_LOAD
        return RelayState.AWAITING_HELLO

    async def handle_message(self, origin: str, data: Any) -> None:
        """Handle one postMessage event from the frame window."""
        if origin != self._frame_origin:
            return

        message = parse_frame_message(data)
        if message is None:
            return

        if isinstance(message, Hello):
            self._hello_seen = True
            await self._post_to_frame("hello", self._frame_origin)
            await self._maybe_send_init()
        elif isinstance(message, InitApp):
            await self._on_init_app(message)
        elif isinstance(message, UpdateCellMap):
            await self._on_update(message)

    async def frame_loaded(self) -> None:
        """Record that the frame finished loading."""
        self._loaded = True
        await self._maybe_send_init()

    async def _maybe_send_init(self) -> None:
        if self._hello_seen and self._loaded and not self._init_sent:
            self._init_sent = True
            await self._post_to_frame({"op": "init", "id": self.frame_id}, self._frame_origin)

    async def _on_init_app(self, message: InitApp) -> None:
        if not self._init_sent:
            logger.debug("Ignoring initApp before init was sent")
            return

        self._live = True
        views = [
            {
                "name": view.name,
                "sheetName": view.sheet_name,
                "range": view.range,
                "isInvisible": view.is_invisible,
            }
            for view in message.views
        ]
        cell_maps = [
            {"view_index": index, "cells": view.cells} for index, view in enumerate(message.views)
        ]
        arguments: dict[str, Any] = {
            "cell_maps": cell_maps,
            "is_initial": True,
            "views": views,
            "revision": message.revision,
        }
        if message.session:
            arguments["session_id"] = message.session
        await self._relay(arguments)
        await self._flush_outbox()

    async def _on_update(self, message: UpdateCellMap) -> None:
        if not self._live:
            return

        cell_maps = [
            item if isinstance(item, dict) and "cells" in item else {"view_index": i, "cells": item}
            for i, item in enumerate(message.cells)
        ]
        await self._relay({"cell_maps": cell_maps, "is_initial": False})

    async def _relay(self, arguments: dict[str, Any]) -> None:
        try:
            await self._call_tool(SYNC_TOOL, arguments)
        except Exception as e:
            # The host may not expose internal tools; the view keeps working.
            logger.warning("Relaying frame report failed", extra={"error": str(e)})

    async def drain_pending_writes(self) -> int:
        """Fetch queued agent writes and post them to the frame.

        Returns the number of writes posted. Writes fetched before the frame
        is live are kept and posted once it is.
        """
        try:
            result = await self._call_tool(DRAIN_TOOL, {})
        except Exception as e:
            logger.warning("Draining pending writes failed", extra={"error": str(e)})
            result = None

        writes = result.get("writes", []) if isinstance(result, dict) else []
        for write in writes:
            if not isinstance(write, dict) or write.get("view_index") is None:
                logger.debug("Skipping write with no view", extra={"write": repr(write)})
                continue
            self._outbox.append(
                {
                    "op": "input",
                    "viewIndex": write["view_index"],
                    "cell": write.get("addr"),
                    "value": write.get("value"),
                }
            )
        return await self._flush_outbox()

    async def _flush_outbox(self) -> int:
        if not self._live:
            return 0
        posted = 0
        while self._outbox:
            await self._post_to_frame(self._outbox.popleft(), self._frame_origin)
            posted += 1
        return posted

    async def run_replay_loop(self, interval: float) -> None:
        """Drain pending writes every ``interval`` seconds until cancelled."""
        while True:
            await self.drain_pending_writes()
            await asyncio.sleep(interval)
