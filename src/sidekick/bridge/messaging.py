"""Request/response channel between the page-side UI and the background orchestrator.

Every outbound request gets a short correlation id; the background echoes it
back in the reply so the matching future can be resolved. Payloads are
serialised to JSON at the boundary so neither side ever holds the other's
objects. Requests never raise: they resolve to a ``BridgeResponse`` that is a
success, a structured failure, or a sender-side timeout.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    GET_ACTIONS = "GET_ACTIONS"
    EXECUTE_ACTION = "EXECUTE_ACTION"
    UPDATE_STATS = "UPDATE_STATS"


MessageHandler = Callable[[MessageType, Mapping[str, Any]], Awaitable[dict[str, Any]]]
ReplyCallback = Callable[[str], None]


@dataclass
class BridgeResponse:
    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    timed_out: bool = False

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> "BridgeResponse":
        return cls(
            ok=bool(raw.get("ok")),
            payload=dict(raw.get("payload") or {}),
            error=raw.get("error"),
        )


class BackgroundEndpoint:
    """Privileged side of the bridge.

    Each envelope is handled in its own task; the reply is serialised and handed
    back through the callback supplied with the envelope. Handler exceptions are
    turned into ``{"ok": false, "error": ...}`` replies.
    """

    def __init__(self, handler: MessageHandler) -> None:
        self.handler = handler
        self._tasks: set[asyncio.Task] = set()

    def deliver(self, wire: str, reply: ReplyCallback) -> None:
        task = asyncio.get_running_loop().create_task(self._dispatch(wire, reply))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, wire: str, reply: ReplyCallback) -> None:
        envelope = json.loads(wire)
        request_id = envelope.get("id")
        try:
            payload = await self.handler(MessageType(envelope.get("type")), envelope.get("payload") or {})
            response = {"id": request_id, "ok": True, "payload": payload}
        except Exception as exc:  # noqa: BLE001
            logger.exception("bridge_handler_failed id=%s type=%s", request_id, envelope.get("type"))
            response = {"id": request_id, "ok": False, "error": str(exc) or exc.__class__.__name__}
        reply(json.dumps(response))

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class MessagingBridge:
    """Page side of the bridge."""

    def __init__(self, endpoint: BackgroundEndpoint, timeout: float = 10.0) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def request(
        self,
        message_type: MessageType,
        payload: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> BridgeResponse:
        request_id = uuid.uuid4().hex[:8]
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        limit = timeout if timeout is not None else self.timeout

        try:
            wire = json.dumps({"id": request_id, "type": MessageType(message_type).value, "payload": payload or {}})
            self.endpoint.deliver(wire, self._on_reply)
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(request_id, None)
            logger.error("bridge_send_failed type=%s reason=%s", message_type, exc)
            return BridgeResponse(ok=False, error=f"Failed to send {message_type}: {exc}")

        try:
            return await asyncio.wait_for(future, timeout=limit)
        except asyncio.TimeoutError:
            logger.warning("bridge_timeout id=%s type=%s after=%ss", request_id, message_type, limit)
            return BridgeResponse(ok=False, error="Request timed out", timed_out=True)
        finally:
            self._pending.pop(request_id, None)

    def _on_reply(self, wire: str) -> None:
        raw = json.loads(wire)
        request_id = raw.get("id")
        future = self._pending.pop(request_id, None)
        if future is None:
            logger.debug("bridge_late_reply_dropped id=%s", request_id)
            return
        if not future.done():
            future.set_result(BridgeResponse.from_wire(raw))

    def close(self) -> None:
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_result(BridgeResponse(ok=False, error="Bridge closed"))
            self._pending.pop(request_id, None)
