"""Page-side overlay lifecycle: gesture -> palette -> execution -> result.

The machine keeps one current request per kind. Issuing a new one bumps a
version counter; a reply whose ``PendingRequest`` is no longer current is
dropped without touching the UI. The underlying remote call is never cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Sequence

from ..agent.actions import Action
from ..agent.classifier import execution_text
from ..agent.page_context import BoundingRect, Context, ElementDescriptor, TextSelection
from ..bridge.messaging import BridgeResponse, MessageType, MessagingBridge
from ..config import settings
from .placement import Position, Viewport, place_palette, place_result_panel

logger = logging.getLogger(__name__)


class UIState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SHOWING_PALETTE = "showing_palette"
    EXECUTING_ACTION = "executing_action"
    SHOWING_RESULT = "showing_result"


BUSY_STATES = {UIState.LOADING, UIState.EXECUTING_ACTION}


@dataclass(frozen=True)
class PendingRequest:
    id: int
    kind: MessageType
    deadline: float


class PageSurface(Protocol):
    """Host page collaborator: metadata, selection and the rendered overlay."""

    def page_url(self) -> str: ...

    def page_title(self) -> str: ...

    def viewport(self) -> Viewport: ...

    def current_selection(self) -> str: ...

    def clear_selection(self) -> None: ...

    def show_loading(self, position: Position) -> None: ...

    def show_palette(self, actions: Sequence[Action], position: Position, element_mode: bool) -> None: ...

    def set_palette_enabled(self, enabled: bool) -> None: ...

    def measure_result_panel(self, result: str) -> float: ...

    def show_result(self, action: Action, result: str, position: Position) -> None: ...

    def teardown(self, delay_ms: int) -> None: ...

    def notify(self, message: str) -> None: ...

    async def copy_to_clipboard(self, text: str) -> bool: ...

    async def insert_at_focus(self, text: str) -> bool: ...


class UIStateMachine:
    def __init__(
        self,
        bridge: MessagingBridge,
        surface: PageSurface,
        *,
        actions_timeout: float | None = None,
        execute_timeout: float | None = None,
        settle_delay: float | None = None,
        teardown_delay_ms: int | None = None,
    ) -> None:
        self.bridge = bridge
        self.surface = surface
        self.actions_timeout = actions_timeout if actions_timeout is not None else settings.actions_timeout_s
        self.execute_timeout = execute_timeout if execute_timeout is not None else settings.execute_timeout_s
        self.settle_delay = settle_delay if settle_delay is not None else settings.selection_settle_ms / 1000
        self.teardown_delay_ms = (
            teardown_delay_ms if teardown_delay_ms is not None else settings.teardown_delay_ms
        )

        self.state = UIState.IDLE
        self.context: Optional[Context] = None
        self.source_rect: Optional[BoundingRect] = None
        self.actions: list[Action] = []
        self.result: Optional[str] = None
        self.result_action: Optional[Action] = None
        self.selected_text = ""
        self.element_mode = False
        self._versions = {MessageType.GET_ACTIONS: 0, MessageType.EXECUTE_ACTION: 0}
        self._pending: dict[MessageType, PendingRequest] = {}

    # request bookkeeping

    def _issue(self, kind: MessageType, timeout: float) -> PendingRequest:
        self._versions[kind] += 1
        pending = PendingRequest(
            id=self._versions[kind],
            kind=kind,
            deadline=asyncio.get_running_loop().time() + timeout,
        )
        self._pending[kind] = pending
        return pending

    def _claim(self, pending: PendingRequest) -> bool:
        """Retire ``pending`` if it is still current; False means the reply is stale."""

        if self._pending.get(pending.kind) is not pending:
            logger.debug("stale_response_dropped kind=%s id=%s", pending.kind.value, pending.id)
            return False
        del self._pending[pending.kind]
        return True

    def current_request(self, kind: MessageType) -> Optional[PendingRequest]:
        return self._pending.get(kind)

    # gestures

    def select_text(self, text: str, rect: Optional[BoundingRect] = None) -> Optional[asyncio.Task]:
        cleaned = (text or "").strip()
        if not cleaned:
            self.selection_cleared()
            return None
        if self.state is UIState.EXECUTING_ACTION:
            logger.debug("selection_ignored reason=executing")
            return None
        if cleaned == self.selected_text and self.state in (UIState.LOADING, UIState.SHOWING_PALETTE):
            return None

        self.selected_text = cleaned
        self.element_mode = False
        context = Context(
            url=self.surface.page_url(),
            title=self.surface.page_title(),
            selection=TextSelection(text=cleaned, bounding_rect=rect),
        )
        return self._request_actions(context, rect)

    async def settle_selection(self, text: str, rect: Optional[BoundingRect] = None) -> None:
        """Wait for the selection to stop changing before asking for actions."""

        await asyncio.sleep(self.settle_delay)
        if self.surface.current_selection().strip() != (text or "").strip():
            return
        task = self.select_text(text, rect)
        if task is not None:
            await task

    def modified_click(self, element: ElementDescriptor, x: float, y: float) -> Optional[asyncio.Task]:
        if self.state is UIState.EXECUTING_ACTION:
            logger.debug("element_click_ignored reason=executing")
            return None

        self.surface.clear_selection()
        self.selected_text = ""
        self.element_mode = True
        rect = BoundingRect.around_point(x, y)
        context = Context(url=self.surface.page_url(), title=self.surface.page_title(), selection=element)
        return self._request_actions(context, rect)

    def selection_cleared(self) -> None:
        if self.state in BUSY_STATES or self.element_mode:
            return
        self.selected_text = ""
        if self.state is UIState.SHOWING_PALETTE:
            self.dismiss()

    def click_outside(self) -> None:
        if self.state in BUSY_STATES or self.state is UIState.IDLE:
            return
        self.dismiss()

    def dismiss(self) -> None:
        self._pending.clear()
        self.state = UIState.IDLE
        self.context = None
        self.source_rect = None
        self.actions = []
        self.result = None
        self.result_action = None
        self.element_mode = False
        self.surface.teardown(self.teardown_delay_ms)

    # GET_ACTIONS

    def _request_actions(self, context: Context, rect: Optional[BoundingRect]) -> asyncio.Task:
        pending = self._issue(MessageType.GET_ACTIONS, self.actions_timeout)
        self.state = UIState.LOADING
        self.context = context
        self.source_rect = rect
        self.actions = []
        self.result = None
        self.result_action = None
        if rect is not None:
            self.surface.show_loading(place_palette(rect, self.surface.viewport(), element_mode=self.element_mode))
        logger.debug("get_actions_issued id=%s element=%s", pending.id, self.element_mode)
        return asyncio.get_running_loop().create_task(self._await_actions(pending, context))

    async def _await_actions(self, pending: PendingRequest, context: Context) -> None:
        response = await self.bridge.request(
            MessageType.GET_ACTIONS, {"context": context.to_payload()}, timeout=self.actions_timeout
        )
        if not self._claim(pending):
            return
        if response.ok and asyncio.get_running_loop().time() > pending.deadline:
            response = BridgeResponse(ok=False, error="Request timed out", timed_out=True)

        if not response.ok:
            self.dismiss()
            self.surface.notify(_failure_message(response))
            return

        actions = _parse_actions(response.payload.get("actions"))
        if not actions:
            self.dismiss()
            return

        self.actions = actions
        self.state = UIState.SHOWING_PALETTE
        rect = self.source_rect or _fallback_rect()
        self.surface.show_palette(
            actions, place_palette(rect, self.surface.viewport(), element_mode=self.element_mode), self.element_mode
        )

    # EXECUTE_ACTION

    def choose_action(self, action_id: str) -> Optional[asyncio.Task]:
        if self.state is not UIState.SHOWING_PALETTE or self.context is None:
            return None
        action = next((a for a in self.actions if a.id == action_id), None)
        if action is None:
            return None

        pending = self._issue(MessageType.EXECUTE_ACTION, self.execute_timeout)
        self.state = UIState.EXECUTING_ACTION
        self.surface.set_palette_enabled(False)
        payload = {
            "action": action.to_payload(),
            "text": execution_text(self.context),
            "context": self.context.to_payload(),
        }
        logger.debug("execute_issued id=%s action_id=%s", pending.id, action.id)
        return asyncio.get_running_loop().create_task(self._await_execution(pending, action, payload))

    async def _await_execution(self, pending: PendingRequest, action: Action, payload: dict) -> None:
        response = await self.bridge.request(MessageType.EXECUTE_ACTION, payload, timeout=self.execute_timeout)
        if not self._claim(pending):
            return

        if response.ok and response.payload.get("success"):
            result = str(response.payload.get("result") or "")
            self.result = result
            self.result_action = action
            self.state = UIState.SHOWING_RESULT
            position = place_result_panel(
                self.source_rect, self.surface.viewport(), self.surface.measure_result_panel(result)
            )
            self.surface.show_result(action, result, position)
            return

        if response.ok:
            message = f"Error: {response.payload.get('error') or 'No response from extension'}"
        else:
            message = _failure_message(response)
        self.dismiss()
        self.surface.notify(message)

    # result panel

    async def copy_result(self) -> bool:
        if self.state is not UIState.SHOWING_RESULT or self.result is None:
            return False
        copied = await self.surface.copy_to_clipboard(self.result)
        self.surface.notify("Copied to clipboard!" if copied else "Failed to copy to clipboard")
        return copied

    async def insert_result(self) -> bool:
        if self.state is not UIState.SHOWING_RESULT or self.result is None:
            return False
        inserted = await self.surface.insert_at_focus(self.result)
        if not inserted:
            self.surface.notify("Please click in a text field first")
            return False
        self.surface.notify("Text inserted!")
        self.dismiss()
        return True


def _failure_message(response: BridgeResponse) -> str:
    if response.timed_out:
        return "Request timed out"
    return f"Error: {response.error or 'No response from extension'}"


def _parse_actions(raw) -> list[Action]:
    actions: list[Action] = []
    for item in raw or []:
        try:
            actions.append(Action.from_payload(item))
        except (ValueError, AttributeError):
            logger.warning("palette_action_skipped item=%r", item)
    return actions


def _fallback_rect() -> BoundingRect:
    return BoundingRect(top=100.0, left=100.0, bottom=120.0, right=120.0)
