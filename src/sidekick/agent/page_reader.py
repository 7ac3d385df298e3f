"""Read selections and element descriptors from a live Playwright page.

Everything here talks to the page through ``evaluate`` snippets so it works
the same on the main page and on frames. Failures are logged and turned into
empty results; the caller decides whether that means "nothing selected".
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Mapping, Optional, Sequence

from playwright.async_api import Page

from .actions import Action
from .classifier import count_numeric_tokens
from .page_context import (
    ANCESTRY_DEPTH,
    DESCRIBED_ATTRIBUTES,
    AncestorInfo,
    BoundingRect,
    ElementDescriptor,
)
from ..ui.placement import Position, Viewport

logger = logging.getLogger(__name__)

ORDER_BOOK_CLASS = re.compile(r"order[-_]?book", re.IGNORECASE)

SELECTION_SCRIPT = """
() => {
    const sel = window.getSelection();
    const text = sel ? sel.toString() : "";
    if (!text || !sel.rangeCount) {
        return { text: "", rect: null };
    }
    const r = sel.getRangeAt(0).getBoundingClientRect();
    return { text, rect: { top: r.top, left: r.left, bottom: r.bottom, right: r.right } };
}
"""

DESCRIBE_ELEMENT_SCRIPT = """
(el, args) => {
    const [attrNames, depth] = args;
    const classesOf = (node) =>
        typeof node.className === "string" ? node.className.split(/\\s+/).filter(Boolean) : [];
    const attributes = {};
    for (const name of attrNames) {
        const value = el.getAttribute(name);
        if (value) attributes[name] = value;
    }
    const ancestry = [];
    let node = el.parentElement;
    while (node && ancestry.length < depth) {
        ancestry.push({ tag: node.tagName.toLowerCase(), classes: classesOf(node), element_id: node.id || "" });
        node = node.parentElement;
    }
    const tag = el.tagName.toLowerCase();
    return {
        tag_name: tag,
        classes: classesOf(el),
        element_id: el.id || "",
        inner_text: (el.innerText || el.textContent || "").trim(),
        attributes,
        ancestry,
        is_interactive: tag === "button" || tag === "a" || el.getAttribute("role") === "button"
            || typeof el.onclick === "function",
        has_chart: tag === "canvas" || !!el.closest('.chart, .graph, [class*="chart"], [class*="graph"]'),
        has_table: !!el.closest("table"),
        has_image: !!el.querySelector("img, video"),
        has_list: tag === "li" || !!el.querySelector("ul, ol"),
        in_form: !!el.closest("form"),
    };
}
"""

INSERT_AT_FOCUS_SCRIPT = """
(text) => {
    const el = document.activeElement;
    if (!el) return false;
    const tag = el.tagName;
    if (tag === "TEXTAREA" || (tag === "INPUT" && el.type === "text")) {
        const start = el.selectionStart;
        const end = el.selectionEnd;
        el.value = el.value.substring(0, start) + text + el.value.substring(end);
        el.selectionStart = el.selectionEnd = start + text.length;
        el.dispatchEvent(new Event("input", { bubbles: true }));
        return true;
    }
    if (el.isContentEditable) {
        document.execCommand("insertText", false, text);
        return true;
    }
    return false;
}
"""


def _domain_flags(raw: Mapping[str, Any]) -> frozenset[str]:
    names = list(raw.get("classes") or [])
    for ancestor in raw.get("ancestry") or []:
        names.extend(ancestor.get("classes") or [])
    flags = set()
    if any(ORDER_BOOK_CLASS.search(name) for name in names):
        flags.add("order_book")
    return frozenset(flags)


def descriptor_from_snapshot(raw: Mapping[str, Any]) -> ElementDescriptor:
    inner_text = str(raw.get("inner_text") or "")
    return ElementDescriptor(
        tag_name=str(raw.get("tag_name") or ""),
        classes=tuple(raw.get("classes") or ()),
        element_id=str(raw.get("element_id") or ""),
        inner_text=inner_text,
        attributes={str(k): str(v) for k, v in (raw.get("attributes") or {}).items()},
        ancestry=tuple(
            AncestorInfo(
                tag=str(a.get("tag") or ""),
                classes=tuple(a.get("classes") or ()),
                element_id=str(a.get("element_id") or ""),
            )
            for a in raw.get("ancestry") or ()
        ),
        is_interactive=bool(raw.get("is_interactive")),
        has_chart=bool(raw.get("has_chart")),
        has_table=bool(raw.get("has_table")),
        has_numbers=count_numeric_tokens(inner_text) > 3,
        has_image=bool(raw.get("has_image")),
        has_list=bool(raw.get("has_list")),
        in_form=bool(raw.get("in_form")),
        domain_flags=_domain_flags(raw),
    )


async def describe_element(handle) -> Optional[ElementDescriptor]:
    try:
        raw = await handle.evaluate(DESCRIBE_ELEMENT_SCRIPT, [list(DESCRIBED_ATTRIBUTES), ANCESTRY_DEPTH])
    except Exception as exc:
        logger.warning("describe_element_failed reason=%s", exc)
        return None
    if not raw:
        return None
    return descriptor_from_snapshot(raw)


async def describe_element_at(page: Page, x: float, y: float) -> Optional[ElementDescriptor]:
    try:
        handle = await page.evaluate_handle("([x, y]) => document.elementFromPoint(x, y)", [x, y])
    except Exception as exc:
        logger.warning("element_from_point_failed x=%s y=%s reason=%s", x, y, exc)
        return None
    element = handle.as_element() if hasattr(handle, "as_element") else handle
    if element is None:
        return None
    return await describe_element(element)


async def read_selection(page: Page) -> tuple[str, Optional[BoundingRect]]:
    try:
        raw = await page.evaluate(SELECTION_SCRIPT)
    except Exception as exc:
        logger.warning("read_selection_failed reason=%s", exc)
        return "", None
    raw = raw or {}
    return str(raw.get("text") or ""), BoundingRect.from_payload(raw.get("rect"))


async def read_page_info(page: Page) -> tuple[str, str]:
    try:
        title = await page.title()
    except Exception as exc:
        logger.debug("read_title_failed reason=%s", exc)
        title = ""
    return page.url, title


async def read_viewport(page: Page) -> Viewport:
    size = page.viewport_size or {}
    try:
        scroll = await page.evaluate("() => ({ x: window.scrollX, y: window.scrollY })")
    except Exception:
        scroll = {}
    return Viewport(
        width=float(size.get("width") or 0),
        height=float(size.get("height") or 0),
        scroll_x=float((scroll or {}).get("x") or 0),
        scroll_y=float((scroll or {}).get("y") or 0),
    )


async def clear_selection(page: Page) -> None:
    try:
        await page.evaluate("() => window.getSelection() && window.getSelection().removeAllRanges()")
    except Exception as exc:
        logger.debug("clear_selection_failed reason=%s", exc)


async def insert_at_focus(page: Page, text: str) -> bool:
    """Insert ``text`` at the caret of the focused text field. False when nothing editable has focus."""

    try:
        return bool(await page.evaluate(INSERT_AT_FOCUS_SCRIPT, text))
    except Exception as exc:
        logger.warning("insert_at_focus_failed reason=%s", exc)
        return False


async def copy_to_clipboard(page: Page, text: str) -> bool:
    try:
        await page.evaluate("(text) => navigator.clipboard.writeText(text)", text)
    except Exception as exc:
        logger.warning("clipboard_write_failed reason=%s", exc)
        return False
    return True


class PlaywrightSurface:
    """Page surface backed by a Playwright page.

    Page metadata is async in Playwright, so ``refresh()`` caches it before a
    gesture is fed to the state machine. The overlay itself is not drawn into
    the page; what would be shown is recorded and logged.
    """

    def __init__(self, page: Page) -> None:
        self.page = page
        self.title = ""
        self.selection_text = ""
        self._viewport = Viewport(width=0.0, height=0.0)
        self.palette: list[Action] = []
        self.palette_enabled = True
        self.result: Optional[str] = None
        self.notifications: list[str] = []
        self._pending: set[asyncio.Task] = set()

    async def refresh(self) -> None:
        _, self.title = await read_page_info(self.page)
        self.selection_text, _ = await read_selection(self.page)
        self._viewport = await read_viewport(self.page)

    def page_url(self) -> str:
        return self.page.url

    def page_title(self) -> str:
        return self.title

    def viewport(self) -> Viewport:
        return self._viewport

    def current_selection(self) -> str:
        return self.selection_text

    def clear_selection(self) -> None:
        self.selection_text = ""
        try:
            task = asyncio.get_running_loop().create_task(clear_selection(self.page))
        except RuntimeError:
            logger.debug("clear_selection_skipped reason=no_running_loop")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def show_loading(self, position: Position) -> None:
        logger.info("overlay_loading top=%.0f left=%.0f", position.top, position.left)

    def show_palette(self, actions: Sequence[Action], position: Position, element_mode: bool) -> None:
        self.palette = list(actions)
        self.palette_enabled = True
        logger.info(
            "overlay_palette actions=%s element_mode=%s top=%.0f left=%.0f",
            ",".join(a.id for a in actions),
            element_mode,
            position.top,
            position.left,
        )

    def set_palette_enabled(self, enabled: bool) -> None:
        self.palette_enabled = enabled

    def measure_result_panel(self, result: str) -> float:
        # header + rows of roughly 80 chars at 20px
        return 80.0 + 20.0 * (len(result) // 80 + result.count("\n") + 1)

    def show_result(self, action: Action, result: str, position: Position) -> None:
        self.result = result
        logger.info("overlay_result action_id=%s chars=%s", action.id, len(result))

    def teardown(self, delay_ms: int) -> None:
        self.palette = []
        self.result = None
        logger.info("overlay_teardown delay_ms=%s", delay_ms)

    def notify(self, message: str) -> None:
        self.notifications.append(message)
        logger.info("overlay_notification message=%s", message)

    async def copy_to_clipboard(self, text: str) -> bool:
        return await copy_to_clipboard(self.page, text)

    async def insert_at_focus(self, text: str) -> bool:
        return await insert_at_focus(self.page, text)
