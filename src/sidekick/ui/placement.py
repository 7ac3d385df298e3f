from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..agent.page_context import BoundingRect

PALETTE_HEIGHT = 50
ELEMENT_PALETTE_HEIGHT = 70
PALETTE_WIDTH_FALLBACK = 200
PADDING = 10
RESULT_MAX_WIDTH = 600
RESULT_GAP = 20


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float
    scroll_x: float = 0.0
    scroll_y: float = 0.0


@dataclass(frozen=True)
class Position:
    top: float
    left: float
    width: Optional[float] = None


def place_palette(
    rect: BoundingRect,
    viewport: Viewport,
    *,
    element_mode: bool = False,
    palette_width: float | None = None,
) -> Position:
    """Above the source rect, flipped below near the top edge, clamped horizontally."""

    height = ELEMENT_PALETTE_HEIGHT if element_mode else PALETTE_HEIGHT
    width = palette_width or PALETTE_WIDTH_FALLBACK

    top = rect.top + viewport.scroll_y - height - PADDING
    left = rect.left + viewport.scroll_x + rect.width / 2 - width / 2

    if top < viewport.scroll_y:
        top = rect.bottom + viewport.scroll_y + PADDING

    if left < 0:
        left = PADDING
    elif left + width > viewport.width:
        left = viewport.width - width - PADDING

    return Position(top=top, left=left, width=width)


def place_result_panel(rect: Optional[BoundingRect], viewport: Viewport, panel_height: float) -> Position:
    width = min(RESULT_MAX_WIDTH, viewport.width - 40)
    left = (viewport.width - width) / 2
    if rect is not None:
        top = rect.bottom + viewport.scroll_y + RESULT_GAP
    else:
        top = viewport.scroll_y + 100

    if top + panel_height > viewport.scroll_y + viewport.height:
        top = viewport.scroll_y + (viewport.height - panel_height) / 2

    return Position(top=top, left=left, width=width)
