from __future__ import annotations

from typing import Mapping, Sequence

from .actions import Action
from .usage_store import ActionUsage


def rank(actions: Sequence[Action], usage: Mapping[str, ActionUsage]) -> list[Action]:
    """Most-used first. sorted() is stable, so ties keep the suggester's order."""

    def clicks(action: Action) -> int:
        stats = usage.get(action.id)
        return stats.clicks if stats else 0

    return sorted(actions, key=clicks, reverse=True)
