from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..models import ActionStat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionUsage:
    clicks: int = 0
    last_used: Optional[datetime] = None


@dataclass(frozen=True)
class UsageSummary:
    rows: list[tuple[str, ActionUsage]]
    total_clicks: int


class UsageStore:
    """Process-wide actionId -> usage mapping backed by the action_stats table.

    Loaded once by ``load()``; every ``record_click`` mutates the in-memory
    cache and persists the row before returning, so the increment and the
    write that carries it happen in the same synchronous step.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory
        self._stats: dict[str, ActionUsage] = {}
        self._loaded = False

    def load(self) -> None:
        session = self.session_factory()
        try:
            rows = session.execute(select(ActionStat)).scalars().all()
            self._stats = {
                row.action_id: ActionUsage(clicks=row.clicks, last_used=_as_utc(row.last_used)) for row in rows
            }
        finally:
            session.close()
        self._loaded = True
        logger.info("usage_store_loaded actions=%d", len(self._stats))

    def snapshot(self) -> dict[str, ActionUsage]:
        if not self._loaded:
            self.load()
        return dict(self._stats)

    def get(self, action_id: str) -> ActionUsage:
        return self.snapshot().get(action_id, ActionUsage())

    def record_click(self, action_id: str, at: Optional[datetime] = None) -> ActionUsage:
        if not self._loaded:
            self.load()
        used_at = at or datetime.now(timezone.utc)
        previous = self._stats.get(action_id, ActionUsage())
        updated = ActionUsage(clicks=previous.clicks + 1, last_used=used_at)
        self._stats[action_id] = updated

        session = self.session_factory()
        try:
            row = session.get(ActionStat, action_id)
            if row is None:
                row = ActionStat(action_id=action_id, clicks=0)
                session.add(row)
            row.clicks = updated.clicks
            row.last_used = used_at
            session.commit()
        except Exception:
            session.rollback()
            self._stats[action_id] = previous
            raise
        finally:
            session.close()

        logger.debug("usage_recorded action_id=%s clicks=%d", action_id, updated.clicks)
        return updated

    def reset(self) -> None:
        """Explicit, user-initiated full reset; the only path that lowers counts."""

        session = self.session_factory()
        try:
            session.execute(delete(ActionStat))
            session.commit()
        finally:
            session.close()
        self._stats = {}
        self._loaded = True
        logger.info("usage_store_reset")

    def summary(self) -> UsageSummary:
        stats = self.snapshot()
        rows = sorted(stats.items(), key=lambda item: item[1].clicks, reverse=True)
        return UsageSummary(rows=rows, total_clicks=sum(usage.clicks for _, usage in rows))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
