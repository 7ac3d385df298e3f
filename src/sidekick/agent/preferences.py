from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models import Preference

logger = logging.getLogger(__name__)

API_KEY = "api_key"

PreferenceListener = Callable[[str, Optional[str]], None]


class PreferenceStore:
    """Key/value settings shared between the settings surface and the orchestrator.

    ``set`` persists first and then notifies the listeners subscribed to that
    key, so a credential saved from the settings surface is visible to the
    orchestrator without a restart.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory
        self._listeners: dict[str, list[PreferenceListener]] = defaultdict(list)

    def get(self, key: str) -> Optional[str]:
        session = self.session_factory()
        try:
            row = session.get(Preference, key)
            return row.value if row else None
        finally:
            session.close()

    def set(self, key: str, value: Optional[str]) -> None:
        session = self.session_factory()
        try:
            row = session.get(Preference, key)
            if row is None:
                row = Preference(key=key)
                session.add(row)
            row.value = value
            row.updated_at = datetime.now(timezone.utc)
            session.commit()
        finally:
            session.close()

        for listener in list(self._listeners.get(key, ())):
            try:
                listener(key, value)
            except Exception:  # noqa: BLE001
                logger.exception("preference_listener_failed key=%s", key)

    def subscribe(self, key: str, listener: PreferenceListener) -> Callable[[], None]:
        self._listeners[key].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners.get(key, []):
                self._listeners[key].remove(listener)

        return unsubscribe


def validate_credential(value: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError("Please enter an API key")
    prefix = settings.credential_prefix
    if prefix and not cleaned.startswith(prefix):
        raise ValueError(f'Invalid API key format. Keys should start with "{prefix}"')
    return cleaned


def mask_credential(value: Optional[str]) -> str:
    if not value:
        return ""
    if len(value) <= 19:
        return value[:3] + "..."
    return f"{value[:15]}...{value[-4:]}"
