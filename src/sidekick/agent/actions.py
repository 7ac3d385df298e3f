"""Action records shared by the suggesters, the ranker and the UI."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

_SNAKE_CASE = re.compile(r"^[a-z][a-z0-9_]*$")


@dataclass(frozen=True)
class Action:
    id: str
    label: str
    icon: str
    description: str

    def to_payload(self) -> dict[str, str]:
        return {
            "id": self.id,
            "label": self.label,
            "icon": self.icon,
            "description": self.description,
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "Action":
        fields = {}
        for key in ("id", "label", "icon", "description"):
            value = data.get(key)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"action field {key!r} missing or empty")
            fields[key] = value.strip()
        return cls(**fields)


def normalize_action_id(raw: str) -> str:
    """Coerce a generated identifier into the snake_case form used as a stats key."""

    cleaned = re.sub(r"[^0-9a-zA-Z]+", "_", raw.strip()).strip("_").lower()
    if cleaned and cleaned[0].isdigit():
        cleaned = f"action_{cleaned}"
    return cleaned


def is_snake_case(value: str) -> bool:
    return bool(_SNAKE_CASE.match(value))


def has_unique_ids(actions: Iterable[Action]) -> bool:
    seen: set[str] = set()
    for action in actions:
        if action.id in seen:
            return False
        seen.add(action.id)
    return True
