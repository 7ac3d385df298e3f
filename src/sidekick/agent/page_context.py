"""Immutable snapshots of what the user selected or clicked, plus page metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlparse

from ..config import settings

INNER_TEXT_LIMIT = 200
ATTRIBUTE_VALUE_LIMIT = 200
ANCESTRY_DEPTH = 3
DESCRIBED_ATTRIBUTES = ("src", "href", "alt", "title", "data-type", "role", "aria-label")


def excerpt_text(text: str) -> str:
    limit = settings.selection_excerpt_chars
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def _trim(value: Optional[str], limit: int) -> str:
    if not value:
        return ""
    return value.strip()[:limit]


@dataclass(frozen=True)
class BoundingRect:
    top: float
    left: float
    bottom: float
    right: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @classmethod
    def around_point(cls, x: float, y: float, radius: float = 10.0) -> "BoundingRect":
        return cls(top=y - radius, left=x - radius, bottom=y + radius, right=x + radius)

    def to_payload(self) -> dict[str, float]:
        return {"top": self.top, "left": self.left, "bottom": self.bottom, "right": self.right}

    @classmethod
    def from_payload(cls, data: Mapping[str, Any] | None) -> Optional["BoundingRect"]:
        if not data:
            return None
        return cls(
            top=float(data.get("top", 0.0)),
            left=float(data.get("left", 0.0)),
            bottom=float(data.get("bottom", 0.0)),
            right=float(data.get("right", 0.0)),
        )


@dataclass(frozen=True)
class TextSelection:
    text: str
    bounding_rect: Optional[BoundingRect] = None

    def __post_init__(self) -> None:
        if not self.text or not self.text.strip():
            raise ValueError("empty selection")

    @property
    def excerpt(self) -> str:
        return excerpt_text(self.text)


@dataclass(frozen=True)
class AncestorInfo:
    tag: str
    classes: tuple[str, ...] = ()
    element_id: str = ""


@dataclass(frozen=True)
class ElementDescriptor:
    tag_name: str
    classes: tuple[str, ...] = ()
    element_id: str = ""
    inner_text: str = ""
    attributes: Mapping[str, str] = field(default_factory=dict)
    ancestry: tuple[AncestorInfo, ...] = ()
    is_interactive: bool = False
    has_chart: bool = False
    has_table: bool = False
    has_numbers: bool = False
    has_image: bool = False
    has_list: bool = False
    in_form: bool = False
    domain_flags: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        # Normalise at construction so every descriptor honours the truncation limits.
        object.__setattr__(self, "tag_name", (self.tag_name or "").lower())
        object.__setattr__(self, "inner_text", _trim(self.inner_text, INNER_TEXT_LIMIT))
        object.__setattr__(
            self,
            "attributes",
            {k: _trim(v, ATTRIBUTE_VALUE_LIMIT) for k, v in dict(self.attributes).items() if v},
        )
        object.__setattr__(self, "ancestry", tuple(self.ancestry)[:ANCESTRY_DEPTH])
        object.__setattr__(self, "classes", tuple(self.classes))
        object.__setattr__(self, "domain_flags", frozenset(self.domain_flags))

    def summary(self, content_label: str) -> str:
        return self.inner_text or f"[{content_label} element: {self.tag_name}]"


Selection = Union[TextSelection, ElementDescriptor]


def domain_from_url(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


@dataclass(frozen=True)
class Context:
    url: str
    title: str
    selection: Selection
    domain: str = ""

    def __post_init__(self) -> None:
        if not self.domain:
            object.__setattr__(self, "domain", domain_from_url(self.url))

    @property
    def is_element(self) -> bool:
        return isinstance(self.selection, ElementDescriptor)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"url": self.url, "title": self.title, "domain": self.domain}
        sel = self.selection
        if isinstance(sel, TextSelection):
            payload["selection"] = {
                "kind": "text",
                "text": sel.text,
                "bounding_rect": sel.bounding_rect.to_payload() if sel.bounding_rect else None,
            }
        else:
            payload["selection"] = {
                "kind": "element",
                "tag_name": sel.tag_name,
                "classes": list(sel.classes),
                "element_id": sel.element_id,
                "inner_text": sel.inner_text,
                "attributes": dict(sel.attributes),
                "ancestry": [
                    {"tag": a.tag, "classes": list(a.classes), "element_id": a.element_id} for a in sel.ancestry
                ],
                "is_interactive": sel.is_interactive,
                "has_chart": sel.has_chart,
                "has_table": sel.has_table,
                "has_numbers": sel.has_numbers,
                "has_image": sel.has_image,
                "has_list": sel.has_list,
                "in_form": sel.in_form,
                "domain_flags": sorted(sel.domain_flags),
            }
        return payload

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "Context":
        raw = data.get("selection") or {}
        if raw.get("kind") == "element":
            selection: Selection = ElementDescriptor(
                tag_name=str(raw.get("tag_name") or ""),
                classes=tuple(raw.get("classes") or ()),
                element_id=str(raw.get("element_id") or ""),
                inner_text=str(raw.get("inner_text") or ""),
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
                has_numbers=bool(raw.get("has_numbers")),
                has_image=bool(raw.get("has_image")),
                has_list=bool(raw.get("has_list")),
                in_form=bool(raw.get("in_form")),
                domain_flags=frozenset(raw.get("domain_flags") or ()),
            )
        else:
            selection = TextSelection(
                text=str(raw.get("text") or ""),
                bounding_rect=BoundingRect.from_payload(raw.get("bounding_rect")),
            )
        return cls(
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            domain=str(data.get("domain") or ""),
            selection=selection,
        )
