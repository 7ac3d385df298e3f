"""Content classification for selections and clicked elements.

Both the heuristic suggester and the remote suggestion prompt go through this
module so there is a single definition of what counts as code, email, data...

Text rules, first match wins:
    Code -> Email -> NumericData -> List -> Question -> LongText -> Generic

Element rules, first match wins:
    Image -> Chart -> Table -> Form -> Interactive -> NumericData -> List
    -> text rules over the element's inner text -> Generic
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .page_context import Context, ElementDescriptor, Selection, TextSelection


class ContentType(str, Enum):
    CODE = "code"
    EMAIL = "email"
    LIST = "list"
    NUMERIC_DATA = "numeric_data"
    QUESTION = "question"
    LONG_TEXT = "long_text"
    IMAGE = "image"
    CHART = "chart"
    TABLE = "table"
    INTERACTIVE = "interactive"
    FORM = "form"
    GENERIC = "generic"


CODE_KEYWORDS = re.compile(
    r"\b(function|class|const|let|var|if|for|while|import|export|return|def|public|private|void)\b"
)
CODE_TOKENS = re.compile(r"[{}\[\]();]|=>")
EMAIL_WORDS = re.compile(r"\b(dear|hi|hello|regards|sincerely|thanks)\b", re.IGNORECASE)
EMAIL_ADDRESS = re.compile(r"[\w.+-]*@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
NUMBER_TOKEN = re.compile(r"^[-+]?\d+(?:[.,]\d+)*%?$")
LIST_MARKER = re.compile(r"^(?:[\d\-\*•]\s|\d+\.|[a-z]\)|[A-Z]\))")

CODE_HOSTS = {
    "github.com",
    "gist.github.com",
    "gitlab.com",
    "bitbucket.org",
    "stackoverflow.com",
    "codepen.io",
    "jsfiddle.net",
    "replit.com",
    "codesandbox.io",
}
MAIL_HOSTS = {
    "outlook.live.com",
    "outlook.office.com",
    "outlook.office365.com",
    "app.slack.com",
    "teams.microsoft.com",
    "discord.com",
}

IMAGE_TAGS = {"img", "picture", "video", "svg", "figure"}
TABLE_TAGS = {"table", "thead", "tbody", "tr", "td", "th"}
FORM_TAGS = {"form", "input", "textarea", "select", "label", "fieldset"}
INTERACTIVE_TAGS = {"button", "a", "summary"}
LIST_TAGS = {"li", "ul", "ol", "dl"}
CHART_CLASS = re.compile(r"chart|graph|plot", re.IGNORECASE)


def _host_matches(domain: str, hosts: set[str]) -> bool:
    domain = (domain or "").lower()
    return any(domain == host or domain.endswith("." + host) for host in hosts)


def is_code_host(domain: str) -> bool:
    return _host_matches(domain, CODE_HOSTS)


def is_mail_host(domain: str) -> bool:
    return "mail" in (domain or "").lower() or _host_matches(domain, MAIL_HOSTS)


def looks_like_code(text: str, domain: str = "") -> bool:
    return bool(CODE_KEYWORDS.search(text) or CODE_TOKENS.search(text)) or is_code_host(domain)


def looks_like_email(text: str, domain: str = "") -> bool:
    return bool(EMAIL_WORDS.search(text) or EMAIL_ADDRESS.search(text)) or is_mail_host(domain)


def count_numeric_tokens(text: str) -> int:
    return sum(1 for word in text.split() if NUMBER_TOKEN.match(word))


def looks_like_list(text: str) -> bool:
    stripped = text.strip()
    first_line = stripped.split("\n", 1)[0]
    return bool(LIST_MARKER.match(first_line)) or len(stripped.split("\n")) > 3


def word_count(text: str) -> int:
    return len(text.split())


def classify_text(text: str, domain: str = "") -> ContentType:
    if looks_like_code(text, domain):
        return ContentType.CODE
    if looks_like_email(text, domain):
        return ContentType.EMAIL
    if count_numeric_tokens(text) > 3:
        return ContentType.NUMERIC_DATA
    if looks_like_list(text):
        return ContentType.LIST
    if "?" in text:
        return ContentType.QUESTION
    if word_count(text) > 50:
        return ContentType.LONG_TEXT
    return ContentType.GENERIC


def _mentions_chart(element: ElementDescriptor) -> bool:
    names = list(element.classes) + [element.element_id]
    for ancestor in element.ancestry:
        names.extend(ancestor.classes)
        names.append(ancestor.element_id)
    return any(CHART_CLASS.search(name) for name in names if name)


def _within(element: ElementDescriptor, tags: set[str]) -> bool:
    return any(ancestor.tag in tags for ancestor in element.ancestry)


def classify_element(element: ElementDescriptor, domain: str = "") -> ContentType:
    tag = element.tag_name
    if tag in IMAGE_TAGS or element.has_image:
        return ContentType.IMAGE
    if tag == "canvas" or element.has_chart or _mentions_chart(element):
        return ContentType.CHART
    if tag in TABLE_TAGS or element.has_table or _within(element, {"table"}):
        return ContentType.TABLE
    if tag in FORM_TAGS or element.in_form or _within(element, {"form"}):
        return ContentType.FORM
    if tag in INTERACTIVE_TAGS or element.is_interactive:
        return ContentType.INTERACTIVE
    if element.has_numbers or "order_book" in element.domain_flags:
        return ContentType.NUMERIC_DATA
    if tag in LIST_TAGS or element.has_list:
        return ContentType.LIST
    if element.inner_text:
        return classify_text(element.inner_text, domain)
    return ContentType.GENERIC


def classify(selection: Selection, context: Optional[Context] = None) -> ContentType:
    domain = context.domain if context else ""
    if isinstance(selection, TextSelection):
        return classify_text(selection.excerpt, domain)
    return classify_element(selection, domain)


def suggestion_text(context: Context) -> str:
    """Text sent for suggestions: the selection, or a summary of the clicked element."""

    sel = context.selection
    if isinstance(sel, TextSelection):
        return sel.text
    return sel.summary(classify_element(sel, context.domain).value)


def execution_text(context: Context) -> str:
    sel = context.selection
    if isinstance(sel, ElementDescriptor):
        return f"Analyzing {classify_element(sel, context.domain).value}: {sel.inner_text}"
    return sel.text


@dataclass(frozen=True)
class Classification:
    content_type: ContentType
    signals: frozenset[str]


def text_signals(text: str, domain: str = "") -> frozenset[str]:
    found = set()
    if CODE_KEYWORDS.search(text):
        found.add("code_keyword")
    if CODE_TOKENS.search(text):
        found.add("code_token")
    if is_code_host(domain):
        found.add("code_host")
    if EMAIL_WORDS.search(text):
        found.add("email_word")
    if EMAIL_ADDRESS.search(text):
        found.add("email_address")
    if is_mail_host(domain):
        found.add("mail_host")
    if count_numeric_tokens(text) > 3:
        found.add("numeric_tokens")
    if looks_like_list(text):
        found.add("list_shape")
    if "?" in text:
        found.add("question_mark")
    if word_count(text) > 50:
        found.add("long_text")
    return frozenset(found)


def element_signals(element: ElementDescriptor, domain: str = "") -> frozenset[str]:
    found = set(element.domain_flags)
    tag = element.tag_name
    if tag in IMAGE_TAGS or element.has_image:
        found.add("image")
    if tag == "canvas" or element.has_chart or _mentions_chart(element):
        found.add("chart")
    if tag in TABLE_TAGS or element.has_table or _within(element, {"table"}):
        found.add("table")
    if tag in FORM_TAGS or element.in_form or _within(element, {"form"}):
        found.add("form")
    if tag in INTERACTIVE_TAGS or element.is_interactive:
        found.add("interactive")
    if element.has_numbers:
        found.add("numbers")
    if tag in LIST_TAGS or element.has_list:
        found.add("list")
    if element.inner_text:
        found |= text_signals(element.inner_text, domain)
    return frozenset(found)


def classify_with_signals(selection: Selection, context: Optional[Context] = None) -> Classification:
    """Content type plus every rule that fired, not just the winning one."""

    domain = context.domain if context else ""
    if isinstance(selection, TextSelection):
        signals = text_signals(selection.excerpt, domain)
    else:
        signals = element_signals(selection, domain)
    return Classification(classify(selection, context), signals)
