"""Generative action suggestions from the completion service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ..config import settings
from .actions import Action, has_unique_ids, is_snake_case, normalize_action_id
from .classifier import ContentType, classify
from .llm_client import CompletionClient, CompletionError, _extract_json_array
from .page_context import Context, excerpt_text

logger = logging.getLogger(__name__)

EXPECTED_ACTIONS = 4

SUGGESTION_PROMPT = """
Analyze this text and suggest exactly 4 contextual actions that would be most useful.

Context:
- Current URL: {url}
- Page title: {title}
- Detected content type: {content_type}
- Selected text: "{excerpt}"

Return a JSON array with exactly 4 actions. Each action should have:
- id: a unique identifier (snake_case)
- label: short action label (max 3-4 words)
- icon: a single emoji that represents the action
- description: what the action will do (one sentence)

Guidelines:
- If it's code: suggest code-related actions (explain, refactor, debug, convert)
- If it's an email/message: suggest communication actions (reply, summarize, tone change)
- If it's an article/paragraph: suggest content actions (summarize, key points, translate)
- If it's data/numbers: suggest analysis actions (visualize, calculate, format)
- If it's a list: suggest organization actions (categorize, prioritize, expand)
- If it's a page element (image, chart, table, form, control): suggest actions about that element
- Be specific to the actual content, not generic
- Actions should be immediately useful for this specific text

Example response format:
[
  {{"id": "explain_algorithm", "label": "Explain Algorithm", "icon": "🧮", "description": "Break down how this sorting algorithm works"}},
  {{"id": "add_comments", "label": "Add Comments", "icon": "💬", "description": "Add inline comments explaining each section"}},
  {{"id": "find_bugs", "label": "Find Bugs", "icon": "🐛", "description": "Identify potential issues or edge cases"}},
  {{"id": "optimize_performance", "label": "Optimize Code", "icon": "⚡", "description": "Suggest performance improvements"}}
]

Respond with ONLY the JSON array, no other text.
"""


class SuggestionError(RuntimeError):
    """Recoverable failure to obtain a usable set of remote suggestions."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def build_suggestion_prompt(raw_text: str, context: Context, content_type: ContentType) -> str:
    return SUGGESTION_PROMPT.format(
        url=context.url,
        title=context.title,
        content_type=content_type.value,
        excerpt=excerpt_text(raw_text).replace('"', '\\"'),
    ).strip()


def _coerce_action(item: Any) -> Optional[Action]:
    if not isinstance(item, dict):
        return None
    try:
        action = Action.from_payload(item)
    except ValueError:
        return None
    if not is_snake_case(action.id):
        normalized = normalize_action_id(action.id)
        if not normalized:
            return None
        action = Action(normalized, action.label, action.icon, action.description)
    return action


def parse_suggested_actions(raw: str) -> tuple[Optional[list[Action]], Optional[str]]:
    """Parse and validate a suggestion reply. Never raises."""

    items, reason = _extract_json_array(raw)
    if items is None:
        return None, reason
    if len(items) != EXPECTED_ACTIONS:
        return None, f"wrong_count:{len(items)}"
    actions: list[Action] = []
    for item in items:
        action = _coerce_action(item)
        if action is None:
            return None, "invalid_action_record"
        actions.append(action)
    if not has_unique_ids(actions):
        return None, "duplicate_action_ids"
    return actions, None


class RemoteActionSuggester:
    """Asks the completion service for 4 actions tailored to the content.

    Callers must hold a configured credential before constructing one.
    """

    def __init__(self, client: CompletionClient, timeout: float | None = None) -> None:
        self.client = client
        self.timeout = timeout if timeout is not None else settings.suggestion_timeout_s

    async def suggest(self, raw_text: str, context: Context, timeout: float | None = None) -> list[Action]:
        content_type = classify(context.selection, context)
        prompt = build_suggestion_prompt(raw_text, context, content_type)
        try:
            raw = await asyncio.wait_for(
                self.client.complete(
                    prompt,
                    max_tokens=settings.suggestion_max_tokens,
                    temperature=settings.suggestion_temperature,
                ),
                timeout=timeout if timeout is not None else self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SuggestionError("timeout") from exc
        except CompletionError as exc:
            raise SuggestionError(f"transport:{exc}") from exc

        actions, reason = parse_suggested_actions(raw)
        if actions is None:
            head = (raw or "")[:120].replace("\n", " ")
            logger.debug("suggestion_parse_failure reason=%s head=%s", reason, head)
            raise SuggestionError(reason or "parse_failure")
        return actions

