import asyncio
import json

import pytest

from sidekick.agent.llm_client import CompletionClient, CompletionError, _extract_json_array
from sidekick.agent.page_context import Context, TextSelection, excerpt_text
from sidekick.agent.remote_suggester import (
    RemoteActionSuggester,
    SuggestionError,
    build_suggestion_prompt,
    parse_suggested_actions,
)
from sidekick.agent.classifier import ContentType

FOUR_ACTIONS = [
    {"id": "explain_algorithm", "label": "Explain Algorithm", "icon": "🧮", "description": "Break it down"},
    {"id": "add_comments", "label": "Add Comments", "icon": "💬", "description": "Comment each section"},
    {"id": "find_bugs", "label": "Find Bugs", "icon": "🐛", "description": "Spot edge cases"},
    {"id": "optimize", "label": "Optimize", "icon": "⚡", "description": "Speed it up"},
]


class DummyPipeline:
    def __init__(self, output: str = "", should_raise: Exception | None = None):
        self.output = output
        self.should_raise = should_raise
        self.calls = []

    def __call__(self, prompt, max_new_tokens=None, temperature=None):
        self.calls.append({"prompt": prompt, "max_new_tokens": max_new_tokens, "temperature": temperature})
        if self.should_raise:
            raise self.should_raise
        return [{"generated_text": self.output}]


class SlowClient:
    async def complete(self, prompt, *, max_tokens, temperature=None):  # noqa: ARG002
        await asyncio.sleep(1)
        return json.dumps(FOUR_ACTIONS)


def make_context(text="def f(x): return x"):
    return Context(url="https://example.com/code", title="Code", selection=TextSelection(text=text))


def test_extract_json_array_variants():
    assert _extract_json_array("[1, 2]")[0] == [1, 2]
    fenced = "```json\n[{\"a\": 1}]\n```"
    assert _extract_json_array(fenced)[0] == [{"a": 1}]
    noisy = 'Sure! Here you go: [{"id": "x", "label": "[weird]"}] hope it helps'
    assert _extract_json_array(noisy)[0] == [{"id": "x", "label": "[weird]"}]
    assert _extract_json_array('{"actions": [1]}')[0] == [1]
    assert _extract_json_array("") == (None, "empty_output")
    assert _extract_json_array("no json here") == (None, "no_array_found")
    assert _extract_json_array('{"a": 1}') == (None, "json_not_array")


def test_parse_suggested_actions_accepts_exactly_four():
    actions, reason = parse_suggested_actions(json.dumps(FOUR_ACTIONS))
    assert reason is None
    assert [a.id for a in actions] == ["explain_algorithm", "add_comments", "find_bugs", "optimize"]


def test_parse_suggested_actions_rejects_bad_replies():
    assert parse_suggested_actions(json.dumps(FOUR_ACTIONS[:3])) == (None, "wrong_count:3")
    assert parse_suggested_actions(json.dumps(FOUR_ACTIONS + FOUR_ACTIONS[:1])) == (None, "wrong_count:5")

    missing_icon = [dict(a) for a in FOUR_ACTIONS]
    missing_icon[2].pop("icon")
    assert parse_suggested_actions(json.dumps(missing_icon)) == (None, "invalid_action_record")

    duplicated = [dict(a) for a in FOUR_ACTIONS]
    duplicated[3]["id"] = "find_bugs"
    assert parse_suggested_actions(json.dumps(duplicated)) == (None, "duplicate_action_ids")


def test_parse_normalizes_non_snake_case_ids():
    renamed = [dict(a) for a in FOUR_ACTIONS]
    renamed[0]["id"] = "Explain Algorithm"
    actions, reason = parse_suggested_actions(json.dumps(renamed))
    assert reason is None
    assert actions[0].id == "explain_algorithm"


def test_prompt_mentions_context_and_truncates():
    text = "x" * 600
    prompt = build_suggestion_prompt(text, make_context(text), ContentType.GENERIC)
    assert "https://example.com/code" in prompt
    assert "Detected content type: generic" in prompt
    assert "x" * 500 + "..." in prompt
    assert "x" * 501 not in prompt


def test_suggest_uses_suggestion_token_limit():
    pipeline = DummyPipeline(json.dumps(FOUR_ACTIONS))
    suggester = RemoteActionSuggester(CompletionClient(pipeline))

    actions = asyncio.run(suggester.suggest("def f(x): return x", make_context()))

    assert len(actions) == 4
    assert pipeline.calls[0]["max_new_tokens"] == 500
    assert pipeline.calls[0]["temperature"] == pytest.approx(0.3)
    assert "Detected content type: code" in pipeline.calls[0]["prompt"]


def test_suggest_raises_suggestion_error_on_garbage():
    suggester = RemoteActionSuggester(CompletionClient(DummyPipeline("I cannot help with that")))
    with pytest.raises(SuggestionError) as excinfo:
        asyncio.run(suggester.suggest("text", make_context()))
    assert excinfo.value.reason == "no_array_found"


def test_suggest_maps_transport_failure():
    pipeline = DummyPipeline(should_raise=CompletionError("API request failed: 500 - boom", 500))
    suggester = RemoteActionSuggester(CompletionClient(pipeline))
    with pytest.raises(SuggestionError) as excinfo:
        asyncio.run(suggester.suggest("text", make_context()))
    assert excinfo.value.reason.startswith("transport:")


def test_suggest_times_out():
    suggester = RemoteActionSuggester(SlowClient(), timeout=0.05)
    with pytest.raises(SuggestionError) as excinfo:
        asyncio.run(suggester.suggest("text", make_context()))
    assert excinfo.value.reason == "timeout"


def test_prompt_excerpt_matches_selection_excerpt():
    text = "y" * 700
    selection = TextSelection(text=text)
    assert selection.excerpt == excerpt_text(text)
    prompt = build_suggestion_prompt(text, make_context(text), ContentType.GENERIC)
    assert f'"{selection.excerpt}"' in prompt
