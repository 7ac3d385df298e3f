import asyncio
import json
from datetime import datetime, timezone

import pytest

from sidekick.agent.actions import Action
from sidekick.agent.llm_client import CompletionError, create_completion_client
from sidekick.agent.orchestrator import (
    ActionOrchestrator,
    CredentialNotConfiguredError,
    build_execution_prompt,
)
from sidekick.agent.page_context import Context, ElementDescriptor, TextSelection
from sidekick.agent.preferences import API_KEY, PreferenceStore
from sidekick.agent.usage_store import UsageStore
from sidekick.bridge.messaging import MessageType
from sidekick.config import settings
from sidekick.models import EngineLog, make_session_factory

REMOTE_ACTIONS = [
    {"id": "tldr", "label": "TL;DR", "icon": "⚡", "description": "One line summary"},
    {"id": "fact_check", "label": "Fact Check", "icon": "🔎", "description": "Check the claims"},
    {"id": "translate", "label": "Translate", "icon": "🌐", "description": "Translate to French"},
    {"id": "tweet", "label": "Tweet It", "icon": "🐦", "description": "Write a short post"},
]


class DummyClient:
    def __init__(self, replies=None, error: Exception | None = None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    async def complete(self, prompt, *, max_tokens, temperature=None):
        self.calls.append({"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature})
        if self.error:
            raise self.error
        return self.replies.pop(0) if self.replies else ""


class DummyFactory:
    def __init__(self, client: DummyClient):
        self.client = client
        self.credentials = []

    def __call__(self, credential):
        self.credentials.append(credential)
        return self.client


@pytest.fixture(autouse=True)
def no_env_credential(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", None)


def make_orchestrator(tmp_path, client=None, credential=None):
    tmp_path.mkdir(parents=True, exist_ok=True)
    factory = make_session_factory(f"sqlite:///{tmp_path / 'sidekick.db'}")
    prefs = PreferenceStore(factory)
    if credential:
        prefs.set(API_KEY, credential)
    completion = DummyFactory(client or DummyClient())
    orchestrator = ActionOrchestrator(
        UsageStore(factory),
        prefs,
        completion_factory=completion,
        log_session_factory=factory,
    )
    orchestrator.start()
    return orchestrator, completion, factory


def text_context(text="Dear Sam, thanks and see you soon."):
    return Context(url="https://mail.example.com/inbox", title="Inbox", selection=TextSelection(text=text))


def test_no_credential_uses_heuristics_without_remote_calls(tmp_path):
    orchestrator, completion, _ = make_orchestrator(tmp_path)

    actions = asyncio.run(orchestrator.get_actions(text_context()))

    assert [a.id for a in actions] == ["draft_reply", "summarize", "change_tone", "action_items"]
    assert completion.credentials == []


def test_remote_actions_are_ranked_by_usage(tmp_path):
    client = DummyClient([json.dumps(REMOTE_ACTIONS)])
    orchestrator, completion, _ = make_orchestrator(tmp_path, client, credential="sk-test")
    orchestrator.usage_store.record_click("tweet")

    actions = asyncio.run(orchestrator.get_actions(text_context()))

    assert [a.id for a in actions] == ["tweet", "tldr", "fact_check", "translate"]
    assert completion.credentials == ["sk-test"]


def test_malformed_reply_falls_back_and_is_logged(tmp_path):
    client = DummyClient(["not json at all"])
    orchestrator, _, factory = make_orchestrator(tmp_path, client, credential="sk-test")

    actions = asyncio.run(orchestrator.get_actions(text_context()))

    assert [a.id for a in actions] == ["draft_reply", "summarize", "change_tone", "action_items"]
    session = factory()
    try:
        messages = [log.message for log in session.query(EngineLog).all()]
    finally:
        session.close()
    assert any("suggestion_fallback" in m and "no_array_found" in m for m in messages)


def test_wrong_count_reply_falls_back(tmp_path):
    client = DummyClient([json.dumps(REMOTE_ACTIONS[:3])])
    orchestrator, _, _ = make_orchestrator(tmp_path, client, credential="sk-test")

    actions = asyncio.run(orchestrator.get_actions(text_context()))
    assert len(actions) == 4
    assert actions[0].id == "draft_reply"


def test_transport_failure_falls_back(tmp_path):
    client = DummyClient(error=CompletionError("API request failed: 401 - invalid key", 401))
    orchestrator, _, _ = make_orchestrator(tmp_path, client, credential="sk-test")

    actions = asyncio.run(orchestrator.get_actions(text_context()))
    assert [a.id for a in actions] == ["draft_reply", "summarize", "change_tone", "action_items"]


def test_credential_change_applies_without_restart(tmp_path):
    client = DummyClient([json.dumps(REMOTE_ACTIONS)])
    orchestrator, completion, _ = make_orchestrator(tmp_path, client)
    assert orchestrator.credential == ""

    orchestrator.preferences.set(API_KEY, "sk-new")
    assert orchestrator.credential == "sk-new"

    actions = asyncio.run(orchestrator.get_actions(text_context()))
    assert actions[0].id == "tldr"
    assert completion.credentials == ["sk-new"]


def test_execute_without_credential_raises(tmp_path):
    orchestrator, _, _ = make_orchestrator(tmp_path)
    action = Action("summarize", "Summarize", "📝", "Create a brief summary")

    with pytest.raises(CredentialNotConfiguredError):
        asyncio.run(orchestrator.execute_action(action, "text", text_context()))
    assert orchestrator.usage_store.get("summarize").clicks == 0


def test_execute_success_records_usage_once(tmp_path):
    client = DummyClient(["Short summary."])
    orchestrator, _, _ = make_orchestrator(tmp_path, client, credential="sk-test")
    action = Action("summarize", "Summarize", "📝", "Create a brief summary")

    started = datetime.now(timezone.utc)
    result = asyncio.run(orchestrator.execute_action(action, "Long text", text_context("Long text")))

    assert result == "Short summary."
    assert orchestrator.usage_store.get("summarize").clicks == 1
    assert client.calls[0]["max_tokens"] == 1024
    assert orchestrator.usage_store.get("summarize").last_used >= started
    assert client.calls[0]["prompt"].startswith("Create a brief summary. Be concise and practical.")


def test_execute_failure_does_not_record_usage(tmp_path):
    client = DummyClient(error=CompletionError("API request failed: 500 - boom", 500))
    orchestrator, _, _ = make_orchestrator(tmp_path, client, credential="sk-test")
    action = Action("summarize", "Summarize", "📝", "Create a brief summary")

    with pytest.raises(CompletionError):
        asyncio.run(orchestrator.execute_action(action, "text", text_context("text")))
    assert orchestrator.usage_store.get("summarize").clicks == 0


def test_build_execution_prompt_includes_page_context():
    action = Action("explain", "Explain", "💡", "Explain in simple terms")
    context = Context(url="https://docs.python.org/3/", title="Python Docs", selection=TextSelection(text="GIL"))
    prompt = build_execution_prompt(action, "GIL", context)
    assert prompt == (
        "Explain in simple terms. Be concise and practical.\n\n"
        "Context: This text was selected from docs.python.org (Python Docs).\n\n"
        "Text:\nGIL"
    )


def test_handle_message_get_actions_for_element(tmp_path):
    orchestrator, _, _ = make_orchestrator(tmp_path)
    context = Context(url="https://example.com", title="Charts", selection=ElementDescriptor(tag_name="canvas"))

    reply = asyncio.run(orchestrator.handle_message(MessageType.GET_ACTIONS, {"context": context.to_payload()}))

    assert [a["id"] for a in reply["actions"]] == [
        "explain_chart",
        "identify_trends",
        "extract_data_points",
        "chart_insights",
    ]


def test_handle_message_get_actions_bad_payload_returns_defaults(tmp_path):
    orchestrator, _, _ = make_orchestrator(tmp_path)
    reply = asyncio.run(
        orchestrator.handle_message("GET_ACTIONS", {"context": {"selection": {"kind": "text", "text": ""}}})
    )
    assert [a["id"] for a in reply["actions"]] == ["summarize", "explain", "improve", "key_points"]


def test_handle_message_execute_reports_failures(tmp_path):
    orchestrator, _, _ = make_orchestrator(tmp_path)
    payload = {
        "action": {"id": "summarize", "label": "Summarize", "icon": "📝", "description": "Create a brief summary"},
        "text": "hello",
        "context": text_context("hello").to_payload(),
    }

    reply = asyncio.run(orchestrator.handle_message(MessageType.EXECUTE_ACTION, payload))

    assert reply == {"success": False, "error": "API key not configured. Please set it in the settings."}


def test_handle_message_execute_success(tmp_path):
    client = DummyClient(["Done."])
    orchestrator, _, _ = make_orchestrator(tmp_path, client, credential="sk-test")
    payload = {
        "action": {"id": "improve", "label": "Improve", "icon": "✨", "description": "Enhance clarity"},
        "text": "hello",
        "context": text_context("hello").to_payload(),
    }

    reply = asyncio.run(orchestrator.handle_message(MessageType.EXECUTE_ACTION, payload))

    assert reply == {"success": True, "result": "Done."}
    assert orchestrator.usage_store.get("improve").clicks == 1


def test_handle_message_update_stats(tmp_path):
    orchestrator, _, _ = make_orchestrator(tmp_path)
    assert asyncio.run(orchestrator.handle_message(MessageType.UPDATE_STATS, {"action_id": "explain"})) == {
        "success": True
    }
    assert orchestrator.usage_store.get("explain").clicks == 1

    with pytest.raises(ValueError):
        asyncio.run(orchestrator.handle_message(MessageType.UPDATE_STATS, {}))


def test_test_connection_messages(tmp_path):
    orchestrator, _, _ = make_orchestrator(tmp_path)
    check = asyncio.run(orchestrator.test_connection())
    assert (check.ok, check.message) == (False, "Please save an API key first")

    ok_orchestrator, completion, _ = make_orchestrator(tmp_path / "ok", DummyClient(["Hello"]), credential="sk-x")
    check = asyncio.run(ok_orchestrator.test_connection())
    assert (check.ok, check.message) == (True, "API connection successful!")
    assert completion.client.calls[0]["max_tokens"] == 10

    failing = DummyClient(error=CompletionError("API request failed: 401 - bad key", 401))
    bad_orchestrator, _, _ = make_orchestrator(tmp_path / "bad", failing, credential="sk-x")
    check = asyncio.run(bad_orchestrator.test_connection())
    assert check.ok is False
    assert check.message == "API test failed: API request failed: 401 - bad key"


def test_client_construction_failure_falls_back_to_heuristics(tmp_path):
    def broken_factory(_credential):
        raise ValueError("Unsupported llm_provider: huggingface")

    orchestrator, _, factory = make_orchestrator(tmp_path, credential="sk-test")
    orchestrator.completion_factory = broken_factory
    code = Context(url="https://example.com", title="Code", selection=TextSelection(text="function foo() { return 1; }"))

    actions = asyncio.run(orchestrator.get_actions(code))

    assert [a.id for a in actions] == ["explain_code", "find_issues", "add_comments", "refactor"]
    session = factory()
    try:
        messages = [log.message for log in session.query(EngineLog).all()]
    finally:
        session.close()
    assert any("suggestion_fallback" in m and "Unsupported llm_provider" in m for m in messages)


def test_unsupported_provider_setting_still_yields_palette(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "llm_provider", "huggingface")
    orchestrator, _, _ = make_orchestrator(tmp_path, credential="sk-test")
    orchestrator.completion_factory = create_completion_client
    code = Context(url="https://example.com", title="Code", selection=TextSelection(text="function foo() { return 1; }"))

    actions = asyncio.run(orchestrator.get_actions(code))
    assert [a.id for a in actions] == ["explain_code", "find_issues", "add_comments", "refactor"]

    reply = asyncio.run(
        orchestrator.handle_message(
            MessageType.EXECUTE_ACTION,
            {
                "action": {"id": "explain_code", "label": "Explain", "icon": "💡", "description": "Explain it"},
                "text": "function foo() { return 1; }",
                "context": code.to_payload(),
            },
        )
    )
    assert reply == {"success": False, "error": "Unsupported llm_provider: huggingface"}
    assert orchestrator.usage_store.get("explain_code").clicks == 0


def test_completion_client_reused_until_credential_changes(tmp_path):
    client = DummyClient([json.dumps(REMOTE_ACTIONS), "Done.", json.dumps(REMOTE_ACTIONS)])
    orchestrator, completion, _ = make_orchestrator(tmp_path, client, credential="sk-test")
    action = Action("summarize", "Summarize", "📝", "Create a brief summary")

    asyncio.run(orchestrator.get_actions(text_context()))
    asyncio.run(orchestrator.execute_action(action, "text", text_context("text")))
    assert completion.credentials == ["sk-test"]

    orchestrator.preferences.set(API_KEY, "sk-rotated")
    asyncio.run(orchestrator.get_actions(text_context()))
    assert completion.credentials == ["sk-test", "sk-rotated"]
