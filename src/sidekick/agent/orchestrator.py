"""Background-side coordinator: suggestions, ranking, usage stats and execution."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.orm import Session

from ..bridge.messaging import MessageType
from ..config import settings
from ..models import log_engine_event
from .actions import Action
from .classifier import classify_with_signals, execution_text, suggestion_text
from .heuristics import HeuristicActionSuggester
from .llm_client import CompletionClient, CompletionError, create_completion_client
from .page_context import Context
from .preferences import API_KEY, PreferenceStore
from .ranking import rank
from .remote_suggester import RemoteActionSuggester, SuggestionError
from .usage_store import UsageStore, UsageSummary

logger = logging.getLogger(__name__)

CompletionFactory = Callable[[str], CompletionClient]


class CredentialNotConfiguredError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("API key not configured. Please set it in the settings.")


@dataclass
class ConnectionCheck:
    ok: bool
    message: str


def build_execution_prompt(action: Action, content: str, context: Context) -> str:
    context_info = f"Context: This text was selected from {context.domain} ({context.title}).\n\n"
    return f"{action.description}. Be concise and practical.\n\n{context_info}Text:\n{content}"


class ActionOrchestrator:
    """Owns the credential, the usage cache and the remote-call lifecycle.

    ``start()`` loads the stored credential (falling back to the configured
    ``openai_api_key``), loads usage statistics and subscribes to credential
    changes so updates from the settings surface apply immediately.
    """

    def __init__(
        self,
        usage_store: UsageStore,
        preferences: PreferenceStore,
        *,
        completion_factory: CompletionFactory = create_completion_client,
        heuristics: HeuristicActionSuggester | None = None,
        log_session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self.usage_store = usage_store
        self.preferences = preferences
        self.completion_factory = completion_factory
        self.heuristics = heuristics or HeuristicActionSuggester()
        self.log_session_factory = log_session_factory
        self.credential: str = ""
        self._client: CompletionClient | None = None
        self._client_key = ""
        self._unsubscribe: Callable[[], None] | None = None

    def start(self) -> None:
        self.credential = self.preferences.get(API_KEY) or settings.openai_api_key or ""
        self.usage_store.load()
        if self._unsubscribe is None:
            self._unsubscribe = self.preferences.subscribe(API_KEY, self._on_credential_changed)
        logger.info("orchestrator_started credential_configured=%s", bool(self.credential))

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_credential_changed(self, _key: str, value: Optional[str]) -> None:
        self.credential = value or ""
        self._client = None
        logger.info("credential_updated configured=%s", bool(self.credential))

    def _log_event(self, level: str, message: str) -> None:
        logger.log(logging.getLevelName(level.upper()), message)
        if self.log_session_factory is None:
            return
        session = self.log_session_factory()
        try:
            log_engine_event(session, level, message)
        finally:
            session.close()

    def _completion_client(self) -> CompletionClient:
        # reused until the credential changes
        if self._client is None or self._client_key != self.credential:
            self._client = self.completion_factory(self.credential)
            self._client_key = self.credential
        return self._client

    def _ranked(self, actions) -> list[Action]:
        return rank(list(actions), self.usage_store.snapshot())

    async def get_actions(self, context: Context) -> list[Action]:
        classification = classify_with_signals(context.selection, context)
        logger.debug(
            "classified domain=%s type=%s signals=%s",
            context.domain,
            classification.content_type.value,
            ",".join(sorted(classification.signals)),
        )
        if not self.credential:
            return self._ranked(self.heuristics.suggest_for(context))

        try:
            suggester = RemoteActionSuggester(self._completion_client())
            actions = await suggester.suggest(suggestion_text(context), context)
        except SuggestionError as exc:
            self._log_event("warning", f"suggestion_fallback domain={context.domain} reason={exc.reason}")
            return self._ranked(self.heuristics.suggest_for(context))
        except Exception as exc:  # noqa: BLE001
            self._log_event("error", f"suggestion_fallback domain={context.domain} reason=unexpected:{exc!r}")
            return self._ranked(self.heuristics.suggest_for(context))
        return self._ranked(actions)

    async def execute_action(self, action: Action, content: str, context: Context) -> str:
        if not self.credential:
            raise CredentialNotConfiguredError()

        prompt = build_execution_prompt(action, content, context)
        try:
            result = await self._completion_client().complete(prompt, max_tokens=settings.execution_max_tokens)
        except (CompletionError, ValueError) as exc:
            self._log_event("error", f"execution_failed action_id={action.id} reason={exc}")
            raise

        self.usage_store.record_click(action.id)
        self._log_event("info", f"execution_succeeded action_id={action.id} chars={len(result)}")
        return result

    def update_stats(self, action_id: str) -> None:
        self.usage_store.record_click(action_id)

    def reset_stats(self) -> None:
        self.usage_store.reset()
        self._log_event("info", "usage_reset")

    def usage_summary(self) -> UsageSummary:
        return self.usage_store.summary()

    async def test_connection(self, credential: str | None = None) -> ConnectionCheck:
        key = credential or self.credential
        if not key:
            return ConnectionCheck(ok=False, message="Please save an API key first")
        try:
            client = self._completion_client() if key == self.credential else self.completion_factory(key)
            await client.complete("Hi", max_tokens=10)
        except (CompletionError, ValueError) as exc:
            return ConnectionCheck(ok=False, message=f"API test failed: {exc}")
        return ConnectionCheck(ok=True, message="API connection successful!")

    async def handle_message(self, message_type: MessageType | str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Dispatch one bridge request. Responses follow the message contract."""

        kind = MessageType(message_type)
        if kind is MessageType.GET_ACTIONS:
            try:
                context = Context.from_payload(payload.get("context") or {})
            except (ValueError, TypeError, AttributeError) as exc:
                self._log_event("warning", f"get_actions_bad_payload reason={exc}")
                return {"actions": [a.to_payload() for a in self._ranked(self.heuristics.default_actions())]}
            actions = await self.get_actions(context)
            return {"actions": [a.to_payload() for a in actions]}

        if kind is MessageType.EXECUTE_ACTION:
            try:
                action = Action.from_payload(payload.get("action") or {})
                context = Context.from_payload(payload.get("context") or {})
                text = payload.get("text") or execution_text(context)
                result = await self.execute_action(action, str(text), context)
            except (CredentialNotConfiguredError, CompletionError, ValueError) as exc:
                return {"success": False, "error": str(exc)}
            return {"success": True, "result": result}

        action_id = str(payload.get("action_id") or "")
        if not action_id:
            raise ValueError("UPDATE_STATS requires action_id")
        self.update_stats(action_id)
        return {"success": True}
